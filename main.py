import os
import dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load environment variables (JINA_API_KEY, JINA_READER_URL, ALLOWED_ORIGINS, PORT)
dotenv.load_dotenv()
DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:5173"

def get_allowed_origins() -> list:
    origins = os.getenv("ALLOWED_ORIGINS", DEFAULT_ORIGINS)
    return [origin.strip() for origin in origins.split(",") if origin.strip()]

def create_app() -> FastAPI:
    from tiktok_cpm.apis.analysis_export import router as analysis_export_router
    from tiktok_cpm.apis.cpm_analyzer import router as cpm_analyzer_router
    from tiktok_cpm.apis.jina_scraper import router as jina_scraper_router
    from tiktok_cpm.apis.multi_creator import router as multi_creator_router
    from tiktok_cpm.apis.tiktok_parser import router as tiktok_parser_router

    app = FastAPI(title="TikTok Creator CPM Analyzer")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jina_scraper_router)
    app.include_router(tiktok_parser_router)
    app.include_router(cpm_analyzer_router)
    app.include_router(multi_creator_router)
    app.include_router(analysis_export_router)

    @app.get("/")
    async def root():
        logger.info("Root endpoint accessed")
        return {"message": "Welcome to the TikTok Creator CPM Analyzer API"}

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
