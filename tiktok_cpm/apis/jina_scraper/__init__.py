import os
import asyncio
import logging
import aiohttp
from typing import Optional, Dict, Protocol
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tiktok_cpm.apis.errors import ScraperNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scraper")

DEFAULT_READER_URL = "https://r.jina.ai/"

class ScrapeRequest(BaseModel):
    url: str

class ScrapeResult(BaseModel):
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None

class ScraperStatus(BaseModel):
    configured: bool
    message: str

class ProfileScraper(Protocol):
    """Anything that can turn a profile URL into the reader's raw event stream."""

    async def scrape(self, url: str) -> ScrapeResult:
        ...

class JinaScraper:
    """Fetches profile pages through the Jina reader as an HTML event stream.

    A session can be passed in to share one connection pool; otherwise a
    session is opened per call.
    """

    def __init__(
        self,
        api_key: Optional[str],
        reader_url: str = DEFAULT_READER_URL,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.reader_url = reader_url
        self.session = session

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "text/event-stream",
            "X-Return-Format": "html",
        }

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> ScrapeResult:
        request_url = f"{self.reader_url}{url}"
        logger.info(f"Scraping {url} through the Jina reader")
        async with session.get(request_url, headers=self._headers()) as response:
            if not 200 <= response.status < 300:
                logger.error(f"Jina API returned status {response.status} for {url}")
                return ScrapeResult(success=False, error=f"Jina API error: {response.status}")

            text = await response.text()
            logger.info(f"Jina response length: {len(text)}")
            return ScrapeResult(success=True, data=text)

    async def scrape(self, url: str) -> ScrapeResult:
        if not self.api_key:
            raise ScraperNotConfiguredError("JINA_API_KEY is not set")

        try:
            if self.session is not None:
                return await self._fetch(self.session, url)
            async with aiohttp.ClientSession() as session:
                return await self._fetch(session, url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Jina scraping error for {url}: {str(e)}")
            return ScrapeResult(success=False, error=str(e) or e.__class__.__name__)

# FastAPI dependency; tests swap it out through app.dependency_overrides
def get_scraper() -> ProfileScraper:
    return JinaScraper(
        api_key=os.getenv("JINA_API_KEY"),
        reader_url=os.getenv("JINA_READER_URL", DEFAULT_READER_URL),
    )

@router.post("/scrape", response_model=ScrapeResult)
async def scrape_profile(request: ScrapeRequest, scraper: ProfileScraper = Depends(get_scraper)) -> ScrapeResult:
    """Fetch the raw reader event stream for a profile URL"""
    try:
        return await scraper.scrape(request.url)
    except ScraperNotConfiguredError as e:
        logger.error(str(e))
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/check-connection", response_model=ScraperStatus)
async def check_scraper_connection() -> ScraperStatus:
    """Report whether the reader API key is configured"""
    if not os.getenv("JINA_API_KEY"):
        return ScraperStatus(
            configured=False,
            message="Jina API key not configured. Please set JINA_API_KEY in the environment.",
        )
    return ScraperStatus(configured=True, message="Jina API key is configured")
