import re
import json
import logging
from datetime import datetime, date, timezone
from typing import Optional
from fastapi import APIRouter, HTTPException
from fastapi.responses import Response, PlainTextResponse

from tiktok_cpm.apis.cpm_analyzer import (
    DEFAULT_VIDEOS_TO_ANALYZE,
    calculation_breakdown,
    cpm_rating,
    format_number,
    validate_cost_and_window,
    viral_potential,
)
from tiktok_cpm.apis.errors import InvalidAnalysisInputError
from tiktok_cpm.apis.models import (
    AnalyticsSummary,
    CamelModel,
    CpmRating,
    ExportDocument,
    ExportParameters,
    NormalizedProfile,
    ViralPotential,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis_export")

CPM_RATING_LABELS = {
    CpmRating.EXCELLENT: "Excellent",
    CpmRating.FAIR: "Fair",
    CpmRating.POOR: "Poor",
}

VIRAL_POTENTIAL_LABELS = {
    ViralPotential.HIGH: "High",
    ViralPotential.MODERATE: "Moderate",
    ViralPotential.LOW: "Low",
}

class ExportRequest(CamelModel):
    profile: NormalizedProfile
    analytics: AnalyticsSummary
    cost_per_video: float
    currency: str = "USD"
    videos_to_analyze: int = DEFAULT_VIDEOS_TO_ANALYZE

# Helper to sanitize the username before it goes into a file name
def sanitize_filename_part(value: str) -> str:
    return re.sub(r'[^a-zA-Z0-9._-]', '', value) or "unknown"

def export_filename(username: str, when: Optional[date] = None) -> str:
    when = when or datetime.now(timezone.utc).date()
    return f"tiktok_cpm_analysis_{sanitize_filename_part(username)}_{when.isoformat()}.json"

def build_export_document(
    profile: NormalizedProfile,
    analytics: AnalyticsSummary,
    cost: float,
    currency: str,
    videos_analyzed: int,
    analysis_time: Optional[datetime] = None,
) -> ExportDocument:
    """Bundle the profile, its analytics and the input parameters for download."""
    cost, videos_analyzed = validate_cost_and_window(cost, videos_analyzed, currency)
    analysis_time = analysis_time or datetime.now(timezone.utc)
    analytics_data = analytics.model_dump(mode="json", by_alias=True)
    analytics_data["cpmExplanation"] = calculation_breakdown(cost, currency, analytics)

    return ExportDocument(
        user=profile.user,
        videos=profile.videos,
        analytics=analytics_data,
        parameters=ExportParameters(
            cost_per_video=cost,
            currency=currency,
            videos_analyzed=videos_analyzed,
            analysis_date=analysis_time.isoformat(),
        ),
    )

def _percent(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f}%"

def _money(value: Optional[float]) -> str:
    return "n/a" if value is None else f"${value:.2f}"

def build_clipboard_summary(
    profile: NormalizedProfile, analytics: AnalyticsSummary, generated_on: Optional[date] = None
) -> str:
    """Plain-text digest of an analysis, meant to be pasted into chat or email."""
    generated_on = generated_on or datetime.now(timezone.utc).date()
    rating = cpm_rating(analytics.cpm)
    potential = viral_potential(analytics.virality_rate)
    consistency = analytics.performance_consistency.value if analytics.performance_consistency else "n/a"

    lines = [
        f"TikTok CPM Analysis - @{profile.user.username}",
        "==========================================",
        "",
        "Results:",
        f"- Total Views: {format_number(analytics.total_views)}",
        f"- Average Views: {format_number(analytics.average_views)}",
        f"- CPM: {_money(analytics.cpm)}",
        f"- Virality Rate: {_percent(analytics.virality_rate)}",
        "",
        f"Cost Efficiency: {CPM_RATING_LABELS.get(rating, 'n/a')}",
        f"Performance Consistency: {consistency}",
        f"Viral Potential: {VIRAL_POTENTIAL_LABELS.get(potential, 'n/a')}",
        "",
        f"Generated on {generated_on.isoformat()}",
    ]
    return "\n".join(lines) + "\n"

@router.post("/json")
async def export_analysis(request: ExportRequest) -> Response:
    """Download the full analysis as a JSON file"""
    try:
        document = build_export_document(
            request.profile,
            request.analytics,
            request.cost_per_video,
            request.currency,
            request.videos_to_analyze,
        )
    except InvalidAnalysisInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    filename = export_filename(request.profile.user.username)
    logger.info(f"Exporting analysis for @{request.profile.user.username} as {filename}")
    return Response(
        content=json.dumps(document.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.post("/summary", response_class=PlainTextResponse)
async def export_summary(request: ExportRequest) -> str:
    """Plain-text summary for copying to the clipboard"""
    return build_clipboard_summary(request.profile, request.analytics)
