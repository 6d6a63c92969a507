import math
import logging
from typing import Dict, Any, List, Optional, Tuple
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tiktok_cpm.apis.errors import (
    CPMAnalysisError,
    InvalidAnalysisInputError,
    NoMarkupFoundError,
    ScrapeFailedError,
    ScraperNotConfiguredError,
)
from tiktok_cpm.apis.jina_scraper import ProfileScraper, get_scraper
from tiktok_cpm.apis.models import (
    AnalysisInsights,
    AnalyticsSummary,
    CamelModel,
    ChartPoint,
    CpmRating,
    CurrencyInfo,
    NormalizedProfile,
    PerformanceConsistency,
    ViralPotential,
)
from tiktok_cpm.apis.tiktok_parser import format_tiktok_data, parse_tiktok_data_from_event_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cpm_analyzer")

DEFAULT_VIDEOS_TO_ANALYZE = 10
MAX_CREATORS = 5

# Static conversion rates to USD
CURRENCY_RATES: Dict[str, Dict[str, Any]] = {
    "USD": {"rate": 1, "symbol": "$", "label": "USD"},
    "EUR": {"rate": 1.09, "symbol": "€", "label": "EUR"},
    "GBP": {"rate": 1.27, "symbol": "£", "label": "GBP"},
    "JPY": {"rate": 0.0066, "symbol": "¥", "label": "JPY"},
    "KRW": {"rate": 0.00076, "symbol": "₩", "label": "KRW"},
    "INR": {"rate": 0.012, "symbol": "₹", "label": "INR"},
    "CAD": {"rate": 0.74, "symbol": "C$", "label": "CAD"},
    "AUD": {"rate": 0.65, "symbol": "A$", "label": "AUD"},
}

class AnalyzeRequest(BaseModel):
    url: Optional[str] = None
    costPerVideo: Optional[float] = None
    videosToAnalyze: Optional[int] = DEFAULT_VIDEOS_TO_ANALYZE
    currency: str = "USD"

class AnalyzeResponse(CamelModel):
    success: bool
    url: str
    profile: NormalizedProfile
    analytics: AnalyticsSummary
    insights: AnalysisInsights
    chart_data: List[ChartPoint]

# Unknown currencies are treated as USD
def currency_rate(currency: Optional[str]) -> float:
    return CURRENCY_RATES.get((currency or "").upper(), {}).get("rate", 1)

def currency_symbol(currency: Optional[str]) -> str:
    return CURRENCY_RATES.get((currency or "").upper(), {}).get("symbol", "$")

# Helper to render counts like 1.20M / 523.0K
def format_number(num: Optional[float]) -> str:
    if num is None:
        return "n/a"
    if num >= 1_000_000:
        return f"{num / 1_000_000:.2f}M"
    if num >= 1_000:
        return f"{num / 1_000:.1f}K"
    return f"{num:.0f}"

# The converted cost must stay finite too, or inf leaks into CPM and the breakdown text
def validate_cost_and_window(
    cost: Optional[float], video_count: Optional[int], currency: Optional[str] = "USD"
) -> Tuple[float, int]:
    if cost is None or not math.isfinite(cost) or cost <= 0:
        raise InvalidAnalysisInputError("Please enter a valid cost per video")
    if not math.isfinite(cost * currency_rate(currency)):
        raise InvalidAnalysisInputError("Please enter a valid cost per video")
    if video_count is None or video_count <= 0:
        raise InvalidAnalysisInputError("Please enter a valid number of videos to analyze")
    return float(cost), int(video_count)

def validate_analysis_request(
    url: Optional[str], cost: Optional[float], video_count: Optional[int], currency: Optional[str] = "USD"
) -> Tuple[float, int]:
    """Reject incomplete or non-positive parameters before anything is fetched."""
    if not url or not url.strip() or cost is None:
        raise InvalidAnalysisInputError("Please enter both TikTok URL and cost per video")
    return validate_cost_and_window(cost, video_count, currency)

def validate_batch_request(
    urls: List[str], cost: Optional[float], video_count: Optional[int], currency: Optional[str] = "USD"
) -> Tuple[List[str], float, int]:
    valid_urls = [url.strip() for url in urls if url and url.strip()]
    if not valid_urls or cost is None:
        raise InvalidAnalysisInputError("Please enter at least one TikTok URL and cost per video")
    if len(valid_urls) > MAX_CREATORS:
        raise InvalidAnalysisInputError(f"You can compare at most {MAX_CREATORS} creators at a time")
    cost, video_count = validate_cost_and_window(cost, video_count, currency)
    return valid_urls, cost, video_count

def performance_consistency(coefficient_of_variation: Optional[float]) -> Optional[PerformanceConsistency]:
    if coefficient_of_variation is None:
        return None
    if coefficient_of_variation > 100:
        return PerformanceConsistency.LOW
    if coefficient_of_variation > 50:
        return PerformanceConsistency.MEDIUM
    return PerformanceConsistency.HIGH

def calculate_analytics(
    profile: NormalizedProfile, cost: float, video_count: int, currency: str = "USD"
) -> AnalyticsSummary:
    """Compute CPM, virality and consistency over the first ``video_count`` videos.

    The window keeps profile order and is clamped to the videos available.
    Views use the population standard deviation; a video is viral when its
    views are strictly above mean + 2 * stddev.  Metrics that divide by the
    window size or by the mean are None when that divisor is zero.
    """
    window = profile.videos[:video_count]
    cost_in_usd = cost * currency_rate(currency)
    views = [video.stats.views for video in window]
    total_views = sum(views)
    window_size = len(window)

    if window_size == 0:
        logger.warning(f"No videos to analyze for @{profile.user.username}")
        return AnalyticsSummary(total_views=0, cost_in_usd=cost_in_usd, total_videos=0)

    views_mean = total_views / window_size
    views_variance = sum((view - views_mean) ** 2 for view in views) / window_size
    views_std = math.sqrt(views_variance)

    virality_threshold = views_mean + 2 * views_std
    viral_videos = sum(1 for view in views if view > virality_threshold)
    virality_rate = viral_videos / window_size * 100

    if views_mean > 0:
        cpm = cost_in_usd / views_mean * 1000
        coefficient_of_variation = views_std / views_mean * 100
    else:
        logger.warning(f"Videos analyzed for @{profile.user.username} have no views; CPM is undefined")
        cpm = None
        coefficient_of_variation = None

    logger.info(
        f"CPM calculation: {window_size} videos, {total_views} total views, "
        f"cost {cost} {currency} (${cost_in_usd:.2f}), "
        f"CPM {'n/a' if cpm is None else f'${cpm:.2f}'}"
    )

    return AnalyticsSummary(
        total_views=total_views,
        average_views=views_mean,
        cost_in_usd=cost_in_usd,
        cpm=cpm,
        virality_rate=virality_rate,
        viral_videos=viral_videos,
        total_videos=window_size,
        views_standard_deviation=views_std,
        coefficient_of_variation=coefficient_of_variation,
        performance_consistency=performance_consistency(coefficient_of_variation),
    )

def cpm_rating(cpm: Optional[float]) -> Optional[CpmRating]:
    if cpm is None:
        return None
    if cpm < 5:
        return CpmRating.EXCELLENT
    if cpm < 15:
        return CpmRating.FAIR
    return CpmRating.POOR

def viral_potential(virality_rate: Optional[float]) -> Optional[ViralPotential]:
    if virality_rate is None:
        return None
    if virality_rate > 20:
        return ViralPotential.HIGH
    if virality_rate > 10:
        return ViralPotential.MODERATE
    return ViralPotential.LOW

def calculation_breakdown(cost: float, currency: str, analytics: AnalyticsSummary) -> str:
    symbol = currency_symbol(currency)
    if (currency or "USD").upper() != "USD":
        cost_text = f"{symbol}{cost:.2f} = ${analytics.cost_in_usd:.2f}"
    else:
        cost_text = f"${cost:.2f}"

    if analytics.average_views is None or analytics.cpm is None:
        return f"{cost_text} / 0 views * 1000 = n/a (no views to price)"
    return f"{cost_text} / {round(analytics.average_views):,} views * 1000 = ${analytics.cpm:.2f}"

def build_recommendations(analytics: AnalyticsSummary) -> List[str]:
    recommendations: List[str] = []
    if analytics.total_videos == 0:
        recommendations.append("No videos were found on this profile, so nothing could be priced")
        return recommendations
    if analytics.cpm is None:
        recommendations.append("The analyzed videos have no recorded views, so CPM cannot be computed")
    elif analytics.cpm < 10:
        recommendations.append("Cost per view is strong; a repeat partnership is worth considering")
    if analytics.performance_consistency == PerformanceConsistency.LOW:
        recommendations.append("Views swing widely between videos; negotiate performance-based terms")
    if analytics.virality_rate is not None and analytics.virality_rate > 15:
        recommendations.append("Breakout videos are frequent; lean into the creator's viral formats")
    return recommendations

def build_insights(cost: float, currency: str, analytics: AnalyticsSummary) -> AnalysisInsights:
    return AnalysisInsights(
        cpm_rating=cpm_rating(analytics.cpm),
        viral_potential=viral_potential(analytics.virality_rate),
        calculation_breakdown=calculation_breakdown(cost, currency, analytics),
        recommendations=build_recommendations(analytics),
    )

def build_chart_data(profile: NormalizedProfile, video_count: int) -> List[ChartPoint]:
    return [
        ChartPoint(index=index + 1, views=video.stats.views, video_title=video.title or f"Video {index + 1}")
        for index, video in enumerate(profile.videos[:video_count])
    ]

async def fetch_profile(url: str, scraper: ProfileScraper) -> NormalizedProfile:
    """Scrape one profile URL and run it through unwrapping, extraction and normalization."""
    result = await scraper.scrape(url)
    if not result.success:
        raise ScrapeFailedError(result.error or "Failed to scrape TikTok data")

    data = parse_tiktok_data_from_event_stream(result.data or "")
    return format_tiktok_data(data)

# Map core failures onto HTTP status codes
def http_error_for(error: CPMAnalysisError) -> HTTPException:
    if isinstance(error, InvalidAnalysisInputError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ScraperNotConfiguredError):
        return HTTPException(status_code=500, detail=str(error))
    if isinstance(error, ScrapeFailedError):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, NoMarkupFoundError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))

@router.get("/currencies", response_model=List[CurrencyInfo])
async def list_currencies() -> List[CurrencyInfo]:
    """List the supported currencies with their USD conversion rates"""
    return [CurrencyInfo(code=code, **info) for code, info in CURRENCY_RATES.items()]

@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_creator_cpm(
    request: AnalyzeRequest, scraper: ProfileScraper = Depends(get_scraper)
) -> AnalyzeResponse:
    """Scrape a TikTok profile and compute its partnership CPM analytics"""
    try:
        cost, video_count = validate_analysis_request(
            request.url, request.costPerVideo, request.videosToAnalyze, request.currency
        )
        url = request.url.strip()
        profile = await fetch_profile(url, scraper)
    except CPMAnalysisError as e:
        logger.error(f"Error analyzing TikTok data for {request.url}: {str(e)}")
        raise http_error_for(e)

    analytics = calculate_analytics(profile, cost, video_count, request.currency)
    return AnalyzeResponse(
        success=True,
        url=url,
        profile=profile,
        analytics=analytics,
        insights=build_insights(cost, request.currency, analytics),
        chart_data=build_chart_data(profile, video_count),
    )
