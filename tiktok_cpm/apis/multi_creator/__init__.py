import math
import asyncio
import logging
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from tiktok_cpm.apis.cpm_analyzer import (
    DEFAULT_VIDEOS_TO_ANALYZE,
    calculate_analytics,
    fetch_profile,
    validate_batch_request,
)
from tiktok_cpm.apis.errors import CPMAnalysisError, InvalidAnalysisInputError
from tiktok_cpm.apis.jina_scraper import ProfileScraper, get_scraper
from tiktok_cpm.apis.models import (
    ComparisonPoint,
    ComparisonReport,
    CpmRange,
    CreatorAnalysis,
    PerformanceConsistency,
    RadarPoint,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/multi_creator")

HIGH_VIRALITY_RATE = 20

CONSISTENCY_SCORES = {
    PerformanceConsistency.HIGH: 100,
    PerformanceConsistency.MEDIUM: 50,
    PerformanceConsistency.LOW: 20,
}

RADAR_METRICS = ["CPM Efficiency", "Avg Views", "Virality", "Consistency", "Followers"]

ALL_FAILED_MESSAGE = "Failed to analyze any creators. Please check the URLs and try again."

class MultiAnalyzeRequest(BaseModel):
    # validate_batch_request drops blank entries before applying the size cap
    urls: List[str] = Field(default_factory=list)
    costPerVideo: Optional[float] = None
    videosToAnalyze: Optional[int] = DEFAULT_VIDEOS_TO_ANALYZE
    currency: str = "USD"

async def analyze_creator(
    url: str, scraper: ProfileScraper, cost: float, video_count: int, currency: str
) -> CreatorAnalysis:
    """Run one creator's pipeline; any failure is returned as the record's error."""
    try:
        profile = await fetch_profile(url, scraper)
    except CPMAnalysisError as e:
        logger.error(f"Error analyzing creator {url}: {str(e)}")
        return CreatorAnalysis(url=url, error=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error analyzing creator {url}: {str(e)}")
        return CreatorAnalysis(url=url, error=str(e) or "An unexpected error occurred")

    analytics = calculate_analytics(profile, cost, video_count, currency)
    return CreatorAnalysis(url=url, profile=profile, analytics=analytics)

# Series are keyed by label, so every creator needs a distinct one. The URL stands in
# for a missing username; repeats get a numeric suffix.
def creator_labels(valid: List[CreatorAnalysis]) -> List[str]:
    labels: List[str] = []
    used = set()
    for analysis in valid:
        username = analysis.profile.user.username
        base = f"@{username}" if username else analysis.url
        label = base
        suffix = 1
        while label in used:
            suffix += 1
            label = f"{base} ({suffix})"
        used.add(label)
        labels.append(label)
    return labels

# JavaScript-style rounding, halves go up
def _round_score(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return int(math.floor(value + 0.5))

def _share_of_max(value: Optional[float], maximum: Optional[float]) -> Optional[float]:
    if value is None or not maximum:
        return None
    return value / maximum * 100


def build_radar_chart(valid: List[CreatorAnalysis], labels: Optional[List[str]] = None) -> List[RadarPoint]:
    """Score each creator 0-100 on five dimensions relative to the best in the batch."""
    if not valid:
        return []
    labels = labels or creator_labels(valid)

    cpms = [a.analytics.cpm for a in valid if a.analytics.cpm is not None]
    averages = [a.analytics.average_views for a in valid if a.analytics.average_views is not None]
    max_cpm = max(cpms) if cpms else None
    max_views = max(averages) if averages else None
    max_followers = max(a.profile.user.stats.followers for a in valid)

    points: List[RadarPoint] = []
    for metric in RADAR_METRICS:
        values: Dict[str, Optional[int]] = {}
        for analysis, label in zip(valid, labels):
            analytics = analysis.analytics
            if metric == "CPM Efficiency":
                # Lower CPM is better, so the scale is inverted
                value = None
                if analytics.cpm is not None and max_cpm:
                    value = (max_cpm - analytics.cpm) / max_cpm * 100
            elif metric == "Avg Views":
                value = _share_of_max(analytics.average_views, max_views)
            elif metric == "Virality":
                value = analytics.virality_rate
            elif metric == "Consistency":
                value = CONSISTENCY_SCORES.get(analytics.performance_consistency)
            else:
                value = _share_of_max(analysis.profile.user.stats.followers, max_followers)
            values[label] = _round_score(value)
        points.append(RadarPoint(metric=metric, values=values))
    return points

def build_recommendations(
    valid: List[CreatorAnalysis], best: Optional[CreatorAnalysis], labels: Optional[List[str]] = None
) -> List[str]:
    labels = labels or creator_labels(valid)
    recommendations: List[str] = []
    if best is not None:
        best_label = next(label for analysis, label in zip(valid, labels) if analysis is best)
        recommendations.append(
            f"Focus budget on {best_label} for the best return ({best.analytics.cpm:.2f} USD CPM)"
        )

    viral = [
        label
        for analysis, label in zip(valid, labels)
        if analysis.analytics.virality_rate is not None and analysis.analytics.virality_rate > HIGH_VIRALITY_RATE
    ]
    if viral:
        verb = "have" if len(viral) > 1 else "has"
        recommendations.append(f"{', '.join(viral)} {verb} high viral potential")

    recommendations.append(f"Consider diversifying with {len(valid)} creators for broader reach")
    return recommendations

def build_comparison_report(analyses: List[CreatorAnalysis]) -> ComparisonReport:
    """Aggregate per-creator results; errored creators are kept but never ranked."""
    report = ComparisonReport(analyses=analyses)
    valid = [a for a in analyses if not a.error]
    if not valid:
        report.error = ALL_FAILED_MESSAGE
        return report

    priced = [a for a in valid if a.analytics.cpm is not None]
    if priced:
        # min() keeps the first creator on ties
        report.best_creator = min(priced, key=lambda a: a.analytics.cpm)
        cpms = [a.analytics.cpm for a in priced]
        report.cpm_range = CpmRange(average=sum(cpms) / len(cpms), minimum=min(cpms), maximum=max(cpms))

    labels = creator_labels(valid)
    report.combined_followers = sum(a.profile.user.stats.followers for a in valid)
    report.comparison_chart = [
        ComparisonPoint(
            name=label,
            cpm=a.analytics.cpm,
            avg_views=a.analytics.average_views,
            virality_rate=a.analytics.virality_rate,
            followers=a.profile.user.stats.followers,
        )
        for a, label in zip(valid, labels)
    ]
    report.radar_chart = build_radar_chart(valid, labels)
    report.recommendations = build_recommendations(valid, report.best_creator, labels)
    return report

async def analyze_creators(
    urls: List[str], scraper: ProfileScraper, cost: float, video_count: int, currency: str = "USD"
) -> ComparisonReport:
    """Analyze every creator concurrently and compare the ones that succeeded.

    Raises InvalidAnalysisInputError before any scrape when the batch is empty,
    larger than MAX_CREATORS or priced with an unusable cost.
    """
    urls, cost, video_count = validate_batch_request(urls, cost, video_count, currency)
    logger.info(f"Analyzing {len(urls)} creators in parallel")
    results = await asyncio.gather(
        *(analyze_creator(url, scraper, cost, video_count, currency) for url in urls)
    )
    report = build_comparison_report(list(results))
    if report.error:
        logger.warning(report.error)
    return report

@router.post("/analyze", response_model=ComparisonReport)
async def compare_creators(
    request: MultiAnalyzeRequest, scraper: ProfileScraper = Depends(get_scraper)
) -> ComparisonReport:
    """Compare partnership CPM across up to five TikTok creators"""
    try:
        return await analyze_creators(
            request.urls, scraper, request.costPerVideo, request.videosToAnalyze, request.currency
        )
    except InvalidAnalysisInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
