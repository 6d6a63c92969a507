from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from enum import Enum

# Every model serializes with camelCase keys, the shape the dashboard consumes
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class PerformanceConsistency(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

class CpmRating(str, Enum):
    EXCELLENT = "excellent"
    FAIR = "fair"
    POOR = "poor"

class ViralPotential(str, Enum):
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"

# Raw extractor output, filled field by field by the selector cascade
class RawUser(CamelModel):
    username: str = ""
    display_name: str = ""
    image_url: str = ""
    follower_count: int = 0
    total_likes: int = 0
    description: Optional[str] = None

class RawVideo(CamelModel):
    id: str
    title: str = ""
    view_count: int = 0
    thumbnail_url: str = ""
    url: str

class TikTokData(CamelModel):
    user: RawUser
    videos: List[RawVideo] = Field(default_factory=list)

# Normalized profile shape returned by the parse endpoint
class UserStats(CamelModel):
    followers: int = 0
    total_likes: int = 0

class ProfileUser(CamelModel):
    username: str
    display_name: str
    profile_image_url: str = ""
    description: str = ""
    stats: UserStats

class VideoStats(CamelModel):
    views: int = 0

class ProfileVideo(CamelModel):
    id: str
    title: str
    url: str
    thumbnail_url: str = ""
    stats: VideoStats

class NormalizedProfile(CamelModel):
    user: ProfileUser
    videos: List[ProfileVideo] = Field(default_factory=list)

# Metrics that cannot be computed (empty window, zero views) are None
class AnalyticsSummary(CamelModel):
    total_views: int
    average_views: Optional[float] = None
    cost_in_usd: float
    cpm: Optional[float] = None
    virality_rate: Optional[float] = None
    viral_videos: int = 0
    total_videos: int
    views_standard_deviation: Optional[float] = None
    coefficient_of_variation: Optional[float] = None
    performance_consistency: Optional[PerformanceConsistency] = None

class ChartPoint(CamelModel):
    index: int
    views: int
    video_title: str

class AnalysisInsights(CamelModel):
    cpm_rating: Optional[CpmRating] = None
    viral_potential: Optional[ViralPotential] = None
    calculation_breakdown: str
    recommendations: List[str] = Field(default_factory=list)

class CreatorAnalysis(CamelModel):
    url: str
    profile: Optional[NormalizedProfile] = None
    analytics: Optional[AnalyticsSummary] = None
    error: Optional[str] = None

class ComparisonPoint(CamelModel):
    name: str
    cpm: Optional[float] = None
    avg_views: Optional[float] = None
    virality_rate: Optional[float] = None
    followers: int = 0

class RadarPoint(CamelModel):
    metric: str
    values: Dict[str, Optional[int]] = Field(default_factory=dict)

class CpmRange(CamelModel):
    average: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None

class ComparisonReport(CamelModel):
    analyses: List[CreatorAnalysis] = Field(default_factory=list)
    best_creator: Optional[CreatorAnalysis] = None
    cpm_range: CpmRange = Field(default_factory=CpmRange)
    combined_followers: int = 0
    comparison_chart: List[ComparisonPoint] = Field(default_factory=list)
    radar_chart: List[RadarPoint] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    error: Optional[str] = None

class CurrencyInfo(CamelModel):
    code: str
    rate: float
    symbol: str
    label: str

class ExportParameters(CamelModel):
    cost_per_video: float
    currency: str
    videos_analyzed: int
    analysis_date: str

class ExportDocument(CamelModel):
    user: ProfileUser
    videos: List[ProfileVideo]
    analytics: Dict[str, Any]
    parameters: ExportParameters
