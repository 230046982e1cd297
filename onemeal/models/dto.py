# Public request/response shapes. Wire names are camelCase.

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from onemeal.models.domain import SummaryRange


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# --- API Request Models ---

class FeedRequest(_WireModel):
    """Request model for POST /api/feed."""
    lat: float = Field(..., ge=-90, le=90, description="Device latitude in decimal degrees.")
    lng: float = Field(..., ge=-180, le=180, description="Device longitude in decimal degrees.")
    anonymous_id: UUID = Field(..., alias="anonymousId", description="Client-generated opaque identifier.")


# --- Public Data Transfer Objects (DTOs) ---

class FeedData(_WireModel):
    feed_id: str = Field(..., alias="feedId")
    today_total: int = Field(..., alias="todayTotal")
    timestamp: datetime


class FeedResponse(_WireModel):
    success: bool = True
    message: str
    data: FeedData


class FeedApiInfo(_WireModel):
    message: str
    endpoint: str
    required_fields: List[str] = Field(..., alias="requiredFields")


class TodayStats(_WireModel):
    feeds: int
    feeders: int


class SummaryStats(_WireModel):
    total_feeds: int = Field(..., alias="totalFeeds")
    unique_feeders: int = Field(..., alias="uniqueFeeders")
    total_impact: int = Field(..., alias="totalImpact")
    today: TodayStats


class HeatmapPoint(_WireModel):
    lat: float
    lng: float
    intensity: int
    last_feed: Optional[datetime] = Field(None, alias="lastFeed")


class TrendingDay(_WireModel):
    day: date = Field(..., alias="date")
    total_feeds: int = Field(..., alias="totalFeeds")
    unique_feeders: int = Field(..., alias="uniqueFeeders")


class SummaryResponse(_WireModel):
    """Public DTO for the /api/summary response."""
    range: SummaryRange
    stats: SummaryStats
    heatmap: List[HeatmapPoint]
    trending: List[TrendingDay]
    message: str


# --- Error Response Model ---

class FieldError(BaseModel):
    loc: List[str]
    msg: str
    type: str


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is allowed (for rate-limiting).")
    fields: Optional[List[FieldError]] = Field(None, description="Per-field validation problems.")
    error_id: Optional[str] = Field(None, description="Reference for unexpected failures.")
