# Internal records of the ingestion/aggregation core. These never leave the
# service directly; the API layer maps them onto the public DTOs.

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FeedEvent(BaseModel):
    """Raw feed, stored with rounded coordinates only."""
    id: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    anonymous_id: str
    created_at: datetime


class RegionAggregate(BaseModel):
    region_key: str
    feed_count: int
    last_feed_at: Optional[datetime] = None


class DailyStats(BaseModel):
    day: date
    total_feeds: int
    unique_feeders: int


class IngestResult(BaseModel):
    event_id: str
    today_total: int
    timestamp: datetime


class SummaryRange(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


class HeatmapCell(BaseModel):
    lat: float
    lng: float
    intensity: int
    last_feed_at: Optional[datetime] = None


class Summary(BaseModel):
    range: SummaryRange
    total_feeds: int = 0
    unique_feeders: int = 0
    today_feeds: int = 0
    today_feeders: int = 0
    heatmap: List[HeatmapCell] = Field(default_factory=list)
    trending: List[DailyStats] = Field(default_factory=list)
    message: str = ""


class SweepReport(BaseModel):
    deleted_events: int = 0
    deleted_rate_limit_records: int = 0
    deleted_regions: int = 0
