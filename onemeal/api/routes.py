# onemeal/api/routes.py
# Public request surface: feed ingestion and the aggregate summary.

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from redis.asyncio import Redis
import structlog

from onemeal.core.config import settings
from onemeal.core.errors import RateLimitExceeded, TransactionFailure
from onemeal.models.domain import Summary, SummaryRange
from onemeal.models.dto import (
    ErrorResponse,
    FeedApiInfo,
    FeedData,
    FeedRequest,
    FeedResponse,
    HeatmapPoint,
    SummaryResponse,
    SummaryStats,
    TodayStats,
    TrendingDay,
)
from onemeal.services.feed_repository import FeedKeys, FeedRepository
from onemeal.services.ingestion import IngestionService
from onemeal.services.rate_limiter import RateLimiter, RateLimitPolicy
from onemeal.services.summary import SummaryService

router = APIRouter()
logger = structlog.get_logger(__name__)

FEED_RECORDED_MESSAGE = "Feed recorded! Thank you for making a difference."


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_redis(request: Request) -> Redis:
    """The store handle opened in the application lifespan."""
    return request.app.state.redis


def get_repository(redis_client: Redis = Depends(get_redis)) -> FeedRepository:
    return FeedRepository(redis_client, FeedKeys(settings.KEY_PREFIX))


def get_rate_limiter(repository: FeedRepository = Depends(get_repository)) -> RateLimiter:
    return RateLimiter(repository)


def get_ingestion_service(repository: FeedRepository = Depends(get_repository)) -> IngestionService:
    return IngestionService(repository)


def get_summary_service(repository: FeedRepository = Depends(get_repository)) -> SummaryService:
    return SummaryService(repository)


def _rate_limited(policy: RateLimitPolicy) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=ErrorResponse(
            error="RATE_LIMIT_EXCEEDED",
            detail=policy.rejection_message(),
            retry_after_seconds=policy.retry_after_seconds,
        ).model_dump(exclude_none=True),
    )


def _ingestion_failed() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=ErrorResponse(
            error="INGESTION_FAILED",
            detail="Your feed could not be recorded. Please try again later.",
        ).model_dump(exclude_none=True),
    )


# ----------------------------------------------------------------------
# Feed Endpoint
# ----------------------------------------------------------------------
@router.post(
    "/feed",
    status_code=status.HTTP_201_CREATED,
    response_model=FeedResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def submit_feed(
    data: FeedRequest,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    """Record one feeding at the (rounded) device location."""
    anonymous_id = str(data.anonymous_id)

    # 1. Cheap quota peek; the ingestion script re-checks atomically
    try:
        admitted = await rate_limiter.admit(anonymous_id)
    except Exception as e:
        logger.error("rate_limit_check_failed", error=str(e))
        raise _ingestion_failed()
    if not admitted:
        raise _rate_limited(rate_limiter.policy)

    # 2. Atomic write of event + region + day
    try:
        result = await ingestion.ingest(data.lat, data.lng, anonymous_id)
    except RateLimitExceeded:
        raise _rate_limited(ingestion.policy)
    except TransactionFailure:
        raise _ingestion_failed()

    return FeedResponse(
        message=FEED_RECORDED_MESSAGE,
        data=FeedData(feed_id=result.event_id, today_total=result.today_total, timestamp=result.timestamp),
    )


@router.get("/feed", response_model=FeedApiInfo)
async def describe_feed():
    return FeedApiInfo(
        message=f"{settings.PROJECT_NAME} Feed API",
        endpoint="POST /api/feed",
        required_fields=["lat", "lng", "anonymousId"],
    )


# ----------------------------------------------------------------------
# Summary Endpoint
# ----------------------------------------------------------------------
def to_summary_response(summary: Summary) -> SummaryResponse:
    return SummaryResponse(
        range=summary.range,
        stats=SummaryStats(
            total_feeds=summary.total_feeds,
            unique_feeders=summary.unique_feeders,
            total_impact=summary.total_feeds,
            today=TodayStats(feeds=summary.today_feeds, feeders=summary.today_feeders),
        ),
        heatmap=[
            HeatmapPoint(lat=cell.lat, lng=cell.lng, intensity=cell.intensity, last_feed=cell.last_feed_at)
            for cell in summary.heatmap
        ],
        trending=[
            TrendingDay(day=day.day, total_feeds=day.total_feeds, unique_feeders=day.unique_feeders)
            for day in summary.trending
        ],
        message=summary.message,
    )


@router.get(
    "/summary",
    response_model=SummaryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def get_summary(
    response: Response,
    range_: SummaryRange = Query(SummaryRange.TODAY, alias="range"),
    summary_service: SummaryService = Depends(get_summary_service),
):
    """Aggregate statistics for the requested range. Sub-query failures degrade to zero."""
    summary = await summary_service.summarize(range_)
    response.headers["Cache-Control"] = (
        f"public, s-maxage={settings.SUMMARY_CACHE_SECONDS}, stale-while-revalidate"
    )
    return to_summary_response(summary)
