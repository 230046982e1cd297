import uuid
from datetime import timedelta
from typing import Optional

import structlog

from onemeal.core.config import settings
from onemeal.core.errors import RateLimitExceeded
from onemeal.models.domain import IngestResult
from onemeal.services.area_bucketer import AreaBucketer
from onemeal.services.feed_repository import FeedRepository, IngestCommand
from onemeal.services.rate_limiter import RateLimitPolicy
from onemeal.utils.clock import Clock, day_label, local_now, start_of_day, to_epoch_ms

logger = structlog.get_logger(__name__)


class IngestionService:
    """Records one feed: raw event, region aggregate and today's stats, atomically."""

    def __init__(
        self,
        repository: FeedRepository,
        bucketer: Optional[AreaBucketer] = None,
        policy: Optional[RateLimitPolicy] = None,
        clock: Clock = local_now,
        retention_days: Optional[int] = None,
    ):
        self.repository = repository
        self.bucketer = bucketer or AreaBucketer(settings.COORDINATE_PRECISION, settings.REGION_PRECISION)
        self.policy = policy or RateLimitPolicy.from_settings()
        self.clock = clock
        self.retention_days = retention_days if retention_days is not None else settings.DATA_RETENTION_DAYS

    async def ingest(self, lat: float, lng: float, anonymous_id: str) -> IngestResult:
        """
        Raises:
        - `RateLimitExceeded` if the identity is over quota (nothing written)
        - `TransactionFailure` if the store did not commit the unit
        """
        now = self.clock()
        day_start = start_of_day(now)
        rounded_lat, rounded_lng = self.bucketer.round_location(lat, lng)
        region_key = self.bucketer.get_region_key(lat, lng)
        event_id = uuid.uuid4().hex

        cmd = IngestCommand(
            event_id=event_id,
            lat=rounded_lat,
            lng=rounded_lng,
            anonymous_id=anonymous_id,
            now_ms=to_epoch_ms(now),
            region_key=region_key,
            day_label=day_label(now),
            day_start_ms=to_epoch_ms(day_start),
            window_start_ms=to_epoch_ms(self.policy.window_start(now)),
            window_ms=self.policy.window_ms,
            max_requests=self.policy.max_requests,
            # the day's distinct-identity set lives only as long as raw events do
            feeders_expire_at_ms=to_epoch_ms(day_start + timedelta(days=self.retention_days + 1)),
        )
        outcome = await self.repository.ingest(cmd)
        if not outcome.admitted:
            logger.info("feed_rate_limited", recent=outcome.recent_count, limit=self.policy.max_requests)
            raise RateLimitExceeded(self.policy.max_requests, self.policy.retry_after_seconds)

        logger.info(
            "feed_recorded",
            event_id=event_id,
            region_key=region_key,
            today_total=outcome.today_total,
            region_count=outcome.region_count,
        )
        return IngestResult(event_id=event_id, today_total=outcome.today_total, timestamp=now)
