from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog

from onemeal.core.config import settings
from onemeal.models.domain import SweepReport
from onemeal.services.feed_repository import FeedRepository
from onemeal.services.redis_client import ping
from onemeal.utils.clock import Clock, local_now, to_epoch_ms

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetentionPolicy:
    retention_days: int = 90
    rate_limit_record_days: int = 7
    rate_limit_window: timedelta = timedelta(hours=24)
    stale_days: int = 180
    min_retain_count: int = 5
    batch_size: int = 500

    @classmethod
    def from_settings(cls) -> "RetentionPolicy":
        return cls(
            retention_days=settings.DATA_RETENTION_DAYS,
            rate_limit_record_days=settings.RATE_LIMIT_RECORD_RETENTION_DAYS,
            rate_limit_window=timedelta(milliseconds=settings.RATE_LIMIT_WINDOW_MS),
            stale_days=settings.REGION_STALE_DAYS,
            min_retain_count=settings.REGION_MIN_RETAIN_COUNT,
            batch_size=settings.SWEEP_BATCH_SIZE,
        )


class RetentionSweeper:
    """
    Out-of-band cleanup of the feed store.

    - raw events older than the retention horizon are deleted
    - window bookkeeping older than its horizon is dropped
    - regions that are both stale and low-count are pruned

    Daily stats are never touched. Each phase works in small batches so
    concurrent ingestion keeps going while a large backlog is swept.
    """

    def __init__(self, repository: FeedRepository, policy: Optional[RetentionPolicy] = None, clock: Clock = local_now):
        self.repository = repository
        self.policy = policy or RetentionPolicy.from_settings()
        self.clock = clock

    async def sweep(self) -> SweepReport:
        # StoreUnavailable propagates: a silent failure here means raw data
        # outlives its retention horizon.
        await ping(self.repository.redis_client)

        now = self.clock()
        policy = self.policy
        event_cutoff = now - timedelta(days=policy.retention_days)
        # never drop entries that are still inside the live quota window
        record_horizon = max(timedelta(days=policy.rate_limit_record_days), policy.rate_limit_window)
        record_cutoff = now - record_horizon
        stale_cutoff = now - timedelta(days=policy.stale_days)

        logger.info("sweep_started", event_cutoff=event_cutoff.isoformat(), stale_cutoff=stale_cutoff.isoformat())

        deleted_events = await self.repository.delete_events_before(to_epoch_ms(event_cutoff), policy.batch_size)
        logger.info("sweep_events_deleted", count=deleted_events)

        deleted_records = await self.repository.trim_rate_limit_records(to_epoch_ms(record_cutoff), policy.batch_size)
        logger.info("sweep_rate_limit_records_deleted", count=deleted_records)

        deleted_regions = await self.repository.prune_regions(
            to_epoch_ms(stale_cutoff), policy.min_retain_count, policy.batch_size
        )
        logger.info("sweep_regions_deleted", count=deleted_regions)

        return SweepReport(
            deleted_events=deleted_events,
            deleted_rate_limit_records=deleted_records,
            deleted_regions=deleted_regions,
        )
