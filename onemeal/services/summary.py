import asyncio
import random
from datetime import datetime, timedelta
from typing import Any, Awaitable, List, Optional, Tuple

import structlog

from onemeal.core.config import settings
from onemeal.core.errors import DegradedRead, InvalidRegionKey
from onemeal.models.domain import HeatmapCell, RegionAggregate, Summary, SummaryRange
from onemeal.services.area_bucketer import decode_region_key
from onemeal.services.feed_repository import FeedRepository
from onemeal.utils.clock import Clock, day_label, local_now, start_of_day, to_epoch_ms

logger = structlog.get_logger(__name__)

FIRST_FEED_MESSAGE = "Be the first to make a difference! Feed a stray today."

MESSAGE_TEMPLATES = (
    "Today, {today} animals were fed by kind souls across the world.",
    "Together, we've saved {total} animals from hunger.",
    "{today} acts of compassion today. Every meal matters.",
    "{total} lives touched through simple acts of kindness.",
)


def range_start(range_: SummaryRange, now: datetime) -> Optional[datetime]:
    """Lower bound of a summary range; None means since the beginning."""
    if range_ == SummaryRange.TODAY:
        return start_of_day(now)
    if range_ == SummaryRange.WEEK:
        return now - timedelta(days=7)
    if range_ == SummaryRange.MONTH:
        return now - timedelta(days=30)
    return None


def summary_cache_name(range_: SummaryRange, now: datetime) -> str:
    """Cache slot for a range; the today slot is per calendar day so midnight starts a fresh one."""
    if range_ == SummaryRange.TODAY:
        return f"{range_.value}:{day_label(now)}"
    return range_.value


def motivational_message(today_feeds: int, total_feeds: int, rng: Optional[random.Random] = None) -> str:
    if total_feeds == 0:
        return FIRST_FEED_MESSAGE
    template = (rng or random).choice(MESSAGE_TEMPLATES)
    return template.format(today=f"{today_feeds:,}", total=f"{total_feeds:,}")


def build_heatmap(regions: List[RegionAggregate]) -> List[HeatmapCell]:
    cells: List[HeatmapCell] = []
    for region in regions:
        try:
            lat, lng = decode_region_key(region.region_key)
        except InvalidRegionKey as e:
            logger.warning("heatmap_region_skipped", region_key=region.region_key, error=str(e))
            continue
        cells.append(
            HeatmapCell(lat=lat, lng=lng, intensity=region.feed_count, last_feed_at=region.last_feed_at)
        )
    return cells


class SummaryService:
    """
    Time-ranged statistics over the feed store.

    Each sub-query fails independently: a failing read is logged and replaced
    by its zero value so the rest of the summary is still served. Complete
    summaries are cached in the store for a few minutes.
    """

    def __init__(
        self,
        repository: FeedRepository,
        clock: Clock = local_now,
        heatmap_limit: Optional[int] = None,
        trending_days: Optional[int] = None,
        cache_seconds: Optional[int] = None,
    ):
        self.repository = repository
        self.clock = clock
        self.heatmap_limit = heatmap_limit or settings.HEATMAP_LIMIT
        self.trending_days = trending_days or settings.TRENDING_DAYS
        self.cache_seconds = cache_seconds if cache_seconds is not None else settings.SUMMARY_CACHE_SECONDS

    async def summarize(self, range_: SummaryRange = SummaryRange.TODAY) -> Summary:
        now = self.clock()
        cache_name = summary_cache_name(range_, now)
        cached = await self._read_cache(cache_name)
        if cached is not None:
            return cached

        start = range_start(range_, now)
        since_ms = to_epoch_ms(start) if start is not None else None
        today_ms = to_epoch_ms(start_of_day(now))

        reads: List[Awaitable[Tuple[Any, bool]]] = [
            self._degradable("total_count", self.repository.count_events_since(since_ms), 0),
            self._degradable("grouped_count", self.repository.count_distinct_feeders_since(since_ms), 0),
            self._degradable("region_list", self.repository.top_regions(self.heatmap_limit), []),
            self._degradable("daily_list", self.repository.recent_days(self.trending_days), []),
        ]
        if range_ != SummaryRange.TODAY:
            reads.append(self._degradable("today_count", self.repository.count_events_since(today_ms), 0))
            reads.append(
                self._degradable("today_grouped_count", self.repository.count_distinct_feeders_since(today_ms), 0)
            )
        results = await asyncio.gather(*reads)

        (total, ok_total), (feeders, ok_feeders), (regions, ok_regions), (days, ok_days) = results[:4]
        if range_ == SummaryRange.TODAY:
            (today_feeds, ok_today), (today_feeders, ok_today_feeders) = (total, ok_total), (feeders, ok_feeders)
        else:
            (today_feeds, ok_today), (today_feeders, ok_today_feeders) = results[4:]

        summary = Summary(
            range=range_,
            total_feeds=total,
            unique_feeders=feeders,
            today_feeds=today_feeds,
            today_feeders=today_feeders,
            heatmap=build_heatmap(regions),
            trending=days,
            message=motivational_message(today_feeds, total),
        )
        logger.info("summary_computed", range=range_.value, total_feeds=total, regions=len(summary.heatmap))

        complete = all((ok_total, ok_feeders, ok_regions, ok_days, ok_today, ok_today_feeders))
        if complete:
            await self._write_cache(cache_name, summary)
        return summary

    async def _degradable(self, query: str, read: Awaitable[Any], zero: Any) -> Tuple[Any, bool]:
        try:
            return await read, True
        except Exception as e:
            degraded = DegradedRead(query, e)
            logger.error("summary_subquery_degraded", query=query, error=str(degraded))
            return zero, False

    async def _read_cache(self, cache_name: str) -> Optional[Summary]:
        if not self.cache_seconds:
            return None
        try:
            payload = await self.repository.get_cached_summary(cache_name)
        except Exception as e:
            logger.warning("summary_cache_read_failed", cache=cache_name, error=str(e))
            return None
        if payload is None:
            return None
        try:
            return Summary.model_validate(payload)
        except ValueError as e:
            logger.warning("summary_cache_invalid", cache=cache_name, error=str(e))
            return None

    async def _write_cache(self, cache_name: str, summary: Summary) -> None:
        if not self.cache_seconds:
            return
        try:
            await self.repository.cache_summary(cache_name, summary.model_dump(mode="json"), self.cache_seconds)
        except Exception as e:
            logger.warning("summary_cache_write_failed", cache=cache_name, error=str(e))
