import json
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import structlog
from redis.asyncio import Redis

from onemeal.core.errors import TransactionFailure
from onemeal.models.domain import DailyStats, FeedEvent, RegionAggregate
from onemeal.utils.clock import from_epoch_ms

logger = structlog.get_logger(__name__)


# Whole ingestion unit in one script: Redis runs it without interleaving any
# other command, so the quota check, the raw event and both aggregates commit
# together. Redis does not roll back a script that errors half-way, so every
# target key and counter is read and validated before the first write. A
# wrong-typed key or a non-integer counter aborts with nothing written, and
# counters are written with HSET from the values computed here.
#
# KEYS: 1 event hash, 2 events timeline, 3 region hash, 4 regions ranking,
#       5 day hash, 6 days index, 7 day feeders set, 8 identity window
# ARGV: 1 event id, 2 lat, 3 lng, 4 anonymous id, 5 now ms, 6 region key,
#       7 day label, 8 day start ms, 9 window start ms, 10 max requests,
#       11 window ms, 12 feeders expire-at ms
INGEST_SCRIPT = """
local function counter(value)
  if not value then
    return 0
  end
  local n = tonumber(value)
  if not n or n < 0 or n ~= math.floor(n) then
    return nil
  end
  return n
end

local recent = redis.call('ZCOUNT', KEYS[8], ARGV[9], '+inf')
if recent >= tonumber(ARGV[10]) then
  return {0, recent}
end

if redis.call('EXISTS', KEYS[1]) == 1 then
  return {-1, 0}
end
redis.call('ZSCORE', KEYS[2], ARGV[1])
local region_count = counter(redis.call('HGET', KEYS[3], 'feed_count'))
redis.call('ZSCORE', KEYS[4], ARGV[6])
local total = counter(redis.call('HGET', KEYS[5], 'total_feeds'))
redis.call('ZSCORE', KEYS[6], ARGV[7])
redis.call('SISMEMBER', KEYS[7], ARGV[4])
if not region_count or not total then
  return {-2, 0}
end
region_count = region_count + 1
total = total + 1

redis.call('HSET', KEYS[1], 'id', ARGV[1], 'lat', ARGV[2], 'lng', ARGV[3],
  'anonymous_id', ARGV[4], 'created_at', ARGV[5])
redis.call('ZADD', KEYS[2], ARGV[5], ARGV[1] .. ':' .. ARGV[4])

redis.call('HSET', KEYS[3], 'region_key', ARGV[6], 'feed_count', region_count, 'last_feed_at', ARGV[5])
redis.call('ZADD', KEYS[4], region_count, ARGV[6])

redis.call('SADD', KEYS[7], ARGV[4])
local unique = redis.call('SCARD', KEYS[7])
redis.call('PEXPIREAT', KEYS[7], ARGV[12])
redis.call('HSET', KEYS[5], 'date', ARGV[7], 'total_feeds', total, 'unique_feeders', unique)
redis.call('ZADD', KEYS[6], ARGV[8], ARGV[7])

redis.call('ZREMRANGEBYSCORE', KEYS[8], '-inf', '(' .. ARGV[9])
redis.call('ZADD', KEYS[8], ARGV[5], ARGV[1])
redis.call('PEXPIRE', KEYS[8], ARGV[11])

return {1, total, unique, region_count}
"""

# Deletes one region only if it is still both stale and low-count at the
# moment of deletion, so a feed landing mid-sweep keeps it alive.
#
# KEYS: 1 region hash, 2 regions ranking
# ARGV: 1 region key, 2 stale cutoff ms, 3 min retain count
PRUNE_REGION_SCRIPT = """
local count = tonumber(redis.call('HGET', KEYS[1], 'feed_count') or '0')
local last = tonumber(redis.call('HGET', KEYS[1], 'last_feed_at') or '0')
if count < tonumber(ARGV[3]) and last < tonumber(ARGV[2]) then
  redis.call('DEL', KEYS[1])
  redis.call('ZREM', KEYS[2], ARGV[1])
  return 1
end
return 0
"""

INGEST_ADMITTED = 1
INGEST_REJECTED = 0
INGEST_EVENT_EXISTS = -1
INGEST_COUNTER_INVALID = -2


@dataclass(frozen=True)
class FeedKeys:
    """Key layout of the feed store under one namespace prefix."""
    prefix: str = "onemeal"

    @property
    def events(self) -> str:
        return f"{self.prefix}:events"

    @property
    def regions(self) -> str:
        return f"{self.prefix}:regions"

    @property
    def days(self) -> str:
        return f"{self.prefix}:days"

    @property
    def rate_limit_pattern(self) -> str:
        return f"{self.prefix}:ratelimit:*"

    def event(self, event_id: str) -> str:
        return f"{self.prefix}:event:{event_id}"

    def region(self, region_key: str) -> str:
        return f"{self.prefix}:region:{region_key}"

    def day(self, label: str) -> str:
        return f"{self.prefix}:day:{label}"

    def day_feeders(self, label: str) -> str:
        return f"{self.prefix}:day:{label}:feeders"

    def rate_limit(self, anonymous_id: str) -> str:
        return f"{self.prefix}:ratelimit:{anonymous_id}"

    def summary(self, range_name: str) -> str:
        return f"{self.prefix}:summary:{range_name}"


@dataclass(frozen=True)
class IngestCommand:
    event_id: str
    lat: float
    lng: float
    anonymous_id: str
    now_ms: int
    region_key: str
    day_label: str
    day_start_ms: int
    window_start_ms: int
    window_ms: int
    max_requests: int
    feeders_expire_at_ms: int


@dataclass(frozen=True)
class IngestOutcome:
    admitted: bool
    recent_count: int = 0
    today_total: int = 0
    today_feeders: int = 0
    region_count: int = 0


def _score_min(since_ms: Optional[int]) -> Any:
    return "-inf" if since_ms is None else since_ms


def _split_timeline_member(member: str) -> Tuple[str, str]:
    event_id, _, anonymous_id = member.partition(":")
    return event_id, anonymous_id


class FeedRepository:
    """
    Redis-backed store for feed events and their aggregates.

    Reads raise the client's exceptions unchanged; callers decide whether a
    failure degrades or propagates. The ingestion write is all-or-nothing.
    """

    def __init__(self, redis_client: Redis, keys: Optional[FeedKeys] = None):
        self.redis_client = redis_client
        self.keys = keys or FeedKeys()

    # --- Writes ---

    async def ingest(self, cmd: IngestCommand) -> IngestOutcome:
        keys = [
            self.keys.event(cmd.event_id),
            self.keys.events,
            self.keys.region(cmd.region_key),
            self.keys.regions,
            self.keys.day(cmd.day_label),
            self.keys.days,
            self.keys.day_feeders(cmd.day_label),
            self.keys.rate_limit(cmd.anonymous_id),
        ]
        args = [
            cmd.event_id,
            repr(cmd.lat),
            repr(cmd.lng),
            cmd.anonymous_id,
            cmd.now_ms,
            cmd.region_key,
            cmd.day_label,
            cmd.day_start_ms,
            cmd.window_start_ms,
            cmd.max_requests,
            cmd.window_ms,
            cmd.feeders_expire_at_ms,
        ]
        try:
            result = await self.redis_client.eval(INGEST_SCRIPT, len(keys), *keys, *args)
        except Exception as e:
            logger.error("ingest_script_error", error=str(e), event_id=cmd.event_id, region_key=cmd.region_key)
            raise TransactionFailure("ingestion_not_committed") from e

        status = int(result[0])
        if status == INGEST_REJECTED:
            return IngestOutcome(admitted=False, recent_count=int(result[1]))
        if status == INGEST_COUNTER_INVALID:
            logger.error("ingest_counter_invalid", event_id=cmd.event_id, region_key=cmd.region_key)
            raise TransactionFailure("aggregate_counter_invalid")
        if status != INGEST_ADMITTED:
            logger.error("ingest_event_id_collision", event_id=cmd.event_id)
            raise TransactionFailure("event_id_collision")
        return IngestOutcome(
            admitted=True,
            today_total=int(result[1]),
            today_feeders=int(result[2]),
            region_count=int(result[3]),
        )

    # --- Rate limit reads ---

    async def count_recent_submissions(self, anonymous_id: str, window_start_ms: int) -> int:
        return int(await self.redis_client.zcount(self.keys.rate_limit(anonymous_id), window_start_ms, "+inf"))

    # --- Summary reads ---

    async def count_events_since(self, since_ms: Optional[int]) -> int:
        return int(await self.redis_client.zcount(self.keys.events, _score_min(since_ms), "+inf"))

    async def count_distinct_feeders_since(self, since_ms: Optional[int], batch_size: int = 1000) -> int:
        """Distinct anonymous ids among stored events created at or after `since_ms`."""
        feeders = set()
        async for member, score in self.redis_client.zscan_iter(self.keys.events, count=batch_size):
            if since_ms is None or score >= since_ms:
                feeders.add(_split_timeline_member(member)[1])
        return len(feeders)

    async def top_regions(self, limit: int) -> List[RegionAggregate]:
        """
        Regions ordered by feed count, highest first.

        Equal counts come back in ZREVRANGE order, which is reverse
        lexicographic by region key, so ties are deterministic across calls.
        """
        ranked = await self.redis_client.zrevrange(self.keys.regions, 0, limit - 1, withscores=True)
        if not ranked:
            return []
        async with self.redis_client.pipeline(transaction=False) as pipe:
            for region_key, _ in ranked:
                pipe.hget(self.keys.region(region_key), "last_feed_at")
            last_feeds = await pipe.execute()

        regions: List[RegionAggregate] = []
        for (region_key, score), last_feed_at in zip(ranked, last_feeds):
            regions.append(
                RegionAggregate(
                    region_key=region_key,
                    feed_count=int(score),
                    last_feed_at=from_epoch_ms(last_feed_at) if last_feed_at else None,
                )
            )
        return regions

    async def recent_days(self, limit: int) -> List[DailyStats]:
        labels = await self.redis_client.zrevrange(self.keys.days, 0, limit - 1)
        if not labels:
            return []
        async with self.redis_client.pipeline(transaction=False) as pipe:
            for label in labels:
                pipe.hgetall(self.keys.day(label))
            rows = await pipe.execute()

        days: List[DailyStats] = []
        for label, row in zip(labels, rows):
            if not row:
                continue
            days.append(
                DailyStats(
                    day=date.fromisoformat(row.get("date", label)),
                    total_feeds=int(row.get("total_feeds", 0)),
                    unique_feeders=int(row.get("unique_feeders", 0)),
                )
            )
        return days

    async def get_event(self, event_id: str) -> Optional[FeedEvent]:
        row = await self.redis_client.hgetall(self.keys.event(event_id))
        if not row:
            return None
        return FeedEvent(
            id=row["id"],
            lat=float(row["lat"]),
            lng=float(row["lng"]),
            anonymous_id=row["anonymous_id"],
            created_at=from_epoch_ms(row["created_at"]),
        )

    async def get_region(self, region_key: str) -> Optional[RegionAggregate]:
        row = await self.redis_client.hgetall(self.keys.region(region_key))
        if not row:
            return None
        return RegionAggregate(
            region_key=region_key,
            feed_count=int(row.get("feed_count", 0)),
            last_feed_at=from_epoch_ms(row["last_feed_at"]) if row.get("last_feed_at") else None,
        )

    async def get_day(self, label: str) -> Optional[DailyStats]:
        row = await self.redis_client.hgetall(self.keys.day(label))
        if not row:
            return None
        return DailyStats(
            day=date.fromisoformat(row.get("date", label)),
            total_feeds=int(row.get("total_feeds", 0)),
            unique_feeders=int(row.get("unique_feeders", 0)),
        )

    # --- Summary cache ---

    async def get_cached_summary(self, range_name: str) -> Optional[Dict[str, Any]]:
        raw = await self.redis_client.get(self.keys.summary(range_name))
        if raw is None:
            return None
        return json.loads(raw)

    async def cache_summary(self, range_name: str, payload: Dict[str, Any], ttl: int) -> None:
        await self.redis_client.setex(self.keys.summary(range_name), ttl, json.dumps(payload))

    # --- Retention ---

    async def delete_events_before(self, cutoff_ms: int, batch_size: int) -> int:
        """Delete raw events created strictly before `cutoff_ms`, one batch per MULTI."""
        deleted = 0
        while True:
            members = await self.redis_client.zrangebyscore(
                self.keys.events, "-inf", f"({cutoff_ms}", start=0, num=batch_size
            )
            if not members:
                break
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.delete(*[self.keys.event(_split_timeline_member(m)[0]) for m in members])
                pipe.zrem(self.keys.events, *members)
                await pipe.execute()
            deleted += len(members)
            if len(members) < batch_size:
                break
        return deleted

    async def trim_rate_limit_records(self, cutoff_ms: int, batch_size: int) -> int:
        """Drop window entries older than `cutoff_ms` from every identity's window."""
        removed = 0
        batch: List[str] = []
        async for key in self.redis_client.scan_iter(match=self.keys.rate_limit_pattern, count=batch_size):
            batch.append(key)
            if len(batch) >= batch_size:
                removed += await self._trim_windows(batch, cutoff_ms)
                batch = []
        if batch:
            removed += await self._trim_windows(batch, cutoff_ms)
        return removed

    async def _trim_windows(self, window_keys: List[str], cutoff_ms: int) -> int:
        async with self.redis_client.pipeline(transaction=False) as pipe:
            for key in window_keys:
                pipe.zremrangebyscore(key, "-inf", f"({cutoff_ms}")
            results = await pipe.execute()
        return sum(int(r) for r in results)

    async def prune_regions(self, stale_cutoff_ms: int, min_retain_count: int, batch_size: int) -> int:
        """Delete regions last fed before `stale_cutoff_ms` whose count is below `min_retain_count`."""
        deleted = 0
        offset = 0
        while True:
            candidates = await self.redis_client.zrangebyscore(
                self.keys.regions, "-inf", f"({min_retain_count}", start=offset, num=batch_size
            )
            if not candidates:
                break
            async with self.redis_client.pipeline(transaction=False) as pipe:
                for region_key in candidates:
                    pipe.eval(
                        PRUNE_REGION_SCRIPT,
                        2,
                        self.keys.region(region_key),
                        self.keys.regions,
                        region_key,
                        stale_cutoff_ms,
                        min_retain_count,
                    )
                results = await pipe.execute()
            batch_deleted = sum(int(r) for r in results)
            deleted += batch_deleted
            if len(candidates) < batch_size:
                break
            offset += len(candidates) - batch_deleted
        return deleted
