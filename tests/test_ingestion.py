import asyncio

import pytest

from onemeal.core.errors import RateLimitExceeded, TransactionFailure
from onemeal.utils.clock import day_label
from tests.support import new_anonymous_id


async def test_scenario_single_feed(ingestion, repository, redis_client, keys, clock):
    anon = new_anonymous_id()
    result = await ingestion.ingest(12.9716, 77.5946, anon)

    event = await repository.get_event(result.event_id)
    assert (event.lat, event.lng) == (12.972, 77.595)
    assert event.anonymous_id == anon
    assert event.created_at == clock.now

    region = await repository.get_region("12.97_77.59")
    assert region.feed_count == 1
    assert region.last_feed_at == clock.now

    today = await repository.get_day(day_label(clock.now))
    assert today.total_feeds == 1
    assert today.unique_feeders == 1
    assert result.today_total == 1
    assert result.timestamp == clock.now


async def test_raw_coordinates_never_stored(ingestion, redis_client):
    await ingestion.ingest(12.971634, 77.594612, new_anonymous_id())
    for key in await redis_client.keys("*"):
        if await redis_client.type(key) == "hash":
            values = await redis_client.hvals(key)
            assert not any("12.971634" in v or "77.594612" in v for v in values)


async def test_same_region_two_identities(ingestion, repository, clock):
    await ingestion.ingest(12.9716, 77.5946, new_anonymous_id())
    second = await ingestion.ingest(12.9689, 77.5912, new_anonymous_id())

    region = await repository.get_region("12.97_77.59")
    assert region.feed_count == 2
    today = await repository.get_day(day_label(clock.now))
    assert today.total_feeds == 2
    assert today.unique_feeders == 2
    assert second.today_total == 2


async def test_repeat_identity_counts_once_per_day(ingestion, repository, clock):
    anon = new_anonymous_id()
    for _ in range(3):
        await ingestion.ingest(12.9716, 77.5946, anon)
    await ingestion.ingest(40.7128, -74.0060, new_anonymous_id())

    today = await repository.get_day(day_label(clock.now))
    assert today.total_feeds == 4
    assert today.unique_feeders == 2


async def test_new_day_starts_new_stats(ingestion, repository, clock):
    anon = new_anonymous_id()
    await ingestion.ingest(12.9716, 77.5946, anon)
    yesterday = day_label(clock.now)
    clock.advance(days=1)
    result = await ingestion.ingest(12.9716, 77.5946, anon)

    assert result.today_total == 1
    assert (await repository.get_day(yesterday)).total_feeds == 1
    assert (await repository.get_day(day_label(clock.now))).total_feeds == 1
    assert (await repository.get_region("12.97_77.59")).feed_count == 2


async def test_eleventh_submission_rejected_without_side_effects(ingestion, repository, redis_client, keys, clock):
    anon = new_anonymous_id()
    for _ in range(10):
        await ingestion.ingest(12.9716, 77.5946, anon)

    with pytest.raises(RateLimitExceeded) as exc_info:
        await ingestion.ingest(12.9716, 77.5946, anon)
    assert exc_info.value.limit == 10

    assert await redis_client.zcard(keys.events) == 10
    assert (await repository.get_region("12.97_77.59")).feed_count == 10
    assert (await repository.get_day(day_label(clock.now))).total_feeds == 10


async def test_concurrent_burst_cannot_overshoot_limit(ingestion, redis_client, keys):
    anon = new_anonymous_id()
    results = await asyncio.gather(
        *[ingestion.ingest(12.9716, 77.5946, anon) for _ in range(15)],
        return_exceptions=True,
    )
    admitted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, RateLimitExceeded)]
    assert len(admitted) == 10
    assert len(rejected) == 5
    assert await redis_client.zcard(keys.events) == 10


async def test_concurrent_feeds_lose_no_increment(ingestion, repository, clock):
    await asyncio.gather(*[ingestion.ingest(12.9716, 77.5946, new_anonymous_id()) for _ in range(25)])

    assert (await repository.get_region("12.97_77.59")).feed_count == 25
    today = await repository.get_day(day_label(clock.now))
    assert today.total_feeds == 25
    assert today.unique_feeders == 25


async def test_failed_daily_upsert_leaves_nothing_behind(ingestion, repository, redis_client, keys, clock):
    anon = new_anonymous_id()
    await ingestion.ingest(12.9716, 77.5946, anon)
    # a wrong-typed day key makes the daily stats step fail
    await redis_client.delete(keys.day(day_label(clock.now)))
    await redis_client.set(keys.day(day_label(clock.now)), "not-a-hash")

    with pytest.raises(TransactionFailure):
        await ingestion.ingest(12.9716, 77.5946, anon)

    assert await redis_client.zcard(keys.events) == 1
    assert len(await redis_client.keys(keys.event("*"))) == 1
    assert (await repository.get_region("12.97_77.59")).feed_count == 1
    assert await redis_client.zcard(keys.rate_limit(anon)) == 1


async def test_store_error_surfaces_as_transaction_failure(ingestion, redis_client, monkeypatch):
    async def broken_eval(*args, **kwargs):
        raise ConnectionError("connection reset")

    monkeypatch.setattr(redis_client, "eval", broken_eval)
    with pytest.raises(TransactionFailure):
        await ingestion.ingest(12.9716, 77.5946, new_anonymous_id())


async def test_region_sum_matches_stored_events(ingestion, repository, redis_client, keys):
    points = [(12.9716, 77.5946), (12.9689, 77.5912), (51.5074, -0.1278), (-33.8688, 151.2093)]
    for lat, lng in points:
        await ingestion.ingest(lat, lng, new_anonymous_id())

    regions = await repository.top_regions(100)
    assert sum(r.feed_count for r in regions) == await redis_client.zcard(keys.events) == 4


@pytest.mark.parametrize("counter_key, field", [("day", "total_feeds"), ("region", "feed_count")])
async def test_non_integer_counter_leaves_nothing_behind(
    ingestion, repository, redis_client, keys, clock, counter_key, field
):
    anon = new_anonymous_id()
    await ingestion.ingest(12.9716, 77.5946, anon)
    target = keys.day(day_label(clock.now)) if counter_key == "day" else keys.region("12.97_77.59")
    await redis_client.hset(target, field, "corrupt")

    with pytest.raises(TransactionFailure):
        await ingestion.ingest(12.9716, 77.5946, anon)

    assert await redis_client.zcard(keys.events) == 1
    assert len(await redis_client.keys(keys.event("*"))) == 1
    assert await redis_client.zscore(keys.regions, "12.97_77.59") == 1
    assert await redis_client.zcard(keys.rate_limit(anon)) == 1
    assert await redis_client.hget(target, field) == "corrupt"
