from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from fakeredis import FakeAsyncRedis

from onemeal.services.area_bucketer import AreaBucketer
from onemeal.services.feed_repository import FeedKeys, FeedRepository
from onemeal.services.ingestion import IngestionService
from onemeal.services.rate_limiter import RateLimitPolicy
from tests.support import FrozenClock


@pytest.fixture
def clock():
    # anchored at today's noon so store-side expiries stay in the future
    noon = datetime.now(timezone.utc).replace(hour=12, minute=0, second=0, microsecond=0)
    return FrozenClock(noon)


@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def keys():
    return FeedKeys("test")


@pytest.fixture
def repository(redis_client, keys):
    return FeedRepository(redis_client, keys)


@pytest.fixture
def policy():
    return RateLimitPolicy(max_requests=10, window=timedelta(hours=24))


@pytest.fixture
def ingestion(repository, policy, clock):
    return IngestionService(
        repository,
        bucketer=AreaBucketer(coordinate_precision=3, region_precision=2),
        policy=policy,
        clock=clock,
        retention_days=90,
    )
