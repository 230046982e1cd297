# onemeal/services/redis_client.py
"""Explicitly scoped redis.asyncio connection used as the feed store.

Retries are disabled: a command that times out is reported to the caller as
a failure instead of being replayed, which would double-count aggregates.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.backoff import NoBackoff
from redis.retry import Retry

from onemeal.core.config import settings
from onemeal.core.errors import StoreUnavailable

logger = structlog.get_logger(__name__)


def create_redis(url: Optional[str] = None, socket_timeout: Optional[float] = None) -> Redis:
    url = url or settings.REDIS_URL
    if not url:
        raise ValueError("REDIS_URL is not set in the environment")
    timeout = socket_timeout if socket_timeout is not None else settings.REDIS_SOCKET_TIMEOUT
    pool = ConnectionPool.from_url(
        url,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        retry=Retry(NoBackoff(), 0),
    )
    return Redis(connection_pool=pool, retry=Retry(NoBackoff(), 0))


@asynccontextmanager
async def open_redis(url: Optional[str] = None) -> AsyncIterator[Redis]:
    """Open a store connection for the lifetime of the `async with` block."""
    client = create_redis(url)
    try:
        yield client
    finally:
        await client.aclose()
        await client.connection_pool.disconnect()


async def ping(client: Redis) -> None:
    """Raise StoreUnavailable unless the store answers."""
    try:
        ok = await client.ping()
    except Exception as e:
        logger.error("store_ping_failed", error=str(e))
        raise StoreUnavailable("redis_unavailable") from e
    if not ok:
        raise StoreUnavailable("redis_unavailable")
