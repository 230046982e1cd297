"""Scheduled retention job. Exits non-zero when the store cannot be swept.

Usage:
    python sweep.py
    python -m onemeal.jobs.sweep
"""
import asyncio
import sys
from typing import Optional

import structlog

from onemeal.core.config import settings
from onemeal.core.errors import StoreUnavailable
from onemeal.logging import configure_logging
from onemeal.services.feed_repository import FeedKeys, FeedRepository
from onemeal.services.redis_client import open_redis
from onemeal.services.retention import RetentionSweeper

logger = structlog.get_logger(__name__)


async def run_sweep(url: Optional[str] = None) -> int:
    try:
        async with open_redis(url) as redis_client:
            sweeper = RetentionSweeper(FeedRepository(redis_client, FeedKeys(settings.KEY_PREFIX)))
            report = await sweeper.sweep()
    except StoreUnavailable:
        logger.error("sweep_failed", reason="store_unavailable")
        return 1
    except Exception as e:
        logger.exception("sweep_failed", error=str(e))
        return 1

    logger.info("sweep_completed", **report.model_dump())
    return 0


def main() -> None:
    configure_logging()
    sys.exit(asyncio.run(run_sweep()))


if __name__ == "__main__":
    main()
