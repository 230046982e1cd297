from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

import structlog

from onemeal.core.config import settings
from onemeal.utils.clock import Clock, local_now, to_epoch_ms

logger = structlog.get_logger(__name__)


class SubmissionCounter(Protocol):
    """Abstract interface for counting an identity's recent submissions."""
    async def count_recent_submissions(self, anonymous_id: str, window_start_ms: int) -> int: ...


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int = 10
    window: timedelta = timedelta(hours=24)

    @classmethod
    def from_settings(cls) -> "RateLimitPolicy":
        return cls(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window=timedelta(milliseconds=settings.RATE_LIMIT_WINDOW_MS),
        )

    @property
    def window_ms(self) -> int:
        return self.window // timedelta(milliseconds=1)

    @property
    def retry_after_seconds(self) -> int:
        return max(1, int(self.window.total_seconds()))

    def window_start(self, now: datetime) -> datetime:
        return now - self.window

    def rejection_message(self) -> str:
        hours = self.window.total_seconds() / 3600
        period = "per day" if hours == 24 else f"every {hours:g} hours"
        return f"You can submit up to {self.max_requests} feeds {period}. Thank you for your compassion!"


class RateLimiter:
    """
    Sliding-window quota per anonymous identity.

    `admit` is a read-only peek used to turn away over-quota clients early.
    The authoritative check runs again inside the atomic ingestion script,
    so two racing submissions cannot both slip past the limit.
    """

    def __init__(self, counter: SubmissionCounter, policy: Optional[RateLimitPolicy] = None, clock: Clock = local_now):
        self.counter = counter
        self.policy = policy or RateLimitPolicy.from_settings()
        self.clock = clock

    async def admit(self, anonymous_id: str) -> bool:
        window_start = self.policy.window_start(self.clock())
        recent = await self.counter.count_recent_submissions(anonymous_id, to_epoch_ms(window_start))
        if recent >= self.policy.max_requests:
            logger.info("rate_limit_rejected", recent=recent, limit=self.policy.max_requests)
            return False
        return True
