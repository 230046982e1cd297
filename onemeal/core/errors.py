from typing import Optional


class FeedError(Exception):
    """Base class for expected failures of the ingestion/aggregation core."""


class RateLimitExceeded(FeedError):
    """The anonymous identity already used its quota for the current window.

    A policy outcome, not a fault: nothing has been written when it is raised.
    """

    def __init__(self, limit: int, retry_after_seconds: Optional[int] = None):
        super().__init__(f"rate limit of {limit} feeds per window reached")
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds


class TransactionFailure(FeedError):
    """The atomic ingestion write did not commit; no part of it survives."""


class StoreUnavailable(FeedError):
    """The store connection itself could not be established or used."""


class DegradedRead(FeedError):
    """A summary sub-query failed and was replaced by its zero value."""

    def __init__(self, query: str, cause: Exception):
        super().__init__(f"{query} failed: {cause}")
        self.query = query
        self.cause = cause


class InvalidRegionKey(ValueError):
    pass
