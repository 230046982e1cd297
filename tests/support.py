import uuid
from datetime import datetime, timedelta


class FrozenClock:
    """Settable clock for day boundaries, windows and retention horizons."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def new_anonymous_id() -> str:
    return str(uuid.uuid4())
