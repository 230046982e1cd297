from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def local_now() -> datetime:
    """Server clock as an aware datetime in the server's local zone."""
    return datetime.now().astimezone()


def start_of_day(moment: datetime) -> datetime:
    """Midnight of `moment`'s calendar day, in `moment`'s own zone."""
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def day_label(moment: datetime) -> str:
    return start_of_day(moment).date().isoformat()


def to_epoch_ms(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value) -> datetime:
    return EPOCH + timedelta(milliseconds=int(value))
