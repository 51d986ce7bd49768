# drop_relay/core/clock.py

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Naive UTC now, matching how timestamps are stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def unix_seconds(moment: datetime) -> int:
    """Unix seconds for a naive UTC datetime."""
    return int(moment.replace(tzinfo=timezone.utc).timestamp())
