from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    # Naive UTC, matching what Motor hands back for stored dates
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_from(start: datetime, days: int) -> datetime:
    return start + timedelta(days=days)
