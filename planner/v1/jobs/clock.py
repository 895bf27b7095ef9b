from collections.abc import Callable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from croniter import croniter

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def next_cron_time(pattern: str, after: datetime, timezone: str = "UTC") -> datetime:
    """First tick of ``pattern`` strictly after ``after``, evaluated in ``timezone``, returned in UTC."""
    local_after = after.astimezone(ZoneInfo(timezone))
    return croniter(pattern, local_after).get_next(datetime).astimezone(UTC)


def is_valid_cron(pattern: str) -> bool:
    return croniter.is_valid(pattern)
