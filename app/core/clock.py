"""
Wall-clock access and usage-period arithmetic.

Usage counters are keyed by calendar period ("YYYY-MM" for monthly quotas,
"YYYY-MM-DD" for daily quotas). All period math goes through a Clock so that
rollover behaviour can be driven deterministically in tests.
"""
import os
from datetime import datetime, timedelta, timezone

USAGE_PERIOD = os.getenv("USAGE_PERIOD", "monthly").strip().lower()

MONTHLY = "monthly"
DAILY = "daily"


class SystemClock:
    """Clock backed by the real UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock that always returns the same instant until moved with set()."""

    def __init__(self, instant: datetime):
        self.set(instant)

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant


_system_clock = SystemClock()


def get_clock():
    """FastAPI dependency returning the process clock. Overridden in tests."""
    return _system_clock


def period_key(now: datetime, granularity: str = None) -> str:
    granularity = granularity or USAGE_PERIOD
    if granularity == DAILY:
        return now.strftime("%Y-%m-%d")
    return now.strftime("%Y-%m")


def next_period_start(now: datetime, granularity: str = None) -> datetime:
    """First instant of the period after the one containing `now`."""
    granularity = granularity or USAGE_PERIOD
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == DAILY:
        return start_of_day + timedelta(days=1)
    if now.month == 12:
        return start_of_day.replace(year=now.year + 1, month=1, day=1)
    return start_of_day.replace(month=now.month + 1, day=1)


def format_reset_date(reset_at: datetime) -> str:
    # e.g. "November 1"
    return f"{reset_at.strftime('%B')} {reset_at.day}"
