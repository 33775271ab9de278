"""
UTC period keys and reset instants for quota counters.

Daily periods key off the UTC calendar date, monthly periods off the UTC
year-month. There is no reset job: a new key is a fresh counter.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from explain_engage.storage.models import PeriodKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today(now: Optional[datetime] = None) -> date:
    """Current UTC calendar date."""
    now = now or utc_now()
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.date()


def period_key(kind: PeriodKind, day: date) -> str:
    """Key for the period containing day, e.g. "2025-01-11" or "2025-01"."""
    if kind == PeriodKind.DAY:
        return day.isoformat()
    return f"{day.year:04d}-{day.month:02d}"


def next_reset(kind: PeriodKind, day: date) -> datetime:
    """First UTC instant of the period after the one containing day."""
    if kind == PeriodKind.DAY:
        start = day + timedelta(days=1)
    elif day.month == 12:
        start = date(day.year + 1, 1, 1)
    else:
        start = date(day.year, day.month + 1, 1)
    return datetime.combine(start, time.min, tzinfo=timezone.utc)
