"""Period boundaries for leaderboards, challenges and scheduled jobs.

All windows are half-open ``[start, end)`` in UTC. Weeks start on Monday.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

WEEKLY = "weekly"
MONTHLY = "monthly"


def get_week_iso(dt: datetime | date) -> str:
    """ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def get_month_key(dt: datetime | date) -> str:
    return dt.strftime("%Y-%m")


def get_monday(dt: datetime | date) -> date:
    """Monday of the ISO week containing dt."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def get_week_boundaries(dt: datetime | None = None) -> tuple[datetime, datetime]:
    """(Monday 00:00 UTC, next Monday 00:00 UTC) for the week containing dt."""
    if dt is None:
        dt = datetime.now(timezone.utc)
    start = datetime.combine(get_monday(dt), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=7)


def get_month_boundaries(dt: datetime | None = None) -> tuple[datetime, datetime]:
    """(1st 00:00 UTC, 1st of next month 00:00 UTC) for the month containing dt."""
    if dt is None:
        dt = datetime.now(timezone.utc)
    start = datetime(dt.year, dt.month, 1, tzinfo=timezone.utc)
    if dt.month == 12:
        end = datetime(dt.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(dt.year, dt.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def period_boundaries(period_type: str, dt: datetime | None = None) -> tuple[datetime, datetime]:
    if period_type == WEEKLY:
        return get_week_boundaries(dt)
    if period_type == MONTHLY:
        return get_month_boundaries(dt)
    raise ValueError(f"unknown period type: {period_type}")
