"""
Calendar helpers. Business dates are Estonian calendar days regardless of server timezone.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

ESTONIAN_TZ = ZoneInfo("Europe/Tallinn")


def now_utc() -> datetime:
    """Naive UTC timestamp, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_in_estonia() -> date:
    return datetime.now(ESTONIAN_TZ).date()


def is_future_estonian_date(d: date) -> bool:
    return d > today_in_estonia()


def add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # Feb 29 rolls over to Mar 1
        return date(d.year + years, 3, 1)


def parse_iso_date(value: object) -> date | None:
    """Parse a strict YYYY-MM-DD string. Returns None when it is not one."""
    if not isinstance(value, str) or len(value) != 10:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None
