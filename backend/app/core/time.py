"""
Time helpers.

All database timestamps are timezone-aware (UTC). Use these helpers instead of
`datetime.utcnow()` to avoid mixing naive and aware datetimes.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def now_utc() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return now_utc().date()


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Coerce a datetime to timezone-aware UTC.

    Some drivers (SQLite in tests) hand back naive datetimes; treat those as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def trailing_window(days: int, *, today: date | None = None) -> tuple[date, date]:
    """Return the inclusive (start, end) range of `days` days back from today."""
    end = today or today_utc()
    return end - timedelta(days=max(0, int(days))), end


def parse_day(value: str) -> date:
    """Parse `YYYY-MM-DD` or the compact GA4 `YYYYMMDD` form."""
    text_value = str(value or "").strip()
    if len(text_value) == 8 and text_value.isdigit():
        text_value = f"{text_value[:4]}-{text_value[4:6]}-{text_value[6:8]}"
    return date.fromisoformat(text_value)
