from __future__ import annotations

from datetime import date, datetime, timezone


def parse_iso8601(dt_str: str) -> datetime:
    # Supabase/PostgREST use e.g. 2024-01-01T00:00:00Z or a bare date
    if dt_str.endswith("Z"):
        dt_str = dt_str[:-1] + "+00:00"
    return datetime.fromisoformat(dt_str)


def parse_day(value: str | date | datetime | None) -> date | None:
    """Reduce an ISO string, date or datetime to a calendar day."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_iso8601(str(value)).date()


def parse_timestamp(value: str | date | datetime | None) -> datetime:
    """Timestamps used only for ordering; missing values sort first."""
    if value is None or value == "":
        return datetime.min.replace(tzinfo=timezone.utc)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        dt = parse_iso8601(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
