"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Tuple


def parse_date_only(value: Any) -> Optional[date]:
    """Parse YYYY-MM-DD (or an ISO timestamp) to a date; None when absent or invalid"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp such as 2024-03-01T10:15:00-08:00"""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def previous_month_range(today: date | None = None) -> Tuple[date, date]:
    """First and last day of the calendar month before `today`"""
    today = today or datetime.now(timezone.utc).date()
    last_day = today.replace(day=1) - timedelta(days=1)
    return last_day.replace(day=1), last_day
