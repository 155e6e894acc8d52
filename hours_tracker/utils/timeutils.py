"""Shared date/time utilities."""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now():
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """Parse an ISO 8601 string (Bitbucket or our own) into an aware datetime, or None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_iso(dt: Optional[datetime]):
    return dt.isoformat() if dt else None


def days_ago_filter(days, now=None):
    """Date string (YYYY-MM-DD, UTC) for `days` days before now, as used in Bitbucket queries."""
    now = now or utc_now()
    return (now - timedelta(days=days)).strftime("%Y-%m-%d")


def format_duration(seconds):
    """Human readable duration: '45s', '3m 12s', '1h 4m'."""
    seconds = max(int(seconds or 0), 0)
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
