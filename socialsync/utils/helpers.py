"""Helper utility functions."""
from datetime import datetime, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def badge_label(count: int, cap: int = 99) -> str:
    """
    Render a badge count for a tab icon.

    Args:
        count: The underlying (uncapped) count
        cap: Highest number rendered literally

    Returns:
        "" for zero, the number up to ``cap``, "{cap}+" above it
    """
    if count <= 0:
        return ""
    if count > cap:
        return f"{cap}+"
    return str(count)


def truncate_preview(content: Optional[str], length: int = 50) -> Optional[str]:
    """
    Shorten message text for a chat list preview.

    Args:
        content: Full message text
        length: Characters kept before the ellipsis

    Returns:
        The text, cut to ``length`` characters plus "..." when longer
    """
    if content is None:
        return None
    if len(content) <= length:
        return content
    return content[:length] + "..."


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass a datetime through), always timezone-aware."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_time_ago(dt: datetime, now: Optional[datetime] = None) -> str:
    """
    Format a timestamp the way list rows show it ("just now", "5m", "3h", "2d").

    Args:
        dt: Timestamp to describe
        now: Reference time, defaults to the current UTC time

    Returns:
        Short relative time string
    """
    dt = parse_timestamp(dt)
    if dt is None:
        return ""
    now = now or utcnow()
    seconds = int((now - dt).total_seconds())

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    if seconds < 7 * 86400:
        return f"{seconds // 86400}d"
    return dt.strftime("%b %d")
