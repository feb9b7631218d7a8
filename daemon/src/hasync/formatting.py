"""Formatting utilities for CLI output."""

from datetime import datetime, timezone

from hasync.models import now_ms


def format_time_ago(timestamp_ms: int | None, now: int | None = None) -> str:
    """Format an epoch-ms timestamp as relative time (e.g., '2 hours ago').

    Args:
        timestamp_ms: Epoch milliseconds, or None.
        now: Reference time in epoch ms (defaults to the current time).

    Returns:
        Human-readable relative time string like "2 hours ago" or "Never".

    Examples:
        >>> format_time_ago(None)
        "Never"
    """
    if not timestamp_ms:
        return "Never"

    seconds = ((now if now is not None else now_ms()) - timestamp_ms) / 1000

    if seconds < 60:
        return "Just now"
    elif seconds < 3600:
        minutes = int(seconds / 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    elif seconds < 86400:
        hours = int(seconds / 3600)
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    else:
        days = int(seconds / 86400)
        return f"{days} day{'s' if days != 1 else ''} ago"


def format_date(timestamp_ms: int) -> str:
    """Format an epoch-ms timestamp as a UTC date ("2024-01-01")."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
