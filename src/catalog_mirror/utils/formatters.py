"""Formatting utilities for display values and timestamps."""

from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return now.replace("+00:00", "Z")


def format_coordinates(latitude: float, longitude: float) -> str:
    """Format a coordinate pair as '14.5995, 120.9842'."""
    return f"{latitude:.4f}, {longitude:.4f}"


def format_bytes(size: int) -> str:
    """Format a byte count for display (e.g. '1.5 KB')."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"
