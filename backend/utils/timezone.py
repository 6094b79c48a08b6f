"""
Timezone Utility Module
All stored timestamps are UTC; drop windows arrive as ISO strings from the editor
"""
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

UTC_TZ = ZoneInfo("UTC")


def now_utc() -> datetime:
    """Get current datetime in UTC timezone."""
    return datetime.now(UTC_TZ)


def to_utc(dt: datetime) -> datetime:
    """Convert any datetime to UTC (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(UTC_TZ)


def parse_iso_to_utc(iso_string: str) -> Optional[datetime]:
    """Parse ISO string to UTC datetime.

    Args:
        iso_string: ISO format datetime string (e.g., '2025-11-29T18:00:00Z')

    Returns:
        datetime object in UTC or None if parsing fails
    """
    if not iso_string:
        return None

    try:
        # Handle 'Z' suffix for UTC
        text = iso_string.strip().replace('Z', '+00:00').replace('z', '+00:00')
        return to_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        return None


def epoch_ms(dt: Optional[datetime] = None) -> int:
    """Milliseconds since epoch (defaults to now)."""
    return int((dt or now_utc()).timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC_TZ)
