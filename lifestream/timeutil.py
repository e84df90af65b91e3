"""Time helpers. All engine timestamps are timezone-aware UTC datetimes."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an epoch number or ISO 8601 string into a UTC datetime.

    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return EPOCH + timedelta(seconds=float(value))
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return EPOCH + timedelta(seconds=float(text))
    except ValueError:
        return None


def align_down(instant: datetime, cadence: timedelta) -> datetime:
    """Round an instant down onto the cadence grid anchored at the epoch."""
    offset = ensure_utc(instant) - EPOCH
    return EPOCH + (offset // cadence) * cadence


def seconds(value: Optional[timedelta]) -> Optional[float]:
    return value.total_seconds() if value is not None else None
