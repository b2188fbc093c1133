"""
Time helpers shared by the maintenance gate, rotation and job tracking.
"""
import re
from datetime import datetime, timedelta, timezone

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_duration(value: str) -> timedelta:
    """
    Parse a Go-style duration string.

    Supports hour, minute and second units in any combination:
    - "4h" -> 4 hours
    - "90m" -> 1 hour 30 minutes
    - "1h30m" -> 1 hour 30 minutes

    Raises:
        ValueError: If the string is empty, malformed or not positive
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("duration must not be empty")

    pos = 0
    total = timedelta()
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value}")
        amount = float(match.group(1))
        unit = match.group(2)
        if unit == "h":
            total += timedelta(hours=amount)
        elif unit == "m":
            total += timedelta(minutes=amount)
        else:
            total += timedelta(seconds=amount)
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration: {value}")
    if total <= timedelta():
        raise ValueError(f"duration must be positive: {value}")
    return total


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp the way the platform does (RFC 3339, UTC, seconds)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
