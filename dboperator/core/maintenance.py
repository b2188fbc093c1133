"""
Maintenance window gate.

Decides whether a version upgrade may run right now. The gate is a pure
function of the configured windows and the current time; it never sleeps or
polls. Only version upgrades are gated, scaling and backups are not.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from dboperator.models.database import MaintenanceWindow
from dboperator.utils.timeutils import parse_duration


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a maintenance window check."""

    allowed: bool
    next_opening: Optional[datetime] = None

    def wait_seconds(self, now: datetime) -> Optional[float]:
        """Seconds until the next window opens, if one is known."""
        if self.allowed or self.next_opening is None:
            return None
        return max((self.next_opening - now).total_seconds(), 0.0)


def resolve_timezone(name: Optional[str], default: str = "UTC") -> tzinfo:
    """Return the tzinfo for an IANA name, falling back to the default."""
    zone = name or default
    if zone.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(zone)


def _sunday_based_weekday(moment: datetime) -> int:
    # datetime.weekday(): Monday=0; windows use Sunday=0
    return (moment.weekday() + 1) % 7


def _window_start_on_or_before(window: MaintenanceWindow, now: datetime) -> datetime:
    hour, minute = (int(part) for part in window.start_time.split(":"))
    days_back = (_sunday_based_weekday(now) - window.day_of_week) % 7
    start = (now - timedelta(days=days_back)).replace(hour=hour, minute=minute, second=0, microsecond=0)
    if start > now:
        start -= timedelta(days=7)
    return start


def is_within_window(window: MaintenanceWindow, now: datetime) -> bool:
    """Check whether now lies in [start, start + duration) of the window's latest occurrence."""
    start = _window_start_on_or_before(window, now)
    return start <= now < start + parse_duration(window.duration)


def next_window_start(windows: Iterable[MaintenanceWindow], now: datetime) -> Optional[datetime]:
    """Earliest window opening strictly after now."""
    openings = [_window_start_on_or_before(window, now) + timedelta(days=7) for window in windows]
    return min(openings) if openings else None


def evaluate(
    windows: Iterable[MaintenanceWindow],
    now: datetime,
    zone: Optional[tzinfo] = None,
) -> GateDecision:
    """
    Evaluate the maintenance windows at a point in time.

    Args:
        windows: Configured maintenance windows; none means always allowed
        now: Current time (naive values are interpreted in ``zone``)
        zone: Clock the windows are expressed in, UTC by default

    Returns:
        GateDecision with the next opening when currently closed
    """
    windows = list(windows)
    if not windows:
        return GateDecision(allowed=True)

    zone = zone or timezone.utc
    if now.tzinfo is None:
        local_now = now.replace(tzinfo=zone)
    else:
        local_now = now.astimezone(zone)

    if any(is_within_window(window, local_now) for window in windows):
        return GateDecision(allowed=True)
    return GateDecision(allowed=False, next_opening=next_window_start(windows, local_now))


def is_upgrade_allowed(
    windows: Iterable[MaintenanceWindow],
    now: datetime,
    zone: Optional[tzinfo] = None,
) -> bool:
    """Shorthand for ``evaluate(...).allowed``."""
    return evaluate(windows, now, zone).allowed
