"""
Countdown Presenter — deadline display for every role's pickup view.

Pure and stateless: the same (deadline, now, status) always renders the same
string, so dashboards can re-render on any tick and tests need no clock.

  pending, before deadline   →  "1d 2h 3m 4s" / "2h 5m 10s" / "4m 9s" / "45s"
  past deadline              →  "Expired 1d 2h 3m ago" / "Expired 3h 2m ago"
                                / "Expired 4m 9s ago" / "Expired 5s ago"
  sold / returned / transferred  →  status label, no time arithmetic
"""

from datetime import datetime

from pickups.status import PickupStatus, is_terminal, status_label

SECONDS_PER_DAY = 86_400
SECONDS_PER_HOUR = 3_600
SECONDS_PER_MINUTE = 60


def split_duration(total_seconds: int) -> tuple[int, int, int, int]:
    """Split whole seconds into (days, hours, minutes, seconds)."""
    days, rest = divmod(total_seconds, SECONDS_PER_DAY)
    hours, rest = divmod(rest, SECONDS_PER_HOUR)
    minutes, seconds = divmod(rest, SECONDS_PER_MINUTE)
    return days, hours, minutes, seconds


def format_remaining(total_seconds: int) -> str:
    days, hours, minutes, seconds = split_duration(total_seconds)
    if days > 0:
        return f"{days}d {hours}h {minutes}m {seconds}s"
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_elapsed(total_seconds: int) -> str:
    days, hours, minutes, seconds = split_duration(total_seconds)
    if days > 0:
        return f"Expired {days}d {hours}h {minutes}m ago"
    if hours > 0:
        return f"Expired {hours}h {minutes}m ago"
    if minutes > 0:
        return f"Expired {minutes}m {seconds}s ago"
    return f"Expired {seconds}s ago"


def present(deadline: datetime, now: datetime, status: str | PickupStatus) -> str:
    """Render a pickup's countdown for display."""
    status = PickupStatus(status)
    if is_terminal(status) and status != PickupStatus.EXPIRED:
        return status_label(status)

    if now <= deadline:
        if status == PickupStatus.EXPIRED:
            # Only reachable under clock skew between sweeper and viewer.
            return status_label(status)
        return format_remaining(int((deadline - now).total_seconds()))

    return format_elapsed(int((now - deadline).total_seconds()))
