"""Display formatting for durations and times."""

from __future__ import annotations

import math
from datetime import datetime

from .stats import round_half_up


def format_minutes(minutes: float | None) -> str:
    """Format minutes as '42 min' or '1h 5m'."""
    if minutes is None or math.isnan(minutes):
        return "--"
    whole_minutes = int(round_half_up(minutes))
    if whole_minutes < 60:
        return f"{whole_minutes} min"
    hours, mins = divmod(whole_minutes, 60)
    return f"{hours}h {mins}m" if mins > 0 else f"{hours}h"


def format_seconds_hhmmss(seconds: float | None) -> str:
    """Format seconds as H:MM:SS."""
    if seconds is None or math.isnan(seconds):
        return "--:--"
    minutes, secs = divmod(int(seconds), 60)
    hours, mins = divmod(minutes, 60)
    return f"{hours}:{mins:02d}:{secs:02d}"


def format_seconds_human(total_seconds: float | None) -> str:
    """Format seconds as '1h 23m 45s', '23m 45s' or '45s'."""
    if total_seconds is None:
        return "-"
    minutes, seconds = divmod(int(round_half_up(total_seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_time_of_day(timestamp: datetime | None) -> str:
    """Format a timestamp as '06:06 am'."""
    if timestamp is None:
        return "--:-- --"
    ampm = "pm" if timestamp.hour >= 12 else "am"
    display_hour = timestamp.hour % 12 or 12
    return f"{display_hour:02d}:{timestamp.minute:02d} {ampm}"
