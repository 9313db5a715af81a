"""Shared helpers for the KPI calculators."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable, Mapping
from datetime import date
from typing import Any, TypeVar

from ..domain import SurgicalCase
from ..models import TRACKER_WINDOW_DAYS, AnalyticsConfig
from ..stats import round_half_up
from .results import DailyTrackerEntry, KPIResult, TrackerColor

NO_DATA = "--"

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
R = TypeVar("R", bound=KPIResult)


def resolve_config(config: AnalyticsConfig | None) -> AnalyticsConfig:
    return config if config is not None else AnalyticsConfig()


def group_by(
    cases: Iterable[SurgicalCase], key: Callable[[SurgicalCase], K | None]
) -> dict[K, list[SurgicalCase]]:
    """Group cases by ``key`` in first-seen order, skipping ``None`` keys."""
    groups: dict[K, list[SurgicalCase]] = defaultdict(list)
    for case in cases:
        k = key(case)
        if k is not None:
            groups[k].append(case)
    return dict(groups)


def room_day_key(case: SurgicalCase) -> tuple[date, str] | None:
    if not case.or_room_id:
        return None
    return case.scheduled_date, case.or_room_id


def surgeon_day_key(case: SurgicalCase) -> tuple[str, date] | None:
    if not case.surgeon_id:
        return None
    return case.surgeon_id, case.scheduled_date


def find_first_cases(cases: Iterable[SurgicalCase]) -> list[SurgicalCase]:
    """The earliest-scheduled case of every room-day.

    Cancelled cases and cases without a room or a scheduled start time are
    never first cases.
    """
    firsts: dict[tuple[date, str], SurgicalCase] = {}
    for case in cases:
        key = room_day_key(case)
        if key is None or case.start_time is None or case.is_cancelled:
            continue
        existing = firsts.get(key)
        if existing is None or case.start_time < existing.start_time:  # type: ignore[operator]
            firsts[key] = case
    return list(firsts.values())


def whole(value: float) -> int:
    """Round to a whole number for display."""
    return int(round_half_up(value))


def build_daily_tracker(
    daily: Mapping[date, V],
    color: Callable[[V], TrackerColor],
    tooltip: Callable[[str, V], str],
    window: int = TRACKER_WINDOW_DAYS,
) -> list[DailyTrackerEntry]:
    """Tracker cells for the most recent ``window`` days, oldest first."""
    days = sorted(daily)[-window:] if window > 0 else []
    entries = []
    for day in days:
        label = day.isoformat()
        entries.append(
            DailyTrackerEntry(
                date=label, color=color(daily[day]), tooltip=tooltip(label, daily[day])
            )
        )
    return entries


def color_higher_is_better(
    value: float, target: float, yellow_band: float, below: TrackerColor = TrackerColor.RED
) -> TrackerColor:
    if value >= target:
        return TrackerColor.EMERALD
    if value >= target - yellow_band:
        return TrackerColor.YELLOW
    return below


def color_lower_is_better(value: float, green: float, yellow: float) -> TrackerColor:
    if value <= green:
        return TrackerColor.EMERALD
    if value <= yellow:
        return TrackerColor.YELLOW
    return TrackerColor.RED


def no_data(
    result_cls: type[R] = KPIResult,  # type: ignore[assignment]
    *,
    subtitle: str,
    target: float | None = None,
    **extra: Any,
) -> R:
    """The empty state every calculator returns when nothing qualifies."""
    return result_cls(
        value=0,
        display_value=NO_DATA,
        subtitle=subtitle,
        target=target,
        target_met=None,
        daily_data=[],
        sample_count=0,
        **extra,
    )
