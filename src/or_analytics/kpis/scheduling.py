"""Scheduling KPIs: first-case on-time starts, volume, cancellations, tardiness."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from ..domain import MilestoneName, SurgicalCase
from ..milestones import build_milestone_map, scheduled_start
from ..models import AnalyticsConfig
from ..stats import average, calculate_delta, diff_minutes, round_half_up
from .common import (
    build_daily_tracker,
    color_higher_is_better,
    color_lower_is_better,
    find_first_cases,
    no_data,
    resolve_config,
    whole,
)
from .results import (
    CancellationResult,
    CaseVolumeResult,
    KPIResult,
    WeeklyVolume,
)

logger = logging.getLogger(__name__)


@dataclass
class _DayCount:
    on_time: int = 0
    late: int = 0

    @property
    def total(self) -> int:
        return self.on_time + self.late

    @property
    def rate(self) -> float:
        return self.on_time / self.total * 100 if self.total else 100.0


def _fcots_outcomes(
    cases: Sequence[SurgicalCase], config: AnalyticsConfig
) -> list[tuple[date, bool]]:
    """(date, on time) for every first case with both a scheduled and actual start."""
    milestone = MilestoneName(config.fcots_milestone)
    outcomes = []
    for case in find_first_cases(cases):
        scheduled = scheduled_start(case, config.tz)
        actual = build_milestone_map(case).get(milestone)
        delay = diff_minutes(scheduled, actual)
        if delay is None:
            continue
        outcomes.append((case.scheduled_date, delay <= config.fcots_grace_minutes))
    return outcomes


def calculate_fcots(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> KPIResult:
    """First case on-time start rate.

    The first case of each room-day is the one with the earliest scheduled
    start; it is on time when the configured milestone happens no later than
    the scheduled start plus the grace minutes.
    """
    config = resolve_config(config)
    label = "incision" if config.fcots_milestone == "incision" else "wheels-in"
    outcomes = _fcots_outcomes(cases, config)
    logger.debug("FCOTS: %d first cases with start data", len(outcomes))
    if not outcomes:
        return no_data(
            subtitle=f"No first cases ({label}, {config.fcots_grace_minutes:g} min grace)",
            target=config.fcots_target_percent,
        )

    daily: dict[date, _DayCount] = defaultdict(_DayCount)
    for day, on_time in outcomes:
        if on_time:
            daily[day].on_time += 1
        else:
            daily[day].late += 1

    on_time_count = sum(1 for _, on_time in outcomes if on_time)
    late_count = len(outcomes) - on_time_count
    rate = whole(on_time_count / len(outcomes) * 100)

    previous_rate = None
    if previous_cases:
        previous = _fcots_outcomes(previous_cases, config)
        if previous:
            previous_rate = whole(sum(1 for _, ok in previous if ok) / len(previous) * 100)
    delta, delta_type = calculate_delta(rate, previous_rate)

    target = config.fcots_target_percent
    daily_data = build_daily_tracker(
        daily,
        lambda d: color_higher_is_better(d.rate, target, config.fcots_yellow_band_percent),
        lambda day, d: f"{day}: {d.on_time}/{d.total} on-time",
    )

    return KPIResult(
        value=rate,
        display_value=f"{rate}%",
        subtitle=(
            f"{late_count} late of {len(outcomes)} first cases "
            f"({label}, {config.fcots_grace_minutes:g} min grace)"
        ),
        target=target,
        target_met=rate >= target,
        delta=delta,
        delta_type=delta_type,
        daily_data=daily_data,
        sample_count=len(outcomes),
    )


def week_start(day: date) -> date:
    """The Sunday on or before ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def calculate_case_volume(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> CaseVolumeResult:
    """Case count with period-over-period delta and weekly buckets."""
    total_cases = len(cases)
    if total_cases == 0:
        return no_data(CaseVolumeResult, subtitle="No cases this period")

    weekly: dict[date, int] = defaultdict(int)
    for case in cases:
        weekly[week_start(case.scheduled_date)] += 1
    weekly_volume = [
        WeeklyVolume(week_start=week.isoformat(), count=count)
        for week, count in sorted(weekly.items())
    ]

    previous_total = len(previous_cases) if previous_cases else None
    delta, delta_type = calculate_delta(total_cases, previous_total)
    if delta is None:
        subtitle = "This period"
    elif delta_type == "unchanged":
        subtitle = "No change vs last period"
    else:
        sign = "+" if delta_type == "increase" else "-"
        subtitle = f"{sign}{delta:g}% vs last period"

    return CaseVolumeResult(
        value=total_cases,
        display_value=str(total_cases),
        subtitle=subtitle,
        delta=delta,
        delta_type=delta_type,
        weekly_volume=weekly_volume,
        sample_count=total_cases,
    )


def is_same_day_cancellation(case: SurgicalCase, config: AnalyticsConfig) -> bool:
    """Whether a cancelled case was cancelled on its scheduled day.

    Compares the local calendar date of ``cancelled_at`` in the facility
    time zone. A cancelled case without a cancellation timestamp counts as
    same-day.
    """
    if case.cancelled_at is not None:
        return case.cancelled_at.astimezone(config.tz).date() == case.scheduled_date
    return case.is_cancelled


def _same_day_rate(cases: Sequence[SurgicalCase], config: AnalyticsConfig) -> float:
    same_day = sum(1 for c in cases if c.is_cancelled and is_same_day_cancellation(c, config))
    return same_day / len(cases) * 100


def calculate_cancellation_rate(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> CancellationResult:
    """Same-day cancellations as a share of all cases; lower is better."""
    config = resolve_config(config)
    target = config.cancellation_target_percent
    if not cases:
        return no_data(CancellationResult, subtitle="No cases this period", target=target)

    cancelled = [c for c in cases if c.is_cancelled]
    same_day = [c for c in cancelled if is_same_day_cancellation(c, config)]
    rate = same_day_rate = round_half_up(len(same_day) / len(cases) * 100, 1)

    previous_rate = _same_day_rate(previous_cases, config) if previous_cases else None
    delta, delta_type = calculate_delta(
        len(same_day) / len(cases) * 100, previous_rate, lower_is_better=True
    )

    daily: dict[date, dict[str, int]] = defaultdict(
        lambda: {"total": 0, "cancelled": 0, "same_day": 0}
    )
    for case in cases:
        counts = daily[case.scheduled_date]
        counts["total"] += 1
        if case.is_cancelled:
            counts["cancelled"] += 1
            if is_same_day_cancellation(case, config):
                counts["same_day"] += 1

    def tooltip(day: str, counts: dict[str, int]) -> str:
        if counts["same_day"] == 0:
            return f"{day}: No same-day cancellations"
        return f"{day}: {counts['same_day']} same-day, {counts['cancelled']} total cancelled"

    daily_data = build_daily_tracker(
        daily,
        lambda counts: color_lower_is_better(counts["same_day"], 0, 1),
        tooltip,
    )

    return CancellationResult(
        value=rate,
        display_value=f"{rate:.1f}%",
        subtitle=f"{len(same_day)} same-day of {len(cancelled)} total cancellations",
        target=target,
        target_met=rate <= target,
        delta=delta,
        delta_type=delta_type,
        daily_data=daily_data,
        sample_count=len(cases),
        same_day_count=len(same_day),
        same_day_rate=same_day_rate,
        total_cancelled_count=len(cancelled),
    )


def _daily_tardiness(
    cases: Sequence[SurgicalCase], config: AnalyticsConfig
) -> tuple[dict[date, float], int]:
    """Sum of positive start delays per day, and the number of cases measured."""
    daily: dict[date, float] = defaultdict(float)
    measured = 0
    for case in cases:
        delay = diff_minutes(
            scheduled_start(case, config.tz),
            build_milestone_map(case).get(MilestoneName.PATIENT_IN),
        )
        if delay is None:
            continue
        measured += 1
        daily[case.scheduled_date] += max(0.0, delay)
    return dict(daily), measured


def calculate_cumulative_tardiness(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> KPIResult:
    """Average per-day sum of late-start minutes.

    Every day with at least one measured case counts toward the average,
    including days whose cases all started on time (contributing 0), so the
    figure can be lower than an average over late days only.
    """
    config = resolve_config(config)
    target = config.tardiness_target_minutes
    daily, measured = _daily_tardiness(cases, config)
    if measured == 0:
        return no_data(subtitle="No cases with recorded start times", target=target)

    avg = average(daily.values())

    previous_avg = None
    if previous_cases:
        previous_daily, previous_measured = _daily_tardiness(previous_cases, config)
        if previous_measured:
            previous_avg = average(previous_daily.values())
    delta, delta_type = calculate_delta(avg, previous_avg, lower_is_better=True)

    daily_data = build_daily_tracker(
        daily,
        lambda minutes: color_lower_is_better(minutes, config.tardiness_green_minutes, target),
        lambda day, minutes: f"{day}: {whole(minutes)} min total delays",
    )

    return KPIResult(
        value=whole(avg),
        display_value=f"{whole(avg)} min",
        subtitle="Average daily delay",
        target=target,
        target_met=avg <= target,
        delta=delta,
        delta_type=delta_type,
        daily_data=daily_data,
        sample_count=measured,
    )
