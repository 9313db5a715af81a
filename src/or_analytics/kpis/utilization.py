"""Room usage KPIs: OR utilization, non-operative time and time breakdown."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from ..domain import MilestoneName as M
from ..domain import SurgicalCase
from ..formatters import format_minutes
from ..milestones import build_milestone_map
from ..models import AnalyticsConfig
from ..stats import average, calculate_delta, diff_minutes
from .common import (
    build_daily_tracker,
    color_higher_is_better,
    color_lower_is_better,
    no_data,
    resolve_config,
    room_day_key,
    whole,
)
from .results import (
    KPIResult,
    NonOperativeTimeResult,
    ORUtilizationResult,
    RoomUtilization,
    TimeBreakdown,
    TrackerColor,
)


@dataclass
class _RoomDay:
    room_id: str
    room_name: str
    minutes: float = 0.0
    case_count: int = 0


@dataclass
class _RoomTotals:
    room_id: str
    room_name: str
    total_minutes: float = 0.0
    total_cases: int = 0
    daily_utilization: list[float] = field(default_factory=list)


def _room_days(cases: Sequence[SurgicalCase]) -> dict[tuple[date, str], _RoomDay]:
    """Patient-in-room minutes per room-day."""
    room_days: dict[tuple[date, str], _RoomDay] = {}
    for case in cases:
        key = room_day_key(case)
        if key is None:
            continue
        milestones = build_milestone_map(case)
        minutes = diff_minutes(milestones.get(M.PATIENT_IN), milestones.get(M.PATIENT_OUT))
        if minutes is None or minutes <= 0:
            continue
        room_day = room_days.setdefault(
            key, _RoomDay(room_id=key[1], room_name=case.display_room)
        )
        room_day.minutes += minutes
        room_day.case_count += 1
    return room_days


def _utilization(minutes: float, room_id: str, config: AnalyticsConfig) -> float:
    hours, _ = config.hours_for_room(room_id)
    return min(minutes / (hours * 60) * 100, config.utilization_cap_percent)


def calculate_or_utilization(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> ORUtilizationResult:
    """Patient-in-room time as a share of each room's available hours.

    Room-day utilization is capped; rooms are averaged across their active
    days and the overall figure averages every room-day.
    """
    config = resolve_config(config)
    target = config.utilization_target_percent
    room_days = _room_days(cases)
    if not room_days:
        return no_data(
            ORUtilizationResult, subtitle="No completed cases with room times", target=target
        )

    rooms: dict[str, _RoomTotals] = {}
    daily: dict[date, list[float]] = defaultdict(list)
    for (day, room_id), room_day in room_days.items():
        utilization = _utilization(room_day.minutes, room_id, config)
        totals = rooms.setdefault(room_id, _RoomTotals(room_id, room_day.room_name))
        totals.total_minutes += room_day.minutes
        totals.total_cases += room_day.case_count
        totals.daily_utilization.append(utilization)
        daily[day].append(utilization)

    breakdown = []
    for totals in rooms.values():
        hours, configured = config.hours_for_room(totals.room_id)
        breakdown.append(
            RoomUtilization(
                room_id=totals.room_id,
                room_name=totals.room_name,
                utilization=whole(average(totals.daily_utilization)),
                used_minutes=whole(totals.total_minutes),
                available_hours=hours,
                case_count=totals.total_cases,
                days_active=len(totals.daily_utilization),
                using_real_hours=configured,
            )
        )
    # Lowest utilization first
    breakdown.sort(key=lambda r: r.utilization)

    avg = average(u for totals in rooms.values() for u in totals.daily_utilization)

    previous_avg = None
    if previous_cases:
        previous_days = _room_days(previous_cases)
        if previous_days:
            previous_avg = average(
                _utilization(rd.minutes, room_id, config)
                for (_, room_id), rd in previous_days.items()
            )
    delta, delta_type = calculate_delta(avg, previous_avg)

    real_hours = sum(1 for r in breakdown if r.using_real_hours)
    default_hours = len(breakdown) - real_hours
    above_target = sum(1 for r in breakdown if r.utilization >= target)
    if default_hours and real_hours:
        hours_note = f" · {default_hours} using default hours"
    elif default_hours == len(breakdown):
        hours_note = " · All rooms using default hours"
    else:
        hours_note = ""

    daily_data = build_daily_tracker(
        daily,
        lambda values: color_higher_is_better(
            average(values),
            target,
            config.utilization_yellow_band_percent,
            below=TrackerColor.SLATE,
        ),
        lambda day, values: f"{day}: {whole(average(values))}% utilization",
    )

    return ORUtilizationResult(
        value=whole(avg),
        display_value=f"{whole(avg)}%",
        subtitle=f"{above_target}/{len(breakdown)} rooms above {target:g}% target{hours_note}",
        target=target,
        target_met=avg >= target,
        delta=delta,
        delta_type=delta_type,
        daily_data=daily_data,
        sample_count=len(room_days),
        room_breakdown=breakdown,
        rooms_with_real_hours=real_hours,
        rooms_with_default_hours=default_hours,
    )


@dataclass
class _NonOpSample:
    day: date
    pre_op: float
    post_op: float | None
    total: float | None

    @property
    def non_operative(self) -> float:
        return self.pre_op + (self.post_op or 0.0)


def _non_op_samples(cases: Sequence[SurgicalCase]) -> list[_NonOpSample]:
    samples = []
    for case in cases:
        m = build_milestone_map(case)
        pre_op = diff_minutes(m.get(M.PATIENT_IN), m.get(M.INCISION))
        if pre_op is None or pre_op < 0:
            continue
        # Closing to closing_complete is active surgical work, never idle time
        post_op = diff_minutes(m.get(M.CLOSING_COMPLETE), m.get(M.PATIENT_OUT))
        if post_op is not None and post_op < 0:
            post_op = None
        total = diff_minutes(m.get(M.PATIENT_IN), m.get(M.PATIENT_OUT))
        samples.append(
            _NonOpSample(
                day=case.scheduled_date,
                pre_op=pre_op,
                post_op=post_op,
                total=total if total is not None and total > 0 else None,
            )
        )
    return samples


def calculate_non_operative_time(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> NonOperativeTimeResult:
    """Average time a patient is in the room without surgery under way.

    Pre-op (``patient_in`` to ``incision``) is always counted; post-op
    (``closing_complete`` to ``patient_out``) only when recorded.
    """
    config = resolve_config(config)
    samples = _non_op_samples(cases)
    if not samples:
        return no_data(NonOperativeTimeResult, subtitle="No cases with pre-op times")

    avg = average(s.non_operative for s in samples)
    avg_total = average(s.total for s in samples)
    percent = whole(avg / avg_total * 100) if avg_total > 0 else 0

    previous_avg = None
    if previous_cases:
        previous = _non_op_samples(previous_cases)
        if previous:
            previous_avg = average(s.non_operative for s in previous)
    delta, delta_type = calculate_delta(avg, previous_avg, lower_is_better=True)

    daily: dict[date, list[float]] = defaultdict(list)
    for sample in samples:
        daily[sample.day].append(sample.non_operative)

    daily_data = build_daily_tracker(
        daily,
        lambda values: color_lower_is_better(
            average(values), config.non_op_warn_minutes, config.non_op_bad_minutes
        ),
        lambda day, values: f"{day}: {whole(average(values))} min avg non-operative",
    )

    return NonOperativeTimeResult(
        value=whole(avg),
        display_value=format_minutes(avg),
        subtitle=f"{percent}% of total case time · {len(samples)} cases",
        target=config.non_op_warn_minutes,
        target_met=avg <= config.non_op_warn_minutes,
        delta=delta,
        delta_type=delta_type,
        daily_data=daily_data,
        sample_count=len(samples),
        avg_pre_op_minutes=average(s.pre_op for s in samples),
        avg_post_op_minutes=average(s.post_op for s in samples),
        percent_of_case_time=percent,
    )


def _positive(value: float | None) -> float | None:
    """Time-breakdown segments ignore missing and zero-length intervals."""
    return value if value else None


def calculate_time_breakdown(cases: Sequence[SurgicalCase]) -> TimeBreakdown:
    """Average segment durations over cases with both patient in and out."""
    totals, surgical, pre_op, anesthesia, closing, emergence = ([] for _ in range(6))
    for case in cases:
        m = build_milestone_map(case)
        if M.PATIENT_IN not in m or M.PATIENT_OUT not in m:
            continue
        totals.append(_positive(diff_minutes(m[M.PATIENT_IN], m[M.PATIENT_OUT])))
        surgical.append(_positive(diff_minutes(m.get(M.INCISION), m.get(M.CLOSING))))
        pre_op.append(_positive(diff_minutes(m[M.PATIENT_IN], m.get(M.INCISION))))
        anesthesia.append(_positive(diff_minutes(m.get(M.ANES_START), m.get(M.ANES_END))))
        closing_end = m.get(M.CLOSING_COMPLETE) or m[M.PATIENT_OUT]
        closing.append(_positive(diff_minutes(m.get(M.CLOSING), closing_end)))
        if M.CLOSING_COMPLETE in m:
            emergence.append(
                _positive(diff_minutes(m[M.CLOSING_COMPLETE], m[M.PATIENT_OUT]))
            )

    return TimeBreakdown(
        avg_total_minutes=average(totals),
        avg_surgical_minutes=average(surgical),
        avg_pre_op_minutes=average(pre_op),
        avg_anesthesia_minutes=average(anesthesia),
        avg_closing_minutes=average(closing),
        avg_emergence_minutes=average(emergence),
        non_operative_minutes=average(pre_op) + average(closing) + average(emergence),
    )


def _case_times(cases: Sequence[SurgicalCase]) -> list[float]:
    times = []
    for case in cases:
        m = build_milestone_map(case)
        minutes = diff_minutes(m.get(M.PATIENT_IN), m.get(M.PATIENT_OUT))
        if minutes is not None and minutes > 0:
            times.append(minutes)
    return times


def calculate_avg_case_time(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> KPIResult:
    """Average patient-in to patient-out time; lower is better."""
    times = _case_times(cases)
    if not times:
        return no_data(subtitle="No completed cases")

    avg = average(times)
    previous_times = _case_times(previous_cases) if previous_cases else []
    delta, delta_type = calculate_delta(
        avg, average(previous_times) if previous_times else None, lower_is_better=True
    )
    return KPIResult(
        value=whole(avg),
        display_value=format_minutes(avg),
        subtitle=f"{len(times)} completed cases",
        delta=delta,
        delta_type=delta_type,
        sample_count=len(times),
    )
