"""Room turnover KPIs.

Same-room turnover walks each room-day in scheduled order. Flip-room
turnover builds two independent projections of a day, surgeon timelines and
room timelines, and measures each flip against the destination room's
previous occupant rather than the surgeon's own previous case.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from datetime import date
from itertools import pairwise

from ..domain import MilestoneName, SurgicalCase
from ..milestones import (
    build_milestone_map,
    chronological_key,
    get_surgeon_done_time,
    scheduled_order_key,
)
from ..models import AnalyticsConfig
from ..stats import average, calculate_delta, diff_minutes, median
from .common import (
    build_daily_tracker,
    color_lower_is_better,
    group_by,
    no_data,
    resolve_config,
    room_day_key,
    surgeon_day_key,
    whole,
)
from .results import KPIResult, SurgicalTurnoverResult, TurnoverDetail, TurnoverResult

logger = logging.getLogger(__name__)

Aggregate = Callable[[list[float]], float]


def _is_plausible(minutes: float | None, config: AnalyticsConfig) -> bool:
    """Turnovers at or below zero, or at or above the cutoff, are data artifacts."""
    return minutes is not None and 0 < minutes < config.turnover_max_minutes


def _detail(
    day: date,
    room_case: SurgicalCase,
    previous: SurgicalCase,
    following: SurgicalCase,
    minutes: float,
) -> TurnoverDetail:
    return TurnoverDetail(
        date=day.isoformat(),
        room_id=room_case.or_room_id,
        room_name=room_case.display_room,
        from_case_id=previous.id,
        from_case_number=previous.case_number,
        to_case_id=following.id,
        to_case_number=following.case_number,
        surgeon_id=following.surgeon_id,
        turnover_minutes=minutes,
    )


def same_room_turnovers(
    cases: Sequence[SurgicalCase], config: AnalyticsConfig | None = None
) -> list[TurnoverDetail]:
    """Consecutive-case turnovers within each room-day, in scheduled order."""
    config = resolve_config(config)
    active = [c for c in cases if not c.is_cancelled]

    details = []
    for (day, _room), room_cases in group_by(active, room_day_key).items():
        ordered = sorted(room_cases, key=scheduled_order_key)
        for previous, following in pairwise(ordered):
            minutes = diff_minutes(
                build_milestone_map(previous).get(MilestoneName.PATIENT_OUT),
                build_milestone_map(following).get(MilestoneName.PATIENT_IN),
            )
            if _is_plausible(minutes, config):
                details.append(_detail(day, following, previous, following, minutes))
    return details


def flip_room_turnovers(
    cases: Sequence[SurgicalCase], config: AnalyticsConfig | None = None
) -> list[TurnoverDetail]:
    """Turnovers for every flip, measured in the destination room.

    A flip is a room change between consecutive cases of a surgeon's
    chronological day. The turnover runs from the destination room's
    previous occupant (of any surgeon) leaving to the flip case's patient
    entering. A flip into a room with no earlier case that day has no
    turnover.
    """
    config = resolve_config(config)
    tz = config.tz
    active = [c for c in cases if not c.is_cancelled]

    def chronological(c: SurgicalCase):
        return chronological_key(c, tz)

    room_timelines = {
        key: sorted(room_cases, key=chronological)
        for key, room_cases in group_by(active, room_day_key).items()
    }
    surgeon_timelines = {
        key: sorted(surgeon_cases, key=chronological)
        for key, surgeon_cases in group_by(active, surgeon_day_key).items()
    }

    position_in_room = {
        case.id: index
        for timeline in room_timelines.values()
        for index, case in enumerate(timeline)
    }

    details = []
    for (_surgeon, day), timeline in surgeon_timelines.items():
        for previous_own, flip_case in pairwise(timeline):
            if not previous_own.or_room_id or not flip_case.or_room_id:
                continue
            if previous_own.or_room_id == flip_case.or_room_id:
                continue

            room_timeline = room_timelines[(day, flip_case.or_room_id)]
            index = position_in_room[flip_case.id]
            if index == 0:
                continue
            predecessor = room_timeline[index - 1]

            minutes = diff_minutes(
                build_milestone_map(predecessor).get(MilestoneName.PATIENT_OUT),
                build_milestone_map(flip_case).get(MilestoneName.PATIENT_IN),
            )
            if _is_plausible(minutes, config):
                details.append(_detail(day, flip_case, predecessor, flip_case, minutes))

    logger.debug("Flip-room turnover: %d qualifying flips", len(details))
    return details


def _turnover_result(
    details: list[TurnoverDetail],
    previous_details: list[TurnoverDetail] | None,
    config: AnalyticsConfig,
    aggregate: Aggregate,
    noun: str,
    empty_subtitle: str,
) -> TurnoverResult:
    threshold = config.turnover_threshold_minutes
    target = config.turnover_compliance_target
    if not details:
        return no_data(TurnoverResult, subtitle=empty_subtitle, target=target)

    minutes = [d.turnover_minutes for d in details]
    value = aggregate(minutes)
    compliant = sum(1 for m in minutes if m <= threshold)
    compliance_rate = whole(compliant / len(minutes) * 100)

    previous_value = None
    if previous_details:
        previous_value = aggregate([d.turnover_minutes for d in previous_details])
    delta, delta_type = calculate_delta(value, previous_value, lower_is_better=True)

    daily: dict[date, list[float]] = defaultdict(list)
    for d in details:
        daily[date.fromisoformat(d.date)].append(d.turnover_minutes)
    daily_data = build_daily_tracker(
        daily,
        lambda values: color_lower_is_better(
            aggregate(values), threshold, threshold + config.turnover_yellow_band_minutes
        ),
        lambda day, values: f"{day}: {whole(aggregate(values))} min ({len(values)} {noun})",
    )

    return TurnoverResult(
        value=whole(value),
        display_value=f"{whole(value)} min",
        subtitle=f"{compliance_rate}% under {threshold:g} min target · {len(minutes)} {noun}",
        target=target,
        target_met=compliance_rate >= target,
        delta=delta,
        delta_type=delta_type,
        daily_data=daily_data,
        sample_count=len(minutes),
        details=details,
        compliant_count=compliant,
        non_compliant_count=len(minutes) - compliant,
        compliance_rate=compliance_rate,
    )


def _median(values: list[float]) -> float:
    result = median(values)
    return result if result is not None else 0.0


def calculate_turnover_time(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> TurnoverResult:
    """Mean same-room turnover with compliance against the threshold."""
    config = resolve_config(config)
    previous = same_room_turnovers(previous_cases, config) if previous_cases else None
    return _turnover_result(
        same_room_turnovers(cases, config),
        previous,
        config,
        aggregate=average,
        noun="turnovers",
        empty_subtitle="No same-room turnovers",
    )


def calculate_flip_room_turnover(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> TurnoverResult:
    """Median flip-room turnover with compliance against the threshold."""
    config = resolve_config(config)
    previous = flip_room_turnovers(previous_cases, config) if previous_cases else None
    return _turnover_result(
        flip_room_turnovers(cases, config),
        previous,
        config,
        aggregate=_median,
        noun="flips",
        empty_subtitle="No flip-room turnovers",
    )


def _surgical_transitions(
    cases: Sequence[SurgicalCase], config: AnalyticsConfig
) -> tuple[dict[date, list[float]], dict[date, list[float]]]:
    """Surgeon-done to next-incision minutes per day, split (same room, flip)."""
    same_room: dict[date, list[float]] = defaultdict(list)
    flip_room: dict[date, list[float]] = defaultdict(list)

    for (_surgeon, day), surgeon_cases in group_by(cases, surgeon_day_key).items():
        mapped = [(c, build_milestone_map(c)) for c in surgeon_cases]
        ordered = sorted(
            ((c, m) for c, m in mapped if MilestoneName.INCISION in m),
            key=lambda pair: pair[1][MilestoneName.INCISION],
        )
        for (current, current_map), (following, following_map) in pairwise(ordered):
            done = get_surgeon_done_time(current_map, current.surgeon_profile)
            minutes = diff_minutes(done, following_map[MilestoneName.INCISION])
            if minutes is None or minutes > config.turnover_max_minutes:
                continue
            # Overlap means the next incision came before the surgeon was done
            effective = max(0.0, minutes)
            if current.or_room_id == following.or_room_id:
                same_room[day].append(effective)
            else:
                flip_room[day].append(effective)

    return dict(same_room), dict(flip_room)


def _transition_kpi(
    daily: dict[date, list[float]],
    previous_daily: dict[date, list[float]] | None,
    target: float,
    config: AnalyticsConfig,
    noun: str,
    empty_subtitle: str,
) -> KPIResult:
    values = [v for day_values in daily.values() for v in day_values]
    if not values:
        return no_data(subtitle=empty_subtitle, target=target)

    avg = average(values)
    compliance = whole(sum(1 for v in values if v <= target) / len(values) * 100)

    previous_values = (
        [v for day_values in previous_daily.values() for v in day_values]
        if previous_daily
        else []
    )
    previous_avg = average(previous_values) if previous_values else None
    delta, delta_type = calculate_delta(avg, previous_avg, lower_is_better=True)

    return KPIResult(
        value=whole(avg),
        display_value=f"{whole(avg)} min",
        subtitle=f"{compliance}% ≤{target:g} min · {len(values)} {noun}",
        target=target,
        target_met=avg <= target,
        delta=delta,
        delta_type=delta_type,
        daily_data=build_daily_tracker(
            daily,
            lambda day_values: color_lower_is_better(
                average(day_values), target, target + config.turnover_yellow_band_minutes
            ),
            lambda day, day_values: (
                f"{day}: {whole(average(day_values))} min avg ({len(day_values)} {noun})"
            ),
        ),
        sample_count=len(values),
    )


def calculate_surgical_turnovers(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> SurgicalTurnoverResult:
    """Surgeon-side transitions: when the surgeon is done to the next incision.

    Consecutive cases of a surgeon-day are ordered by incision; the
    transition is same-room or flip depending on whether the room changed.
    """
    config = resolve_config(config)
    same_room, flip_room = _surgical_transitions(cases, config)
    previous_same, previous_flip = (
        _surgical_transitions(previous_cases, config) if previous_cases else (None, None)
    )

    same_count = sum(len(v) for v in same_room.values())
    flip_count = sum(len(v) for v in flip_room.values())

    return SurgicalTurnoverResult(
        standard_turnover=_transition_kpi(
            same_room,
            previous_same,
            config.surgical_turnover_same_room_target_minutes,
            config,
            noun="turnovers",
            empty_subtitle="No same-room turnovers",
        ),
        flip_room_time=_transition_kpi(
            flip_room,
            previous_flip,
            config.surgical_turnover_flip_target_minutes,
            config,
            noun="flips",
            empty_subtitle="No flip room data",
        ),
        total_transitions=same_count + flip_count,
        same_room_count=same_count,
        flip_room_count=flip_count,
    )
