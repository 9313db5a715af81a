"""Surgeon idle time between consecutive cases."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from itertools import pairwise

from ..domain import MilestoneName as M
from ..domain import SurgicalCase
from ..milestones import build_milestone_map, get_surgeon_done_time, scheduled_order_key
from ..models import AnalyticsConfig
from ..stats import average, calculate_delta, diff_minutes
from .common import NO_DATA, group_by, resolve_config, surgeon_day_key, whole
from .results import (
    GapType,
    IdleGap,
    KPIResult,
    SurgeonDayAnalysis,
    SurgeonDayCase,
    SurgeonIdleResult,
)

logger = logging.getLogger(__name__)


def _idle_gap(
    current: SurgicalCase, following: SurgicalCase, config: AnalyticsConfig
) -> IdleGap | None:
    """Idle between the surgeon finishing ``current`` and starting ``following``.

    On a room switch the surgeon waits for the next patient to arrive; in the
    same room they wait for the next incision.
    """
    current_map = build_milestone_map(current)
    following_map = build_milestone_map(following)
    done = get_surgeon_done_time(current_map, current.surgeon_profile)

    room_switch = current.or_room_id != following.or_room_id
    if room_switch:
        next_start = following_map.get(M.PATIENT_IN)
    else:
        next_start = following_map.get(M.INCISION) or following_map.get(M.PATIENT_IN)

    idle = diff_minutes(done, next_start)
    if idle is None or idle <= 0:
        return None

    gap_type = GapType.FLIP if room_switch else GapType.SAME_ROOM
    buffer = (
        config.idle_flip_buffer_minutes
        if gap_type == GapType.FLIP
        else config.idle_same_room_buffer_minutes
    )
    return IdleGap(
        from_case_id=current.id,
        from_case=current.case_number,
        to_case_id=following.id,
        to_case=following.case_number,
        idle_minutes=idle,
        optimal_call_delta=max(0.0, idle - buffer),
        gap_type=gap_type,
        from_room=current.display_room,
        to_room=following.display_room,
    )


def _day_case(case: SurgicalCase) -> SurgeonDayCase:
    milestones = build_milestone_map(case)
    return SurgeonDayCase(
        case_id=case.id,
        case_number=case.case_number,
        room_id=case.or_room_id or "",
        room_name=case.display_room,
        scheduled_start=case.start_time.isoformat() if case.start_time else "",
        patient_in=milestones.get(M.PATIENT_IN),
        patient_out=milestones.get(M.PATIENT_OUT),
    )


def surgeon_day_analyses(
    cases: Sequence[SurgicalCase], config: AnalyticsConfig | None = None
) -> list[SurgeonDayAnalysis]:
    """Idle gaps for every surgeon-day with at least two scheduled cases.

    Cancelled cases are left out of the timelines, and surgeon-days without
    a positive gap are left out of the result. Results are sorted by total
    idle time, largest first.
    """
    config = resolve_config(config)
    analyses = []
    for (surgeon_id, day), surgeon_cases in group_by(cases, surgeon_day_key).items():
        ordered = sorted(
            (c for c in surgeon_cases if c.start_time is not None and not c.is_cancelled),
            key=scheduled_order_key,
        )
        if len(ordered) < 2:
            continue

        gaps = [
            gap
            for current, following in pairwise(ordered)
            if (gap := _idle_gap(current, following, config)) is not None
        ]
        if not gaps:
            continue

        rooms = {c.or_room_id for c in ordered if c.or_room_id}
        analyses.append(
            SurgeonDayAnalysis(
                surgeon_id=surgeon_id,
                surgeon_name=ordered[0].surgeon_name or "Unknown",
                date=day.isoformat(),
                is_flip_room=len(rooms) >= 2,
                cases=[_day_case(c) for c in ordered],
                idle_gaps=gaps,
                avg_idle_time=average(g.idle_minutes for g in gaps),
                total_idle_time=sum(g.idle_minutes for g in gaps),
            )
        )

    analyses.sort(key=lambda a: a.total_idle_time, reverse=True)
    return analyses


def _combined_kpi(
    idle: list[float], analyses: list[SurgeonDayAnalysis], target: float
) -> KPIResult:
    if not idle:
        return KPIResult(
            display_value=NO_DATA, subtitle="No surgeon idle gaps found", target=target
        )
    avg = average(idle)
    return KPIResult(
        value=whole(avg),
        display_value=f"{whole(avg)} min",
        subtitle=f"{len(analyses)} surgeon-days · {len(idle)} gaps analyzed",
        target=target,
        target_met=avg <= target,
        sample_count=len(idle),
    )


def _flip_kpi(
    gaps: list[IdleGap], analyses: list[SurgeonDayAnalysis], target: float
) -> KPIResult:
    if not gaps:
        # Nothing to improve when no flips happened
        return KPIResult(
            display_value=NO_DATA,
            subtitle="No flip room transitions found",
            target=target,
            target_met=True,
        )
    avg = average(g.idle_minutes for g in gaps)
    avg_delta = average(g.optimal_call_delta for g in gaps)
    if avg_delta > 0:
        subtitle = f"Call patients {whole(avg_delta)} min earlier · {len(gaps)} transitions"
    else:
        flip_days = sum(1 for a in analyses if a.is_flip_room)
        subtitle = f"{len(gaps)} transitions · {flip_days} surgeon-days"
    return KPIResult(
        value=whole(avg),
        display_value=f"{whole(avg)} min",
        subtitle=subtitle,
        target=target,
        target_met=avg <= target,
        sample_count=len(gaps),
    )


def _same_room_kpi(
    gaps: list[IdleGap],
    analyses: list[SurgeonDayAnalysis],
    target: float,
    alert_minutes: float,
) -> KPIResult:
    if not gaps:
        return KPIResult(
            display_value=NO_DATA,
            subtitle="No same-room gaps found",
            target=target,
            target_met=True,
        )
    avg = average(g.idle_minutes for g in gaps)
    high_surgeons = {
        a.surgeon_id
        for a in analyses
        if any(
            g.gap_type == GapType.SAME_ROOM and g.idle_minutes > alert_minutes
            for g in a.idle_gaps
        )
    }
    if high_surgeons:
        plural = "s" if len(high_surgeons) > 1 else ""
        subtitle = (
            f"{len(high_surgeons)} surgeon{plural} with >{alert_minutes:g} min gaps "
            f"· {len(gaps)} gaps"
        )
    else:
        subtitle = f"{len(gaps)} same-room gaps analyzed"
    return KPIResult(
        value=whole(avg),
        display_value=f"{whole(avg)} min",
        subtitle=subtitle,
        target=target,
        target_met=avg <= target,
        sample_count=len(gaps),
    )


def _with_delta(
    kpi: KPIResult, current: list[IdleGap], previous: list[IdleGap] | None
) -> KPIResult:
    if not current or not previous:
        return kpi
    delta, delta_type = calculate_delta(
        average(g.idle_minutes for g in current),
        average(g.idle_minutes for g in previous),
        lower_is_better=True,
    )
    return kpi.model_copy(update={"delta": delta, "delta_type": delta_type})


def _split_gaps(
    analyses: list[SurgeonDayAnalysis],
) -> tuple[list[IdleGap], list[IdleGap], list[IdleGap]]:
    gaps = [g for a in analyses for g in a.idle_gaps]
    flip_gaps = [g for g in gaps if g.gap_type == GapType.FLIP]
    same_room_gaps = [g for g in gaps if g.gap_type == GapType.SAME_ROOM]
    return gaps, flip_gaps, same_room_gaps


def calculate_surgeon_idle_time(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> SurgeonIdleResult:
    """Idle time between a surgeon's consecutive cases, combined and split.

    Flip gaps run from the surgeon being done to the next patient entering
    the other room; same-room gaps run to the next incision. Deltas compare
    average idle minutes against ``previous_cases``, lower being better.
    """
    config = resolve_config(config)
    analyses = surgeon_day_analyses(cases, config)
    gaps, flip_gaps, same_room_gaps = _split_gaps(analyses)
    logger.debug(
        "Surgeon idle: %d surgeon-days, %d flip gaps, %d same-room gaps",
        len(analyses),
        len(flip_gaps),
        len(same_room_gaps),
    )

    previous: tuple[list[IdleGap] | None, ...] = (None, None, None)
    if previous_cases:
        previous = _split_gaps(surgeon_day_analyses(previous_cases, config))
    previous_gaps, previous_flip, previous_same_room = previous

    combined = _combined_kpi(
        [g.idle_minutes for g in gaps], analyses, config.idle_combined_target_minutes
    )
    flip = _flip_kpi(flip_gaps, analyses, config.idle_flip_target_minutes)
    same_room = _same_room_kpi(
        same_room_gaps,
        analyses,
        config.idle_same_room_target_minutes,
        config.idle_same_room_alert_minutes,
    )
    return SurgeonIdleResult(
        combined=_with_delta(combined, gaps, previous_gaps),
        flip=_with_delta(flip, flip_gaps, previous_flip),
        same_room=_with_delta(same_room, same_room_gaps, previous_same_room),
        details=analyses,
    )
