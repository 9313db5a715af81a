"""Heuristic anomaly flags for a surgeon's or a room's day.

Compares each case against fixed thresholds and historical per-procedure
medians: late first starts, long turnovers, extended phases and fast cases.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import UTC, tzinfo

from .domain import (
    AnomalyFlag,
    AnomalySeverity,
    AnomalyType,
    MilestoneName,
    PhaseDefinition,
    SurgicalCase,
)
from .milestones import (
    build_milestone_map,
    build_milestone_timestamp_map,
    chronological_key,
    scheduled_start,
)
from .models import MIN_BASELINE_SAMPLES, FlagThresholds
from .phases import compute_phase_durations
from .stats import diff_minutes, diff_seconds, median, round_half_up

ProcedureMedians = dict[str, float]

TOTAL_KEY = "total"


def _whole(value: float) -> int:
    return int(round_half_up(value))


def _total_or_seconds(case: SurgicalCase) -> float | None:
    milestones = build_milestone_map(case)
    return diff_seconds(
        milestones.get(MilestoneName.PATIENT_IN), milestones.get(MilestoneName.PATIENT_OUT)
    )


def compute_procedure_medians(
    cases: Iterable[SurgicalCase], definitions: Sequence[PhaseDefinition]
) -> ProcedureMedians:
    """Median seconds keyed ``procedure:phase`` and ``procedure:total``.

    Only positive durations count, and a key needs at least three samples.
    """
    buckets: dict[str, list[float]] = defaultdict(list)
    for case in cases:
        procedure = case.procedure_type_id
        if not procedure:
            continue

        total = _total_or_seconds(case)
        if total is not None and total > 0:
            buckets[f"{procedure}:{TOTAL_KEY}"].append(total)

        timestamps = build_milestone_timestamp_map(case.milestones)
        for phase in compute_phase_durations(definitions, timestamps):
            if phase.duration_seconds is not None and phase.duration_seconds > 0:
                buckets[f"{procedure}:{phase.phase_id}"].append(phase.duration_seconds)

    medians: ProcedureMedians = {}
    for key, values in buckets.items():
        if len(values) < MIN_BASELINE_SAMPLES:
            continue
        value = median(values)
        if value is not None:
            medians[key] = value
    return medians


def _late_start(case: SurgicalCase, thresholds: FlagThresholds, tz: tzinfo) -> AnomalyFlag | None:
    delay = diff_minutes(
        scheduled_start(case, tz), build_milestone_map(case).get(MilestoneName.PATIENT_IN)
    )
    if delay is None or delay <= 1:
        return None
    severity = (
        AnomalySeverity.WARNING if delay > thresholds.late_start_minutes else AnomalySeverity.INFO
    )
    return AnomalyFlag(
        case_id=case.id,
        type=AnomalyType.LATE_START,
        severity=severity,
        label="Late Start",
        detail=f"+{_whole(delay)}m vs scheduled",
        icon="🕐",
    )


def find_previous_case_in_room(
    case: SurgicalCase, day_cases: Iterable[SurgicalCase]
) -> SurgicalCase | None:
    """The same-room case whose patient entered most recently before this one."""
    if not case.or_room_id:
        return None
    patient_in = build_milestone_map(case).get(MilestoneName.PATIENT_IN)
    if patient_in is None:
        return None

    previous = None
    previous_in = None
    for other in day_cases:
        if other.id == case.id or other.or_room_id != case.or_room_id:
            continue
        other_in = build_milestone_map(other).get(MilestoneName.PATIENT_IN)
        if other_in is None or other_in >= patient_in:
            continue
        if previous_in is None or other_in > previous_in:
            previous, previous_in = other, other_in
    return previous


def _long_turnover(
    case: SurgicalCase, day_cases: Sequence[SurgicalCase], thresholds: FlagThresholds
) -> AnomalyFlag | None:
    previous = find_previous_case_in_room(case, day_cases)
    if previous is None:
        return None
    gap = diff_minutes(
        build_milestone_map(previous).get(MilestoneName.PATIENT_OUT),
        build_milestone_map(case).get(MilestoneName.PATIENT_IN),
    )
    if gap is None or gap <= thresholds.long_turnover_minutes:
        return None
    return AnomalyFlag(
        case_id=case.id,
        type=AnomalyType.LONG_TURNOVER,
        severity=AnomalySeverity.WARNING,
        label="Long Turnover",
        detail=f"{_whole(gap)}m between cases",
        icon="⏳",
    )


def _extended_phases(
    case: SurgicalCase,
    medians: ProcedureMedians,
    definitions: Sequence[PhaseDefinition],
    thresholds: FlagThresholds,
) -> list[AnomalyFlag]:
    flags = []
    timestamps = build_milestone_timestamp_map(case.milestones)
    for phase in compute_phase_durations(definitions, timestamps):
        if phase.duration_seconds is None:
            continue
        phase_median = medians.get(f"{case.procedure_type_id}:{phase.phase_id}")
        if not phase_median:
            continue

        is_subphase = phase.parent_phase_id is not None
        limit = thresholds.subphase_extended_pct if is_subphase else thresholds.phase_extended_pct
        ratio = (phase.duration_seconds - phase_median) / phase_median
        if ratio <= limit:
            continue
        flags.append(
            AnomalyFlag(
                case_id=case.id,
                type=AnomalyType.EXTENDED_SUBPHASE if is_subphase else AnomalyType.EXTENDED_PHASE,
                severity=AnomalySeverity.CAUTION,
                label=f"Extended {phase.display_name}",
                detail=(
                    f"{_whole(phase.duration_seconds / 60)}m vs "
                    f"{_whole(phase_median / 60)}m med (+{_whole(ratio * 100)}%)"
                ),
                icon="⚠️",
            )
        )
    return flags


def _fast_case(
    case: SurgicalCase, medians: ProcedureMedians, thresholds: FlagThresholds
) -> AnomalyFlag | None:
    total = _total_or_seconds(case)
    total_median = medians.get(f"{case.procedure_type_id}:{TOTAL_KEY}")
    if total is None or not total_median or total_median <= 0:
        return None
    ratio = (total_median - total) / total_median
    if ratio <= thresholds.fast_case_pct:
        return None
    return AnomalyFlag(
        case_id=case.id,
        type=AnomalyType.FAST_CASE,
        severity=AnomalySeverity.POSITIVE,
        label="Fast Case",
        detail=(
            f"{_whole(total / 60)}m vs {_whole(total_median / 60)}m med "
            f"(-{_whole(ratio * 100)}%)"
        ),
        icon="⚡",
    )


def detect_case_flags(
    case: SurgicalCase,
    index: int,
    day_cases: Sequence[SurgicalCase],
    medians: ProcedureMedians,
    definitions: Sequence[PhaseDefinition],
    thresholds: FlagThresholds | None = None,
    tz: tzinfo = UTC,
) -> list[AnomalyFlag]:
    """Anomaly flags for one case at position ``index`` of its chronological day.

    Only the day's first case is checked for a late start.
    """
    thresholds = thresholds or FlagThresholds()
    flags: list[AnomalyFlag] = []

    if index == 0 and (flag := _late_start(case, thresholds, tz)) is not None:
        flags.append(flag)
    if (flag := _long_turnover(case, day_cases, thresholds)) is not None:
        flags.append(flag)
    if case.procedure_type_id:
        flags.extend(_extended_phases(case, medians, definitions, thresholds))
        if (flag := _fast_case(case, medians, thresholds)) is not None:
            flags.append(flag)
    return flags


def detect_day_flags(
    day_cases: Sequence[SurgicalCase],
    medians: ProcedureMedians,
    definitions: Sequence[PhaseDefinition],
    thresholds: FlagThresholds | None = None,
    tz: tzinfo = UTC,
) -> dict[str, list[AnomalyFlag]]:
    """Flags per case id, with cases ordered chronologically."""
    ordered = sorted(day_cases, key=lambda c: chronological_key(c, tz))
    return {
        case.id: detect_case_flags(case, index, ordered, medians, definitions, thresholds, tz)
        for index, case in enumerate(ordered)
    }


def aggregate_day_flags(
    cases: Iterable[SurgicalCase], flags_by_case: dict[str, list[AnomalyFlag]]
) -> list[tuple[str, AnomalyFlag]]:
    """Flatten per-case flags into (case number, flag) pairs in case order."""
    return [
        (case.case_number, flag)
        for case in cases
        for flag in flags_by_case.get(case.id, [])
    ]
