"""Milestone normalization: raw milestone events to named timestamp lookups."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from .domain import CaseMilestone, ClosingWorkflow, MilestoneName, SurgeonProfile, SurgicalCase

MilestoneMap = dict[MilestoneName, datetime]

_KNOWN_NAMES = {m.value for m in MilestoneName}


def build_milestone_map(case: SurgicalCase) -> MilestoneMap:
    """Build the name -> timestamp lookup for a case.

    Unknown names and events without a timestamp are ignored. A recorded
    ``surgeon_left`` event wins over the case-level ``surgeon_left_at``.
    """
    milestone_map: MilestoneMap = {}
    for milestone in case.milestones:
        if milestone.recorded_at is None or milestone.name not in _KNOWN_NAMES:
            continue
        milestone_map[MilestoneName(milestone.name)] = milestone.recorded_at

    if case.surgeon_left_at is not None and MilestoneName.SURGEON_LEFT not in milestone_map:
        milestone_map[MilestoneName.SURGEON_LEFT] = case.surgeon_left_at

    return milestone_map


def build_milestone_timestamp_map(
    milestones: Iterable[CaseMilestone],
) -> dict[str, datetime]:
    """Map milestone references to timestamps for the phase engine.

    Entries are keyed by ``facility_milestone_id`` and, when present, also by
    milestone name so phase definitions may reference either.
    """
    timestamps: dict[str, datetime] = {}
    for milestone in milestones:
        if milestone.recorded_at is None:
            continue
        if milestone.facility_milestone_id:
            timestamps[milestone.facility_milestone_id] = milestone.recorded_at
        if milestone.name:
            timestamps.setdefault(milestone.name, milestone.recorded_at)
    return timestamps


def parse_scheduled_datetime(
    scheduled_date: date, start_time: time | None, tz: tzinfo = UTC
) -> datetime | None:
    """Combine a scheduled date and wall-clock start into an aware datetime."""
    if start_time is None:
        return None
    return datetime.combine(scheduled_date, start_time.replace(tzinfo=None), tzinfo=tz)


def scheduled_start(case: SurgicalCase, tz: tzinfo = UTC) -> datetime | None:
    """Scheduled start of a case in the facility time zone."""
    return parse_scheduled_datetime(case.scheduled_date, case.start_time, tz)


def get_surgeon_done_time(
    milestones: MilestoneMap, profile: SurgeonProfile | None = None
) -> datetime | None:
    """Resolve when the surgeon finished a case.

    Priority: recorded departure, then the profile's closing workflow. A
    surgeon who closes is done at ``closing_complete`` (or ``closing``); with a
    PA closing the surgeon leaves ``closing_handoff_minutes`` after closing
    starts.
    """
    if MilestoneName.SURGEON_LEFT in milestones:
        return milestones[MilestoneName.SURGEON_LEFT]

    if profile is None or profile.closing_workflow == ClosingWorkflow.SURGEON_CLOSES:
        return milestones.get(MilestoneName.CLOSING_COMPLETE) or milestones.get(
            MilestoneName.CLOSING
        )

    closing = milestones.get(MilestoneName.CLOSING)
    if closing is not None:
        return closing + timedelta(minutes=profile.closing_handoff_minutes or 0)
    return None


def filter_active_cases(cases: Iterable[SurgicalCase]) -> list[SurgicalCase]:
    """Drop cases excluded from metrics."""
    return [c for c in cases if not c.is_excluded_from_metrics]


def chronological_key(case: SurgicalCase, tz: tzinfo = UTC) -> datetime:
    """Sort key: actual ``patient_in``, else scheduled start, else end of day."""
    patient_in = build_milestone_map(case).get(MilestoneName.PATIENT_IN)
    if patient_in is not None:
        return patient_in
    start = scheduled_start(case, tz)
    if start is not None:
        return start
    return datetime.combine(case.scheduled_date, time.max, tzinfo=tz)


def scheduled_order_key(case: SurgicalCase) -> tuple[bool, time]:
    """Sort key by scheduled start; cases without a start time sort first."""
    return (case.start_time is not None, case.start_time or time.min)
