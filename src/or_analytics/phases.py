"""Phase and sub-phase duration engine.

Phase definitions are flat records; parents are phases with no
``parent_phase_id`` and the hierarchy is rebuilt here by grouping.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime

from .domain import PhaseDefinition, PhaseDuration, PhaseSubphases, SubphaseOffset
from .stats import diff_seconds

ColorResolver = Callable[[str | None], str]

DEFAULT_PHASE_COLORS = {
    "blue": "#3b82f6",
    "teal": "#14b8a6",
    "green": "#22c55e",
    "amber": "#f59e0b",
    "purple": "#a855f7",
    "red": "#ef4444",
    "indigo": "#6366f1",
    "slate": "#64748b",
}


def resolve_phase_color(color_key: str | None) -> str:
    """Default color lookup; unknown keys fall back to slate."""
    return DEFAULT_PHASE_COLORS.get(color_key or "", DEFAULT_PHASE_COLORS["slate"])


def group_phases(
    definitions: Iterable[PhaseDefinition],
) -> tuple[list[PhaseDefinition], dict[str, list[PhaseDefinition]]]:
    """Split definitions into ordered parents and ordered children per parent."""
    ordered = sorted(definitions, key=lambda d: d.display_order)
    parents = [d for d in ordered if d.parent_phase_id is None]
    children: dict[str, list[PhaseDefinition]] = defaultdict(list)
    for definition in ordered:
        if definition.parent_phase_id is not None:
            children[definition.parent_phase_id].append(definition)
    return parents, dict(children)


def compute_phase_durations(
    definitions: Iterable[PhaseDefinition],
    timestamps: Mapping[str, datetime],
) -> list[PhaseDuration]:
    """Duration of every phase, sorted by display order.

    A duration is ``None`` when either milestone is missing or the interval
    is not positive.
    """
    durations = []
    for definition in sorted(definitions, key=lambda d: d.display_order):
        seconds = diff_seconds(
            timestamps.get(definition.start_milestone_id),
            timestamps.get(definition.end_milestone_id),
        )
        if seconds is not None and seconds <= 0:
            seconds = None
        durations.append(
            PhaseDuration(
                phase_id=definition.id,
                name=definition.name,
                display_name=definition.display_name,
                display_order=definition.display_order,
                color_key=definition.color_key,
                parent_phase_id=definition.parent_phase_id,
                duration_seconds=seconds,
            )
        )
    return durations


def compute_subphase_offsets(
    definitions: Sequence[PhaseDefinition],
    durations: Iterable[PhaseDuration],
    timestamps: Mapping[str, datetime],
    resolve_color: ColorResolver = resolve_phase_color,
) -> list[PhaseSubphases]:
    """Lay out each parent's sub-phases relative to the parent's start.

    Parents without a duration are skipped with all their children. A child
    running past its parent's end has its duration clamped, never its offset.
    """
    duration_by_id = {d.phase_id: d.duration_seconds for d in durations}
    parents, children_by_parent = group_phases(definitions)

    result = []
    for parent in parents:
        children = children_by_parent.get(parent.id)
        if not children:
            continue
        parent_duration = duration_by_id.get(parent.id)
        parent_start = timestamps.get(parent.start_milestone_id)
        if parent_duration is None or parent_start is None:
            continue

        subphases = []
        for child in children:
            child_duration = duration_by_id.get(child.id)
            child_start = timestamps.get(child.start_milestone_id)
            if child_duration is None or child_start is None:
                continue
            offset = diff_seconds(parent_start, child_start)
            if offset is None:
                continue
            if offset + child_duration > parent_duration:
                child_duration = parent_duration - offset
            if child_duration <= 0:
                continue
            subphases.append(
                SubphaseOffset(
                    phase_id=child.id,
                    label=child.display_name,
                    color=resolve_color(child.color_key),
                    offset_seconds=offset,
                    duration_seconds=child_duration,
                )
            )

        if subphases:
            result.append(PhaseSubphases(phase_id=parent.id, subphases=subphases))
    return result
