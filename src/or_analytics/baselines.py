"""Historical baselines that statistical flag rules compare against.

Facility keys are ``metric`` and ``metric:procedure``; personal keys are
``metric:surgeon`` and ``metric:surgeon:procedure``. A bucket becomes a
baseline only with enough samples.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence

from .domain import BaselineEntry, FlagBaselines, FlagRule, SurgicalCase
from .kpis.turnover import same_room_turnovers
from .metrics import (
    ALLOW_ZERO_OR_NEGATIVE,
    CROSS_CASE_METRICS,
    extract_metric_value,
)
from .milestones import MilestoneMap, build_milestone_map
from .models import MIN_BASELINE_SAMPLES, AnalyticsConfig
from .stats import median, std_dev

logger = logging.getLogger(__name__)


def baseline_entry(values: Sequence[float], keep_values: bool = False) -> BaselineEntry | None:
    """Summarize ``values``; ``None`` below the minimum sample count."""
    if len(values) < MIN_BASELINE_SAMPLES:
        return None
    mid = median(values)
    spread = std_dev(values)
    if mid is None or spread is None:
        return None
    return BaselineEntry(
        median=mid,
        std_dev=spread,
        count=len(values),
        values=tuple(sorted(values)) if keep_values else None,
    )


def _entries(buckets: Mapping[str, list[float]], keep_values: bool) -> dict[str, BaselineEntry]:
    entries = {}
    for key, values in buckets.items():
        entry = baseline_entry(values, keep_values)
        if entry is not None:
            entries[key] = entry
    return entries


def _metric_value(
    case: SurgicalCase,
    milestones: MilestoneMap,
    metric: str,
    source: FlagRule | None,
) -> float | None:
    if source is not None and source.cost_category_id:
        return case.category_costs.get(source.cost_category_id)
    if source is not None and source.start_milestone and source.end_milestone:
        return extract_metric_value(
            case, milestones, metric, source.start_milestone, source.end_milestone
        )
    return extract_metric_value(case, milestones, metric)


def build_baselines(
    historical_cases: Iterable[SurgicalCase],
    metrics: Iterable[str],
    needs_percentile_values: bool = False,
    sources: Mapping[str, FlagRule] | None = None,
) -> FlagBaselines:
    """Median and standard deviation per metric bucket.

    ``sources`` maps a metric id to the rule that defines it when the metric
    is not in the named table, such as a custom milestone pair or a cost
    category. Sorted values are kept only when ``needs_percentile_values``.
    """
    metrics = [m for m in dict.fromkeys(metrics) if m not in CROSS_CASE_METRICS]
    sources = sources or {}
    facility: dict[str, list[float]] = defaultdict(list)
    personal: dict[str, list[float]] = defaultdict(list)

    for case in historical_cases:
        milestones = build_milestone_map(case)
        surgeon = case.surgeon_id
        procedure = case.procedure_type_id

        for metric in metrics:
            value = _metric_value(case, milestones, metric, sources.get(metric))
            if value is None:
                continue
            if metric not in ALLOW_ZERO_OR_NEGATIVE and value <= 0:
                continue

            facility[metric].append(value)
            if procedure:
                facility[f"{metric}:{procedure}"].append(value)
            if surgeon:
                personal[f"{metric}:{surgeon}"].append(value)
                if procedure:
                    personal[f"{metric}:{surgeon}:{procedure}"].append(value)

    baselines = FlagBaselines(
        facility=_entries(facility, needs_percentile_values),
        personal=_entries(personal, needs_percentile_values),
    )
    logger.debug(
        "Built %d facility and %d personal baselines for %d metrics",
        len(baselines.facility),
        len(baselines.personal),
        len(metrics),
    )
    return baselines


def build_turnover_baseline(
    historical_cases: Sequence[SurgicalCase], config: AnalyticsConfig | None = None
) -> BaselineEntry | None:
    """Facility-wide baseline of same-room turnovers."""
    minutes = [d.turnover_minutes for d in same_room_turnovers(historical_cases, config)]
    return baseline_entry(minutes)
