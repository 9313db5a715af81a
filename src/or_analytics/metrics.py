"""Named metric table used by baselines and flag rules.

Every metric resolves to a number for one case, or ``None`` when the case
lacks the data. Cross-case metrics (turnover, room idle gap, excess time
cost) need context beyond a single case and are resolved by the flag engine.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, tzinfo
from enum import StrEnum

from .domain import MilestoneName as M
from .domain import SurgicalCase
from .milestones import MilestoneMap, scheduled_start
from .stats import diff_minutes

# Core milestones expected in every case, in sequence order
CORE_MILESTONE_SEQUENCE: tuple[M, ...] = (
    M.PATIENT_IN,
    M.ANES_START,
    M.ANES_END,
    M.PREP_DRAPE_COMPLETE,
    M.INCISION,
    M.CLOSING,
    M.CLOSING_COMPLETE,
    M.PATIENT_OUT,
)

# Canonical milestone pairs of the timing metrics
METRIC_MILESTONE_PAIRS: dict[str, tuple[M, M]] = {
    "total_case_time": (M.PATIENT_IN, M.PATIENT_OUT),
    "surgical_time": (M.INCISION, M.CLOSING),
    "pre_op_time": (M.PATIENT_IN, M.INCISION),
    "anesthesia_time": (M.ANES_START, M.ANES_END),
    "closing_time": (M.CLOSING, M.CLOSING_COMPLETE),
    "emergence_time": (M.CLOSING_COMPLETE, M.PATIENT_OUT),
    "surgeon_readiness_gap": (M.PREP_DRAPE_COMPLETE, M.INCISION),
    "prep_to_incision": (M.PREP_DRAPE_COMPLETE, M.INCISION),
}

# Financial and quality metrics where zero or negative values are meaningful
ALLOW_ZERO_OR_NEGATIVE = frozenset(
    {
        "case_profit",
        "case_margin",
        "profit_per_minute",
        "total_case_cost",
        "reimbursement_variance",
        "or_time_cost",
        "excess_time_cost",
        "missing_milestones",
        "milestone_out_of_order",
    }
)

# Metrics that depend on other cases or on baselines themselves
CROSS_CASE_METRICS = frozenset({"turnover_time", "fcots_delay", "room_idle_gap", "excess_time_cost"})

TURNOVER_METRICS = frozenset({"turnover_time", "room_idle_gap"})


class MetricCategory(StrEnum):
    TIMING = "timing"
    EFFICIENCY = "efficiency"
    FINANCIAL = "financial"
    QUALITY = "quality"


@dataclass(frozen=True)
class MetricDefinition:
    """Static description of a metric that flag rules may reference."""

    id: str
    name: str
    description: str
    category: MetricCategory
    unit: str
    start_milestone: M | None = None
    end_milestone: M | None = None
    supports_median: bool = True


def _timing(metric_id: str, name: str, description: str, category=MetricCategory.TIMING):
    start, end = METRIC_MILESTONE_PAIRS[metric_id]
    return MetricDefinition(metric_id, name, description, category, "min", start, end)


METRICS_CATALOG: tuple[MetricDefinition, ...] = (
    _timing("total_case_time", "Total Case Time", "Duration from patient in to patient out"),
    _timing("surgical_time", "Surgical Time", "Duration from incision to closing"),
    _timing("pre_op_time", "Pre-Op Time", "Duration from patient in to incision"),
    _timing("anesthesia_time", "Anesthesia Induction", "Duration from anesthesia start to end"),
    _timing("closing_time", "Closing Time", "Duration from closing start to closing complete"),
    _timing("emergence_time", "Emergence Time", "Duration from closing complete to patient out"),
    _timing("prep_to_incision", "Prep to Incision", "Duration from prep/drape complete to incision"),
    MetricDefinition(
        "turnover_time",
        "Room Turnover",
        "Patient out of the previous case to patient in, same room",
        MetricCategory.EFFICIENCY,
        "min",
    ),
    MetricDefinition(
        "fcots_delay",
        "First Case Delay",
        "Minutes late for the first case of the day",
        MetricCategory.EFFICIENCY,
        "min",
        supports_median=False,
    ),
    _timing(
        "surgeon_readiness_gap",
        "Surgeon Readiness Gap",
        "Gap between prep/drape complete and incision",
        MetricCategory.EFFICIENCY,
    ),
    MetricDefinition(
        "room_idle_gap",
        "Room Idle Gap",
        "Gap between cases in the same room",
        MetricCategory.EFFICIENCY,
        "min",
    ),
    MetricDefinition(
        "case_profit",
        "Case Profit",
        "Reimbursement minus total cost",
        MetricCategory.FINANCIAL,
        "$",
    ),
    MetricDefinition(
        "case_margin",
        "Case Margin",
        "Profit as a percentage of reimbursement",
        MetricCategory.FINANCIAL,
        "%",
    ),
    MetricDefinition(
        "profit_per_minute",
        "Profit per Minute",
        "Profit divided by total case duration",
        MetricCategory.FINANCIAL,
        "$/min",
    ),
    MetricDefinition(
        "total_case_cost",
        "Total Case Cost",
        "Debits plus OR time cost",
        MetricCategory.FINANCIAL,
        "$",
    ),
    MetricDefinition(
        "reimbursement_variance",
        "Reimbursement Variance",
        "Percentage difference between actual and expected reimbursement",
        MetricCategory.FINANCIAL,
        "%",
        supports_median=False,
    ),
    MetricDefinition(
        "or_time_cost",
        "OR Time Cost",
        "Cost of OR time at the facility hourly rate",
        MetricCategory.FINANCIAL,
        "$",
    ),
    MetricDefinition(
        "excess_time_cost",
        "Excess Time Cost",
        "Cost of minutes beyond the median duration at the OR rate",
        MetricCategory.FINANCIAL,
        "$",
        supports_median=False,
    ),
    MetricDefinition(
        "missing_milestones",
        "Missing Milestones",
        "Core milestones without a recorded timestamp",
        MetricCategory.QUALITY,
        "",
        supports_median=False,
    ),
    MetricDefinition(
        "milestone_out_of_order",
        "Milestone Sequence Error",
        "Milestones recorded out of the expected sequence",
        MetricCategory.QUALITY,
        "",
        supports_median=False,
    ),
)

_CATALOG_BY_ID = {m.id: m for m in METRICS_CATALOG}


def get_metric(metric_id: str) -> MetricDefinition | None:
    """Catalog entry for ``metric_id``; ``None`` for dynamic metrics."""
    return _CATALOG_BY_ID.get(metric_id)


def metrics_by_category(category: MetricCategory) -> list[MetricDefinition]:
    return [m for m in METRICS_CATALOG if m.category == category]


def count_missing_milestones(milestones: MilestoneMap) -> int:
    """Number of core milestones without a timestamp."""
    return sum(1 for name in CORE_MILESTONE_SEQUENCE if name not in milestones)


def count_sequence_violations(milestones: MilestoneMap) -> int:
    """Adjacent recorded core milestones whose timestamps go backwards."""
    recorded = [milestones[name] for name in CORE_MILESTONE_SEQUENCE if name in milestones]
    return sum(1 for earlier, later in zip(recorded, recorded[1:]) if later < earlier)


def fcots_delay(case: SurgicalCase, milestones: MilestoneMap, tz: tzinfo = UTC) -> float | None:
    """Minutes from scheduled start to ``patient_in``; negative means early."""
    return diff_minutes(scheduled_start(case, tz), milestones.get(M.PATIENT_IN))


def _case_margin(case: SurgicalCase, _: MilestoneMap) -> float | None:
    stats = case.completion_stats
    if stats is None or stats.profit is None or not stats.reimbursement:
        return None
    return stats.profit / stats.reimbursement * 100


def _profit_per_minute(case: SurgicalCase, _: MilestoneMap) -> float | None:
    stats = case.completion_stats
    if stats is None or stats.profit is None or not stats.total_duration_minutes:
        return None
    return stats.profit / stats.total_duration_minutes


def _total_case_cost(case: SurgicalCase, _: MilestoneMap) -> float | None:
    stats = case.completion_stats
    if stats is None or (stats.total_debits is None and stats.or_time_cost is None):
        return None
    return (stats.total_debits or 0.0) + (stats.or_time_cost or 0.0)


def _reimbursement_variance(case: SurgicalCase, _: MilestoneMap) -> float | None:
    stats = case.completion_stats
    expected = case.expected_reimbursement
    if stats is None or stats.reimbursement is None or not expected:
        return None
    return (stats.reimbursement - expected) / expected * 100


def _stat(field: str) -> Callable[[SurgicalCase, MilestoneMap], float | None]:
    def extract(case: SurgicalCase, _: MilestoneMap) -> float | None:
        if case.completion_stats is None:
            return None
        return getattr(case.completion_stats, field)

    return extract


MetricExtractor = Callable[[SurgicalCase, MilestoneMap], float | None]

_NAMED_METRICS: dict[str, MetricExtractor] = {
    "case_profit": _stat("profit"),
    "case_margin": _case_margin,
    "profit_per_minute": _profit_per_minute,
    "total_case_cost": _total_case_cost,
    "reimbursement_variance": _reimbursement_variance,
    "or_time_cost": _stat("or_time_cost"),
    "missing_milestones": lambda _, m: count_missing_milestones(m),
    "milestone_out_of_order": lambda _, m: count_sequence_violations(m),
}


def _milestone(name: str | M | None) -> M | None:
    if name is None:
        return None
    try:
        return M(name)
    except ValueError:
        return None


def extract_metric_value(
    case: SurgicalCase,
    milestones: MilestoneMap,
    metric: str,
    start_milestone: str | None = None,
    end_milestone: str | None = None,
    tz: tzinfo = UTC,
) -> float | None:
    """Resolve ``metric`` for one case.

    An explicit milestone pair wins over the metric name; an unknown
    milestone name resolves to ``None``. Unknown metrics resolve to ``None``.
    """
    if start_milestone and end_milestone:
        start, end = _milestone(start_milestone), _milestone(end_milestone)
        if start is None or end is None:
            return None
        return diff_minutes(milestones.get(start), milestones.get(end))

    if metric in METRIC_MILESTONE_PAIRS:
        start, end = METRIC_MILESTONE_PAIRS[metric]
        return diff_minutes(milestones.get(start), milestones.get(end))

    if metric == "fcots_delay":
        return fcots_delay(case, milestones, tz)

    extractor = _NAMED_METRICS.get(metric)
    if extractor is None:
        return None
    return extractor(case, milestones)
