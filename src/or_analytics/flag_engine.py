"""Rule-based case flagging.

Evaluation runs in two phases. The first builds everything that depends on
the whole batch: baselines, the turnover baseline, first cases and per-case
turnovers. The second evaluates each case on its own and can run on a
thread pool.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable, Iterable, Sequence
from collections.abc import Set as AbstractSet
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, tzinfo

from .baselines import build_baselines, build_turnover_baseline
from .domain import (
    BaselineEntry,
    CaseFlag,
    ComparisonScope,
    FlagBaselines,
    FlagRule,
    MilestoneName,
    Operator,
    SurgicalCase,
    ThresholdType,
)
from .kpis.common import find_first_cases, resolve_config
from .kpis.turnover import same_room_turnovers
from .metrics import ALLOW_ZERO_OR_NEGATIVE, TURNOVER_METRICS, extract_metric_value, fcots_delay
from .milestones import MilestoneMap, build_milestone_map
from .models import AnalyticsConfig
from .stats import percentile, round_half_up

logger = logging.getLogger(__name__)

_COMPARATORS: dict[Operator, Callable[[float, float], bool]] = {
    Operator.GT: operator.gt,
    Operator.GTE: operator.ge,
    Operator.LT: operator.lt,
    Operator.LTE: operator.le,
}

_UPPER_OPERATORS = frozenset({Operator.GT, Operator.GTE})


def compare(value: float, threshold: float, op: Operator) -> bool:
    return _COMPARATORS[op](value, threshold)


def _absolute(rule: FlagRule, baseline: BaselineEntry | None) -> float | None:
    return rule.threshold_value


def _median_plus_sd(rule: FlagRule, baseline: BaselineEntry | None) -> float | None:
    if baseline is None:
        return None
    offset = rule.threshold_value * baseline.std_dev
    if rule.operator in _UPPER_OPERATORS:
        return baseline.median + offset
    return baseline.median - offset


def _percentage_of_median(rule: FlagRule, baseline: BaselineEntry | None) -> float | None:
    if baseline is None:
        return None
    factor = rule.threshold_value / 100
    if rule.operator in _UPPER_OPERATORS:
        return baseline.median * (1 + factor)
    return baseline.median * (1 - factor)


def _percentile(rule: FlagRule, baseline: BaselineEntry | None) -> float | None:
    if baseline is None or not baseline.values:
        return None
    return percentile(baseline.values, rule.threshold_value)


_RESOLVERS: dict[ThresholdType, Callable[[FlagRule, BaselineEntry | None], float | None]] = {
    ThresholdType.ABSOLUTE: _absolute,
    ThresholdType.MEDIAN_PLUS_SD: _median_plus_sd,
    ThresholdType.PERCENTAGE_OF_MEDIAN: _percentage_of_median,
    ThresholdType.PERCENTILE: _percentile,
    # Range checks are done in evaluate_against_rule
    ThresholdType.BETWEEN: _absolute,
}


def resolve_threshold(rule: FlagRule, baseline: BaselineEntry | None) -> float | None:
    """Effective threshold for ``rule``; ``None`` when its baseline is unavailable."""
    return _RESOLVERS[rule.threshold_type](rule, baseline)


def evaluate_against_rule(
    value: float, rule: FlagRule, baseline: BaselineEntry | None
) -> tuple[bool, float]:
    """Return (triggered, threshold) for ``value`` under ``rule``."""
    if rule.threshold_type == ThresholdType.BETWEEN:
        if rule.threshold_value_max is None:
            return False, 0.0
        triggered = rule.threshold_value <= value <= rule.threshold_value_max
        return triggered, rule.threshold_value

    threshold = resolve_threshold(rule, baseline)
    if threshold is None:
        return False, 0.0
    return compare(value, threshold, rule.operator), threshold


def lookup_baseline(
    baselines: FlagBaselines,
    rule: FlagRule,
    surgeon_id: str | None,
    procedure_id: str | None,
) -> BaselineEntry | None:
    """Most specific baseline for the rule's scope, falling back to broader keys."""
    if rule.comparison_scope == ComparisonScope.PERSONAL:
        if not surgeon_id:
            return None
        if procedure_id:
            specific = baselines.personal.get(f"{rule.metric}:{surgeon_id}:{procedure_id}")
            if specific is not None:
                return specific
        return baselines.personal.get(f"{rule.metric}:{surgeon_id}")

    if procedure_id:
        specific = baselines.facility.get(f"{rule.metric}:{procedure_id}")
        if specific is not None:
            return specific
    return baselines.facility.get(rule.metric)


def build_flag(case: SurgicalCase, rule: FlagRule, value: float, threshold: float) -> CaseFlag:
    return CaseFlag(
        case_id=case.id,
        facility_id=case.facility_id,
        flag_rule_id=rule.id,
        metric_value=round_half_up(value, 1),
        threshold_value=round_half_up(threshold, 1),
        comparison_scope=rule.comparison_scope,
        severity=rule.severity,
    )


def identify_first_cases(cases: Iterable[SurgicalCase]) -> set[str]:
    """Ids of the first case in each room-day."""
    return {case.id for case in find_first_cases(cases)}


def compute_turnovers_per_case(
    cases: Sequence[SurgicalCase], config: AnalyticsConfig | None = None
) -> dict[str, float]:
    """Same-room turnover minutes keyed by the case that follows the turnover."""
    return {d.to_case_id: d.turnover_minutes for d in same_room_turnovers(cases, config)}


def _excess_time_cost(
    case: SurgicalCase, baselines: FlagBaselines
) -> float | None:
    """Cost of minutes beyond the median total case time at the OR rate."""
    stats = case.completion_stats
    if stats is None or not stats.total_duration_minutes or not stats.or_hourly_rate:
        return None
    total_time = None
    if case.procedure_type_id:
        total_time = baselines.facility.get(f"total_case_time:{case.procedure_type_id}")
    if total_time is None:
        total_time = baselines.facility.get("total_case_time")
    if total_time is None:
        return None
    excess_minutes = max(0.0, stats.total_duration_minutes - total_time.median)
    return excess_minutes * stats.or_hourly_rate / 60


def _rule_value(
    case: SurgicalCase,
    milestones: MilestoneMap,
    rule: FlagRule,
    baselines: FlagBaselines,
    first_case_ids: AbstractSet[str],
    turnover_for_case: float | None,
    tz: tzinfo,
) -> tuple[float | None, bool]:
    """Metric value for ``rule`` and whether it is compared against a baseline."""
    if rule.metric in TURNOVER_METRICS:
        if turnover_for_case is None or turnover_for_case <= 0:
            return None, False
        return turnover_for_case, True

    if rule.metric == "fcots_delay":
        if case.id not in first_case_ids:
            return None, False
        return fcots_delay(case, milestones, tz), False

    if rule.metric == "excess_time_cost":
        return _excess_time_cost(case, baselines), True

    if rule.cost_category_id:
        return case.category_costs.get(rule.cost_category_id), True

    value = extract_metric_value(
        case, milestones, rule.metric, rule.start_milestone, rule.end_milestone, tz
    )
    if value is None:
        return None, False
    # Non-positive durations come from bad milestone data
    if rule.metric not in ALLOW_ZERO_OR_NEGATIVE and value <= 0:
        return None, False
    return value, True


def evaluate_case(
    case: SurgicalCase,
    rules: Iterable[FlagRule],
    baselines: FlagBaselines,
    turnover_baseline: BaselineEntry | None,
    first_case_ids: AbstractSet[str],
    turnover_for_case: float | None = None,
    tz: tzinfo = UTC,
) -> list[CaseFlag]:
    """Evaluate one case against every live rule.

    Cases without both ``patient_in`` and ``patient_out`` are never flagged.
    """
    milestones = build_milestone_map(case)
    if MilestoneName.PATIENT_IN not in milestones or MilestoneName.PATIENT_OUT not in milestones:
        return []

    flags = []
    for rule in rules:
        if not rule.is_live:
            continue
        value, uses_baseline = _rule_value(
            case, milestones, rule, baselines, first_case_ids, turnover_for_case, tz
        )
        if value is None:
            continue

        if rule.metric in TURNOVER_METRICS:
            baseline = turnover_baseline
        elif uses_baseline:
            baseline = lookup_baseline(baselines, rule, case.surgeon_id, case.procedure_type_id)
        else:
            baseline = None

        triggered, threshold = evaluate_against_rule(value, rule, baseline)
        if triggered:
            flags.append(build_flag(case, rule, value, threshold))
    return flags


@dataclass(frozen=True)
class BatchContext:
    """Everything the per-case phase needs from the whole batch."""

    rules: tuple[FlagRule, ...]
    baselines: FlagBaselines
    turnover_baseline: BaselineEntry | None = None
    first_case_ids: frozenset[str] = frozenset()
    turnovers: dict[str, float] = field(default_factory=dict)
    tz: tzinfo = UTC

    def evaluate(self, case: SurgicalCase) -> list[CaseFlag]:
        return evaluate_case(
            case,
            self.rules,
            self.baselines,
            self.turnover_baseline,
            self.first_case_ids,
            self.turnovers.get(case.id),
            self.tz,
        )


def metric_sources(rules: Iterable[FlagRule]) -> dict[str, FlagRule]:
    """The first rule defining each metric that is not a plain named metric."""
    sources: dict[str, FlagRule] = {}
    for rule in rules:
        if rule.cost_category_id or (rule.start_milestone and rule.end_milestone):
            sources.setdefault(rule.metric, rule)
    return sources


def build_batch_context(
    rules: Sequence[FlagRule],
    cases: Sequence[SurgicalCase],
    historical_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> BatchContext:
    """Phase one: compute batch-wide inputs for the live rules.

    Baselines come from ``historical_cases`` (or ``cases``); first cases and
    per-case turnovers always come from the cases being evaluated.
    """
    config = resolve_config(config)
    history = historical_cases if historical_cases is not None else cases
    live = tuple(r for r in rules if r.is_live)
    metrics = list(dict.fromkeys(r.metric for r in live))
    needs_percentile = any(r.threshold_type == ThresholdType.PERCENTILE for r in live)
    has_turnover_rule = any(r.metric in TURNOVER_METRICS for r in live)
    has_fcots_rule = any(r.metric == "fcots_delay" for r in live)

    return BatchContext(
        rules=live,
        baselines=build_baselines(
            history, metrics, needs_percentile, metric_sources(live)
        ),
        turnover_baseline=(
            build_turnover_baseline(history, config) if has_turnover_rule else None
        ),
        first_case_ids=(
            frozenset(identify_first_cases(cases)) if has_fcots_rule else frozenset()
        ),
        turnovers=(
            compute_turnovers_per_case(cases, config) if has_turnover_rule else {}
        ),
        tz=config.tz,
    )


def evaluate_cases_batch(
    cases: Sequence[SurgicalCase],
    rules: Sequence[FlagRule],
    historical_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
    max_workers: int = 1,
) -> list[CaseFlag]:
    """Evaluate every case against the rules.

    Baselines come from ``historical_cases``, or from ``cases`` when none are
    given. Flags are returned in case order whatever the worker count.
    """
    if not cases or not rules:
        return []

    context = build_batch_context(rules, cases, historical_cases, config)
    skipped = len(rules) - len(context.rules)
    if skipped:
        logger.debug("Skipping %d disabled, inactive or deleted rules", skipped)
    if not context.rules:
        return []

    logger.info("Evaluating %d cases against %d rules", len(cases), len(context.rules))
    if max_workers <= 1:
        per_case = list(map(context.evaluate, cases))
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(context.evaluate, case) for case in cases]
            per_case = [f.result() for f in futures]

    flags = [flag for case_flags in per_case for flag in case_flags]
    logger.info("Raised %d flags", len(flags))
    return flags
