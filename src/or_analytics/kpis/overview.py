"""Every KPI for one period in a single pass."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ..domain import MilestoneName as M
from ..domain import SurgicalCase
from ..milestones import build_milestone_map, filter_active_cases
from ..models import AnalyticsConfig
from .common import resolve_config
from .idle import calculate_surgeon_idle_time
from .results import AnalyticsOverview
from .scheduling import (
    calculate_cancellation_rate,
    calculate_case_volume,
    calculate_cumulative_tardiness,
    calculate_fcots,
)
from .turnover import (
    calculate_flip_room_turnover,
    calculate_surgical_turnovers,
    calculate_turnover_time,
)
from .utilization import (
    calculate_avg_case_time,
    calculate_non_operative_time,
    calculate_or_utilization,
    calculate_time_breakdown,
)

logger = logging.getLogger(__name__)


def _is_completed(case: SurgicalCase) -> bool:
    milestones = build_milestone_map(case)
    return M.PATIENT_IN in milestones and M.PATIENT_OUT in milestones


def calculate_analytics_overview(
    cases: Sequence[SurgicalCase],
    previous_cases: Sequence[SurgicalCase] | None = None,
    config: AnalyticsConfig | None = None,
) -> AnalyticsOverview:
    """Run every KPI calculator with one configuration.

    Cases flagged as excluded from metrics are dropped from both periods
    before anything is computed.
    """
    config = resolve_config(config)
    active = filter_active_cases(cases)
    previous = filter_active_cases(previous_cases) if previous_cases else None
    logger.info(
        "Computing KPIs for %d cases (%d excluded)", len(active), len(cases) - len(active)
    )

    return AnalyticsOverview(
        total_cases=len(active),
        completed_cases=sum(1 for c in active if _is_completed(c)),
        cancelled_cases=sum(1 for c in active if c.is_cancelled),
        fcots=calculate_fcots(active, previous, config),
        turnover_time=calculate_turnover_time(active, previous, config),
        flip_room_turnover=calculate_flip_room_turnover(active, previous, config),
        or_utilization=calculate_or_utilization(active, previous, config),
        case_volume=calculate_case_volume(active, previous, config),
        cancellation_rate=calculate_cancellation_rate(active, previous, config),
        cumulative_tardiness=calculate_cumulative_tardiness(active, previous, config),
        non_operative_time=calculate_non_operative_time(active, previous, config),
        surgeon_idle=calculate_surgeon_idle_time(active, previous, config),
        surgical_turnovers=calculate_surgical_turnovers(active, previous, config),
        avg_case_time=calculate_avg_case_time(active, previous, config),
        time_breakdown=calculate_time_breakdown(active),
    )
