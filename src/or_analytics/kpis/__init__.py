"""Operational KPI calculators.

Each calculator takes the current period's cases, optionally the previous
period's cases for a delta, and an ``AnalyticsConfig``.
"""

from __future__ import annotations

from .idle import calculate_surgeon_idle_time, surgeon_day_analyses
from .overview import calculate_analytics_overview
from .results import (
    AnalyticsOverview,
    CancellationResult,
    CaseVolumeResult,
    DailyTrackerEntry,
    GapType,
    IdleGap,
    KPIResult,
    NonOperativeTimeResult,
    ORUtilizationResult,
    RoomUtilization,
    SurgeonDayAnalysis,
    SurgeonIdleResult,
    SurgicalTurnoverResult,
    TimeBreakdown,
    TrackerColor,
    TurnoverDetail,
    TurnoverResult,
)
from .scheduling import (
    calculate_cancellation_rate,
    calculate_case_volume,
    calculate_cumulative_tardiness,
    calculate_fcots,
    is_same_day_cancellation,
)
from .turnover import (
    calculate_flip_room_turnover,
    calculate_surgical_turnovers,
    calculate_turnover_time,
    flip_room_turnovers,
    same_room_turnovers,
)
from .utilization import (
    calculate_avg_case_time,
    calculate_non_operative_time,
    calculate_or_utilization,
    calculate_time_breakdown,
)

__all__ = [
    "AnalyticsOverview",
    "CancellationResult",
    "CaseVolumeResult",
    "DailyTrackerEntry",
    "GapType",
    "IdleGap",
    "KPIResult",
    "NonOperativeTimeResult",
    "ORUtilizationResult",
    "RoomUtilization",
    "SurgeonDayAnalysis",
    "SurgeonIdleResult",
    "SurgicalTurnoverResult",
    "TimeBreakdown",
    "TrackerColor",
    "TurnoverDetail",
    "TurnoverResult",
    "calculate_analytics_overview",
    "calculate_avg_case_time",
    "calculate_cancellation_rate",
    "calculate_case_volume",
    "calculate_cumulative_tardiness",
    "calculate_fcots",
    "calculate_flip_room_turnover",
    "calculate_non_operative_time",
    "calculate_or_utilization",
    "calculate_surgeon_idle_time",
    "calculate_surgical_turnovers",
    "calculate_time_breakdown",
    "calculate_turnover_time",
    "flip_room_turnovers",
    "is_same_day_cancellation",
    "same_room_turnovers",
    "surgeon_day_analyses",
]
