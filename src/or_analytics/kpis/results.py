"""KPI result value objects."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from ..stats import DeltaType


class TrackerColor(StrEnum):
    """Qualitative colors for daily tracker cells."""

    EMERALD = "emerald"
    YELLOW = "yellow"
    RED = "red"
    SLATE = "slate"


class GapType(StrEnum):
    """Whether a surgeon stayed in the room or switched rooms between cases."""

    FLIP = "flip"
    SAME_ROOM = "same_room"


class DailyTrackerEntry(BaseModel):
    """One day's cell in a KPI tracker."""

    model_config = ConfigDict(frozen=True)

    date: str = Field(description="ISO calendar date")
    color: TrackerColor
    tooltip: str


class KPIResult(BaseModel):
    """A KPI value with display text, target and period-over-period delta."""

    model_config = ConfigDict(frozen=True)

    value: float = 0
    display_value: str = "--"
    subtitle: str = ""
    target: float | None = None
    target_met: bool | None = None
    delta: float | None = None
    delta_type: DeltaType | None = None
    daily_data: list[DailyTrackerEntry] = Field(default_factory=list)
    sample_count: int = Field(default=0, description="Qualifying samples behind the value")

    @property
    def has_data(self) -> bool:
        return self.sample_count > 0


class TurnoverDetail(BaseModel):
    """A single measured room turnover."""

    model_config = ConfigDict(frozen=True)

    date: str
    room_id: str | None
    room_name: str
    from_case_id: str
    from_case_number: str
    to_case_id: str
    to_case_number: str
    surgeon_id: str | None = None
    turnover_minutes: float


class TurnoverResult(KPIResult):
    """Room turnover KPI with per-turnover details and compliance counts."""

    details: list[TurnoverDetail] = Field(default_factory=list)
    compliant_count: int = 0
    non_compliant_count: int = 0
    compliance_rate: float = 0


class RoomUtilization(BaseModel):
    """Utilization of one room over the period."""

    model_config = ConfigDict(frozen=True)

    room_id: str
    room_name: str
    utilization: float
    used_minutes: float
    available_hours: float
    case_count: int
    days_active: int
    using_real_hours: bool


class ORUtilizationResult(KPIResult):
    """OR utilization with a per-room breakdown, lowest utilization first."""

    room_breakdown: list[RoomUtilization] = Field(default_factory=list)
    rooms_with_real_hours: int = 0
    rooms_with_default_hours: int = 0


class WeeklyVolume(BaseModel):
    """Case count for one Sunday-starting week."""

    model_config = ConfigDict(frozen=True)

    week_start: str
    count: int


class CaseVolumeResult(KPIResult):
    """Case volume with weekly buckets."""

    weekly_volume: list[WeeklyVolume] = Field(default_factory=list)


class CancellationResult(KPIResult):
    """Same-day cancellation rate."""

    same_day_count: int = 0
    same_day_rate: float = 0
    total_cancelled_count: int = 0


class NonOperativeTimeResult(KPIResult):
    """Average non-operative time with its pre-op and post-op components."""

    avg_pre_op_minutes: float = 0
    avg_post_op_minutes: float = 0
    percent_of_case_time: float = 0


class IdleGap(BaseModel):
    """Idle time between two consecutive cases of one surgeon."""

    model_config = ConfigDict(frozen=True)

    from_case_id: str
    from_case: str
    to_case_id: str
    to_case: str
    idle_minutes: float
    optimal_call_delta: float
    gap_type: GapType
    from_room: str
    to_room: str


class SurgeonDayCase(BaseModel):
    """A case in a surgeon-day timeline."""

    model_config = ConfigDict(frozen=True)

    case_id: str
    case_number: str
    room_id: str
    room_name: str
    scheduled_start: str
    patient_in: datetime | None = None
    patient_out: datetime | None = None


class SurgeonDayAnalysis(BaseModel):
    """Idle gaps for one surgeon on one day."""

    model_config = ConfigDict(frozen=True)

    surgeon_id: str
    surgeon_name: str
    date: str
    is_flip_room: bool
    cases: list[SurgeonDayCase]
    idle_gaps: list[IdleGap]
    avg_idle_time: float
    total_idle_time: float


class SurgeonIdleResult(BaseModel):
    """Combined, flip-only and same-room-only idle KPIs plus details."""

    model_config = ConfigDict(frozen=True)

    combined: KPIResult
    flip: KPIResult
    same_room: KPIResult
    details: list[SurgeonDayAnalysis] = Field(default_factory=list)


class SurgicalTurnoverResult(BaseModel):
    """Surgeon-done to next-incision transitions split by room change."""

    model_config = ConfigDict(frozen=True)

    standard_turnover: KPIResult
    flip_room_time: KPIResult
    total_transitions: int = 0
    same_room_count: int = 0
    flip_room_count: int = 0


class TimeBreakdown(BaseModel):
    """Average segment durations in minutes over cases with in and out times."""

    model_config = ConfigDict(frozen=True)

    avg_total_minutes: float = 0
    avg_surgical_minutes: float = 0
    avg_pre_op_minutes: float = 0
    avg_anesthesia_minutes: float = 0
    avg_closing_minutes: float = 0
    avg_emergence_minutes: float = 0
    non_operative_minutes: float = 0


class AnalyticsOverview(BaseModel):
    """Every KPI for one period."""

    model_config = ConfigDict(frozen=True)

    total_cases: int
    completed_cases: int
    cancelled_cases: int
    fcots: KPIResult
    turnover_time: TurnoverResult
    flip_room_turnover: TurnoverResult
    or_utilization: ORUtilizationResult
    case_volume: CaseVolumeResult
    cancellation_rate: CancellationResult
    cumulative_tardiness: KPIResult
    non_operative_time: NonOperativeTimeResult
    surgeon_idle: SurgeonIdleResult
    surgical_turnovers: SurgicalTurnoverResult
    avg_case_time: KPIResult
    time_breakdown: TimeBreakdown

    def kpis(self) -> dict[str, KPIResult]:
        """Flat name -> KPI view used for tables and exports."""
        return {
            "fcots": self.fcots,
            "turnover_time": self.turnover_time,
            "flip_room_turnover": self.flip_room_turnover,
            "or_utilization": self.or_utilization,
            "case_volume": self.case_volume,
            "cancellation_rate": self.cancellation_rate,
            "cumulative_tardiness": self.cumulative_tardiness,
            "non_operative_time": self.non_operative_time,
            "surgeon_idle_time": self.surgeon_idle.combined,
            "surgeon_idle_flip": self.surgeon_idle.flip,
            "surgeon_idle_same_room": self.surgeon_idle.same_room,
            "standard_surgical_turnover": self.surgical_turnovers.standard_turnover,
            "flip_room_time": self.surgical_turnovers.flip_room_time,
            "avg_case_time": self.avg_case_time,
        }
