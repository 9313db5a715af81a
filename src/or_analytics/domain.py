"""Domain models for surgical cases, milestones, phases, flag rules and flags."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MilestoneName(StrEnum):
    """Milestones recorded during a surgical case."""

    PATIENT_IN = "patient_in"
    ANES_START = "anes_start"
    ANES_END = "anes_end"
    PREP_DRAPE_COMPLETE = "prep_drape_complete"
    INCISION = "incision"
    CLOSING = "closing"
    CLOSING_COMPLETE = "closing_complete"
    SURGEON_LEFT = "surgeon_left"
    PATIENT_OUT = "patient_out"
    ROOM_CLEANED = "room_cleaned"


class CaseStatus(StrEnum):
    """Lifecycle status of a case."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ClosingWorkflow(StrEnum):
    """Who closes the incision, which decides when the surgeon is free."""

    SURGEON_CLOSES = "surgeon_closes"
    PA_CLOSES = "pa_closes"


class Operator(StrEnum):
    """Comparison operators available to flag rules."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class ThresholdType(StrEnum):
    """How a flag rule turns its configured value into a threshold."""

    ABSOLUTE = "absolute"
    MEDIAN_PLUS_SD = "median_plus_sd"
    PERCENTAGE_OF_MEDIAN = "percentage_of_median"
    PERCENTILE = "percentile"
    BETWEEN = "between"


class ComparisonScope(StrEnum):
    """Which baseline population a rule compares against."""

    FACILITY = "facility"
    PERSONAL = "personal"


class Severity(StrEnum):
    """Severity of a rule-based flag."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AnomalyType(StrEnum):
    """Kinds of heuristic same-day anomalies."""

    LATE_START = "late_start"
    LONG_TURNOVER = "long_turnover"
    EXTENDED_PHASE = "extended_phase"
    EXTENDED_SUBPHASE = "extended_subphase"
    FAST_CASE = "fast_case"


class AnomalySeverity(StrEnum):
    """Severity of a heuristic anomaly flag."""

    WARNING = "warning"
    CAUTION = "caution"
    INFO = "info"
    POSITIVE = "positive"


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CaseMilestone(BaseModel):
    """A single recorded milestone event."""

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(default=None, description="Milestone name, e.g. 'incision'")
    facility_milestone_id: str | None = Field(
        default=None, description="Facility-specific milestone id referenced by phases"
    )
    recorded_at: datetime | None = Field(
        default=None, description="When the milestone was recorded"
    )

    @field_validator("recorded_at")
    @classmethod
    def ensure_aware(cls, v: datetime | None) -> datetime | None:
        """Interpret naive timestamps as UTC."""
        return _as_utc(v)


class SurgeonProfile(BaseModel):
    """Surgeon workflow preferences used to resolve when the surgeon is done."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    closing_workflow: ClosingWorkflow = ClosingWorkflow.SURGEON_CLOSES
    closing_handoff_minutes: float = Field(
        default=0, ge=0, description="Minutes after closing starts that a PA takes over"
    )


class CompletionStats(BaseModel):
    """Financial figures computed when a case is completed."""

    model_config = ConfigDict(frozen=True)

    profit: float | None = None
    reimbursement: float | None = None
    total_debits: float | None = None
    or_time_cost: float | None = None
    total_duration_minutes: float | None = None
    or_hourly_rate: float | None = None


class SurgicalCase(BaseModel):
    """A surgical case with its embedded milestone events."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Case identifier")
    case_number: str = Field(default="", description="Human-facing case number")
    facility_id: str = Field(default="", description="Owning facility")
    scheduled_date: date = Field(description="Scheduled calendar date")
    start_time: time | None = Field(
        default=None, description="Scheduled wall-clock start time"
    )
    surgeon_id: str | None = None
    surgeon_name: str | None = None
    or_room_id: str | None = None
    room_name: str | None = None
    procedure_type_id: str | None = None
    procedure_name: str | None = None
    status: CaseStatus = CaseStatus.SCHEDULED
    cancelled_at: datetime | None = None
    surgeon_left_at: datetime | None = Field(
        default=None, description="Surgeon departure recorded on the case itself"
    )
    is_excluded_from_metrics: bool = False
    milestones: list[CaseMilestone] = Field(default_factory=list)
    surgeon_profile: SurgeonProfile | None = None
    completion_stats: CompletionStats | None = None
    expected_reimbursement: float | None = None
    category_costs: dict[str, float] = Field(
        default_factory=dict, description="Cost per cost category id"
    )

    @field_validator("cancelled_at", "surgeon_left_at")
    @classmethod
    def ensure_aware(cls, v: datetime | None) -> datetime | None:
        """Interpret naive timestamps as UTC."""
        return _as_utc(v)

    @property
    def is_cancelled(self) -> bool:
        return self.status == CaseStatus.CANCELLED

    @property
    def display_room(self) -> str:
        return self.room_name or "Unknown"


class PhaseDefinition(BaseModel):
    """A named interval between two milestones; sub-phases reference a parent."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    display_name: str
    display_order: int = 0
    color_key: str | None = None
    parent_phase_id: str | None = None
    start_milestone_id: str
    end_milestone_id: str

    @property
    def is_subphase(self) -> bool:
        return self.parent_phase_id is not None


class PhaseDuration(BaseModel):
    """Computed duration of one phase for one case."""

    model_config = ConfigDict(frozen=True)

    phase_id: str
    name: str
    display_name: str
    display_order: int
    color_key: str | None
    parent_phase_id: str | None
    duration_seconds: float | None


class SubphaseOffset(BaseModel):
    """Placement of a sub-phase inside its parent's window."""

    model_config = ConfigDict(frozen=True)

    phase_id: str
    label: str
    color: str
    offset_seconds: float
    duration_seconds: float


class PhaseSubphases(BaseModel):
    """The sub-phases laid out inside one parent phase."""

    model_config = ConfigDict(frozen=True)

    phase_id: str
    subphases: list[SubphaseOffset]


class FlagRule(BaseModel):
    """A facility-configured rule evaluated against every case."""

    model_config = ConfigDict(frozen=True)

    id: str
    facility_id: str = ""
    name: str = ""
    metric: str
    start_milestone: str | None = None
    end_milestone: str | None = None
    operator: Operator = Operator.GT
    threshold_type: ThresholdType = ThresholdType.ABSOLUTE
    threshold_value: float = 0
    threshold_value_max: float | None = None
    comparison_scope: ComparisonScope = ComparisonScope.FACILITY
    severity: Severity = Severity.WARNING
    is_enabled: bool = True
    is_active: bool = True
    is_built_in: bool = False
    cost_category_id: str | None = None
    deleted_at: datetime | None = None
    deleted_by: str | None = None

    @property
    def is_live(self) -> bool:
        """Enabled, active and not soft-deleted."""
        return self.is_enabled and self.is_active and self.deleted_at is None


class BaselineEntry(BaseModel):
    """Statistical summary of a metric's historical values."""

    model_config = ConfigDict(frozen=True)

    median: float
    std_dev: float
    count: int
    values: tuple[float, ...] | None = Field(
        default=None, description="Ascending values, kept only for percentile rules"
    )


class FlagBaselines(BaseModel):
    """Facility-wide and per-surgeon baselines for one evaluation batch."""

    model_config = ConfigDict(frozen=True)

    facility: dict[str, BaselineEntry] = Field(default_factory=dict)
    personal: dict[str, BaselineEntry] = Field(default_factory=dict)


class CaseFlag(BaseModel):
    """A flag produced by a rule triggering on a case."""

    model_config = ConfigDict(frozen=True)

    case_id: str
    facility_id: str
    flag_type: str = "threshold"
    flag_rule_id: str | None
    metric_value: float | None
    threshold_value: float | None
    comparison_scope: ComparisonScope | None
    severity: Severity
    note: str | None = None


class AnomalyFlag(BaseModel):
    """A heuristic same-day anomaly on a case."""

    model_config = ConfigDict(frozen=True)

    case_id: str
    type: AnomalyType
    severity: AnomalySeverity
    label: str
    detail: str
    icon: str
