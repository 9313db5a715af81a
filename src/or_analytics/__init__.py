"""OR Analytics - KPIs, rule-based flags and case anomalies from surgical milestone data."""

from .baselines import build_baselines, build_turnover_baseline
from .cli import main
from .domain import (
    AnomalyFlag,
    CaseFlag,
    CaseMilestone,
    FlagRule,
    MilestoneName,
    PhaseDefinition,
    SurgicalCase,
)
from .export_service import ExportService
from .flag_detection import (
    aggregate_day_flags,
    compute_procedure_medians,
    detect_case_flags,
    detect_day_flags,
)
from .flag_engine import evaluate_case, evaluate_cases_batch
from .io import ExcelHandler
from .kpis import calculate_analytics_overview
from .models import AnalyticsConfig, FlagThresholds
from .phases import compute_phase_durations, compute_subphase_offsets
from .validation import DataQualityReport

__version__ = "0.1.0"
__all__ = [
    "AnalyticsConfig",
    "AnomalyFlag",
    "CaseFlag",
    "CaseMilestone",
    "DataQualityReport",
    "ExcelHandler",
    "ExportService",
    "FlagRule",
    "FlagThresholds",
    "MilestoneName",
    "PhaseDefinition",
    "SurgicalCase",
    "aggregate_day_flags",
    "build_baselines",
    "build_turnover_baseline",
    "calculate_analytics_overview",
    "compute_phase_durations",
    "compute_procedure_medians",
    "compute_subphase_offsets",
    "detect_case_flags",
    "detect_day_flags",
    "evaluate_case",
    "evaluate_cases_batch",
    "main",
]
