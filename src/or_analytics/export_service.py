"""Service for exporting KPIs, rule flags and anomaly flags."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pandas as pd

from .domain import AnomalyFlag, CaseFlag
from .formatters import format_seconds_hhmmss, format_seconds_human
from .kpis.results import AnalyticsOverview, TimeBreakdown

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"


class ExportService:
    """Service for exporting analytics results to JSON and tabular form."""

    @staticmethod
    def _write_json(data: dict[str, Any], output_path: str | Path, pretty: bool = True) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with output_path.open("w", encoding="utf-8") as f:
                if pretty:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                else:
                    json.dump(data, f, ensure_ascii=False)
        except PermissionError:
            logger.error("Permission denied writing to %s. Is the file open?", output_path)
            raise
        except Exception as e:
            logger.error("Error writing JSON file %s: %s", output_path, e)
            raise

    @staticmethod
    def export_overview_to_json(
        overview: AnalyticsOverview,
        output_path: str | Path,
        include_details: bool = True,
        pretty: bool = True,
    ) -> None:
        """
        Export every KPI of a period to a JSON file.

        Args:
            overview: Result of calculate_analytics_overview
            output_path: Path to output JSON file
            include_details: Keep per-turnover, per-room and per-surgeon-day details
            pretty: Pretty-print JSON with indentation

        Raises:
            PermissionError: If output file cannot be written
        """
        exclude: dict[str, Any] | None = None
        if not include_details:
            exclude = {
                "turnover_time": {"details"},
                "flip_room_turnover": {"details"},
                "or_utilization": {"room_breakdown"},
                "surgeon_idle": {"details"},
            }
        data = {
            "version": EXPORT_VERSION,
            "overview": overview.model_dump(mode="json", exclude=exclude),
        }
        ExportService._write_json(data, output_path, pretty)
        logger.info("Exported KPI overview for %d cases to %s", overview.total_cases, output_path)

    @staticmethod
    def export_flags_to_json(
        flags: Sequence[CaseFlag], output_path: str | Path, pretty: bool = True
    ) -> None:
        """
        Export rule-based flags to a JSON file.

        Raises:
            PermissionError: If output file cannot be written
        """
        severity_counts: dict[str, int] = {}
        for flag in flags:
            severity_counts[flag.severity.value] = severity_counts.get(flag.severity.value, 0) + 1

        data = {
            "version": EXPORT_VERSION,
            "total_flags": len(flags),
            "summary": {
                "flagged_cases": len({f.case_id for f in flags}),
                "by_severity": severity_counts,
            },
            "flags": [f.model_dump(mode="json") for f in flags],
        }
        ExportService._write_json(data, output_path, pretty)
        logger.info("Exported %d flags to %s", len(flags), output_path)

    @staticmethod
    def export_anomalies_to_json(
        anomalies: Sequence[tuple[str, AnomalyFlag]],
        output_path: str | Path,
        pretty: bool = True,
    ) -> None:
        """Export (case number, anomaly) pairs to a JSON file."""
        data = {
            "version": EXPORT_VERSION,
            "total_flags": len(anomalies),
            "flags": [
                {"case_number": case_number, **flag.model_dump(mode="json")}
                for case_number, flag in anomalies
            ],
        }
        ExportService._write_json(data, output_path, pretty)
        logger.info("Exported %d anomaly flags to %s", len(anomalies), output_path)

    @staticmethod
    def kpis_to_dataframe(overview: AnalyticsOverview) -> pd.DataFrame:
        """One row per KPI for tables and Excel export."""
        rows = []
        for name, kpi in overview.kpis().items():
            rows.append(
                {
                    "KPI": name,
                    "Value": kpi.display_value,
                    "Target": "" if kpi.target is None else kpi.target,
                    "Target Met": {True: "Yes", False: "No", None: ""}[kpi.target_met],
                    "Delta": "" if kpi.delta is None else f"{kpi.delta:g}% {kpi.delta_type}",
                    "Samples": kpi.sample_count,
                    "Subtitle": kpi.subtitle,
                }
            )
        return pd.DataFrame(rows)

    @staticmethod
    def flags_to_dataframe(
        flags: Sequence[CaseFlag], case_numbers: dict[str, str] | None = None
    ) -> pd.DataFrame:
        """One row per rule flag, with case numbers when known."""
        case_numbers = case_numbers or {}
        columns = [
            "Case ID",
            "Case Number",
            "Rule ID",
            "Severity",
            "Metric Value",
            "Threshold",
            "Scope",
        ]
        rows = [
            {
                "Case ID": f.case_id,
                "Case Number": case_numbers.get(f.case_id, ""),
                "Rule ID": f.flag_rule_id or "",
                "Severity": f.severity.value,
                "Metric Value": f.metric_value,
                "Threshold": f.threshold_value,
                "Scope": f.comparison_scope.value if f.comparison_scope else "",
            }
            for f in flags
        ]
        return pd.DataFrame(rows, columns=columns)

    @staticmethod
    def anomalies_to_dataframe(anomalies: Sequence[tuple[str, AnomalyFlag]]) -> pd.DataFrame:
        columns = ["Case Number", "Type", "Severity", "Label", "Detail"]
        rows = [
            {
                "Case Number": case_number,
                "Type": flag.type.value,
                "Severity": flag.severity.value,
                "Label": flag.label,
                "Detail": flag.detail,
            }
            for case_number, flag in anomalies
        ]
        return pd.DataFrame(rows, columns=columns)

    @staticmethod
    def time_breakdown_to_dataframe(breakdown: TimeBreakdown) -> pd.DataFrame:
        """One row per average case segment, as minutes and clock durations."""
        segments = {
            "Total": breakdown.avg_total_minutes,
            "Pre-Op": breakdown.avg_pre_op_minutes,
            "Anesthesia": breakdown.avg_anesthesia_minutes,
            "Surgical": breakdown.avg_surgical_minutes,
            "Closing": breakdown.avg_closing_minutes,
            "Emergence": breakdown.avg_emergence_minutes,
            "Non-Operative": breakdown.non_operative_minutes,
        }
        rows = [
            {
                "Segment": name,
                "Minutes": minutes,
                "Duration": format_seconds_hhmmss(minutes * 60),
                "Readable": format_seconds_human(minutes * 60),
            }
            for name, minutes in segments.items()
        ]
        return pd.DataFrame(rows, columns=["Segment", "Minutes", "Duration", "Readable"])
