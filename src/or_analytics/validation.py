"""Milestone data quality reporting for surgical cases."""

from __future__ import annotations

import json
from collections import Counter
from operator import itemgetter
from pathlib import Path
from typing import Any

import pandas as pd

from .domain import MilestoneName, SurgicalCase
from .metrics import CORE_MILESTONE_SEQUENCE, count_sequence_violations
from .milestones import build_milestone_map

_KNOWN_NAMES = {m.value for m in MilestoneName}


class CaseQuality:
    """Data quality findings for one case."""

    def __init__(self, case: SurgicalCase):
        self.case = case
        milestones = build_milestone_map(case)
        self.missing_milestones = [
            name.value for name in CORE_MILESTONE_SEQUENCE if name not in milestones
        ]
        self.sequence_violations = count_sequence_violations(milestones)
        self.unknown_milestones = sorted(
            {
                m.name
                for m in case.milestones
                if m.name is not None and m.name not in _KNOWN_NAMES
            }
        )
        self.missing_fields = [
            label
            for label, value in (
                ("room", case.or_room_id),
                ("surgeon", case.surgeon_id),
                ("procedure", case.procedure_type_id),
                ("start_time", case.start_time),
            )
            if value is None or value == ""
        ]

    @property
    def is_evaluable(self) -> bool:
        """Whether the case has the patient in/out pair every flag needs."""
        return (
            MilestoneName.PATIENT_IN.value not in self.missing_milestones
            and MilestoneName.PATIENT_OUT.value not in self.missing_milestones
        )

    @property
    def issues(self) -> list[str]:
        issues = []
        if self.missing_milestones:
            issues.append(f"Missing milestones: {', '.join(self.missing_milestones)}")
        if self.sequence_violations:
            issues.append(f"{self.sequence_violations} milestones out of sequence")
        if self.unknown_milestones:
            issues.append(f"Unknown milestones: {', '.join(self.unknown_milestones)}")
        if self.missing_fields:
            issues.append(f"Missing fields: {', '.join(self.missing_fields)}")
        return issues

    def has_issues(self) -> bool:
        return bool(self.issues)

    def get_summary(self) -> dict[str, Any]:
        return {
            "case_id": self.case.id,
            "case_number": self.case.case_number,
            "scheduled_date": self.case.scheduled_date.isoformat(),
            "is_cancelled": self.case.is_cancelled,
            "is_evaluable": self.is_evaluable,
            "missing_milestones": self.missing_milestones,
            "sequence_violations": self.sequence_violations,
            "unknown_milestones": self.unknown_milestones,
            "missing_fields": self.missing_fields,
        }


class DataQualityReport:
    """Generate data quality reports for a set of cases.

    Cancelled cases are reported but not counted as problematic for missing
    milestones, since they never reach the room.
    """

    def __init__(self, cases: list[SurgicalCase]):
        """Initialize with list of cases."""
        self.cases = cases
        self.findings = [CaseQuality(case) for case in cases]

    def get_summary(self) -> dict[str, Any]:
        """Get overall data quality summary statistics."""
        performed = [f for f in self.findings if not f.case.is_cancelled]
        missing_counts: Counter[str] = Counter()
        for finding in performed:
            missing_counts.update(finding.missing_milestones)
        field_counts: Counter[str] = Counter()
        for finding in self.findings:
            field_counts.update(finding.missing_fields)

        complete = sum(1 for f in performed if not f.missing_milestones)
        return {
            "total_cases": len(self.cases),
            "cancelled_cases": len(self.cases) - len(performed),
            "excluded_cases": sum(1 for c in self.cases if c.is_excluded_from_metrics),
            "complete_cases": complete,
            "completeness_rate": round(complete / len(performed), 3) if performed else 0,
            "evaluable_cases": sum(1 for f in performed if f.is_evaluable),
            "cases_with_sequence_errors": sum(1 for f in performed if f.sequence_violations),
            "missing_milestones": dict(missing_counts),
            "missing_fields": dict(field_counts),
        }

    def get_problematic_cases(self) -> list[CaseQuality]:
        """Findings for performed cases with at least one issue."""
        return [f for f in self.findings if not f.case.is_cancelled and f.has_issues()]

    def generate_text_report(self) -> str:
        """Generate human-readable text report."""
        summary = self.get_summary()
        total = summary["total_cases"]
        performed = total - summary["cancelled_cases"]

        lines = [
            "=" * 80,
            "DATA QUALITY REPORT",
            "=" * 80,
            "",
            "SUMMARY",
            "-" * 80,
            f"Total Cases: {total}",
            f"Cancelled Cases: {summary['cancelled_cases']}",
            f"Excluded From Metrics: {summary['excluded_cases']}",
            f"Complete Milestone Sets: {summary['complete_cases']} "
            f"({summary['completeness_rate'] * 100:.1f}%)",
            f"Evaluable Cases: {summary['evaluable_cases']}",
            f"Cases With Sequence Errors: {summary['cases_with_sequence_errors']}",
            "",
        ]

        if summary["missing_milestones"]:
            lines.extend(("MISSING MILESTONES", "-" * 80))
            ordered = sorted(
                summary["missing_milestones"].items(), key=itemgetter(1), reverse=True
            )
            for name, count in ordered:
                pct = count / performed * 100 if performed else 0
                lines.append(f"  {name}: {count} cases ({pct:.1f}%)")
            lines.append("")

        if summary["missing_fields"]:
            lines.extend(("MISSING FIELDS", "-" * 80))
            for name, count in summary["missing_fields"].items():
                lines.append(f"  {name}: {count} cases ({count / total * 100:.1f}%)")
            lines.append("")

        problematic = self.get_problematic_cases()
        if problematic:
            lines.extend((f"PROBLEMATIC CASES ({len(problematic)} cases)", "-" * 80))
            for i, finding in enumerate(problematic[:20], 1):
                lines.append(
                    f"\n{i}. Case {finding.case.case_number or finding.case.id} "
                    f"({finding.case.scheduled_date.isoformat()})"
                )
                lines.extend(f"     - {issue}" for issue in finding.issues)

            if len(problematic) > 20:
                lines.append(f"\n... and {len(problematic) - 20} more problematic cases")
            lines.append("")

        lines.extend(("=" * 80, "END OF REPORT", "=" * 80))
        return "\n".join(lines)

    def generate_json_report(self) -> dict[str, Any]:
        """Generate machine-readable JSON report."""
        return {
            "summary": self.get_summary(),
            "problematic_cases": [f.get_summary() for f in self.get_problematic_cases()],
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per case for Excel export."""
        rows = []
        for finding in self.findings:
            rows.append(
                {
                    "Case ID": finding.case.id,
                    "Case Number": finding.case.case_number,
                    "Date": finding.case.scheduled_date.isoformat(),
                    "Cancelled": "Yes" if finding.case.is_cancelled else "No",
                    "Evaluable": "Yes" if finding.is_evaluable else "No",
                    "Missing Milestones": ", ".join(finding.missing_milestones) or "None",
                    "Sequence Errors": finding.sequence_violations,
                    "Missing Fields": ", ".join(finding.missing_fields) or "None",
                }
            )
        return pd.DataFrame(rows)

    def save_report(self, output_path: str | Path, output_format: str = "text") -> None:
        """
        Save data quality report to file.

        Args:
            output_path: Path to save report
            output_format: 'text', 'json', or 'excel'
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if output_format == "text":
            output_path.write_text(self.generate_text_report(), encoding="utf-8")
        elif output_format == "json":
            output_path.write_text(
                json.dumps(self.generate_json_report(), indent=2), encoding="utf-8"
            )
        elif output_format == "excel":
            with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
                self.to_dataframe().to_excel(writer, sheet_name="DataQuality", index=False)
        else:
            raise ValueError(
                f"Unsupported format: {output_format}. Use 'text', 'json', or 'excel'"
            )
