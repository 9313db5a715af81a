"""Command line interface for OR analytics."""

from __future__ import annotations

import argparse
import sys
import traceback
from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .domain import AnomalyFlag, CaseFlag, MilestoneName, SurgicalCase
from .exceptions import OrAnalyticsError
from .export_service import ExportService
from .flag_detection import aggregate_day_flags, compute_procedure_medians, detect_day_flags
from .flag_engine import evaluate_cases_batch
from .formatters import format_time_of_day
from .io import ExcelHandler, load_cases, load_config, load_phase_definitions, load_rules
from .kpis import calculate_analytics_overview
from .logging_config import setup_logging
from .milestones import build_milestone_map, filter_active_cases
from .validation import DataQualityReport

console = Console()

_TARGET_MET = {True: "[green]yes[/green]", False: "[red]no[/red]", None: ""}
_SEVERITY_STYLE = {
    "critical": "bold red",
    "warning": "yellow",
    "caution": "yellow",
    "info": "cyan",
    "positive": "green",
}


def build_arg_parser() -> argparse.ArgumentParser:
    """Build command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="or-analytics",
        description="Operating-room KPIs, rule flags and case anomalies from milestone data.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s kpis cases.json --previous last_month.json
  %(prog)s flags cases.json --rules rules.json --workers 4 --export-excel flags.xlsx
  %(prog)s anomalies cases.json --phases phases.json --date 2025-03-14
  %(prog)s quality cases.json --report quality.xlsx
        """,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Set logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    kpis = subparsers.add_parser("kpis", help="Compute every KPI for a period")
    kpis.add_argument("cases_file", help="Cases JSON file")
    kpis.add_argument("--previous", metavar="FILE", help="Previous-period cases for deltas")
    kpis.add_argument("--config", metavar="FILE", help="Analytics configuration JSON")
    kpis.add_argument("--export-json", metavar="FILE", help="Write the full overview as JSON")
    kpis.add_argument("--export-excel", metavar="FILE", help="Write the KPI table to Excel")
    kpis.add_argument(
        "--summary-only",
        action="store_true",
        help="Leave per-turnover, per-room and per-surgeon details out of the JSON export",
    )

    flags = subparsers.add_parser("flags", help="Evaluate flag rules against cases")
    flags.add_argument("cases_file", help="Cases JSON file")
    flags.add_argument("--rules", required=True, metavar="FILE", help="Flag rules JSON")
    flags.add_argument("--history", metavar="FILE", help="Historical cases for baselines")
    flags.add_argument("--config", metavar="FILE", help="Analytics configuration JSON")
    flags.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Worker threads for per-case evaluation (default: 1)",
    )
    flags.add_argument("--export-json", metavar="FILE", help="Write flags as JSON")
    flags.add_argument("--export-excel", metavar="FILE", help="Write flags to Excel")

    anomalies = subparsers.add_parser("anomalies", help="Detect same-day case anomalies")
    anomalies.add_argument("cases_file", help="Cases JSON file")
    anomalies.add_argument("--phases", required=True, metavar="FILE", help="Phase definitions JSON")
    anomalies.add_argument("--history", metavar="FILE", help="Historical cases for medians")
    anomalies.add_argument("--config", metavar="FILE", help="Analytics configuration JSON")
    anomalies.add_argument("--date", type=date.fromisoformat, help="Only this day (YYYY-MM-DD)")
    anomalies.add_argument("--surgeon", metavar="ID", help="Only this surgeon's cases")
    anomalies.add_argument("--export-json", metavar="FILE", help="Write anomalies as JSON")

    quality = subparsers.add_parser("quality", help="Report milestone data quality")
    quality.add_argument("cases_file", help="Cases JSON file")
    quality.add_argument(
        "--report",
        metavar="FILE",
        help="Save the report (text, json, or excel format by extension)",
    )

    return parser


def validate_arguments(args: argparse.Namespace) -> None:
    """Validate command line arguments."""
    if getattr(args, "workers", 1) < 1:
        raise ValueError("--workers must be at least 1")

    excel = getattr(args, "export_excel", None)
    if excel and Path(excel).suffix.lower() != ".xlsx":
        raise ValueError("Excel output file must have .xlsx extension")


def report_format(path: Path) -> str:
    """Pick a report format from the file extension."""
    suffix = path.suffix.lower()
    if suffix == ".json":
        return "json"
    if suffix in {".xlsx", ".xls"}:
        return "excel"
    return "text"


def run_kpis(args: argparse.Namespace) -> None:
    config, _ = load_config(args.config)
    cases = load_cases(args.cases_file)
    previous = load_cases(args.previous) if args.previous else None

    overview = calculate_analytics_overview(cases, previous, config)

    table = Table(title=f"KPIs · {overview.total_cases} cases")
    table.add_column("KPI", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Met", justify="center")
    table.add_column("Delta", justify="right")
    table.add_column("Detail")
    for name, kpi in overview.kpis().items():
        table.add_row(
            name.replace("_", " "),
            kpi.display_value,
            "" if kpi.target is None else f"{kpi.target:g}",
            _TARGET_MET[kpi.target_met],
            "" if kpi.delta is None else f"{kpi.delta:g}% {kpi.delta_type}",
            kpi.subtitle,
        )
    console.print(table)
    console.print(
        f"Completed: {overview.completed_cases} · Cancelled: {overview.cancelled_cases}"
    )

    breakdown = ExportService.time_breakdown_to_dataframe(overview.time_breakdown)
    breakdown_table = Table(title="Average case time breakdown")
    breakdown_table.add_column("Segment", style="bold")
    breakdown_table.add_column("Duration", justify="right")
    for row in breakdown.itertuples(index=False):
        breakdown_table.add_row(row.Segment, row.Readable)
    console.print(breakdown_table)

    if args.export_json:
        ExportService.export_overview_to_json(
            overview, args.export_json, include_details=not args.summary_only
        )
        console.print(f"\nKPI export saved to: [cyan]{args.export_json}[/cyan]")
    if args.export_excel:
        ExcelHandler().write_sheets(
            {"KPIs": ExportService.kpis_to_dataframe(overview), "Time Breakdown": breakdown},
            args.export_excel,
        )
        console.print(f"\nKPI table saved to: [cyan]{args.export_excel}[/cyan]")


def print_flags(flags: Sequence[CaseFlag], case_numbers: dict[str, str]) -> None:
    if not flags:
        console.print("[green]No flags raised[/green]")
        return
    table = Table(title=f"{len(flags)} flags")
    table.add_column("Case")
    table.add_column("Rule")
    table.add_column("Severity")
    table.add_column("Value", justify="right")
    table.add_column("Threshold", justify="right")
    table.add_column("Scope")
    for flag in flags:
        style = _SEVERITY_STYLE.get(flag.severity.value, "")
        table.add_row(
            case_numbers.get(flag.case_id) or flag.case_id,
            flag.flag_rule_id or "",
            f"[{style}]{flag.severity.value}[/{style}]" if style else flag.severity.value,
            f"{flag.metric_value:g}" if flag.metric_value is not None else "",
            f"{flag.threshold_value:g}" if flag.threshold_value is not None else "",
            flag.comparison_scope.value if flag.comparison_scope else "",
        )
    console.print(table)


def run_flags(args: argparse.Namespace) -> None:
    config, _ = load_config(args.config)
    cases = filter_active_cases(load_cases(args.cases_file))
    rules = load_rules(args.rules)
    history = filter_active_cases(load_cases(args.history)) if args.history else None

    flags = evaluate_cases_batch(cases, rules, history, config, max_workers=args.workers)
    case_numbers = {c.id: c.case_number for c in cases}
    print_flags(flags, case_numbers)

    if args.export_json:
        ExportService.export_flags_to_json(flags, args.export_json)
        console.print(f"\nFlags saved to: [cyan]{args.export_json}[/cyan]")
    if args.export_excel:
        ExcelHandler().write_excel(
            ExportService.flags_to_dataframe(flags, case_numbers),
            args.export_excel,
            sheet_name="Flags",
        )
        console.print(f"\nFlags saved to: [cyan]{args.export_excel}[/cyan]")


def _days(
    cases: Sequence[SurgicalCase], day: date | None, surgeon: str | None
) -> dict[date, list[SurgicalCase]]:
    days: dict[date, list[SurgicalCase]] = defaultdict(list)
    for case in cases:
        if case.is_cancelled:
            continue
        if day is not None and case.scheduled_date != day:
            continue
        if surgeon is not None and case.surgeon_id != surgeon:
            continue
        days[case.scheduled_date].append(case)
    return dict(sorted(days.items()))


def run_anomalies(args: argparse.Namespace) -> None:
    config, thresholds = load_config(args.config)
    cases = filter_active_cases(load_cases(args.cases_file))
    definitions = load_phase_definitions(args.phases)
    history = filter_active_cases(load_cases(args.history)) if args.history else cases

    medians = compute_procedure_medians(history, definitions)
    all_anomalies: list[tuple[str, AnomalyFlag]] = []
    for day, day_cases in _days(cases, args.date, args.surgeon).items():
        flags_by_case = detect_day_flags(day_cases, medians, definitions, thresholds, config.tz)
        day_anomalies = aggregate_day_flags(day_cases, flags_by_case)
        all_anomalies.extend(day_anomalies)
        if not day_anomalies:
            continue

        table = Table(title=day.isoformat())
        table.add_column("Case")
        table.add_column("In", justify="right")
        table.add_column("")
        table.add_column("Flag", style="bold")
        table.add_column("Detail")
        patient_in = {
            c.id: build_milestone_map(c).get(MilestoneName.PATIENT_IN) for c in day_cases
        }
        for case_number, flag in day_anomalies:
            style = _SEVERITY_STYLE.get(flag.severity.value, "")
            arrived = patient_in.get(flag.case_id)
            table.add_row(
                case_number,
                format_time_of_day(arrived.astimezone(config.tz) if arrived else None),
                flag.icon,
                f"[{style}]{flag.label}[/{style}]",
                flag.detail,
            )
        console.print(table)

    if not all_anomalies:
        console.print("[green]No anomalies detected[/green]")

    if args.export_json:
        ExportService.export_anomalies_to_json(all_anomalies, args.export_json)
        console.print(f"\nAnomalies saved to: [cyan]{args.export_json}[/cyan]")


def run_quality(args: argparse.Namespace) -> None:
    report = DataQualityReport(load_cases(args.cases_file))
    summary = report.get_summary()

    console.print("\nData Quality Summary:")
    console.print(f"  Total Cases: {summary['total_cases']}")
    console.print(f"  Cancelled Cases: {summary['cancelled_cases']}")
    console.print(
        f"  Complete Milestone Sets: {summary['complete_cases']} "
        f"({summary['completeness_rate'] * 100:.1f}%)"
    )
    console.print(f"  Evaluable Cases: {summary['evaluable_cases']}")
    console.print(f"  Cases With Sequence Errors: {summary['cases_with_sequence_errors']}")

    if args.report:
        report_path = Path(args.report)
        report.save_report(report_path, output_format=report_format(report_path))
        console.print(f"\nData quality report saved to: [cyan]{report_path}[/cyan]")


COMMANDS = {
    "kpis": run_kpis,
    "flags": run_flags,
    "anomalies": run_anomalies,
    "quality": run_quality,
}


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, verbose=args.verbose)

    try:
        validate_arguments(args)
        COMMANDS[args.command](args)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except PermissionError as e:
        console.print(f"[red]Permission error:[/red] {e}")
        sys.exit(1)
    except OrAnalyticsError as e:
        console.print(f"[red]Processing error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if args.verbose:
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
