"""I/O operations: JSON input loaders and the Excel writer."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, TypeVar

import pandas as pd
from openpyxl.utils import get_column_letter
from pydantic import TypeAdapter, ValidationError

from .domain import FlagRule, PhaseDefinition, SurgicalCase
from .exceptions import DataValidationError, FileProcessingError
from .models import AnalyticsConfig, FlagThresholds, split_config_mapping

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CASES = TypeAdapter(list[SurgicalCase])
_RULES = TypeAdapter(list[FlagRule])
_PHASES = TypeAdapter(list[PhaseDefinition])


def read_json(file_path: str | Path) -> Any:
    """Read and parse a JSON file."""
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileProcessingError(f"Input file not found: {file_path}")

    if file_path.suffix.lower() != ".json":
        raise FileProcessingError(
            f"Unsupported file format: {file_path.suffix}. Expected .json"
        )

    try:
        logger.info("Reading JSON file: %s", file_path)
        with file_path.open(encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise FileProcessingError(f"Invalid JSON in {file_path}: {e}") from e
    except OSError as e:
        logger.error("Error reading JSON file %s: %s", file_path, e)
        raise FileProcessingError(f"Could not read {file_path}: {e}") from e


def _records(data: Any, key: str) -> Any:
    """Accept either a bare list or an object wrapping the list under ``key``."""
    if isinstance(data, Mapping):
        if key not in data:
            raise DataValidationError(f"Expected a list or an object with a '{key}' key")
        return data[key]
    return data


def _validate(adapter: TypeAdapter[list[T]], data: Any, file_path: str | Path) -> list[T]:
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        raise DataValidationError(
            f"{file_path}: {e.error_count()} validation errors\n{e}",
            error_count=e.error_count(),
        ) from e


def load_cases(file_path: str | Path) -> list[SurgicalCase]:
    """Load surgical cases from a JSON file."""
    cases = _validate(_CASES, _records(read_json(file_path), "cases"), file_path)
    logger.info("Loaded %d cases from %s", len(cases), file_path)
    return cases


def load_rules(file_path: str | Path) -> list[FlagRule]:
    """Load flag rules from a JSON file."""
    rules = _validate(_RULES, _records(read_json(file_path), "rules"), file_path)
    logger.info("Loaded %d flag rules from %s", len(rules), file_path)
    return rules


def load_phase_definitions(file_path: str | Path) -> list[PhaseDefinition]:
    """Load phase definitions from a JSON file."""
    phases = _validate(_PHASES, _records(read_json(file_path), "phases"), file_path)
    logger.info("Loaded %d phase definitions from %s", len(phases), file_path)
    return phases


def load_config(file_path: str | Path | None) -> tuple[AnalyticsConfig, FlagThresholds]:
    """Load analytics configuration and flag thresholds; defaults when no file."""
    if file_path is None:
        return AnalyticsConfig(), FlagThresholds()
    data = read_json(file_path)
    if not isinstance(data, Mapping):
        raise DataValidationError(f"{file_path}: configuration must be a JSON object")
    return split_config_mapping(data)


class ExcelHandler:
    """Handles Excel output."""

    def __init__(self, max_width: int = 60):
        """Initialize with maximum column width setting."""
        self.max_width = max_width

    def write_excel(
        self,
        df: pd.DataFrame,
        file_path: str | Path,
        sheet_name: str = "Flags",
        fixed_widths: dict[str, int] | None = None,
    ) -> None:
        """Write a DataFrame to an Excel file with auto-sized columns."""
        self.write_sheets({sheet_name: df}, file_path, fixed_widths)

    def write_sheets(
        self,
        sheets: Mapping[str, pd.DataFrame],
        file_path: str | Path,
        fixed_widths: dict[str, int] | None = None,
    ) -> None:
        """Write several DataFrames to one workbook, one sheet each."""
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            logger.info("Writing Excel file: %s", file_path)
            with pd.ExcelWriter(file_path, engine="openpyxl") as writer:
                for sheet_name, df in sheets.items():
                    df.to_excel(writer, sheet_name=sheet_name, index=False)
                    self._autosize_columns(writer, df, sheet_name, fixed_widths)
            logger.info(
                "Successfully wrote %d sheets to %s", len(sheets), file_path
            )
        except PermissionError:
            logger.error("Permission denied writing to %s. Is the file open?", file_path)
            raise
        except Exception as e:
            logger.error("Error writing Excel file %s: %s", file_path, e)
            raise

    def _autosize_columns(
        self,
        writer: pd.ExcelWriter,
        df: pd.DataFrame,
        sheet_name: str,
        fixed_widths: dict[str, int] | None = None,
    ) -> None:
        """Set column widths based on content length."""
        worksheet = writer.sheets[sheet_name]
        fixed_widths = fixed_widths or {}

        for idx, column in enumerate(df.columns, start=1):
            letter = get_column_letter(idx)
            if column in fixed_widths:
                worksheet.column_dimensions[letter].width = fixed_widths[column]
                continue

            content_lengths = [len(str(column))] + [len(str(cell)) for cell in df[column]]
            worksheet.column_dimensions[letter].width = min(
                max(content_lengths) + 2, self.max_width
            )
