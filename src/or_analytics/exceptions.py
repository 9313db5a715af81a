"""Exception hierarchy for OR analytics.

Everything raised on purpose derives from ``OrAnalyticsError`` so the CLI can
report it with a single handler.
"""

from __future__ import annotations


class OrAnalyticsError(Exception):
    """Base exception for OR analytics errors."""


class DataValidationError(OrAnalyticsError):
    """Input records failed schema validation at the loader boundary.

    ``error_count`` is the number of individual field errors, when known.
    """

    def __init__(self, message: str, error_count: int | None = None) -> None:
        super().__init__(message)
        self.error_count = error_count


class FileProcessingError(OrAnalyticsError):
    """An input file could not be read or an output could not be written."""


class ConfigurationError(OrAnalyticsError):
    """A threshold, target or other setting is invalid.

    ``key`` names the offending setting as the caller spelled it.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key
