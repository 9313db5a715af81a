"""Logging configuration for OR analytics.

Handlers are attached to the ``or_analytics`` package logger rather than the
root logger, so an application embedding the library keeps its own logging
setup. Output goes to stderr; stdout carries the CLI tables.
"""

from __future__ import annotations

import logging
import sys
from typing import Literal

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

PACKAGE_LOGGER = "or_analytics"

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_VERBOSE_FORMAT = "%(asctime)s - %(name)s:%(lineno)d - %(levelname)s - %(message)s"


class _PackageHandler(logging.StreamHandler):
    """Marks the handler installed by ``setup_logging`` so reruns replace it."""


def setup_logging(level: LogLevel = "INFO", verbose: bool = False) -> logging.Logger:
    """Configure the package logger and return it.

    ``verbose`` forces DEBUG and adds line numbers to each record. Calling this
    again replaces the previous handler instead of stacking another one.
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper())

    handler = _PackageHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(
        logging.Formatter(_VERBOSE_FORMAT if verbose else _FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    )

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in [h for h in package_logger.handlers if isinstance(h, _PackageHandler)]:
        package_logger.removeHandler(existing)
    package_logger.setLevel(log_level)
    package_logger.addHandler(handler)

    # Excel writing is chatty at DEBUG
    logging.getLogger("openpyxl").setLevel(logging.WARNING)
    logging.getLogger("pandas").setLevel(logging.WARNING)
    return package_logger
