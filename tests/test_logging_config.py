"""Tests for logging configuration."""

import logging

from or_analytics.logging_config import PACKAGE_LOGGER, setup_logging


def _package_handlers():
    return [
        h
        for h in logging.getLogger(PACKAGE_LOGGER).handlers
        if type(h).__name__ == "_PackageHandler"
    ]


def test_configures_package_logger_not_root():
    """Test that the handler lands on the package logger and root is untouched."""
    root_handlers = list(logging.getLogger().handlers)
    logger = setup_logging(level="WARNING")
    assert logger.name == PACKAGE_LOGGER
    assert logger.level == logging.WARNING
    assert len(_package_handlers()) == 1
    assert logging.getLogger().handlers == root_handlers


def test_rerun_replaces_handler():
    """Test that calling setup twice keeps a single package handler."""
    setup_logging(level="INFO")
    setup_logging(level="ERROR")
    [handler] = _package_handlers()
    assert handler.level == logging.ERROR


def test_verbose_forces_debug_with_line_numbers(capsys):
    """Test that verbose mode logs DEBUG records with line numbers to stderr."""
    setup_logging(level="ERROR", verbose=True)
    logging.getLogger("or_analytics.kpis").debug("computing")
    captured = capsys.readouterr()
    assert "or_analytics.kpis:" in captured.err
    assert "computing" in captured.err
    assert captured.out == ""


def test_quiets_excel_libraries():
    """Test that pandas and openpyxl loggers are raised to WARNING."""
    setup_logging(verbose=True)
    assert logging.getLogger("openpyxl").level == logging.WARNING
    assert logging.getLogger("pandas").level == logging.WARNING
