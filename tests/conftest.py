"""Shared fixtures: factories for cases, rules and phase definitions."""

import logging
from datetime import UTC, date, datetime, time

import pytest

from or_analytics.domain import (
    CaseMilestone,
    CaseStatus,
    FlagRule,
    PhaseDefinition,
    SurgicalCase,
)
from or_analytics.logging_config import PACKAGE_LOGGER

DAY = date(2025, 3, 10)


def _at(hhmm: str, day: date = DAY) -> datetime:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime(day.year, day.month, day.day, hours, minutes, tzinfo=UTC)


def _make_case(
    case_id: str,
    *,
    day: date = DAY,
    start: str | None = "07:30",
    room: str | None = "or-1",
    surgeon: str | None = "s-1",
    procedure: str | None = None,
    status: CaseStatus = CaseStatus.COMPLETED,
    milestones: dict[str, str] | None = None,
    **fields,
) -> SurgicalCase:
    """Build a case whose milestones are given as ``{name: "HH:MM"}`` on ``day``."""
    events = [
        CaseMilestone(name=name, facility_milestone_id=f"fm-{name}", recorded_at=_at(hhmm, day))
        for name, hhmm in (milestones or {}).items()
    ]
    return SurgicalCase(
        id=case_id,
        case_number=f"C-{case_id}",
        facility_id="fac-1",
        scheduled_date=day,
        start_time=time.fromisoformat(start) if start else None,
        surgeon_id=surgeon,
        surgeon_name=f"Dr. {surgeon}" if surgeon else None,
        or_room_id=room,
        room_name=room.upper() if room else None,
        procedure_type_id=procedure,
        status=status,
        milestones=events,
        **fields,
    )


def _make_rule(rule_id: str = "r-1", **fields) -> FlagRule:
    return FlagRule(id=rule_id, facility_id="fac-1", name=rule_id, **fields)


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Drop handlers installed by setup_logging so they do not outlive a test."""
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def day():
    """The default scheduled date used by the factories."""
    return DAY


@pytest.fixture
def at():
    """Factory: 'HH:MM' on the default day (or a given day) as an aware UTC datetime."""
    return _at


@pytest.fixture
def make_case():
    """Factory for SurgicalCase records."""
    return _make_case


@pytest.fixture
def make_rule():
    """Factory for FlagRule records."""
    return _make_rule


@pytest.fixture
def full_case():
    """A complete case running 07:30 to 09:30 with every core milestone."""
    return _make_case(
        "full",
        procedure="proc-knee",
        milestones={
            "patient_in": "07:30",
            "anes_start": "07:35",
            "anes_end": "07:50",
            "prep_drape_complete": "07:55",
            "incision": "08:00",
            "closing": "09:00",
            "closing_complete": "09:15",
            "patient_out": "09:30",
        },
    )


@pytest.fixture
def phase_definitions():
    """Pre-op, surgical and closing phases, with anesthesia as a pre-op sub-phase."""
    return [
        PhaseDefinition(
            id="pre_op",
            name="pre_op",
            display_name="Pre-Op",
            display_order=1,
            color_key="blue",
            start_milestone_id="fm-patient_in",
            end_milestone_id="fm-incision",
        ),
        PhaseDefinition(
            id="anesthesia",
            name="anesthesia",
            display_name="Anesthesia",
            display_order=2,
            color_key="purple",
            parent_phase_id="pre_op",
            start_milestone_id="fm-anes_start",
            end_milestone_id="fm-anes_end",
        ),
        PhaseDefinition(
            id="surgical",
            name="surgical",
            display_name="Surgical",
            display_order=3,
            color_key="teal",
            start_milestone_id="fm-incision",
            end_milestone_id="fm-closing",
        ),
        PhaseDefinition(
            id="closing",
            name="closing",
            display_name="Closing",
            display_order=4,
            color_key="amber",
            start_milestone_id="fm-closing",
            end_milestone_id="fm-patient_out",
        ),
    ]
