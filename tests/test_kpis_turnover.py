"""Tests for same-room, flip-room and surgical turnover KPIs."""

import pytest

from or_analytics.domain import CaseStatus
from or_analytics.kpis import (
    calculate_flip_room_turnover,
    calculate_surgical_turnovers,
    calculate_turnover_time,
)
from or_analytics.kpis.turnover import flip_room_turnovers, same_room_turnovers


@pytest.fixture
def room_day(make_case):
    """Three cases in one room: turnovers of 25 and 40 minutes."""
    return [
        make_case("a", start="07:30", milestones={"patient_in": "07:30", "patient_out": "09:00"}),
        make_case("b", start="09:30", milestones={"patient_in": "09:25", "patient_out": "11:00"}),
        make_case("c", start="11:00", milestones={"patient_in": "11:40", "patient_out": "12:30"}),
    ]


class TestSameRoomTurnover:
    """Tests for same-room turnover."""

    def test_turnovers_in_scheduled_order(self, room_day):
        """Test turnovers between consecutive cases of a room-day."""
        details = same_room_turnovers(list(reversed(room_day)))
        assert [(d.from_case_id, d.to_case_id, d.turnover_minutes) for d in details] == [
            ("a", "b", 25),
            ("b", "c", 40),
        ]
        assert details[0].room_name == "OR-1"
        assert details[0].date == "2025-03-10"

    def test_kpi(self, room_day):
        """Test mean turnover and compliance."""
        result = calculate_turnover_time(room_day)
        assert result.value == 33
        assert result.display_value == "33 min"
        assert result.compliant_count == 1
        assert result.non_compliant_count == 1
        assert result.compliance_rate == 50
        assert result.target_met is False
        assert result.subtitle == "50% under 30 min target · 2 turnovers"

    def test_implausible_turnovers_excluded(self, make_case):
        """Test that overlaps and gaps of three hours or more are dropped."""
        cases = [
            make_case("a", start="07:30", milestones={"patient_in": "07:30", "patient_out": "09:00"}),
            make_case("b", start="08:30", milestones={"patient_in": "08:50", "patient_out": "10:00"}),
            make_case("c", start="13:00", milestones={"patient_in": "13:00", "patient_out": "14:00"}),
        ]
        assert same_room_turnovers(cases) == []

    def test_cancelled_cases_skipped(self, room_day, make_case):
        """Test that a cancelled case does not break the room timeline."""
        cancelled = make_case("x", start="09:15", status=CaseStatus.CANCELLED)
        details = same_room_turnovers([*room_day, cancelled])
        assert [d.to_case_id for d in details] == ["b", "c"]

    def test_no_data(self, make_case):
        """Test the empty state."""
        result = calculate_turnover_time([make_case("a")])
        assert result.display_value == "--"
        assert result.details == []

    def test_delta(self, room_day, make_case):
        """Test that a shorter turnover than last period reads as an increase."""
        previous = [
            make_case("p1", start="07:30", milestones={"patient_in": "07:30", "patient_out": "08:00"}),
            make_case("p2", start="08:30", milestones={"patient_in": "08:50", "patient_out": "09:30"}),
        ]
        result = calculate_turnover_time(room_day, previous)
        assert result.delta == 35
        assert result.delta_type == "increase"


class TestFlipRoomTurnover:
    """Tests for flip-room turnover."""

    @pytest.fixture
    def flip_day(self, make_case):
        """Surgeon s-1 flips from OR-1 to OR-2, where s-2 finished at 09:05."""
        return [
            make_case(
                "a",
                room="or-1",
                surgeon="s-1",
                start="07:30",
                milestones={"patient_in": "07:30", "patient_out": "09:00"},
            ),
            make_case(
                "x",
                room="or-2",
                surgeon="s-2",
                start="07:30",
                milestones={"patient_in": "07:30", "patient_out": "09:05"},
            ),
            make_case(
                "f",
                room="or-2",
                surgeon="s-1",
                start="09:15",
                milestones={"patient_in": "09:20", "patient_out": "10:30"},
            ),
        ]

    def test_measured_against_destination_room(self, flip_day):
        """Test that the flip is measured from the room's previous occupant."""
        details = flip_room_turnovers(flip_day)
        assert len(details) == 1
        assert details[0].from_case_id == "x"
        assert details[0].to_case_id == "f"
        assert details[0].turnover_minutes == 15
        assert details[0].surgeon_id == "s-1"

    def test_kpi(self, flip_day):
        """Test the median flip turnover KPI."""
        result = calculate_flip_room_turnover(flip_day)
        assert result.value == 15
        assert result.compliance_rate == 100
        assert result.subtitle == "100% under 30 min target · 1 flips"

    def test_same_room_cases_are_never_flips(self, room_day):
        """Test that a surgeon staying in one room produces no flips."""
        assert flip_room_turnovers(room_day) == []

    def test_flip_into_empty_room(self, make_case):
        """Test that a flip into a room with no earlier case has no turnover."""
        cases = [
            make_case("a", room="or-1", milestones={"patient_in": "07:30", "patient_out": "09:00"}),
            make_case(
                "f",
                room="or-2",
                start="09:15",
                milestones={"patient_in": "09:20", "patient_out": "10:30"},
            ),
        ]
        assert flip_room_turnovers(cases) == []
        assert calculate_flip_room_turnover(cases).display_value == "--"

    def test_implausible_flip_excluded(self, flip_day, make_case):
        """Test that an overlapping predecessor yields no flip turnover."""
        late_predecessor = make_case(
            "x",
            room="or-2",
            surgeon="s-2",
            start="07:30",
            milestones={"patient_in": "07:30", "patient_out": "09:30"},
        )
        cases = [flip_day[0], late_predecessor, flip_day[2]]
        assert flip_room_turnovers(cases) == []


class TestSurgicalTurnovers:
    """Tests for surgeon-done to next-incision transitions."""

    def test_same_room_and_flip(self, make_case):
        """Test splitting transitions by room change."""
        cases = [
            make_case(
                "a",
                room="or-1",
                surgeon="s-1",
                milestones={"incision": "08:00", "closing_complete": "09:15"},
            ),
            make_case("b", room="or-1", surgeon="s-1", milestones={"incision": "10:00"}),
            make_case(
                "d",
                room="or-3",
                surgeon="s-2",
                milestones={"incision": "08:00", "closing_complete": "09:00"},
            ),
            make_case("e", room="or-4", surgeon="s-2", milestones={"incision": "09:10"}),
        ]
        result = calculate_surgical_turnovers(cases)
        assert result.total_transitions == 2
        assert result.same_room_count == 1
        assert result.flip_room_count == 1
        assert result.standard_turnover.value == 45
        assert result.standard_turnover.target_met is True
        assert result.flip_room_time.value == 10
        assert result.flip_room_time.target_met is True

    def test_overlap_counts_as_zero(self, make_case):
        """Test that an incision before the surgeon is done counts as zero."""
        cases = [
            make_case(
                "a", room="or-1", milestones={"incision": "08:00", "closing_complete": "09:15"}
            ),
            make_case("b", room="or-2", milestones={"incision": "09:00"}),
        ]
        result = calculate_surgical_turnovers(cases)
        assert result.flip_room_time.value == 0

    def test_no_data(self, make_case):
        """Test the empty states."""
        result = calculate_surgical_turnovers([make_case("a")])
        assert result.total_transitions == 0
        assert result.standard_turnover.display_value == "--"
        assert result.flip_room_time.subtitle == "No flip room data"
