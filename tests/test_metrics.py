"""Tests for the named metric table."""

import pytest

from or_analytics.domain import CompletionStats
from or_analytics.metrics import (
    METRICS_CATALOG,
    MetricCategory,
    count_missing_milestones,
    count_sequence_violations,
    extract_metric_value,
    get_metric,
    metrics_by_category,
)
from or_analytics.milestones import build_milestone_map


@pytest.mark.parametrize(
    ("metric", "expected"),
    [
        ("total_case_time", 120),
        ("surgical_time", 60),
        ("pre_op_time", 30),
        ("anesthesia_time", 15),
        ("closing_time", 15),
        ("emergence_time", 15),
        ("prep_to_incision", 5),
        ("surgeon_readiness_gap", 5),
        ("fcots_delay", 0),
        ("missing_milestones", 0),
        ("milestone_out_of_order", 0),
    ],
)
def test_timing_metrics(full_case, metric, expected):
    """Test timing and quality metrics of a complete case."""
    milestones = build_milestone_map(full_case)
    assert extract_metric_value(full_case, milestones, metric) == expected


def test_explicit_milestone_pair(full_case):
    """Test that an explicit pair wins over the metric name."""
    milestones = build_milestone_map(full_case)
    assert extract_metric_value(full_case, milestones, "custom", "incision", "patient_out") == 90
    assert extract_metric_value(full_case, milestones, "custom", "incision", "bogus") is None


def test_unknown_metric(full_case):
    """Test that unknown metrics resolve to None."""
    assert extract_metric_value(full_case, build_milestone_map(full_case), "nope") is None


def test_missing_milestone_yields_none(make_case):
    """Test that a missing endpoint yields None."""
    case = make_case("a", milestones={"patient_in": "07:30"})
    assert extract_metric_value(case, build_milestone_map(case), "total_case_time") is None


class TestFinancialMetrics:
    """Tests for metrics derived from completion stats."""

    @pytest.fixture
    def financial_case(self, make_case):
        """A case with profit, costs and expected reimbursement."""
        return make_case(
            "fin",
            expected_reimbursement=2500,
            completion_stats=CompletionStats(
                profit=500,
                reimbursement=2000,
                total_debits=1000,
                or_time_cost=500,
                total_duration_minutes=100,
                or_hourly_rate=1200,
            ),
        )

    @pytest.mark.parametrize(
        ("metric", "expected"),
        [
            ("case_profit", 500),
            ("case_margin", 25),
            ("profit_per_minute", 5),
            ("total_case_cost", 1500),
            ("reimbursement_variance", -20),
            ("or_time_cost", 500),
        ],
    )
    def test_values(self, financial_case, metric, expected):
        """Test each financial metric."""
        milestones = build_milestone_map(financial_case)
        assert extract_metric_value(financial_case, milestones, metric) == pytest.approx(expected)

    def test_without_stats(self, make_case):
        """Test that financial metrics need completion stats."""
        case = make_case("a")
        assert extract_metric_value(case, {}, "case_margin") is None
        assert extract_metric_value(case, {}, "case_profit") is None


class TestMilestoneQuality:
    """Tests for missing and out-of-order milestone counts."""

    def test_missing(self, make_case):
        """Test counting core milestones without timestamps."""
        case = make_case("a", milestones={"patient_in": "07:30", "patient_out": "09:00"})
        assert count_missing_milestones(build_milestone_map(case)) == 6

    def test_out_of_order(self, make_case):
        """Test counting adjacent recorded milestones that go backwards."""
        case = make_case(
            "a",
            milestones={"patient_in": "07:30", "incision": "07:20", "patient_out": "09:00"},
        )
        assert count_sequence_violations(build_milestone_map(case)) == 1


def test_catalog():
    """Test catalog lookups."""
    assert get_metric("total_case_time").unit == "min"
    assert get_metric("dynamic") is None
    assert {m.id for m in metrics_by_category(MetricCategory.QUALITY)} == {
        "missing_milestones",
        "milestone_out_of_order",
    }
    assert len({m.id for m in METRICS_CATALOG}) == len(METRICS_CATALOG)
