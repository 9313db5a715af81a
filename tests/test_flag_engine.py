"""Tests for the rule-based flag engine."""

import logging

import pytest

from or_analytics.domain import (
    BaselineEntry,
    CompletionStats,
    ComparisonScope,
    FlagBaselines,
    Operator,
    Severity,
    ThresholdType,
)
from or_analytics.flag_engine import (
    build_batch_context,
    evaluate_against_rule,
    evaluate_case,
    evaluate_cases_batch,
    identify_first_cases,
    lookup_baseline,
    metric_sources,
    resolve_threshold,
)
from or_analytics.stats import median, percentile

BASELINE = BaselineEntry(median=60, std_dev=10, count=5)


class TestThresholds:
    """Tests for threshold resolution and comparison."""

    def test_median_plus_sd(self, make_rule):
        """Test median plus k standard deviations for an upper-bound rule."""
        rule = make_rule(
            metric="total_case_time",
            threshold_type=ThresholdType.MEDIAN_PLUS_SD,
            threshold_value=1,
        )
        assert resolve_threshold(rule, BASELINE) == 70
        assert evaluate_against_rule(75, rule, BASELINE) == (True, 70)
        assert evaluate_against_rule(65, rule, BASELINE) == (False, 70)

    def test_median_minus_sd_for_lower_bound(self, make_rule):
        """Test that lower-bound operators subtract the deviation."""
        rule = make_rule(
            metric="total_case_time",
            operator=Operator.LT,
            threshold_type=ThresholdType.MEDIAN_PLUS_SD,
            threshold_value=2,
        )
        assert resolve_threshold(rule, BASELINE) == 40
        assert evaluate_against_rule(35, rule, BASELINE)[0]

    def test_percentage_of_median(self, make_rule):
        """Test a percentage above and below the median."""
        above = make_rule(
            metric="m", threshold_type=ThresholdType.PERCENTAGE_OF_MEDIAN, threshold_value=20
        )
        below = above.model_copy(update={"operator": Operator.LTE})
        assert resolve_threshold(above, BASELINE) == pytest.approx(72)
        assert resolve_threshold(below, BASELINE) == pytest.approx(48)

    def test_percentile(self, make_rule):
        """Test percentile thresholds over kept baseline values."""
        baseline = BaselineEntry(median=25, std_dev=11, count=4, values=(10, 20, 30, 40))
        rule = make_rule(metric="m", threshold_type=ThresholdType.PERCENTILE, threshold_value=50)
        assert resolve_threshold(rule, baseline) == pytest.approx(25)
        assert resolve_threshold(rule, BASELINE) is None

    def test_percentile_50_matches_median(self):
        """Test that the 50th percentile equals the median of an even sample.

        This only holds when the middle pair averages to a whole number, since
        the median rounds and the percentile interpolates: for [1, 2] the median
        is 2 and the 50th percentile is 1.5.
        """
        values = [10, 20, 30, 40]
        assert percentile(values, 50) == median(values)
        assert (median([1, 2]), percentile([1, 2], 50)) == (2, 1.5)

    def test_between_is_inclusive(self, make_rule):
        """Test inclusive range checks."""
        rule = make_rule(
            metric="m",
            threshold_type=ThresholdType.BETWEEN,
            threshold_value=10,
            threshold_value_max=25,
        )
        assert evaluate_against_rule(15, rule, None) == (True, 10)
        assert evaluate_against_rule(25, rule, None)[0]
        assert evaluate_against_rule(10, rule, None)[0]
        assert not evaluate_against_rule(30, rule, None)[0]

    def test_between_without_max(self, make_rule):
        """Test that a range without an upper bound never triggers."""
        rule = make_rule(metric="m", threshold_type=ThresholdType.BETWEEN, threshold_value=10)
        assert evaluate_against_rule(15, rule, None) == (False, 0.0)

    def test_missing_baseline(self, make_rule):
        """Test that statistical rules without a baseline never trigger."""
        rule = make_rule(metric="m", threshold_type=ThresholdType.MEDIAN_PLUS_SD, threshold_value=1)
        assert evaluate_against_rule(1000, rule, None) == (False, 0.0)

    @pytest.mark.parametrize(
        ("op", "value", "expected"),
        [
            (Operator.GT, 10, False),
            (Operator.GTE, 10, True),
            (Operator.LT, 10, False),
            (Operator.LTE, 10, True),
            (Operator.LT, 9, True),
        ],
    )
    def test_operators(self, make_rule, op, value, expected):
        """Test each comparison operator at and around the threshold."""
        rule = make_rule(metric="m", operator=op, threshold_value=10)
        assert evaluate_against_rule(value, rule, None)[0] is expected


class TestLookupBaseline:
    """Tests for baseline lookup with fallback."""

    @pytest.fixture
    def baselines(self):
        """Facility and personal entries at two levels of detail."""
        return FlagBaselines(
            facility={
                "m": BaselineEntry(median=1, std_dev=0, count=3),
                "m:knee": BaselineEntry(median=2, std_dev=0, count=3),
            },
            personal={
                "m:s-1": BaselineEntry(median=3, std_dev=0, count=3),
                "m:s-1:knee": BaselineEntry(median=4, std_dev=0, count=3),
            },
        )

    def test_facility(self, make_rule, baselines):
        """Test procedure-specific facility lookup with fallback."""
        rule = make_rule(metric="m")
        assert lookup_baseline(baselines, rule, "s-1", "knee").median == 2
        assert lookup_baseline(baselines, rule, "s-1", "hip").median == 1
        assert lookup_baseline(baselines, rule, None, None).median == 1

    def test_personal(self, make_rule, baselines):
        """Test personal lookup with fallback, and no baseline without a surgeon."""
        rule = make_rule(metric="m", comparison_scope=ComparisonScope.PERSONAL)
        assert lookup_baseline(baselines, rule, "s-1", "knee").median == 4
        assert lookup_baseline(baselines, rule, "s-1", "hip").median == 3
        assert lookup_baseline(baselines, rule, None, "knee") is None
        assert lookup_baseline(baselines, rule, "s-2", "knee") is None


class TestEvaluateCase:
    """Tests for evaluating one case."""

    def test_absolute_rule(self, full_case, make_rule):
        """Test a flag raised by an absolute threshold."""
        rule = make_rule(metric="total_case_time", threshold_value=100, severity=Severity.CRITICAL)
        [flag] = evaluate_case(full_case, [rule], FlagBaselines(), None, frozenset())
        assert flag.case_id == "full"
        assert flag.facility_id == "fac-1"
        assert flag.flag_type == "threshold"
        assert flag.flag_rule_id == "r-1"
        assert flag.metric_value == 120
        assert flag.threshold_value == 100
        assert flag.severity == Severity.CRITICAL
        assert flag.comparison_scope == ComparisonScope.FACILITY

    def test_incomplete_case_not_flagged(self, make_case, make_rule):
        """Test that cases without patient in and out are skipped."""
        case = make_case("a", milestones={"patient_in": "07:00"})
        rule = make_rule(metric="missing_milestones", threshold_value=0)
        assert evaluate_case(case, [rule], FlagBaselines(), None, frozenset()) == []

    def test_disabled_and_deleted_rules_skipped(self, full_case, make_rule):
        """Test that only live rules are evaluated."""
        rules = [
            make_rule("off", metric="total_case_time", threshold_value=1, is_enabled=False),
            make_rule("inactive", metric="total_case_time", threshold_value=1, is_active=False),
        ]
        assert evaluate_case(full_case, rules, FlagBaselines(), None, frozenset()) == []

    def test_fcots_only_for_first_cases(self, full_case, make_case, make_rule):
        """Test that first-case delay applies only to first cases."""
        late = make_case(
            "late", start="07:00", milestones={"patient_in": "07:20", "patient_out": "08:00"}
        )
        rule = make_rule(metric="fcots_delay", threshold_value=10)
        assert evaluate_case(late, [rule], FlagBaselines(), None, frozenset()) == []
        [flag] = evaluate_case(late, [rule], FlagBaselines(), None, frozenset({"late"}))
        assert flag.metric_value == 20

    def test_excess_time_cost(self, make_case, make_rule):
        """Test the cost of minutes beyond the median case time."""
        case = make_case(
            "a",
            procedure="knee",
            milestones={"patient_in": "07:00", "patient_out": "09:00"},
            completion_stats=CompletionStats(total_duration_minutes=120, or_hourly_rate=600),
        )
        baselines = FlagBaselines(
            facility={"total_case_time:knee": BaselineEntry(median=90, std_dev=5, count=3)}
        )
        rule = make_rule(metric="excess_time_cost", threshold_value=200)
        [flag] = evaluate_case(case, [rule], baselines, None, frozenset())
        assert flag.metric_value == 300

    def test_values_rounded(self, make_case, make_rule):
        """Test that values are rounded to one decimal."""
        case = make_case(
            "a",
            milestones={"patient_in": "07:00", "patient_out": "08:00"},
            category_costs={"implants": 123.456},
        )
        rule = make_rule(metric="implant_cost", cost_category_id="implants", threshold_value=99.99)
        [flag] = evaluate_case(case, [rule], FlagBaselines(), None, frozenset())
        assert flag.metric_value == pytest.approx(123.5)
        assert flag.threshold_value == pytest.approx(100.0)


def _timed(make_case, case_id, out, **kwargs):
    return make_case(
        case_id,
        procedure="knee",
        milestones={"patient_in": "07:00", "patient_out": out},
        **kwargs,
    )


class TestEvaluateBatch:
    """Tests for batch evaluation."""

    @pytest.fixture
    def cases(self, make_case):
        """Five knee cases in separate rooms; one runs far longer than the rest."""
        outs = ["08:00", "08:05", "08:10", "07:55", "09:30"]
        return [
            _timed(make_case, f"c{i}", out, room=f"or-{i}") for i, out in enumerate(outs)
        ]

    def test_statistical_rule(self, cases, make_rule):
        """Test that the outlier is flagged against batch baselines."""
        rule = make_rule(
            metric="total_case_time",
            threshold_type=ThresholdType.MEDIAN_PLUS_SD,
            threshold_value=1,
        )
        flags = evaluate_cases_batch(cases, [rule])
        assert [f.case_id for f in flags] == ["c4"]
        assert flags[0].threshold_value == pytest.approx(100)

    def test_historical_baselines(self, cases, make_case, make_rule):
        """Test that explicit history replaces the batch as the baseline source."""
        history = [_timed(make_case, f"h{i}", "10:00") for i in range(3)]
        rule = make_rule(
            metric="total_case_time",
            threshold_type=ThresholdType.PERCENTAGE_OF_MEDIAN,
            threshold_value=10,
        )
        assert evaluate_cases_batch(cases, [rule], history) == []

    def test_order_preserved_with_workers(self, cases, make_rule):
        """Test that threaded evaluation returns flags in case order."""
        rules = [
            make_rule("a", metric="total_case_time", threshold_value=0),
            make_rule("b", metric="pre_op_time", threshold_value=0),
        ]
        serial = evaluate_cases_batch(cases, rules)
        threaded = evaluate_cases_batch(cases, rules, max_workers=4)
        assert serial == threaded
        assert [f.case_id for f in threaded] == ["c0", "c1", "c2", "c3", "c4"]

    def test_turnover_rule(self, make_case, make_rule):
        """Test that turnover rules use each case's incoming turnover."""
        day = [
            make_case("a", start="07:00", milestones={"patient_in": "07:00", "patient_out": "08:00"}),
            make_case("b", start="08:00", milestones={"patient_in": "08:45", "patient_out": "09:30"}),
            make_case("c", start="09:30", milestones={"patient_in": "09:50", "patient_out": "10:30"}),
        ]
        rule = make_rule(metric="turnover_time", threshold_value=30)
        flags = evaluate_cases_batch(day, [rule])
        assert [(f.case_id, f.metric_value) for f in flags] == [("b", 45)]

    def test_first_cases_from_evaluated_cases(self, make_case, make_rule):
        """Test that first cases come from the evaluated batch, not the history."""
        late = make_case(
            "late", start="08:00", milestones={"patient_in": "08:20", "patient_out": "09:00"}
        )
        history = [make_case("early", start="06:00")]
        context = build_batch_context(
            [make_rule(metric="fcots_delay", threshold_value=10)], [late], history
        )
        assert context.first_case_ids == frozenset({"late"})

    def test_empty_inputs(self, cases, make_rule):
        """Test that no cases or no rules yield no flags."""
        assert evaluate_cases_batch([], [make_rule(metric="m")]) == []
        assert evaluate_cases_batch(cases, []) == []
        assert evaluate_cases_batch(
            cases, [make_rule(metric="total_case_time", is_enabled=False)]
        ) == []


def test_identify_first_cases(make_case):
    """Test one first case per room-day."""
    cases = [
        make_case("a", room="or-1", start="07:30"),
        make_case("b", room="or-1", start="09:00"),
        make_case("c", room="or-2", start="08:00"),
    ]
    assert identify_first_cases(cases) == {"a", "c"}


def test_metric_sources(make_rule):
    """Test that only rules defining custom metrics are sources."""
    rules = [
        make_rule("plain", metric="total_case_time"),
        make_rule("pair", metric="x", start_milestone="incision", end_milestone="closing"),
        make_rule("cost", metric="y", cost_category_id="implants"),
    ]
    assert set(metric_sources(rules)) == {"x", "y"}


def test_skipped_rules_logged(cases_for_logging, make_rule, caplog):
    """Test that rules which are not live are logged and skipped."""
    caplog.set_level(logging.DEBUG, logger="or_analytics.flag_engine")
    rules = [
        make_rule("on", metric="total_case_time", threshold_value=1000),
        make_rule("off", metric="total_case_time", threshold_value=1, is_enabled=False),
    ]
    assert evaluate_cases_batch(cases_for_logging, rules) == []
    assert "Skipping 1 disabled, inactive or deleted rules" in caplog.text


@pytest.fixture
def cases_for_logging(full_case):
    """A single complete case."""
    return [full_case]
