"""Tests for configuration records and domain models."""

from datetime import datetime

import pytest

from or_analytics.domain import (
    CaseStatus,
    CaseMilestone,
    ComparisonScope,
    FlagRule,
    Operator,
    SurgicalCase,
    ThresholdType,
)
from or_analytics.exceptions import ConfigurationError
from or_analytics.models import (
    AnalyticsConfig,
    FlagThresholds,
    split_config_mapping,
    to_snake_case,
)


class TestAnalyticsConfig:
    """Tests for the analytics configuration."""

    def test_defaults(self):
        """Test default thresholds and targets."""
        config = AnalyticsConfig()
        assert config.fcots_milestone == "patient_in"
        assert config.fcots_grace_minutes == 2
        assert config.turnover_threshold_minutes == 30
        assert config.utilization_target_percent == 75
        assert config.default_room_hours == 10

    def test_camel_case_keys(self):
        """Test that camelCase keys are accepted."""
        config = AnalyticsConfig.from_mapping(
            {"fcotsGraceMinutes": 5, "roomHours": {"or-1": 8}}
        )
        assert config.fcots_grace_minutes == 5
        assert config.hours_for_room("or-1") == (8.0, True)
        assert config.hours_for_room("or-2") == (10.0, False)
        assert config.hours_for_room(None) == (10.0, False)

    def test_unknown_key(self):
        """Test that unknown keys are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown configuration key") as exc_info:
            AnalyticsConfig.from_mapping({"bogus": 1})
        assert exc_info.value.key == "bogus"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"fcots_grace_minutes": -1},
            {"fcots_grace_minutes": "2"},
            {"fcots_milestone": "closing"},
            {"default_room_hours": 0},
            {"room_hours": {"or-1": 0}},
            {"facility_timezone": "Mars/Olympus"},
        ],
    )
    def test_invalid_values(self, kwargs):
        """Test that invalid values raise ConfigurationError naming the setting."""
        with pytest.raises(ConfigurationError) as exc_info:
            AnalyticsConfig(**kwargs)
        assert exc_info.value.key == next(iter(kwargs))

    def test_timezone(self):
        """Test that the facility zone resolves."""
        assert str(AnalyticsConfig(facility_timezone="America/Chicago").tz) == "America/Chicago"


class TestFlagThresholds:
    """Tests for anomaly detector thresholds."""

    def test_defaults(self):
        """Test default anomaly thresholds."""
        thresholds = FlagThresholds()
        assert thresholds.late_start_minutes == 10
        assert thresholds.long_turnover_minutes == 30
        assert thresholds.phase_extended_pct == 0.40
        assert thresholds.subphase_extended_pct == 0.30
        assert thresholds.fast_case_pct == 0.15

    def test_negative_rejected(self):
        """Test that negative thresholds are rejected."""
        with pytest.raises(ConfigurationError):
            FlagThresholds(late_start_minutes=-1)


def test_split_config_mapping():
    """Test splitting one settings object into both records."""
    config, thresholds = split_config_mapping(
        {"turnoverThresholdMinutes": 25, "lateStartMinutes": 5}
    )
    assert config.turnover_threshold_minutes == 25
    assert thresholds.late_start_minutes == 5

    with pytest.raises(ConfigurationError):
        split_config_mapping({"nope": 1})


def test_to_snake_case():
    """Test camelCase conversion."""
    assert to_snake_case("fcotsGraceMinutes") == "fcots_grace_minutes"
    assert to_snake_case("already_snake") == "already_snake"


class TestDomainModels:
    """Tests for pydantic domain models."""

    def test_naive_timestamp_treated_as_utc(self):
        """Test that naive milestone timestamps become UTC."""
        milestone = CaseMilestone(name="incision", recorded_at=datetime(2025, 3, 10, 8, 0))
        assert milestone.recorded_at.utcoffset().total_seconds() == 0

    def test_case_from_json(self):
        """Test parsing a case from JSON-like data."""
        case = SurgicalCase.model_validate(
            {
                "id": "c1",
                "scheduled_date": "2025-03-10",
                "start_time": "07:30:00",
                "status": "cancelled",
                "milestones": [
                    {"name": "patient_in", "recorded_at": "2025-03-10T07:31:00Z"}
                ],
            }
        )
        assert case.is_cancelled
        assert case.status == CaseStatus.CANCELLED
        assert case.display_room == "Unknown"
        assert len(case.milestones) == 1

    def test_rule_defaults_and_liveness(self):
        """Test rule defaults and the live check."""
        rule = FlagRule(id="r1", metric="total_case_time")
        assert rule.operator == Operator.GT
        assert rule.threshold_type == ThresholdType.ABSOLUTE
        assert rule.comparison_scope == ComparisonScope.FACILITY
        assert rule.is_live
        assert not rule.model_copy(update={"is_enabled": False}).is_live
        assert not rule.model_copy(update={"deleted_at": datetime(2025, 1, 1)}).is_live
