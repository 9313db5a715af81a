"""Configuration records and constants for OR analytics."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ConfigurationError

# A baseline or procedure median needs at least this many observations
MIN_BASELINE_SAMPLES = 3

# Daily trackers keep the most recent N days
TRACKER_WINDOW_DAYS = 30

FCOTS_MILESTONES = ("patient_in", "incision")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(key: str) -> str:
    """Convert a camelCase configuration key to snake_case."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _kwargs_from_mapping(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        name = to_snake_case(key)
        if name not in known:
            raise ConfigurationError(f"Unknown configuration key: {key}", key=key)
        kwargs[name] = value
    return kwargs


@dataclass(frozen=True)
class AnalyticsConfig:
    """Facility analytics configuration: every KPI threshold and target."""

    # First case on-time start
    fcots_milestone: str = "patient_in"
    fcots_grace_minutes: float = 2
    fcots_target_percent: float = 85
    fcots_yellow_band_percent: float = 15

    # Room turnover (same-room and flip-room)
    turnover_threshold_minutes: float = 30
    turnover_compliance_target: float = 80
    turnover_max_minutes: float = 180
    turnover_yellow_band_minutes: float = 10

    # Surgical turnover (surgeon done -> next incision)
    surgical_turnover_same_room_target_minutes: float = 45
    surgical_turnover_flip_target_minutes: float = 15

    # OR utilization
    utilization_target_percent: float = 75
    utilization_yellow_band_percent: float = 15
    utilization_cap_percent: float = 150
    default_room_hours: float = 10
    room_hours: Mapping[str, float] = field(default_factory=dict)

    cancellation_target_percent: float = 5

    tardiness_target_minutes: float = 45
    tardiness_green_minutes: float = 30

    non_op_warn_minutes: float = 30
    non_op_bad_minutes: float = 40

    # Surgeon idle time
    idle_combined_target_minutes: float = 10
    idle_flip_target_minutes: float = 5
    idle_same_room_target_minutes: float = 10
    idle_flip_buffer_minutes: float = 5
    idle_same_room_buffer_minutes: float = 3
    idle_same_room_alert_minutes: float = 15

    facility_timezone: str = "UTC"

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in {"fcots_milestone", "facility_timezone", "room_hours"}:
                continue
            if not _is_number(value):
                raise ConfigurationError(
                    f"Configuration value {f.name} must be numeric, got {value!r}",
                    key=f.name,
                )
            if value < 0:
                raise ConfigurationError(
                    f"Configuration value {f.name} must not be negative",
                    key=f.name,
                )

        if self.fcots_milestone not in FCOTS_MILESTONES:
            raise ConfigurationError(
                f"fcots_milestone must be one of {FCOTS_MILESTONES}, "
                f"got {self.fcots_milestone!r}",
                key="fcots_milestone",
            )
        if self.default_room_hours <= 0:
            raise ConfigurationError(
                "default_room_hours must be positive", key="default_room_hours"
            )
        for room_id, hours in self.room_hours.items():
            if not _is_number(hours) or hours <= 0:
                raise ConfigurationError(
                    f"Available hours for room {room_id} must be a positive number",
                    key="room_hours",
                )
        try:
            ZoneInfo(self.facility_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown facility timezone: {self.facility_timezone}",
                key="facility_timezone",
            ) from e

    @property
    def tz(self) -> ZoneInfo:
        """Facility time zone used for scheduled times and calendar dates."""
        return ZoneInfo(self.facility_timezone)

    def hours_for_room(self, room_id: str | None) -> tuple[float, bool]:
        """Return (available hours, configured) for a room."""
        if room_id is not None and room_id in self.room_hours:
            return float(self.room_hours[room_id]), True
        return float(self.default_room_hours), False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AnalyticsConfig:
        """Build a config from snake_case or camelCase keys."""
        return cls(**_kwargs_from_mapping(cls, data))


@dataclass(frozen=True)
class FlagThresholds:
    """Thresholds for the same-day case anomaly detector."""

    late_start_minutes: float = 10
    long_turnover_minutes: float = 30
    phase_extended_pct: float = 0.40
    subphase_extended_pct: float = 0.30
    fast_case_pct: float = 0.15

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not _is_number(value) or value < 0:
                raise ConfigurationError(
                    f"Flag threshold {f.name} must be a non-negative number",
                    key=f.name,
                )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> FlagThresholds:
        """Build thresholds from snake_case or camelCase keys."""
        return cls(**_kwargs_from_mapping(cls, data))


def split_config_mapping(
    data: Mapping[str, Any],
) -> tuple[AnalyticsConfig, FlagThresholds]:
    """Split one flat settings mapping into analytics config and flag thresholds."""
    analytics_keys = {f.name for f in fields(AnalyticsConfig)}
    threshold_keys = {f.name for f in fields(FlagThresholds)}

    analytics: dict[str, Any] = {}
    thresholds: dict[str, Any] = {}
    for key, value in data.items():
        name = to_snake_case(key)
        if name in analytics_keys:
            analytics[name] = value
        elif name in threshold_keys:
            thresholds[name] = value
        else:
            raise ConfigurationError(f"Unknown configuration key: {key}", key=key)

    return AnalyticsConfig(**analytics), FlagThresholds(**thresholds)
