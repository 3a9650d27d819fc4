"""
Monitoring configuration: polling interval, per-signal thresholds, feature flags.

A ``MonitoringConfig`` is immutable once loaded for a monitoring cycle and is
replaced wholesale on reload, never patched in place.
"""

from typing import Any

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from careplan_monitor.domain.models import CamelModel

_FROZEN = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RangeThreshold(CamelModel):
    """Normal band [min, max] nested inside the urgent band [urgent_min, urgent_max]."""

    model_config = _FROZEN

    min: float
    max: float
    unit: str = ""
    urgent_min: float
    urgent_max: float

    @model_validator(mode="after")
    def bands_are_nested(self) -> "RangeThreshold":
        if not (self.urgent_min <= self.min <= self.max <= self.urgent_max):
            raise ValueError(
                "range threshold requires urgentMin <= min <= max <= urgentMax, got "
                f"{self.urgent_min} <= {self.min} <= {self.max} <= {self.urgent_max}"
            )
        return self


class PercentThreshold(CamelModel):
    """Alert when a percentage falls below the warning or urgent threshold."""

    model_config = _FROZEN

    percent_threshold: float = Field(ge=0.0, le=100.0)
    percent_urgent: float = Field(ge=0.0, le=100.0)

    @model_validator(mode="after")
    def urgent_below_warning(self) -> "PercentThreshold":
        if self.percent_urgent > self.percent_threshold:
            raise ValueError("percentUrgent must not exceed percentThreshold")
        return self


class CountThreshold(CamelModel):
    """Alert when a count reaches the warning or urgent threshold."""

    model_config = _FROZEN

    count_threshold: int = Field(ge=0)
    count_urgent: int = Field(ge=0)

    @model_validator(mode="after")
    def urgent_above_warning(self) -> "CountThreshold":
        if self.count_urgent < self.count_threshold:
            raise ValueError("countUrgent must not be lower than countThreshold")
        return self


DEFAULT_VITAL_SIGN_THRESHOLDS: dict[str, RangeThreshold] = {
    "temperature": RangeThreshold(
        min=35.5, max=38.3, unit="°C", urgent_min=35.0, urgent_max=39.0
    ),
    "heart_rate": RangeThreshold(min=60, max=100, unit="bpm", urgent_min=50, urgent_max=120),
    "blood_pressure_systolic": RangeThreshold(
        min=90, max=140, unit="mmHg", urgent_min=80, urgent_max=160
    ),
    "blood_pressure_diastolic": RangeThreshold(
        min=60, max=90, unit="mmHg", urgent_min=50, urgent_max=100
    ),
    "oxygen_saturation": RangeThreshold(min=95, max=100, unit="%", urgent_min=90, urgent_max=100),
    "respiratory_rate": RangeThreshold(
        min=12, max=20, unit="breaths/min", urgent_min=10, urgent_max=30
    ),
}


class AlertThresholds(CamelModel):
    """Thresholds for every signal family. A missing table disables that check."""

    model_config = _FROZEN

    vital_signs: dict[str, RangeThreshold] = Field(
        default_factory=lambda: dict(DEFAULT_VITAL_SIGN_THRESHOLDS)
    )
    medication_compliance: PercentThreshold | None = Field(
        default_factory=lambda: PercentThreshold(percent_threshold=80, percent_urgent=60)
    )
    missed_visits: CountThreshold | None = Field(
        default_factory=lambda: CountThreshold(count_threshold=1, count_urgent=2)
    )
    task_completion: PercentThreshold | None = Field(
        default_factory=lambda: PercentThreshold(percent_threshold=70, percent_urgent=50)
    )

    def is_empty(self) -> bool:
        return (
            not self.vital_signs
            and self.medication_compliance is None
            and self.missed_visits is None
            and self.task_completion is None
        )


class MonitoringConfig(CamelModel):
    """Process-wide monitoring configuration."""

    model_config = _FROZEN

    polling_interval_seconds: float = Field(default=300.0, gt=0.0)
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    anomaly_detection_enabled: bool = True
    predictive_model_enabled: bool = True


def default_monitoring_config() -> MonitoringConfig:
    return MonitoringConfig()


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
