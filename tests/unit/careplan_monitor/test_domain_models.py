"""
Tests for domain models and threshold validation.

Covers:
- camelCase wire shape and snake_case attributes
- Naive timestamps interpreted as UTC
- Threshold band invariants
- Config merging of partial remote payloads
"""

from datetime import UTC, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from careplan_monitor.domain.models import (
    Alert,
    AlertLevel,
    AlertStatus,
    AlertType,
    CarePlanSnapshot,
    SyncDrainResult,
    VitalSignMeasurement,
)
from careplan_monitor.domain.thresholds import (
    AlertThresholds,
    CountThreshold,
    MonitoringConfig,
    PercentThreshold,
    RangeThreshold,
    deep_merge,
    default_monitoring_config,
)


class TestAlert:
    def test_json_uses_camel_case_aliases(self) -> None:
        alert = Alert(
            id="vital_p1_heart_rate_1",
            care_plan_id="p1",
            type=AlertType.VITAL_SIGN,
            sub_type="heart_rate",
            level=AlertLevel.URGENT,
            message="Urgent: heart rate is 125 bpm (outside safe range)",
        )

        payload = alert.to_json_dict()

        assert payload["carePlanId"] == "p1"
        assert payload["subType"] == "heart_rate"
        assert payload["status"] == "new"
        assert payload["acknowledgedAt"] is None

    def test_round_trip_preserves_all_fields(self) -> None:
        alert = Alert(
            id="a1",
            care_plan_id="p1",
            patient_id="pt1",
            type=AlertType.ANOMALY,
            sub_type="temperature",
            level=AlertLevel.WARNING,
            message="Unusual temperature reading detected",
            data={"zScore": 2.5, "history": [{"value": 37.0}]},
            timestamp=datetime(2024, 6, 15, 12, tzinfo=UTC),
            status=AlertStatus.ACKNOWLEDGED,
            acknowledged_at=datetime(2024, 6, 15, 13, tzinfo=UTC),
        )

        assert Alert.model_validate(alert.to_json_dict()) == alert

    def test_signal_key_ignores_generation_time(self) -> None:
        first = Alert(
            id="a1", care_plan_id="p1", type=AlertType.VITAL_SIGN, sub_type="heart_rate",
            level=AlertLevel.WARNING, message="m",
        )
        second = first.model_copy(update={"id": "a2", "timestamp": datetime.now(UTC)})

        assert first.signal_key == second.signal_key

    def test_level_rank_orders_severity(self) -> None:
        assert AlertLevel.INFO.rank < AlertLevel.WARNING.rank < AlertLevel.URGENT.rank


class TestSnapshot:
    def test_parses_wire_payload_and_naive_timestamps_as_utc(self) -> None:
        snapshot = CarePlanSnapshot.model_validate(
            {
                "vitalSigns": [
                    {"type": "heart_rate", "value": 72, "unit": "bpm", "timestamp": "2024-06-15T10:00:00"}
                ],
                "medications": [{"status": "taken", "name": "metformin"}],
                "visits": [{"scheduledDate": "2024-06-14T09:00:00Z", "status": "missed"}],
                "tasks": [{"dueDate": "2024-06-14T09:00:00+02:00", "status": "completed"}],
            }
        )

        assert snapshot.vital_signs[0].timestamp == datetime(2024, 6, 15, 10, tzinfo=UTC)
        assert snapshot.tasks[0].due_date == datetime(2024, 6, 14, 7, tzinfo=UTC)
        assert snapshot.medications[0].status == "taken"

    def test_missing_sections_default_to_empty(self) -> None:
        snapshot = CarePlanSnapshot.model_validate({})
        assert snapshot.vital_signs == []
        assert snapshot.tasks == []

    def test_measurements_are_immutable(self) -> None:
        measurement = VitalSignMeasurement(
            type="heart_rate", value=70, timestamp=datetime(2024, 1, 1, tzinfo=UTC)
        )
        with pytest.raises(ValidationError, match="frozen"):
            measurement.value = 80  # type: ignore[misc]


class TestThresholds:
    def test_range_bands_must_nest(self) -> None:
        with pytest.raises(ValidationError, match="urgentMin <= min <= max <= urgentMax"):
            RangeThreshold(min=60, max=100, urgent_min=70, urgent_max=120)

    @given(
        st.floats(min_value=-1000, max_value=1000),
        st.floats(min_value=0, max_value=100),
        st.floats(min_value=0, max_value=100),
        st.floats(min_value=0, max_value=100),
    )
    def test_valid_nested_bands_always_accepted(
        self, low: float, a: float, b: float, c: float
    ) -> None:
        threshold = RangeThreshold(
            urgent_min=low, min=low + a, max=low + a + b, urgent_max=low + a + b + c
        )
        assert threshold.urgent_min <= threshold.min <= threshold.max <= threshold.urgent_max

    def test_percent_urgent_must_not_exceed_warning(self) -> None:
        with pytest.raises(ValidationError):
            PercentThreshold(percent_threshold=50, percent_urgent=60)

    def test_count_urgent_must_not_be_below_warning(self) -> None:
        with pytest.raises(ValidationError):
            CountThreshold(count_threshold=3, count_urgent=2)

    def test_defaults_cover_all_signal_families(self) -> None:
        config = default_monitoring_config()

        assert config.polling_interval_seconds == 300
        assert config.anomaly_detection_enabled and config.predictive_model_enabled
        assert config.thresholds.vital_signs["heart_rate"].urgent_max == 120
        assert config.thresholds.medication_compliance == PercentThreshold(
            percent_threshold=80, percent_urgent=60
        )
        assert not config.thresholds.is_empty()

    def test_empty_thresholds_detected(self) -> None:
        thresholds = AlertThresholds(
            vital_signs={}, medication_compliance=None, missed_visits=None, task_completion=None
        )
        assert thresholds.is_empty()

    def test_partial_remote_payload_merges_into_defaults(self) -> None:
        base = default_monitoring_config().to_json_dict()
        merged = deep_merge(
            base,
            {
                "pollingIntervalSeconds": 60,
                "thresholds": {"vitalSigns": {"heart_rate": {"max": 110, "urgentMax": 130}}},
            },
        )

        config = MonitoringConfig.model_validate(merged)

        assert config.polling_interval_seconds == 60
        assert config.thresholds.vital_signs["heart_rate"].max == 110
        assert config.thresholds.vital_signs["heart_rate"].min == 60
        assert "temperature" in config.thresholds.vital_signs


def test_sync_drain_results_add_up() -> None:
    total = SyncDrainResult(success_count=1, fail_count=2) + SyncDrainResult(
        success_count=3, conflict_count=1
    )
    assert total == SyncDrainResult(success_count=4, fail_count=2, conflict_count=1)
