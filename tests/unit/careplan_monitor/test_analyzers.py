"""Tests for the anomaly detector and the trend estimator."""

import math
from datetime import timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from careplan_monitor.domain.models import AlertLevel, AlertType
from careplan_monitor.services.analyzers import (
    TrendPredictor,
    analyze_trends,
    detect_anomalies,
)
from tests.fakes import NOW, FrozenClock, build_plan, build_snapshot, vital_series

VARIED_PREFIX = [70.0, 72.0] * 10


def _population_std(values: list[float]) -> float:
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


class TestAnomalyDetection:
    def test_outlier_four_prefix_deviations_away_is_urgent(self) -> None:
        prefix = [70.0, 72.0] * 50
        outlier = sum(prefix) / len(prefix) + 4 * _population_std(prefix)
        snapshot = build_snapshot(vital_signs=vital_series("heart_rate", prefix + [outlier]))

        [alert] = detect_anomalies(build_plan(), snapshot, NOW)

        assert alert.type == AlertType.ANOMALY
        assert alert.sub_type == "heart_rate"
        assert alert.level == AlertLevel.URGENT
        assert alert.message == "Urgent: Unusual heart rate reading detected"
        assert alert.data["zScore"] > 3
        assert alert.data["value"] == outlier
        assert len(alert.data["history"]) == 5

    def test_large_outlier_after_short_history_is_urgent(self) -> None:
        snapshot = build_snapshot(vital_signs=vital_series("heart_rate", VARIED_PREFIX + [120.0]))

        [alert] = detect_anomalies(build_plan(), snapshot, NOW)

        assert alert.level == AlertLevel.URGENT

    def test_moderate_deviation_is_warning(self) -> None:
        snapshot = build_snapshot(vital_signs=vital_series("heart_rate", VARIED_PREFIX + [75.0]))

        [alert] = detect_anomalies(build_plan(), snapshot, NOW)

        assert alert.level == AlertLevel.WARNING
        assert 2 < alert.data["zScore"] <= 3
        assert alert.message == "Unusual heart rate reading detected"

    def test_reported_statistics_cover_whole_history(self) -> None:
        values = VARIED_PREFIX + [120.0]
        snapshot = build_snapshot(vital_signs=vital_series("heart_rate", values))

        [alert] = detect_anomalies(build_plan(), snapshot, NOW)

        assert alert.data["mean"] == pytest.approx(sum(values) / len(values))
        assert alert.data["stdDev"] == pytest.approx(_population_std(values))

    @given(value=st.floats(min_value=-500, max_value=500), count=st.integers(min_value=5, max_value=30))
    def test_zero_variance_never_alerts(self, value: float, count: int) -> None:
        snapshot = build_snapshot(vital_signs=vital_series("temperature", [value] * count))

        assert detect_anomalies(build_plan(), snapshot, NOW) == []

    def test_fewer_than_five_samples_skipped(self) -> None:
        snapshot = build_snapshot(vital_signs=vital_series("heart_rate", [70, 70, 71, 200]))

        assert detect_anomalies(build_plan(), snapshot, NOW) == []

    def test_latest_sample_chosen_by_time_not_list_order(self) -> None:
        series = vital_series("heart_rate", VARIED_PREFIX + [120.0])
        shuffled = [series[-1]] + series[:-1]

        [alert] = detect_anomalies(build_plan(), build_snapshot(vital_signs=shuffled), NOW)

        assert alert.data["value"] == 120.0


class TestTrendAnalysis:
    def test_perfect_decline_is_significant(self) -> None:
        trends = analyze_trends(vital_series("oxygen_saturation", [98, 97, 96, 95, 94]))

        trend = trends["oxygen_saturation"]
        assert trend.direction == "declining"
        assert trend.slope == pytest.approx(-1.0)
        assert trend.significance == pytest.approx(1.0)
        assert len(trend.data) == 5

    def test_small_slope_is_stable(self) -> None:
        trend = analyze_trends(vital_series("temperature", [37.0, 37.05, 37.1]))["temperature"]

        assert trend.direction == "stable"

    def test_rising_values_are_improving(self) -> None:
        trend = analyze_trends(vital_series("heart_rate", [60, 62, 64]))["heart_rate"]

        assert trend.direction == "improving"

    def test_flat_series_reports_zero_significance(self) -> None:
        trend = analyze_trends(vital_series("heart_rate", [70, 70, 70, 70]))["heart_rate"]

        assert trend.direction == "stable"
        assert trend.significance == 0.0

    def test_needs_three_samples(self) -> None:
        assert analyze_trends(vital_series("heart_rate", [70, 60])) == {}

    def test_only_last_five_samples_kept_as_context(self) -> None:
        trend = analyze_trends(vital_series("heart_rate", list(range(100, 90, -1))))["heart_rate"]

        assert [m.value for m in trend.data] == [95, 94, 93, 92, 91]


class TestTrendPredictor:
    @pytest.fixture
    def clock(self) -> FrozenClock:
        return FrozenClock()

    def test_strong_decline_emits_warning_prediction(self, clock: FrozenClock) -> None:
        predictor = TrendPredictor(clock=clock)
        snapshot = build_snapshot(vital_signs=vital_series("oxygen_saturation", [98, 97, 96, 95]))

        [alert] = predictor.predict(build_plan(), snapshot)

        assert alert.type == AlertType.PREDICTION
        assert alert.level == AlertLevel.WARNING
        assert alert.message == "oxygen saturation shows a declining trend"
        assert alert.data["trend"]["direction"] == "declining"
        assert alert.data["recommendation"] == (
            "Consider adjusting care plan to address oxygen saturation"
        )

    def test_moderately_significant_decline_is_info(self, clock: FrozenClock) -> None:
        # slope -1.4, R² ~0.86
        predictor = TrendPredictor(clock=clock)
        snapshot = build_snapshot(vital_signs=vital_series("heart_rate", [80, 77, 78, 75, 74]))

        [alert] = predictor.predict(build_plan(), snapshot)

        assert alert.level == AlertLevel.INFO
        assert 0.7 < alert.data["trend"]["significance"] <= 0.9

    def test_cached_for_24_hours_per_plan(self, clock: FrozenClock) -> None:
        predictor = TrendPredictor(clock=clock)
        snapshot = build_snapshot(vital_signs=vital_series("oxygen_saturation", [98, 97, 96, 95]))

        assert predictor.predict(build_plan("p1"), snapshot)
        clock.advance(hours=23)
        assert predictor.predict(build_plan("p1"), snapshot) == []
        assert predictor.predict(build_plan("p2"), snapshot)

        clock.advance(hours=1, seconds=1)
        assert predictor.predict(build_plan("p1"), snapshot)

    def test_cache_set_even_without_predictions(self, clock: FrozenClock) -> None:
        predictor = TrendPredictor(clock=clock)
        stable = build_snapshot(vital_signs=vital_series("heart_rate", [70, 70, 70]))
        declining = build_snapshot(vital_signs=vital_series("heart_rate", [90, 80, 70]))

        assert predictor.predict(build_plan(), stable) == []
        clock.advance(hours=1)
        assert predictor.predict(build_plan(), declining) == []
        assert predictor.is_cached("plan-1")

    def test_noisy_decline_is_not_predicted(self, clock: FrozenClock) -> None:
        predictor = TrendPredictor(clock=clock)
        snapshot = build_snapshot(
            vital_signs=vital_series("heart_rate", [80, 70, 82, 65, 79], step=timedelta(minutes=5))
        )

        assert predictor.predict(build_plan(), snapshot) == []
