"""
Statistical analyzers over vital-sign history.

- Anomaly detector: z-score of the latest sample against the mean and
  population standard deviation of the whole history for that vital type.
- Trend estimator: ordinary least-squares fit of value against sample index,
  with R² reported as the trend's significance.
"""

import statistics
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from careplan_monitor.domain.models import (
    Alert,
    AlertLevel,
    AlertType,
    CarePlan,
    CarePlanSnapshot,
    VitalSignMeasurement,
)
from careplan_monitor.services.protocols import Clock, SystemClock
from careplan_monitor.services.rules import alert_id, humanize

logger = structlog.get_logger(__name__)

MIN_ANOMALY_SAMPLES = 5
MIN_TREND_SAMPLES = 3
ANOMALY_WARNING_Z = 2.0
ANOMALY_URGENT_Z = 3.0
TREND_SLOPE_EPSILON = 0.1
PREDICTION_SIGNIFICANCE = 0.7
PREDICTION_WARNING_SIGNIFICANCE = 0.9
HISTORY_TAIL = 5

TrendDirection = Literal["improving", "declining", "stable"]


class TrendAnalysis(BaseModel):
    """Least-squares trend for one vital type."""

    direction: TrendDirection
    slope: float
    significance: float = Field(ge=0.0, description="|R²| of the fit")
    data: list[VitalSignMeasurement] = Field(description="Last samples, oldest first")

    def to_json_dict(self) -> dict:
        return {
            "direction": self.direction,
            "slope": self.slope,
            "significance": self.significance,
            "data": [m.to_json_dict() for m in self.data],
        }


def group_by_type(vitals: list[VitalSignMeasurement]) -> dict[str, list[VitalSignMeasurement]]:
    """Measurements per vital type, each list sorted by timestamp (stable)."""
    grouped: dict[str, list[VitalSignMeasurement]] = defaultdict(list)
    for measurement in vitals:
        grouped[measurement.type].append(measurement)
    return {
        vital_type: sorted(samples, key=lambda m: m.timestamp)
        for vital_type, samples in grouped.items()
    }


def detect_anomalies(plan: CarePlan, snapshot: CarePlanSnapshot, now: datetime) -> list[Alert]:
    alerts: list[Alert] = []

    for vital_type, samples in group_by_type(snapshot.vital_signs).items():
        if len(samples) < MIN_ANOMALY_SAMPLES:
            continue

        values = [m.value for m in samples]
        mean = statistics.fmean(values)
        std_dev = statistics.pstdev(values)
        if std_dev == 0:
            continue

        latest = samples[-1]
        z_score = abs(latest.value - mean) / std_dev
        if z_score <= ANOMALY_WARNING_Z:
            continue

        urgent = z_score > ANOMALY_URGENT_Z
        alerts.append(
            Alert(
                id=alert_id("anomaly", plan.id, now, vital_type),
                care_plan_id=plan.id,
                patient_id=plan.patient_id,
                type=AlertType.ANOMALY,
                sub_type=vital_type,
                level=AlertLevel.URGENT if urgent else AlertLevel.WARNING,
                message=f"{'Urgent: ' if urgent else ''}Unusual {humanize(vital_type)} reading detected",
                data={
                    "value": latest.value,
                    "timestamp": latest.timestamp.isoformat(),
                    "mean": mean,
                    "stdDev": std_dev,
                    "zScore": z_score,
                    "history": [m.to_json_dict() for m in samples[-HISTORY_TAIL:]],
                },
                timestamp=now,
            )
        )

    return alerts


def _fit_trend(samples: list[VitalSignMeasurement]) -> TrendAnalysis:
    n = len(samples)
    xs = range(n)
    ys = [m.value for m in samples]

    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys, strict=True))
    sum_xx = sum(x * x for x in xs)

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n

    if slope > TREND_SLOPE_EPSILON:
        direction: TrendDirection = "improving"
    elif slope < -TREND_SLOPE_EPSILON:
        direction = "declining"
    else:
        direction = "stable"

    mean_y = sum_y / n
    ss_total = sum((y - mean_y) ** 2 for y in ys)
    ss_residual = sum((y - (slope * x + intercept)) ** 2 for x, y in zip(xs, ys, strict=True))
    # A flat series explains nothing.
    r_squared = 0.0 if ss_total == 0 else 1 - ss_residual / ss_total

    return TrendAnalysis(
        direction=direction,
        slope=slope,
        significance=abs(r_squared),
        data=samples[-HISTORY_TAIL:],
    )


def analyze_trends(vitals: list[VitalSignMeasurement]) -> dict[str, TrendAnalysis]:
    """Trend per vital type that has at least three samples."""
    return {
        vital_type: _fit_trend(samples)
        for vital_type, samples in group_by_type(vitals).items()
        if len(samples) >= MIN_TREND_SAMPLES
    }


class TrendPredictor:
    """
    Emits prediction alerts for declining vital-sign trends.

    Results are cached per plan for ``ttl``; within that window ``predict``
    returns nothing for the plan, whether or not the last run produced alerts.
    """

    def __init__(self, clock: Clock | None = None, ttl: timedelta = timedelta(hours=24)) -> None:
        self.clock = clock or SystemClock()
        self.ttl = ttl
        self._last_run: dict[str, datetime] = {}
        self.logger = logger.bind(component="trend_predictor")

    def is_cached(self, care_plan_id: str) -> bool:
        last_run = self._last_run.get(care_plan_id)
        return last_run is not None and self.clock.now() - last_run < self.ttl

    def predict(self, plan: CarePlan, snapshot: CarePlanSnapshot) -> list[Alert]:
        if self.is_cached(plan.id):
            self.logger.debug("prediction_cache_hit", care_plan_id=plan.id)
            return []

        now = self.clock.now()
        alerts: list[Alert] = []

        for vital_type, trend in analyze_trends(snapshot.vital_signs).items():
            if trend.direction != "declining" or trend.significance <= PREDICTION_SIGNIFICANCE:
                continue

            level = (
                AlertLevel.WARNING
                if trend.significance > PREDICTION_WARNING_SIGNIFICANCE
                else AlertLevel.INFO
            )
            alerts.append(
                Alert(
                    id=alert_id("prediction", plan.id, now, vital_type),
                    care_plan_id=plan.id,
                    patient_id=plan.patient_id,
                    type=AlertType.PREDICTION,
                    sub_type=vital_type,
                    level=level,
                    message=f"{humanize(vital_type)} shows a declining trend",
                    data={
                        "trend": trend.to_json_dict(),
                        "recommendation": (
                            f"Consider adjusting care plan to address {humanize(vital_type)}"
                        ),
                    },
                    timestamp=now,
                )
            )

        self._last_run[plan.id] = now
        self.logger.debug("predictions_generated", care_plan_id=plan.id, count=len(alerts))
        return alerts
