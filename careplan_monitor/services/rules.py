"""
Rule evaluators: one pure function per signal family.

Each evaluator turns ``(plan, snapshot, thresholds, now)`` into zero or more
alerts. No I/O, no clock reads, no mutation of the snapshot.
"""

from datetime import datetime, timedelta
from typing import Any

from careplan_monitor.domain.models import (
    Alert,
    AlertLevel,
    AlertType,
    CarePlan,
    CarePlanSnapshot,
    VitalSignMeasurement,
)
from careplan_monitor.domain.thresholds import AlertThresholds, PercentThreshold

MISSED_VISIT_WINDOW = timedelta(days=7)


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def alert_id(prefix: str, care_plan_id: str, now: datetime, sub_type: str | None = None) -> str:
    """``<prefix>_<planId>[_<subType>]_<epoch-millis>``"""
    parts = [prefix, care_plan_id]
    if sub_type:
        parts.append(sub_type)
    parts.append(str(epoch_millis(now)))
    return "_".join(parts)


def humanize(signal: str) -> str:
    return signal.replace("_", " ")


def format_value(value: float) -> str:
    return f"{value:g}"


def latest_by_type(vitals: list[VitalSignMeasurement]) -> dict[str, VitalSignMeasurement]:
    """Most recent measurement per type. Ties keep the earlier entry."""
    latest: dict[str, VitalSignMeasurement] = {}
    for measurement in vitals:
        current = latest.get(measurement.type)
        if current is None or measurement.timestamp > current.timestamp:
            latest[measurement.type] = measurement
    return latest


def evaluate_vital_signs(
    plan: CarePlan, snapshot: CarePlanSnapshot, thresholds: AlertThresholds, now: datetime
) -> list[Alert]:
    alerts: list[Alert] = []

    for vital_type, measurement in latest_by_type(snapshot.vital_signs).items():
        threshold = thresholds.vital_signs.get(vital_type)
        if threshold is None:
            continue

        value = measurement.value
        if value < threshold.urgent_min or value > threshold.urgent_max:
            level = AlertLevel.URGENT
            band = (threshold.urgent_min, threshold.urgent_max)
            message = (
                f"Urgent: {humanize(vital_type)} is {format_value(value)} {threshold.unit} "
                "(outside safe range)"
            )
        elif value < threshold.min or value > threshold.max:
            level = AlertLevel.WARNING
            band = (threshold.min, threshold.max)
            message = (
                f"{humanize(vital_type)} is {format_value(value)} {threshold.unit} "
                "(outside normal range)"
            )
        else:
            continue

        alerts.append(
            Alert(
                id=alert_id("vital", plan.id, now, vital_type),
                care_plan_id=plan.id,
                patient_id=plan.patient_id,
                type=AlertType.VITAL_SIGN,
                sub_type=vital_type,
                level=level,
                message=message,
                data={
                    "value": value,
                    "unit": threshold.unit,
                    "timestamp": measurement.timestamp.isoformat(),
                    "min": band[0],
                    "max": band[1],
                },
                timestamp=now,
            )
        )

    return alerts


def _percent_level(percent: float, threshold: PercentThreshold) -> AlertLevel | None:
    # Urgent is checked first; the two bands are mutually exclusive.
    if percent < threshold.percent_urgent:
        return AlertLevel.URGENT
    if percent < threshold.percent_threshold:
        return AlertLevel.WARNING
    return None


def evaluate_medication_compliance(
    plan: CarePlan, snapshot: CarePlanSnapshot, thresholds: AlertThresholds, now: datetime
) -> list[Alert]:
    threshold = thresholds.medication_compliance
    if threshold is None or not snapshot.medications:
        return []

    total_scheduled = sum(1 for med in snapshot.medications if med.status == "scheduled")
    total_taken = sum(1 for med in snapshot.medications if med.status == "taken")
    if total_scheduled == 0:
        return []

    compliance = total_taken / total_scheduled * 100
    level = _percent_level(compliance, threshold)
    if level is None:
        return []

    if level is AlertLevel.URGENT:
        message = f"Urgent: Medication compliance critically low at {round(compliance)}%"
        limit = threshold.percent_urgent
    else:
        message = f"Medication compliance low at {round(compliance)}%"
        limit = threshold.percent_threshold

    return [
        Alert(
            id=alert_id("med_compliance", plan.id, now),
            care_plan_id=plan.id,
            patient_id=plan.patient_id,
            type=AlertType.MEDICATION_COMPLIANCE,
            level=level,
            message=message,
            data={
                "compliancePercent": compliance,
                "totalScheduled": total_scheduled,
                "totalTaken": total_taken,
                "threshold": limit,
            },
            timestamp=now,
        )
    ]


def evaluate_missed_visits(
    plan: CarePlan, snapshot: CarePlanSnapshot, thresholds: AlertThresholds, now: datetime
) -> list[Alert]:
    threshold = thresholds.missed_visits
    if threshold is None or not snapshot.visits:
        return []

    window_start = now - MISSED_VISIT_WINDOW
    missed = [
        visit
        for visit in snapshot.visits
        if visit.status == "missed" and visit.scheduled_date >= window_start
    ]
    missed_count = len(missed)
    if missed_count == 0:
        return []

    if missed_count >= threshold.count_urgent:
        level = AlertLevel.URGENT
        message = f"Urgent: {missed_count} visits missed in the last week"
        limit = threshold.count_urgent
    elif missed_count >= threshold.count_threshold:
        level = AlertLevel.WARNING
        message = f"{missed_count} visits missed in the last week"
        limit = threshold.count_threshold
    else:
        return []

    return [
        Alert(
            id=alert_id("missed_visits", plan.id, now),
            care_plan_id=plan.id,
            patient_id=plan.patient_id,
            type=AlertType.MISSED_VISITS,
            level=level,
            message=message,
            data={
                "missedCount": missed_count,
                "threshold": limit,
                "missedVisits": [visit.to_json_dict() for visit in missed],
            },
            timestamp=now,
        )
    ]


def evaluate_task_completion(
    plan: CarePlan, snapshot: CarePlanSnapshot, thresholds: AlertThresholds, now: datetime
) -> list[Alert]:
    threshold = thresholds.task_completion
    if threshold is None or not snapshot.tasks:
        return []

    due = [task for task in snapshot.tasks if task.due_date <= now]
    total_tasks = len(due)
    if total_tasks == 0:
        return []

    completed_tasks = sum(1 for task in due if task.status == "completed")
    completion = completed_tasks / total_tasks * 100
    level = _percent_level(completion, threshold)
    if level is None:
        return []

    if level is AlertLevel.URGENT:
        message = f"Urgent: Task completion critically low at {round(completion)}%"
        limit = threshold.percent_urgent
    else:
        message = f"Task completion low at {round(completion)}%"
        limit = threshold.percent_threshold

    return [
        Alert(
            id=alert_id("task_completion", plan.id, now),
            care_plan_id=plan.id,
            patient_id=plan.patient_id,
            type=AlertType.TASK_COMPLETION,
            level=level,
            message=message,
            data={
                "completionPercent": completion,
                "totalTasks": total_tasks,
                "completedTasks": completed_tasks,
                "threshold": limit,
            },
            timestamp=now,
        )
    ]


RULE_EVALUATORS = (
    evaluate_vital_signs,
    evaluate_medication_compliance,
    evaluate_missed_visits,
    evaluate_task_completion,
)


def evaluate_rules(
    plan: CarePlan, snapshot: CarePlanSnapshot, thresholds: AlertThresholds, now: datetime
) -> list[Alert]:
    """Run every rule evaluator and concatenate their alerts."""
    alerts: list[Alert] = []
    for evaluator in RULE_EVALUATORS:
        alerts.extend(evaluator(plan, snapshot, thresholds, now))
    return alerts


def summarize(alerts: list[Alert]) -> dict[str, Any]:
    """Counts per level, used in pass logging."""
    counts = {level.value: 0 for level in AlertLevel}
    for alert in alerts:
        counts[alert.level.value] += 1
    return counts
