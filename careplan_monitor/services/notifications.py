"""Builds platform-agnostic notifications for urgent alerts."""

from careplan_monitor.domain.models import Alert, AlertLevel, UrgentNotification

NOTIFICATION_TITLE = "Care Plan Alert"


def build_urgent_notifications(alerts: list[Alert]) -> list[UrgentNotification]:
    """One notification per urgent alert, with deep-link ids for click-through."""
    return [
        UrgentNotification(
            title=NOTIFICATION_TITLE,
            body=alert.message,
            tag=f"alert-{alert.id}",
            require_interaction=True,
            data={"alertId": alert.id, "carePlanId": alert.care_plan_id},
        )
        for alert in alerts
        if alert.level == AlertLevel.URGENT
    ]
