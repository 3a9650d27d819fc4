"""
Notifier implementations.

- LogNotifier: structlog sink, used in tests and headless deployments
- RichConsoleNotifier: one terminal panel per urgent alert
"""

import structlog
from rich.console import Console
from rich.panel import Panel

from careplan_monitor.domain.models import UrgentNotification

logger = structlog.get_logger(__name__)


class LogNotifier:
    """Writes each urgent notification to the structured log."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="log_notifier")

    async def notify_urgent(self, notifications: list[UrgentNotification]) -> None:
        for notification in notifications:
            self.logger.warning(
                "urgent_alert_notification",
                title=notification.title,
                body=notification.body,
                tag=notification.tag,
                alert_id=notification.data.get("alertId"),
                care_plan_id=notification.data.get("carePlanId"),
            )


class RichConsoleNotifier:
    """Renders urgent notifications as red panels on a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    async def notify_urgent(self, notifications: list[UrgentNotification]) -> None:
        for notification in notifications:
            self.console.print(
                Panel(
                    f"{notification.body}\n\n"
                    f"[dim]care plan {notification.data.get('carePlanId')} · "
                    f"alert {notification.data.get('alertId')}[/dim]",
                    title=f"🚨 {notification.title}",
                    subtitle=notification.tag,
                    style="red",
                )
            )
