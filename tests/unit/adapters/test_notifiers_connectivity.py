"""Tests for the notifier and connectivity adapters."""

from io import StringIO

from rich.console import Console
from structlog.testing import capture_logs

from adapters.connectivity import ToggleConnectivity
from adapters.notifications import LogNotifier, RichConsoleNotifier
from careplan_monitor.domain.models import UrgentNotification


def urgent_notification() -> UrgentNotification:
    return UrgentNotification(
        title="Care Plan Alert",
        body="Urgent: heart rate is 125 bpm (outside safe range)",
        tag="alert-a1",
        data={"alertId": "a1", "carePlanId": "plan-1"},
    )


class TestNotifiers:
    async def test_rich_notifier_renders_panel(self) -> None:
        output = StringIO()
        notifier = RichConsoleNotifier(Console(file=output, width=100, color_system=None))

        await notifier.notify_urgent([urgent_notification()])

        rendered = output.getvalue()
        assert "Care Plan Alert" in rendered
        assert "heart rate is 125 bpm" in rendered
        assert "plan-1" in rendered

    async def test_log_notifier_emits_one_event_per_notification(self) -> None:
        with capture_logs() as logs:
            await LogNotifier().notify_urgent([urgent_notification(), urgent_notification()])

        events = [e for e in logs if e["event"] == "urgent_alert_notification"]
        assert len(events) == 2
        assert events[0]["alert_id"] == "a1"
        assert events[0]["log_level"] == "warning"


class TestToggleConnectivity:
    async def test_callbacks_fire_on_transitions_only(self) -> None:
        connectivity = ToggleConnectivity(online=True)
        events: list[str] = []

        async def went_online() -> None:
            events.append("online")

        connectivity.on_became_online(went_online)
        connectivity.on_became_offline(lambda: events.append("offline"))

        await connectivity.set_online(True)
        await connectivity.set_online(False)
        await connectivity.set_online(False)
        await connectivity.set_online(True)

        assert events == ["offline", "online"]
        assert connectivity.is_online()

    async def test_failing_callback_does_not_block_others(self) -> None:
        connectivity = ToggleConnectivity(online=False)
        events: list[str] = []

        def broken() -> None:
            raise RuntimeError("listener bug")

        connectivity.on_became_online(broken)
        connectivity.on_became_online(lambda: events.append("online"))

        await connectivity.set_online(True)

        assert events == ["online"]
