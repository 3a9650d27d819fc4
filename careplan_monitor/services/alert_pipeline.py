"""
Alert pipeline: dedupe, persist, forward, notify, publish.

Persistence and active-set mutation happen under one ``asyncio.Lock`` so
plans evaluated concurrently never interleave writes. Remote forwarding is
best-effort; anything the server did not confirm goes to the outbox.
"""

import asyncio
import inspect
from collections import OrderedDict
from collections.abc import Awaitable, Callable

import structlog
from pydantic import ValidationError

from careplan_monitor.domain.errors import TransientNetworkError
from careplan_monitor.domain.models import Alert, AlertLevel, AlertStatus
from careplan_monitor.services.notifications import build_urgent_notifications
from careplan_monitor.services.protocols import (
    ALERTS,
    Clock,
    ConnectivityListener,
    KeyValueStore,
    MonitoringApi,
    Notifier,
    SystemClock,
)
from careplan_monitor.services.sync_coordinator import SyncCoordinator

logger = structlog.get_logger(__name__)

ALERTS_RESOURCE = "care-plan-alerts"

KNOWN_ID_LIMIT = 1000
PUSH_TIMEOUT_SECONDS = 30.0

AlertsCallback = Callable[[list[Alert]], Awaitable[None] | None]


def acknowledgement_operation_id(alert_id: str) -> str:
    return f"acknowledge_alert_{alert_id}"


class AlertPipeline:
    """Single writer for alerts and the in-memory active set."""

    def __init__(
        self,
        api: MonitoringApi,
        store: KeyValueStore,
        connectivity: ConnectivityListener,
        sync: SyncCoordinator,
        notifier: Notifier,
        clock: Clock | None = None,
        push_timeout_seconds: float = PUSH_TIMEOUT_SECONDS,
        known_id_limit: int = KNOWN_ID_LIMIT,
    ) -> None:
        self.api = api
        self.store = store
        self.connectivity = connectivity
        self.sync = sync
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.push_timeout_seconds = push_timeout_seconds
        self.known_id_limit = known_id_limit
        self.logger = logger.bind(component="alert_pipeline")

        self._lock = asyncio.Lock()
        self._active: dict[str, Alert] = {}
        # Recently seen ids, oldest first; active alerts are checked separately.
        self._known_ids: OrderedDict[str, None] = OrderedDict()
        self._subscribers: list[AlertsCallback] = []

    def on_alerts_updated(self, callback: AlertsCallback) -> Callable[[], None]:
        """Subscribe to new-alert batches. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def restore(self) -> int:
        """Reload persisted alerts; ``new`` ones rejoin the active set."""
        restored = 0
        async with self._lock:
            alerts: list[Alert] = []
            for raw in await self.store.get_all(ALERTS):
                try:
                    alerts.append(Alert.model_validate(raw))
                except ValidationError as e:
                    self.logger.error("alert_record_corrupt", entry_id=raw.get("id"), error=str(e))

            for alert in sorted(alerts, key=lambda a: a.timestamp):
                self._remember(alert.id)
                if alert.is_active:
                    self._active[alert.id] = alert
                    restored += 1

        self.logger.info("alerts_restored", active=restored, known=len(self._known_ids))
        return restored

    async def process(self, alerts: list[Alert]) -> list[Alert]:
        """
        Run new alerts through the pipeline.

        Returns:
            The alerts that survived deduplication.
        """
        if not alerts:
            return []

        accepted: list[Alert] = []
        async with self._lock:
            for alert in alerts:
                if not self._admit(alert):
                    continue
                await self.store.put(ALERTS, alert.id, alert.to_json_dict())
                accepted.append(alert)
                self._remember(alert.id)
                self._active[alert.id] = alert

        dropped = len(alerts) - len(accepted)
        if dropped:
            self.logger.debug("alerts_deduplicated", dropped=dropped)
        if not accepted:
            return []

        self.logger.info(
            "alerts_accepted",
            count=len(accepted),
            urgent=sum(1 for a in accepted if a.level == AlertLevel.URGENT),
        )

        await self._forward(accepted)
        await self._notify(accepted)
        await self._publish(accepted)
        return accepted

    def _admit(self, alert: Alert) -> bool:
        if alert.id in self._known_ids or alert.id in self._active:
            return False
        # Same signal already active at the same or a higher level; escalations pass.
        for active in self._active.values():
            if active.signal_key == alert.signal_key and active.level.rank >= alert.level.rank:
                return False
        return True

    def _remember(self, alert_id: str) -> None:
        self._known_ids[alert_id] = None
        self._known_ids.move_to_end(alert_id)
        while len(self._known_ids) > self.known_id_limit:
            self._known_ids.popitem(last=False)

    async def _forward(self, alerts: list[Alert]) -> None:
        payload = [alert.to_json_dict() for alert in alerts]

        if self.connectivity.is_online():
            try:
                await asyncio.wait_for(
                    self.api.push_alerts(payload), timeout=self.push_timeout_seconds
                )
                self.logger.debug("alerts_pushed", count=len(alerts))
                return
            except TransientNetworkError as e:
                self.logger.warning("alerts_push_failed", count=len(alerts), error=str(e))
            except TimeoutError:
                self.logger.warning(
                    "alerts_push_timeout",
                    count=len(alerts),
                    timeout_seconds=self.push_timeout_seconds,
                )
            except asyncio.CancelledError:
                # Already stored and active, so queue before propagating.
                await self._queue(payload, alerts)
                raise

        await self._queue(payload, alerts)

    async def _queue(self, payload: list[dict], alerts: list[Alert]) -> None:
        await self.sync.enqueue(
            ALERTS_RESOURCE,
            "create",
            {"alerts": payload},
            priority=any(a.level == AlertLevel.URGENT for a in alerts),
        )
        self.logger.warning("alerts_queued_for_sync", count=len(alerts))

    async def _notify(self, alerts: list[Alert]) -> None:
        notifications = build_urgent_notifications(alerts)
        if not notifications:
            return
        try:
            await self.notifier.notify_urgent(notifications)
        except Exception as e:
            self.logger.error("urgent_notification_failed", count=len(notifications), error=str(e))

    async def _publish(self, alerts: list[Alert]) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(list(alerts))
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error("alert_subscriber_failed", error=str(e))

    async def acknowledge(self, alert_id: str) -> Alert | None:
        """
        Mark an alert acknowledged and record the acknowledgement for the server.

        Idempotent: unknown or already-acknowledged alerts are a logged no-op.
        """
        async with self._lock:
            alert = self._active.get(alert_id) or await self._load(alert_id)
            if alert is None:
                self.logger.warning("acknowledge_unknown_alert", alert_id=alert_id)
                return None
            if alert.status == AlertStatus.ACKNOWLEDGED:
                self.logger.info("alert_already_acknowledged", alert_id=alert_id)
                return alert

            acknowledged = alert.model_copy(
                update={"status": AlertStatus.ACKNOWLEDGED, "acknowledged_at": self.clock.now()}
            )
            await self.store.put(ALERTS, alert_id, acknowledged.to_json_dict())
            self._active.pop(alert_id, None)

        self.logger.info("alert_acknowledged", alert_id=alert_id, care_plan_id=alert.care_plan_id)
        await self._record_acknowledgement(acknowledged)
        return acknowledged

    async def _record_acknowledgement(self, alert: Alert) -> None:
        timestamp = (alert.acknowledged_at or self.clock.now()).isoformat()

        if self.connectivity.is_online():
            try:
                await self.api.acknowledge_alert(alert.id, timestamp)
                return
            except TransientNetworkError as e:
                self.logger.warning("acknowledge_push_failed", alert_id=alert.id, error=str(e))

        await self.sync.enqueue(
            ALERTS_RESOURCE,
            "acknowledge",
            {"alertId": alert.id, "status": AlertStatus.ACKNOWLEDGED.value, "timestamp": timestamp},
            operation_id=acknowledgement_operation_id(alert.id),
        )

    def active_alerts(self, care_plan_id: str | None = None) -> list[Alert]:
        """Active alerts, urgent first, then newest first."""
        alerts = [
            alert
            for alert in self._active.values()
            if care_plan_id is None or alert.care_plan_id == care_plan_id
        ]
        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        alerts.sort(key=lambda a: a.level.rank, reverse=True)
        return alerts

    async def view_details(self, alert_id: str) -> Alert | None:
        """Full alert record, active or acknowledged."""
        return self._active.get(alert_id) or await self._load(alert_id)

    async def _load(self, alert_id: str) -> Alert | None:
        raw = await self.store.get(ALERTS, alert_id)
        if raw is None:
            return None
        try:
            return Alert.model_validate(raw)
        except ValidationError as e:
            self.logger.error("alert_record_corrupt", entry_id=alert_id, error=str(e))
            return None
