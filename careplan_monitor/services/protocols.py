"""
Collaborator interfaces consumed by the monitoring engine.

Concrete implementations live in the ``adapters`` package.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from careplan_monitor.domain.models import UrgentNotification

JsonDict = dict[str, Any]


class MonitoringApi(Protocol):
    """
    Remote care-plan API.

    Every method raises ``TransientNetworkError`` when the server cannot be
    reached or answers with a non-2xx status.
    """

    async def fetch_config(self) -> JsonDict: ...

    async def fetch_active_plans(self) -> list[JsonDict]: ...

    async def fetch_monitoring_data(self, care_plan_id: str) -> JsonDict: ...

    async def push_alerts(self, alerts: list[JsonDict]) -> None: ...

    async def acknowledge_alert(self, alert_id: str, timestamp: str) -> None: ...

    async def send_operations(
        self, resource_type: str, operations: list[JsonDict], device_id: str
    ) -> JsonDict: ...

    async def resolve_conflict(
        self, resource_type: str, payload: JsonDict, device_id: str
    ) -> None: ...


class KeyValueStore(Protocol):
    """Durable key-value storage organised in named collections of JSON dicts."""

    async def get(self, collection: str, key: str) -> JsonDict | None: ...

    async def put(self, collection: str, key: str, value: JsonDict) -> None: ...

    async def delete(self, collection: str, key: str) -> None: ...

    async def get_all(self, collection: str) -> list[JsonDict]: ...


# Store collections
MONITORING_CACHE = "monitoring_cache"
ALERTS = "alerts"
PENDING_SYNC = "pending_sync"
META = "meta"


class Notifier(Protocol):
    """Delivers urgent alerts to the platform notification channel."""

    async def notify_urgent(self, notifications: list[UrgentNotification]) -> None: ...


ConnectivityCallback = Callable[[], Awaitable[None] | None]


class ConnectivityListener(Protocol):
    """Reports whether the remote system is reachable and signals transitions."""

    def is_online(self) -> bool: ...

    def on_became_online(self, callback: ConnectivityCallback) -> None: ...

    def on_became_offline(self, callback: ConnectivityCallback) -> None: ...


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)
