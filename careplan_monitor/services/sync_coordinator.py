"""
Outbox / sync coordinator.

Local mutations that could not be confirmed server-side are stored as
``PendingSyncOperation`` entries and drained in per-type batches once the
server is reachable. Failed entries back off exponentially; conflicting
entries go through the ``ConflictResolver``.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import structlog
from pydantic import ValidationError

from careplan_monitor.domain.errors import ConflictError, TransientNetworkError
from careplan_monitor.domain.models import PendingSyncOperation, SyncDrainResult
from careplan_monitor.services.conflict_resolution import (
    RESOLUTION_KEY,
    ConflictResolver,
    ManualChoice,
)
from careplan_monitor.services.protocols import (
    META,
    PENDING_SYNC,
    Clock,
    ConnectivityListener,
    KeyValueStore,
    MonitoringApi,
    SystemClock,
)

logger = structlog.get_logger(__name__)

DEVICE_ID_KEY = "deviceId"
MAX_BACKOFF_MINUTES = 60

PRIORITY_RESOURCE_TYPES = frozenset(
    {
        "emergency",
        "alerts",
        "care-plan-alerts",
        "care-plan-monitoring",
        "care-plan-safety-alerts",
        "critical-care-plans",
        "critical-predictions",
        "urgent-reports",
        "medical-device-alerts",
        "ehr-critical-updates",
        "checkins",
    }
)

OperationFilter = Callable[[PendingSyncOperation], bool]


def backoff_delay(attempts: int) -> timedelta:
    """``min(2^attempts, 60)`` minutes."""
    return timedelta(minutes=min(2**attempts, MAX_BACKOFF_MINUTES))


def is_priority(operation: PendingSyncOperation) -> bool:
    return (
        operation.priority
        or operation.type in PRIORITY_RESOURCE_TYPES
        or operation.data.get("priority") is True
    )


class SyncCoordinator:
    """
    Owns the pending-sync collection.

    Drains are serialized: a drain requested while another one runs returns
    an empty result instead of waiting.
    """

    def __init__(
        self,
        api: MonitoringApi,
        store: KeyValueStore,
        connectivity: ConnectivityListener,
        resolver: ConflictResolver | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.api = api
        self.store = store
        self.connectivity = connectivity
        self.clock = clock or SystemClock()
        self.resolver = resolver or ConflictResolver(clock=self.clock)
        self.logger = logger.bind(component="sync_coordinator")

        self._drain_lock = asyncio.Lock()
        self._device_id: str | None = None

    async def device_id(self) -> str:
        """Stable identifier of this installation, persisted on first use."""
        if self._device_id is not None:
            return self._device_id

        stored = await self.store.get(META, DEVICE_ID_KEY)
        if stored and stored.get("value"):
            self._device_id = str(stored["value"])
        else:
            self._device_id = f"device-{uuid.uuid4().hex}"
            await self.store.put(META, DEVICE_ID_KEY, {"id": DEVICE_ID_KEY, "value": self._device_id})
            self.logger.info("device_id_created", device_id=self._device_id)
        return self._device_id

    async def enqueue(
        self,
        resource_type: str,
        action: str,
        data: dict[str, Any],
        operation_id: str | None = None,
        priority: bool = False,
    ) -> PendingSyncOperation:
        """
        Queue an operation. Enqueueing an id that is already queued is a no-op
        and returns the existing entry.
        """
        op_id = operation_id or f"{resource_type}_{action}_{uuid.uuid4().hex}"

        existing = await self.store.get(PENDING_SYNC, op_id)
        if existing is not None:
            self.logger.debug("sync_operation_already_queued", operation_id=op_id)
            return PendingSyncOperation.model_validate(existing)

        operation = PendingSyncOperation(
            id=op_id,
            type=resource_type,
            action=action,
            data=data,
            timestamp=self.clock.now(),
            priority=priority,
        )
        await self._save(operation)
        self.logger.info(
            "sync_operation_queued",
            operation_id=op_id,
            resource_type=resource_type,
            action=action,
            priority=priority,
        )
        return operation

    async def pending_operations(
        self, filter: OperationFilter | None = None
    ) -> list[PendingSyncOperation]:
        operations: list[PendingSyncOperation] = []
        for raw in await self.store.get_all(PENDING_SYNC):
            try:
                operation = PendingSyncOperation.model_validate(raw)
            except ValidationError as e:
                self.logger.error("sync_operation_corrupt", entry_id=raw.get("id"), error=str(e))
                continue
            if filter is None or filter(operation):
                operations.append(operation)
        return sorted(operations, key=lambda op: op.timestamp)

    async def pending_count(self) -> int:
        return len(await self.pending_operations())

    async def drain_priority(self, force: bool = False) -> SyncDrainResult:
        """Drain only the priority subset (urgent alerts, emergency resource types)."""
        return await self.drain_queue(is_priority, force=force, priority_drain=True)

    async def drain_queue(
        self,
        filter: OperationFilter | None = None,
        force: bool = False,
        priority_drain: bool = False,
    ) -> SyncDrainResult:
        """
        Send queued operations, grouped by resource type.

        Entries waiting for their backoff window or parked with a conflict
        are skipped unless ``force`` is set.
        """
        if self._drain_lock.locked():
            self.logger.info("sync_drain_already_running")
            return SyncDrainResult()

        async with self._drain_lock:
            if not self.connectivity.is_online():
                self.logger.info("sync_drain_skipped_offline")
                return SyncDrainResult()

            now = self.clock.now()
            operations = [
                op
                for op in await self.pending_operations(filter)
                if force
                or (not op.has_conflict and (op.next_attempt is None or op.next_attempt <= now))
            ]
            if not operations:
                return SyncDrainResult()

            groups: dict[str, list[PendingSyncOperation]] = {}
            for op in operations:
                groups.setdefault(op.type, []).append(op)

            result = SyncDrainResult()
            for resource_type, group in groups.items():
                result = result + await self._send_group(resource_type, group, priority_drain)

            self.logger.info(
                "sync_drain_completed",
                priority=priority_drain,
                operations=len(operations),
                success_count=result.success_count,
                fail_count=result.fail_count,
                conflict_count=result.conflict_count,
            )
            return result

    async def resolve_manually(
        self,
        operation_id: str,
        resolution: ManualChoice,
        custom_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Apply a user decision to a parked conflict and submit it.

        Raises:
            ConflictError: no parked conflict with that id
            TransientNetworkError: the server could not be reached; the entry stays queued
        """
        async with self._drain_lock:
            raw = await self.store.get(PENDING_SYNC, operation_id)
            if raw is None:
                raise ConflictError(operation_id)
            operation = PendingSyncOperation.model_validate(raw)
            if not operation.has_conflict:
                raise ConflictError(operation_id)

            resolved = self.resolver.resolve_manually(
                resolution, operation.data, operation.server_data, custom_data
            )
            await self.api.resolve_conflict(
                operation.type,
                {"id": operation.id, "resolvedData": resolved, "resolution": resolved[RESOLUTION_KEY]},
                await self.device_id(),
            )
            await self.store.delete(PENDING_SYNC, operation.id)
            self.logger.info(
                "sync_conflict_resolved_manually", operation_id=operation.id, resolution=resolution
            )
            return resolved

    async def _send_group(
        self, resource_type: str, group: list[PendingSyncOperation], priority_drain: bool
    ) -> SyncDrainResult:
        device_id = await self.device_id()
        payload = [
            {
                "id": op.id,
                "action": op.action,
                "data": op.data,
                "timestamp": op.timestamp.isoformat(),
                "deviceId": device_id,
                "version": op.version,
                "priority": priority_drain or op.priority,
            }
            for op in group
        ]

        try:
            response = await self.api.send_operations(resource_type, payload, device_id)
        except TransientNetworkError as e:
            self.logger.warning(
                "sync_group_failed", resource_type=resource_type, count=len(group), error=str(e)
            )
            for op in group:
                await self._mark_failed(op, str(e))
            return SyncDrainResult(fail_count=len(group))

        by_id = {op.id: op for op in group}
        success = fail = conflicts = 0

        for op_id in response.get("successful") or []:
            if by_id.pop(op_id, None) is None:
                self.logger.warning("sync_unknown_operation_acknowledged", operation_id=op_id)
                continue
            await self.store.delete(PENDING_SYNC, op_id)
            success += 1

        for conflict in response.get("conflicts") or []:
            op = by_id.pop(conflict.get("id"), None)
            if op is None:
                continue
            conflicts += 1
            outcome = await self._resolve_conflict(resource_type, op, conflict.get("serverData"))
            if outcome == "success":
                success += 1
            elif outcome == "fail":
                fail += 1

        for failure in response.get("failed") or []:
            op = by_id.pop(failure.get("id"), None)
            if op is None:
                continue
            await self._mark_failed(op, failure.get("reason") or "rejected by server")
            fail += 1

        if by_id:
            self.logger.warning(
                "sync_operations_unreported", resource_type=resource_type, ids=sorted(by_id)
            )

        return SyncDrainResult(success_count=success, fail_count=fail, conflict_count=conflicts)

    async def _resolve_conflict(
        self,
        resource_type: str,
        op: PendingSyncOperation,
        server_data: dict[str, Any] | None,
    ) -> str:
        resolution = self.resolver.resolve(resource_type, op.data, server_data)
        now = self.clock.now()

        if resolution.action == "duplicate":
            millis = int(now.timestamp() * 1000)
            await self.enqueue(
                resource_type,
                "create",
                resolution.duplicate_data or {},
                operation_id=f"duplicate-{millis}-{uuid.uuid4().hex[:9]}",
                priority=op.priority,
            )
            await self.store.delete(PENDING_SYNC, op.id)
            return "success"

        if resolution.action == "manual":
            parked = op.model_copy(
                update={
                    "has_conflict": True,
                    "conflict_id": resolution.conflict_id,
                    "server_data": server_data or {},
                    "attempts": op.attempts + 1,
                    "last_attempt": now,
                }
            )
            await self._save(parked)
            self.logger.warning(
                "sync_conflict_needs_review",
                operation_id=op.id,
                conflict_id=resolution.conflict_id,
                resource_type=resource_type,
            )
            return "manual"

        try:
            await self.api.resolve_conflict(
                resource_type,
                {
                    "id": op.id,
                    "resolvedData": resolution.resolved_data,
                    "resolution": resolution.metadata,
                },
                await self.device_id(),
            )
        except TransientNetworkError as e:
            self.logger.warning("sync_conflict_resolution_failed", operation_id=op.id, error=str(e))
            await self._save(
                op.model_copy(
                    update={
                        "has_conflict": True,
                        "server_data": server_data or {},
                        "attempts": op.attempts + 1,
                        "last_attempt": now,
                        "last_error": "Failed to apply conflict resolution",
                    }
                )
            )
            return "fail"

        await self.store.delete(PENDING_SYNC, op.id)
        return "success"

    async def _mark_failed(self, op: PendingSyncOperation, reason: str) -> None:
        now = self.clock.now()
        attempts = op.attempts + 1
        await self._save(
            op.model_copy(
                update={
                    "attempts": attempts,
                    "last_attempt": now,
                    "last_error": reason,
                    "next_attempt": now + backoff_delay(attempts),
                }
            )
        )

    async def _save(self, operation: PendingSyncOperation) -> None:
        await self.store.put(PENDING_SYNC, operation.id, operation.to_json_dict())
