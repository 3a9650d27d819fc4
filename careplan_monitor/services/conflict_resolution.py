"""
Conflict resolution for outbox operations the server rejected as stale.

A strategy is chosen per resource type. Every strategy returns a
``ConflictResolution`` describing what the sync coordinator should do next:
resubmit resolved data, queue a duplicate-create, or park the operation for
a human.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from careplan_monitor.services.protocols import Clock, SystemClock

logger = structlog.get_logger(__name__)

RESOLUTION_KEY = "_conflictResolution"


class ConflictStrategy(str, Enum):
    SERVER_WINS = "server-wins"
    CLIENT_WINS = "client-wins"
    LAST_WRITE_WINS = "last-write-wins"
    FIELD_LEVEL_MERGE = "field-level-merge"
    CREATE_DUPLICATE = "create-duplicate"
    MANUAL = "manual"


DEFAULT_STRATEGY = ConflictStrategy.LAST_WRITE_WINS

DEFAULT_STRATEGIES: dict[str, ConflictStrategy] = {
    "visits": ConflictStrategy.FIELD_LEVEL_MERGE,
    "checkins": ConflictStrategy.CREATE_DUPLICATE,
    "medications": ConflictStrategy.MANUAL,
}

ManualChoice = Literal["use-client", "use-server", "merge"]


class ConflictResolution(BaseModel):
    """Outcome of resolving one conflicting operation."""

    strategy: ConflictStrategy
    action: Literal["resubmit", "duplicate", "manual"]
    resolved_data: dict[str, Any] = Field(default_factory=dict)
    duplicate_data: dict[str, Any] | None = None
    conflict_id: str | None = None

    @property
    def metadata(self) -> dict[str, Any]:
        return self.resolved_data.get(RESOLUTION_KEY, {})


def _parse_time(value: Any) -> float:
    """Epoch seconds of an ISO timestamp; missing or unparseable values sort first."""
    if isinstance(value, datetime):
        return value.timestamp()
    if not isinstance(value, str) or not value:
        return 0.0
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _record_time(record: dict[str, Any]) -> float:
    return _parse_time(record.get("updatedAt") or record.get("timestamp"))


class ConflictResolver:
    """Applies the configured strategy for a resource type."""

    def __init__(
        self,
        strategies: dict[str, ConflictStrategy] | None = None,
        default: ConflictStrategy = DEFAULT_STRATEGY,
        clock: Clock | None = None,
    ) -> None:
        self.strategies = {**DEFAULT_STRATEGIES, **(strategies or {})}
        self.default = default
        self.clock = clock or SystemClock()
        self.logger = logger.bind(component="conflict_resolver")

    def strategy_for(self, resource_type: str) -> ConflictStrategy:
        return self.strategies.get(resource_type, self.default)

    def resolve(
        self,
        resource_type: str,
        client_data: dict[str, Any],
        server_data: dict[str, Any] | None,
    ) -> ConflictResolution:
        server = server_data or {}
        strategy = self.strategy_for(resource_type)
        self.logger.info(
            "conflict_resolving",
            resource_type=resource_type,
            strategy=strategy.value,
            record_id=client_data.get("id"),
        )

        if strategy is ConflictStrategy.SERVER_WINS:
            return self._resubmit(strategy, {**server}, {})
        if strategy is ConflictStrategy.CLIENT_WINS:
            return self._resubmit(strategy, {**client_data}, {"serverVersion": server.get("version")})
        if strategy is ConflictStrategy.LAST_WRITE_WINS:
            if _record_time(client_data) > _record_time(server):
                return self._resubmit(
                    strategy, {**client_data}, {"serverVersion": server.get("version")}
                )
            return self._resubmit(strategy, {**server}, {"clientVersion": client_data.get("version")})
        if strategy is ConflictStrategy.FIELD_LEVEL_MERGE:
            return self._resubmit(
                strategy,
                merge_fields(client_data, server),
                {"clientVersion": client_data.get("version"), "serverVersion": server.get("version")},
            )
        if strategy is ConflictStrategy.CREATE_DUPLICATE:
            return self._duplicate(client_data, server)
        return self._manual(server)

    def resolve_manually(
        self,
        choice: ManualChoice,
        client_data: dict[str, Any],
        server_data: dict[str, Any] | None,
        custom_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Resolved data for a user decision on a parked conflict."""
        server = server_data or {}
        if choice == "use-client":
            resolved, label = {**client_data}, "use-client"
        elif choice == "use-server":
            resolved, label = {**server}, "use-server"
        elif choice == "merge":
            if custom_data is not None:
                resolved, label = {**custom_data}, "custom-merge"
            else:
                resolved, label = merge_fields(client_data, server), "merge"
        else:
            raise ValueError(f"Unknown resolution type: {choice}")

        resolved[RESOLUTION_KEY] = {
            **self._metadata(ConflictStrategy.MANUAL),
            "resolution": label,
            "resolvedBy": "user",
        }
        return resolved

    def _metadata(self, strategy: ConflictStrategy) -> dict[str, Any]:
        return {
            "strategy": strategy.value,
            "timestamp": self.clock.now().isoformat(),
            "hadConflict": True,
        }

    def _resubmit(
        self, strategy: ConflictStrategy, data: dict[str, Any], extra: dict[str, Any]
    ) -> ConflictResolution:
        data[RESOLUTION_KEY] = {**self._metadata(strategy), **extra}
        return ConflictResolution(strategy=strategy, action="resubmit", resolved_data=data)

    def _duplicate(
        self, client_data: dict[str, Any], server_data: dict[str, Any]
    ) -> ConflictResolution:
        millis = int(self.clock.now().timestamp() * 1000)
        original_id = client_data.get("id")
        duplicate = {
            **client_data,
            "id": f"{original_id}-duplicate-{millis}",
            RESOLUTION_KEY: {
                **self._metadata(ConflictStrategy.CREATE_DUPLICATE),
                "originalId": original_id,
            },
        }
        return ConflictResolution(
            strategy=ConflictStrategy.CREATE_DUPLICATE,
            action="duplicate",
            resolved_data={**server_data},
            duplicate_data=duplicate,
        )

    def _manual(self, server_data: dict[str, Any]) -> ConflictResolution:
        millis = int(self.clock.now().timestamp() * 1000)
        conflict_id = f"conflict-{millis}-{uuid.uuid4().hex[:9]}"
        data = {
            **server_data,
            RESOLUTION_KEY: {
                **self._metadata(ConflictStrategy.MANUAL),
                "conflictId": conflict_id,
                "status": "pending",
            },
        }
        return ConflictResolution(
            strategy=ConflictStrategy.MANUAL,
            action="manual",
            resolved_data=data,
            conflict_id=conflict_id,
        )


def merge_fields(client_data: dict[str, Any], server_data: dict[str, Any]) -> dict[str, Any]:
    """
    Field-level merge with the server record as the base.

    - ``status``: the side with the later ``statusUpdatedAt`` wins
    - ``notes``: differing client notes are appended below the server notes
    - ``tasks``: merged by id, the later ``updatedAt`` wins; server-only tasks are kept
    """
    result = {**server_data}

    client_status = client_data.get("status")
    if client_status and client_status != server_data.get("status"):
        if _parse_time(client_data.get("statusUpdatedAt")) > _parse_time(
            server_data.get("statusUpdatedAt")
        ):
            result["status"] = client_status
            result["statusUpdatedAt"] = client_data.get("statusUpdatedAt")

    client_notes = client_data.get("notes")
    if client_notes and client_notes != server_data.get("notes"):
        server_notes = server_data.get("notes")
        result["notes"] = (
            f"{server_notes}\n---\nClient update: {client_notes}" if server_notes else client_notes
        )

    client_tasks = client_data.get("tasks")
    if isinstance(client_tasks, list):
        server_tasks = server_data.get("tasks")
        remaining = {
            task.get("id"): task for task in (server_tasks if isinstance(server_tasks, list) else [])
        }
        merged = []
        for task in client_tasks:
            server_task = remaining.pop(task.get("id"), None)
            if server_task is None:
                merged.append(task)
            elif _parse_time(task.get("updatedAt")) > _parse_time(server_task.get("updatedAt")):
                merged.append(task)
            else:
                merged.append(server_task)
        merged.extend(remaining.values())
        result["tasks"] = merged

    return result
