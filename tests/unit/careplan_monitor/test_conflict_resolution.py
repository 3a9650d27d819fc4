"""Tests for conflict resolution strategies."""

import pytest

from careplan_monitor.services.conflict_resolution import (
    RESOLUTION_KEY,
    ConflictResolver,
    ConflictStrategy,
    merge_fields,
)
from tests.fakes import NOW, FrozenClock


@pytest.fixture
def resolver() -> ConflictResolver:
    return ConflictResolver(clock=FrozenClock())


class TestStrategySelection:
    def test_default_mapping_by_resource_type(self, resolver: ConflictResolver) -> None:
        assert resolver.strategy_for("visits") is ConflictStrategy.FIELD_LEVEL_MERGE
        assert resolver.strategy_for("checkins") is ConflictStrategy.CREATE_DUPLICATE
        assert resolver.strategy_for("medications") is ConflictStrategy.MANUAL
        assert resolver.strategy_for("care-plan-alerts") is ConflictStrategy.LAST_WRITE_WINS

    def test_overrides_per_instance(self) -> None:
        resolver = ConflictResolver({"visits": ConflictStrategy.SERVER_WINS})

        assert resolver.strategy_for("visits") is ConflictStrategy.SERVER_WINS
        assert resolver.strategy_for("checkins") is ConflictStrategy.CREATE_DUPLICATE


class TestLastWriteWins:
    def test_newer_client_wins(self, resolver: ConflictResolver) -> None:
        client = {"id": "r1", "value": "client", "updatedAt": "2024-06-15T12:00:00Z"}
        server = {"id": "r1", "value": "server", "updatedAt": "2024-06-15T11:00:00Z", "version": 4}

        resolution = resolver.resolve("alerts", client, server)

        assert resolution.action == "resubmit"
        assert resolution.resolved_data["value"] == "client"
        assert resolution.metadata["serverVersion"] == 4
        assert resolution.metadata["hadConflict"] is True

    def test_older_or_undated_client_loses(self, resolver: ConflictResolver) -> None:
        server = {"id": "r1", "value": "server", "timestamp": "2024-06-15T11:00:00+00:00"}

        resolution = resolver.resolve("alerts", {"id": "r1", "value": "client"}, server)

        assert resolution.resolved_data["value"] == "server"
        assert resolution.metadata["strategy"] == "last-write-wins"


class TestFieldLevelMerge:
    def test_status_notes_and_tasks_merge(self) -> None:
        client = {
            "status": "completed",
            "statusUpdatedAt": "2024-06-15T12:00:00Z",
            "notes": "Patient was tired",
            "tasks": [
                {"id": "t1", "done": True, "updatedAt": "2024-06-15T12:00:00Z"},
                {"id": "t2", "done": False, "updatedAt": "2024-06-14T12:00:00Z"},
                {"id": "t3", "done": True},
            ],
        }
        server = {
            "status": "scheduled",
            "statusUpdatedAt": "2024-06-15T10:00:00Z",
            "notes": "Bring glucose meter",
            "location": "home",
            "tasks": [
                {"id": "t1", "done": False, "updatedAt": "2024-06-15T10:00:00Z"},
                {"id": "t2", "done": True, "updatedAt": "2024-06-15T10:00:00Z"},
                {"id": "t4", "done": False},
            ],
        }

        merged = merge_fields(client, server)

        assert merged["status"] == "completed"
        assert merged["location"] == "home"
        assert merged["notes"] == "Bring glucose meter\n---\nClient update: Patient was tired"
        assert [(t["id"], t["done"]) for t in merged["tasks"]] == [
            ("t1", True),
            ("t2", True),
            ("t3", True),
            ("t4", False),
        ]

    def test_older_client_status_is_ignored(self) -> None:
        merged = merge_fields(
            {"status": "cancelled", "statusUpdatedAt": "2024-06-14T00:00:00Z"},
            {"status": "scheduled", "statusUpdatedAt": "2024-06-15T00:00:00Z"},
        )

        assert merged["status"] == "scheduled"

    def test_resolution_carries_merge_metadata(self, resolver: ConflictResolver) -> None:
        resolution = resolver.resolve("visits", {"notes": "a", "version": 2}, {"version": 3})

        assert resolution.resolved_data["notes"] == "a"
        assert resolution.metadata["clientVersion"] == 2
        assert resolution.metadata["serverVersion"] == 3


class TestDuplicateAndManual:
    def test_create_duplicate_derives_new_id(self, resolver: ConflictResolver) -> None:
        resolution = resolver.resolve("checkins", {"id": "c1", "mood": "ok"}, {"id": "c1"})

        millis = int(NOW.timestamp() * 1000)
        assert resolution.action == "duplicate"
        assert resolution.duplicate_data is not None
        assert resolution.duplicate_data["id"] == f"c1-duplicate-{millis}"
        assert resolution.duplicate_data["mood"] == "ok"
        assert resolution.duplicate_data[RESOLUTION_KEY]["originalId"] == "c1"

    def test_manual_parks_with_conflict_id(self, resolver: ConflictResolver) -> None:
        resolution = resolver.resolve("medications", {"id": "m1"}, {"id": "m1", "dose": 2})

        assert resolution.action == "manual"
        assert resolution.conflict_id is not None
        assert resolution.conflict_id.startswith("conflict-")
        assert resolution.metadata["status"] == "pending"


class TestManualChoices:
    @pytest.mark.parametrize(
        ("choice", "expected_label", "expected_value"),
        [("use-client", "use-client", "client"), ("use-server", "use-server", "server")],
    )
    def test_pick_one_side(
        self, resolver: ConflictResolver, choice: str, expected_label: str, expected_value: str
    ) -> None:
        resolved = resolver.resolve_manually(
            choice, {"value": "client"}, {"value": "server"}  # type: ignore[arg-type]
        )

        assert resolved["value"] == expected_value
        assert resolved[RESOLUTION_KEY]["resolution"] == expected_label
        assert resolved[RESOLUTION_KEY]["resolvedBy"] == "user"

    def test_merge_with_custom_data(self, resolver: ConflictResolver) -> None:
        resolved = resolver.resolve_manually("merge", {}, {}, custom_data={"value": "custom"})

        assert resolved["value"] == "custom"
        assert resolved[RESOLUTION_KEY]["resolution"] == "custom-merge"

    def test_merge_without_custom_data_uses_field_merge(self, resolver: ConflictResolver) -> None:
        resolved = resolver.resolve_manually("merge", {"notes": "client"}, {"notes": "server"})

        assert resolved["notes"] == "server\n---\nClient update: client"

    def test_unknown_choice_rejected(self, resolver: ConflictResolver) -> None:
        with pytest.raises(ValueError, match="Unknown resolution type"):
            resolver.resolve_manually("flip-a-coin", {}, {})  # type: ignore[arg-type]
