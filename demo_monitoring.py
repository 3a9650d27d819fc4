"""
End-to-end demo of the care-plan monitoring pipeline.

This script walks through:
1. Configuration loading and logging setup
2. A full monitoring pass over three simulated care plans
3. Offline operation: writes queued in the outbox, drained on reconnect
4. Alert acknowledgement
5. A sync conflict parked for manual review and resolved by the user

Everything runs in-process against a simulated care-plan API and a
temporary SQLite store.

Run with: uv run python demo_monitoring.py
"""

import asyncio
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.connectivity import ToggleConnectivity
from adapters.notifications import RichConsoleNotifier
from adapters.storage import SqlAlchemyStore
from careplan_monitor.config import StorageConfig, configure_logging, get_config
from careplan_monitor.domain.errors import TransientNetworkError
from careplan_monitor.domain.models import AlertLevel
from careplan_monitor.services import MonitoringEngine

console = Console()


class SimulatedCarePlanApi:
    """Care-plan API that serves scenario data and accepts every write."""

    def __init__(self, connectivity: ToggleConnectivity) -> None:
        self.connectivity = connectivity
        self.conflicting_types: set[str] = set()

    def _ensure_reachable(self) -> None:
        if not self.connectivity.is_online():
            raise TransientNetworkError("simulated network outage")

    async def fetch_config(self) -> dict[str, Any]:
        self._ensure_reachable()
        return {"pollingIntervalSeconds": 60}

    async def fetch_active_plans(self) -> list[dict[str, Any]]:
        self._ensure_reachable()
        return [
            {"id": "plan-stable", "patientId": "patient-ada", "title": "Hypertension follow-up"},
            {"id": "plan-declining", "patientId": "patient-bo", "title": "COPD home care"},
            {"id": "plan-noncompliant", "patientId": "patient-cy", "title": "Post-op recovery"},
        ]

    async def fetch_monitoring_data(self, care_plan_id: str) -> dict[str, Any]:
        self._ensure_reachable()
        await asyncio.sleep(0.05)  # Simulate network latency
        return self._scenario(care_plan_id, datetime.now(UTC))

    def _scenario(self, care_plan_id: str, now: datetime) -> dict[str, Any]:
        def series(vital_type: str, unit: str, values: list[float]) -> list[dict[str, Any]]:
            return [
                {
                    "type": vital_type,
                    "value": value,
                    "unit": unit,
                    "timestamp": (now - timedelta(hours=len(values) - 1 - i)).isoformat(),
                }
                for i, value in enumerate(values)
            ]

        if care_plan_id == "plan-declining":
            # Oxygen saturation falling steadily, heart rate climbing into the urgent band
            return {
                "vitalSigns": series("oxygen_saturation", "%", [97, 96, 95, 93, 92])
                + series("heart_rate", "bpm", [84, 88, 86, 90, 88, 87, 126]),
            }

        if care_plan_id == "plan-noncompliant":
            return {
                "vitalSigns": series("temperature", "°C", [36.8, 37.0, 36.9]),
                "medications": [{"status": "scheduled"}] * 8 + [{"status": "taken"}] * 4,
                "visits": [
                    {"status": "missed", "scheduledDate": (now - timedelta(days=d)).isoformat()}
                    for d in (1, 3, 5)
                ],
                "tasks": [
                    {"status": "completed", "dueDate": (now - timedelta(days=1)).isoformat()},
                    {"status": "pending", "dueDate": (now - timedelta(days=2)).isoformat()},
                    {"status": "pending", "dueDate": (now - timedelta(hours=3)).isoformat()},
                ],
            }

        return {
            "vitalSigns": series("heart_rate", "bpm", [72, 74, 71, 73, 72])
            + series("blood_pressure_systolic", "mmHg", [118, 121, 119]),
            "medications": [{"status": "scheduled"}] * 4 + [{"status": "taken"}] * 4,
        }

    async def push_alerts(self, alerts: list[dict[str, Any]]) -> None:
        self._ensure_reachable()

    async def acknowledge_alert(self, alert_id: str, timestamp: str) -> None:
        self._ensure_reachable()

    async def send_operations(
        self, resource_type: str, operations: list[dict[str, Any]], device_id: str
    ) -> dict[str, Any]:
        self._ensure_reachable()
        if resource_type in self.conflicting_types:
            return {
                "successful": [],
                "failed": [],
                "conflicts": [
                    {"id": op["id"], "serverData": {**op["data"], "dose": "10mg", "version": 3}}
                    for op in operations
                ],
            }
        return {"successful": [op["id"] for op in operations], "failed": [], "conflicts": []}

    async def resolve_conflict(
        self, resource_type: str, payload: dict[str, Any], device_id: str
    ) -> None:
        self._ensure_reachable()
        self.conflicting_types.discard(resource_type)


def alerts_table(engine: MonitoringEngine, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Care Plan", style="cyan")
    table.add_column("Level", style="white")
    table.add_column("Type", style="magenta")
    table.add_column("Message", style="white")

    level_styles = {AlertLevel.URGENT: "bold red", AlertLevel.WARNING: "yellow", AlertLevel.INFO: "blue"}
    for alert in engine.active_alerts():
        table.add_row(
            alert.care_plan_id,
            f"[{level_styles[alert.level]}]{alert.level.value.upper()}[/]",
            alert.type.value,
            alert.message,
        )
    return table


async def demo_configuration() -> bool:
    """Load the environment configuration and install logging."""

    console.print(Panel("🔧 Configuration", style="blue"))

    try:
        config = get_config()
        configure_logging(config.logging)

        table = Table(title="Runtime Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Environment", config.environment)
        table.add_row("API URL", config.api.base_url)
        table.add_row("Plan timeout", f"{config.engine.plan_timeout_seconds:.0f}s")
        table.add_row("Max concurrent plans", str(config.engine.max_concurrent_plans))
        table.add_row("Log level", config.logging.level)
        console.print(table)
        return True

    except Exception as e:
        console.print(f"❌ Configuration failed: {e}", style="red")
        return False


async def demo_monitoring_pass(engine: MonitoringEngine) -> bool:
    """Run one full pass over every active plan."""

    console.print(Panel("🩺 Monitoring Pass", style="blue"))

    try:
        report = await engine.init()
        if report is None:
            report = await engine.run_full_pass()

        summary = Table(title="Pass Report")
        summary.add_column("Metric", style="cyan")
        summary.add_column("Value", style="white")
        summary.add_row("Trigger", report.trigger)
        summary.add_row("Plans checked", str(report.plans_checked))
        summary.add_row("Plans skipped", str(report.plans_skipped))
        summary.add_row("Plans failed", str(report.plans_failed))
        summary.add_row("Alerts generated", str(report.alerts_generated))
        summary.add_row("Duration", f"{report.duration_seconds:.2f}s")
        console.print(summary)
        console.print(alerts_table(engine, "Active Alerts"))

        return report.plans_checked == len(engine.active_plans)

    except Exception as e:
        console.print(f"❌ Monitoring pass failed: {e}", style="red")
        return False


async def demo_offline_outbox(engine: MonitoringEngine, connectivity: ToggleConnectivity) -> bool:
    """Work offline from the local cache, then drain the outbox on reconnect."""

    console.print(Panel("📴 Offline Operation", style="blue"))

    try:
        await connectivity.set_online(False)
        console.print("Network down, re-checking plan-declining from the local cache...", style="yellow")

        report = await engine.handle_measurement_recorded("plan-declining")
        console.print(f"Evaluated {report.plans_checked} plan(s) offline")

        declining = engine.active_alerts("plan-declining")
        if declining:
            await engine.acknowledge(declining[0].id)
            console.print(f"Acknowledged [bold]{declining[0].id}[/bold] while offline")

        queued = await engine.sync.pending_count()
        console.print(f"{queued} operation(s) waiting in the outbox")

        await connectivity.set_online(True)
        remaining = await engine.sync.pending_count()
        console.print(
            f"✅ Reconnected: outbox drained from {queued} to {remaining} operation(s)",
            style="green",
        )
        return remaining == 0

    except Exception as e:
        console.print(f"❌ Offline demo failed: {e}", style="red")
        return False


async def demo_acknowledgement(engine: MonitoringEngine) -> bool:
    """Acknowledge the most important active alert."""

    console.print(Panel("✅ Acknowledgement", style="blue"))

    try:
        active = engine.active_alerts()
        if not active:
            console.print("No active alerts to acknowledge", style="yellow")
            return True

        top = active[0]
        acknowledged = await engine.acknowledge(top.id)
        if acknowledged is None:
            return False

        console.print(f"Acknowledged [bold]{top.id}[/bold] at {acknowledged.acknowledged_at:%H:%M:%S}")
        console.print(alerts_table(engine, "Remaining Active Alerts"))
        return top.id not in {a.id for a in engine.active_alerts()}

    except Exception as e:
        console.print(f"❌ Acknowledgement failed: {e}", style="red")
        return False


async def demo_manual_conflict(engine: MonitoringEngine, api: SimulatedCarePlanApi) -> bool:
    """Queue a medication change the server disagrees with and resolve it by hand."""

    console.print(Panel("⚖️ Conflict Resolution", style="blue"))

    try:
        api.conflicting_types.add("medications")
        operation = await engine.sync.enqueue(
            "medications", "update", {"id": "med-42", "dose": "5mg"}
        )
        result = await engine.sync.drain_queue()
        console.print(
            f"Drain: {result.success_count} synced, {result.conflict_count} conflict(s) parked for review",
            style="yellow",
        )

        resolved = await engine.sync.resolve_manually(operation.id, "use-server")
        console.print(
            f"✅ Resolved {operation.id} with the server version (dose {resolved['dose']})",
            style="green",
        )
        return await engine.sync.pending_count() == 0

    except Exception as e:
        console.print(f"❌ Conflict resolution failed: {e}", style="red")
        return False


async def run_demo() -> None:
    """Run every demo step against one engine instance."""

    console.print(Panel("🏥 Care Plan Monitor - Demo", style="bold blue"))

    results: list[tuple[str, bool]] = [("Configuration", await demo_configuration())]

    with tempfile.TemporaryDirectory() as workdir:
        store = SqlAlchemyStore(StorageConfig(url=f"sqlite+aiosqlite:///{Path(workdir) / 'demo.db'}"))
        await store.initialize()

        connectivity = ToggleConnectivity(online=True)
        api = SimulatedCarePlanApi(connectivity)
        engine = MonitoringEngine(
            api,
            store,
            RichConsoleNotifier(console),
            connectivity,
            settings=get_config().engine,
        )

        steps = [
            ("Monitoring Pass", lambda: demo_monitoring_pass(engine)),
            ("Offline Operation", lambda: demo_offline_outbox(engine, connectivity)),
            ("Acknowledgement", lambda: demo_acknowledgement(engine)),
            ("Conflict Resolution", lambda: demo_manual_conflict(engine, api)),
        ]

        try:
            for step_name, step in steps:
                console.print(f"\n{'=' * 60}")
                try:
                    results.append((step_name, await step()))
                except KeyboardInterrupt:
                    console.print("\n⏹️  Demo interrupted by user", style="yellow")
                    break
        finally:
            await engine.stop()
            await engine.wait_for_pending_passes()
            await store.close()

    console.print(f"\n{'=' * 60}")
    console.print(Panel("📋 Demo Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Step", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for step_name, ok in results:
        summary_table.add_row(step_name, "✅ OK" if ok else "❌ FAILED")
        passed += ok

    console.print(summary_table)
    console.print(f"\n🎯 {passed}/{len(results)} steps completed")


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\n👋 Demo stopped by user", style="yellow")
