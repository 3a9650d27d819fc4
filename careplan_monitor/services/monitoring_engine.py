"""
Monitoring engine: the orchestrator of the care-plan monitoring pipeline.

One evaluation pass:
1. Fetch the latest snapshot per active plan (remote-first, cached fallback)
2. Run the rule evaluators and, when enabled, the statistical analyzers
3. Feed the resulting alerts through the alert pipeline

Architecture pattern: explicit instance with injected collaborators, a
periodic timer task, and event handlers that trigger out-of-band passes.
"""

import asyncio
import time
from collections.abc import Callable
from enum import Enum
from typing import Literal

import structlog

from careplan_monitor.config import EngineConfig
from careplan_monitor.domain.models import (
    Alert,
    CarePlan,
    MonitoringPassReport,
    SyncDrainResult,
)
from careplan_monitor.domain.thresholds import MonitoringConfig
from careplan_monitor.services.alert_pipeline import AlertPipeline, AlertsCallback
from careplan_monitor.services.analyzers import TrendPredictor, detect_anomalies
from careplan_monitor.services.conflict_resolution import ConflictResolver, ConflictStrategy
from careplan_monitor.services.data_fetcher import CarePlanDataFetcher
from careplan_monitor.services.protocols import (
    Clock,
    ConnectivityListener,
    KeyValueStore,
    MonitoringApi,
    Notifier,
    SystemClock,
)
from careplan_monitor.services.rules import evaluate_rules, summarize
from careplan_monitor.services.sync_coordinator import SyncCoordinator
from careplan_monitor.services.threshold_store import ThresholdStore

logger = structlog.get_logger(__name__)

PassTrigger = Literal["timer", "init", "event", "manual"]
PlanOutcome = Literal["checked", "skipped", "failed"]


class EngineState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class MonitoringEngine:
    """
    Drives periodic and event-triggered evaluation of active care plans.

    Concurrency model:
    - At most one pass runs at a time; timer ticks that find a pass in
      progress are skipped, event-triggered passes wait for it
    - Plans within a pass are evaluated concurrently, bounded by a semaphore
      and a per-plan timeout on fetch and evaluation
    - ``stop()`` cancels the timer only; a pass already running completes
    """

    def __init__(
        self,
        api: MonitoringApi,
        store: KeyValueStore,
        notifier: Notifier,
        connectivity: ConnectivityListener,
        clock: Clock | None = None,
        settings: EngineConfig | None = None,
        conflict_strategies: dict[str, ConflictStrategy] | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.settings = settings or EngineConfig()
        self.connectivity = connectivity
        self.logger = logger.bind(component="monitoring_engine")

        self.thresholds = ThresholdStore(api, store, connectivity, clock=self.clock)
        self.fetcher = CarePlanDataFetcher(api, store, connectivity, clock=self.clock)
        self.predictor = TrendPredictor(clock=self.clock)
        self.sync = SyncCoordinator(
            api,
            store,
            connectivity,
            resolver=ConflictResolver(conflict_strategies, clock=self.clock),
            clock=self.clock,
        )
        self.pipeline = AlertPipeline(
            api,
            store,
            connectivity,
            self.sync,
            notifier,
            clock=self.clock,
            push_timeout_seconds=self.settings.plan_timeout_seconds,
        )

        self.state = EngineState.STOPPED
        self._active_plans: dict[str, CarePlan] = {}
        self._timer_task: asyncio.Task[None] | None = None
        self._pass_lock = asyncio.Lock()
        self._inflight: set[asyncio.Task[MonitoringPassReport]] = set()
        self._listeners_registered = False

    @property
    def config(self) -> MonitoringConfig:
        return self.thresholds.current

    @property
    def active_plans(self) -> list[CarePlan]:
        return list(self._active_plans.values())

    @property
    def is_running(self) -> bool:
        return self.state is EngineState.RUNNING

    async def init(self) -> MonitoringPassReport | None:
        """Load config and plans, subscribe to connectivity, start the timer, run one pass."""
        self.logger.info("monitoring_engine_initializing")

        await self.reload_config()
        await self.pipeline.restore()
        await self.refresh_active_plans()

        if not self._listeners_registered:
            self.connectivity.on_became_online(self._on_became_online)
            self.connectivity.on_became_offline(self._on_became_offline)
            self._listeners_registered = True

        self.start()

        if not self.settings.run_on_init:
            return None
        return await self.run_full_pass(trigger="init")

    def start(self) -> None:
        """Start the periodic timer. Idempotent."""
        if self.state is EngineState.RUNNING:
            return

        self.state = EngineState.RUNNING
        self._timer_task = asyncio.get_running_loop().create_task(
            self._timer_loop(), name="careplan-monitor-timer"
        )
        self.logger.info(
            "monitoring_started", polling_interval_seconds=self.config.polling_interval_seconds
        )

    async def stop(self) -> None:
        """Stop the periodic timer. Idempotent; an in-flight pass still completes."""
        if self.state is EngineState.STOPPED:
            return

        self.state = EngineState.STOPPED
        timer, self._timer_task = self._timer_task, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        self.logger.info("monitoring_stopped", inflight_passes=len(self._inflight))

    async def wait_for_pending_passes(self) -> None:
        """Wait until passes started by the timer have written their results."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _timer_loop(self) -> None:
        try:
            while self.state is EngineState.RUNNING:
                await asyncio.sleep(self.config.polling_interval_seconds)

                if self._pass_lock.locked():
                    self.logger.info("monitoring_tick_skipped", reason="pass_in_progress")
                    continue

                task = asyncio.ensure_future(self.run_full_pass(trigger="timer"))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                # Cancelling the timer must not abort the pass.
                await asyncio.shield(task)
        except asyncio.CancelledError:
            self.logger.debug("monitoring_timer_cancelled")
            raise

    async def reload_config(self) -> MonitoringConfig:
        """Reload monitoring config; the new config applies from the next pass."""
        return await self.thresholds.load()

    async def refresh_active_plans(self) -> list[CarePlan]:
        plans = await self.fetcher.fetch_active_plans()
        self._active_plans = {plan.id: plan for plan in plans}
        self.logger.info("active_plans_refreshed", count=len(plans))
        return plans

    async def run_full_pass(self, trigger: PassTrigger = "manual") -> MonitoringPassReport:
        """Evaluate every active plan. Never raises."""
        async with self._pass_lock:
            return await self._run_pass(list(self._active_plans.values()), trigger)

    async def check_plan(
        self, care_plan_id: str, trigger: PassTrigger = "event"
    ) -> MonitoringPassReport:
        """Single-plan pass, waiting for any pass already running."""
        plan = self._active_plans.get(care_plan_id) or CarePlan(id=care_plan_id)
        async with self._pass_lock:
            return await self._run_pass([plan], trigger)

    async def _run_pass(self, plans: list[CarePlan], trigger: PassTrigger) -> MonitoringPassReport:
        started_at = self.clock.now()
        start_time = time.perf_counter()
        config = self.config
        outcomes: list[tuple[PlanOutcome, int]] = []

        self.logger.info("monitoring_pass_starting", trigger=trigger, plans=len(plans))

        try:
            semaphore = asyncio.Semaphore(self.settings.max_concurrent_plans)
            async with asyncio.TaskGroup() as task_group:
                tasks = [
                    task_group.create_task(
                        self._check_plan_bounded(plan, config, semaphore), name=f"plan:{plan.id}"
                    )
                    for plan in plans
                ]
            outcomes = [task.result() for task in tasks]
        except Exception as e:
            self.logger.exception("monitoring_pass_failed", trigger=trigger, error=str(e))

        checked = sum(1 for outcome, _ in outcomes if outcome == "checked")
        skipped = sum(1 for outcome, _ in outcomes if outcome == "skipped")
        failed = len(plans) - checked - skipped

        report = MonitoringPassReport(
            started_at=started_at,
            trigger=trigger,
            plans_checked=checked,
            plans_skipped=skipped,
            plans_failed=failed,
            alerts_generated=sum(count for _, count in outcomes),
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )

        if plans and failed == len(plans):
            self.logger.error("monitoring_pass_all_plans_failed", trigger=trigger, plans=len(plans))

        self.logger.info("monitoring_pass_completed", **report.model_dump(mode="json"))
        return report

    async def _check_plan_bounded(
        self, plan: CarePlan, config: MonitoringConfig, semaphore: asyncio.Semaphore
    ) -> tuple[PlanOutcome, int]:
        async with semaphore:
            try:
                alerts = await asyncio.wait_for(
                    self._evaluate_plan(plan, config),
                    timeout=self.settings.plan_timeout_seconds,
                )
            except TimeoutError:
                self.logger.warning(
                    "plan_evaluation_timeout",
                    care_plan_id=plan.id,
                    timeout_seconds=self.settings.plan_timeout_seconds,
                )
                return "failed", 0
            except Exception as e:
                self.logger.exception("plan_evaluation_failed", care_plan_id=plan.id, error=str(e))
                return "failed", 0

            if alerts is None:
                return "skipped", 0

            # Not bounded by the plan timeout; stored alerts are always forwarded or queued.
            try:
                accepted = await self.pipeline.process(alerts)
            except Exception as e:
                self.logger.exception("plan_alerts_failed", care_plan_id=plan.id, error=str(e))
                return "failed", 0

        return "checked", len(accepted)

    async def _evaluate_plan(
        self, plan: CarePlan, config: MonitoringConfig
    ) -> list[Alert] | None:
        snapshot = await self.fetcher.fetch(plan.id)
        if snapshot is None:
            self.logger.info("plan_skipped_no_data", care_plan_id=plan.id)
            return None

        now = self.clock.now()
        alerts = evaluate_rules(plan, snapshot, config.thresholds, now)
        if config.anomaly_detection_enabled:
            alerts.extend(detect_anomalies(plan, snapshot, now))
        if config.predictive_model_enabled:
            alerts.extend(self.predictor.predict(plan, snapshot))

        if alerts:
            self.logger.debug("plan_alerts_raised", care_plan_id=plan.id, **summarize(alerts))
        return alerts

    async def handle_plan_updated(self, care_plan_id: str) -> MonitoringPassReport:
        return await self.check_plan(care_plan_id, trigger="event")

    async def handle_measurement_recorded(self, care_plan_id: str) -> MonitoringPassReport:
        return await self.check_plan(care_plan_id, trigger="event")

    async def handle_connectivity_changed(self, is_online: bool) -> SyncDrainResult:
        """Coming online drains the priority outbox, then the general one."""
        if not is_online:
            self.logger.info("connectivity_lost")
            return SyncDrainResult()

        self.logger.info("connectivity_restored")
        priority = await self.sync.drain_priority()
        general = await self.sync.drain_queue()
        return priority + general

    async def _on_became_online(self) -> None:
        await self.handle_connectivity_changed(True)

    async def _on_became_offline(self) -> None:
        await self.handle_connectivity_changed(False)

    def active_alerts(self, care_plan_id: str | None = None) -> list[Alert]:
        return self.pipeline.active_alerts(care_plan_id)

    async def acknowledge(self, alert_id: str) -> Alert | None:
        return await self.pipeline.acknowledge(alert_id)

    async def view_details(self, alert_id: str) -> Alert | None:
        return await self.pipeline.view_details(alert_id)

    def on_alerts_updated(self, callback: AlertsCallback) -> Callable[[], None]:
        return self.pipeline.on_alerts_updated(callback)
