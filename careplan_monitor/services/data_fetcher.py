"""
Care-plan data fetching with offline fallback.

Key patterns:
- Remote-first, cache-second: every successful fetch refreshes the local copy
- Generic Result type for expected failures (no data is not exceptional)
- Protocol-based collaborators (api, store, connectivity)
"""

from datetime import datetime
from typing import Generic, TypeVar

import structlog
from pydantic import ValidationError

from careplan_monitor.domain.errors import DataUnavailableError, TransientNetworkError
from careplan_monitor.domain.models import CarePlan, CarePlanSnapshot
from careplan_monitor.services.protocols import (
    MONITORING_CACHE,
    Clock,
    ConnectivityListener,
    KeyValueStore,
    MonitoringApi,
    SystemClock,
)

logger = structlog.get_logger(__name__)

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)
DefaultT = TypeVar("DefaultT")

ACTIVE_PLANS_KEY = "activePlans"


class Result(Generic[ValueT, ErrorT]):
    """Value-or-error wrapper for expected failures such as missing cached data."""

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: DefaultT) -> ValueT | DefaultT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


def snapshot_cache_key(care_plan_id: str) -> str:
    return f"plan_{care_plan_id}"


class CarePlanDataFetcher:
    """
    Retrieves monitoring snapshots and the active-plan list.

    Design principles:
    - Never raises for network or data problems; callers get None / Result.err
    - Every remote success is persisted so the next offline cycle has data
    """

    def __init__(
        self,
        api: MonitoringApi,
        store: KeyValueStore,
        connectivity: ConnectivityListener,
        clock: Clock | None = None,
    ) -> None:
        self.api = api
        self.store = store
        self.connectivity = connectivity
        self.clock = clock or SystemClock()
        self.logger = logger.bind(component="care_plan_data_fetcher")

    async def fetch_snapshot(
        self, care_plan_id: str
    ) -> Result[CarePlanSnapshot, DataUnavailableError]:
        """
        Fetch the latest monitoring snapshot for one care plan.

        Returns:
            Result containing the snapshot, or DataUnavailableError when neither
            the server nor the local cache has data for the plan.
        """
        if self.connectivity.is_online():
            try:
                payload = await self.api.fetch_monitoring_data(care_plan_id)
                snapshot = CarePlanSnapshot.model_validate(payload)
                await self._cache_snapshot(care_plan_id, snapshot)
                self.logger.debug(
                    "plan_snapshot_fetched",
                    care_plan_id=care_plan_id,
                    vital_signs=len(snapshot.vital_signs),
                )
                return Result.ok(snapshot)
            except TransientNetworkError as e:
                self.logger.warning(
                    "plan_snapshot_remote_failed", care_plan_id=care_plan_id, error=str(e)
                )
            except ValidationError as e:
                self.logger.warning(
                    "plan_snapshot_invalid", care_plan_id=care_plan_id, error=str(e)
                )

        cached = await self._load_cached_snapshot(care_plan_id)
        if cached is None:
            self.logger.warning("plan_snapshot_unavailable", care_plan_id=care_plan_id)
            return Result.err(DataUnavailableError(care_plan_id))

        self.logger.info("plan_snapshot_from_cache", care_plan_id=care_plan_id)
        return Result.ok(cached)

    async def fetch(self, care_plan_id: str) -> CarePlanSnapshot | None:
        """Snapshot for the plan, or None meaning "skip this plan this cycle"."""
        result = await self.fetch_snapshot(care_plan_id)
        return result.unwrap_or(None)

    async def fetch_active_plans(self) -> list[CarePlan]:
        """Active care plans, remote-first with the last stored list as fallback."""
        if self.connectivity.is_online():
            try:
                payload = await self.api.fetch_active_plans()
                plans = [CarePlan.model_validate(item) for item in payload]
                await self.store.put(
                    MONITORING_CACHE,
                    ACTIVE_PLANS_KEY,
                    {
                        "id": ACTIVE_PLANS_KEY,
                        "data": [plan.to_json_dict() for plan in plans],
                        "storedAt": self._now().isoformat(),
                    },
                )
                self.logger.info("active_plans_fetched", count=len(plans))
                return plans
            except (TransientNetworkError, ValidationError) as e:
                self.logger.warning("active_plans_remote_failed", error=str(e))

        stored = await self.store.get(MONITORING_CACHE, ACTIVE_PLANS_KEY)
        if not stored:
            self.logger.warning("active_plans_unavailable")
            return []

        try:
            plans = [CarePlan.model_validate(item) for item in stored.get("data", [])]
        except ValidationError as e:
            self.logger.error("active_plans_cache_corrupt", error=str(e))
            return []

        self.logger.info("active_plans_from_cache", count=len(plans))
        return plans

    async def _cache_snapshot(self, care_plan_id: str, snapshot: CarePlanSnapshot) -> None:
        key = snapshot_cache_key(care_plan_id)
        await self.store.put(
            MONITORING_CACHE,
            key,
            {"id": key, "data": snapshot.to_json_dict(), "storedAt": self._now().isoformat()},
        )

    async def _load_cached_snapshot(self, care_plan_id: str) -> CarePlanSnapshot | None:
        stored = await self.store.get(MONITORING_CACHE, snapshot_cache_key(care_plan_id))
        if not stored or "data" not in stored:
            return None
        try:
            return CarePlanSnapshot.model_validate(stored["data"])
        except ValidationError as e:
            self.logger.error("plan_snapshot_cache_corrupt", care_plan_id=care_plan_id, error=str(e))
            return None

    def _now(self) -> datetime:
        return self.clock.now()
