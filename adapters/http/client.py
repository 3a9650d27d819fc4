"""
HTTP implementation of the remote care-plan API.

- httpx.AsyncClient with a per-request timeout
- Transport failures and non-2xx answers become TransientNetworkError
- Circuit breaker fails fast while the server keeps failing
"""

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from careplan_monitor.config import APIClientConfig
from careplan_monitor.domain.errors import TransientNetworkError
from careplan_monitor.services.protocols import JsonDict

logger = structlog.get_logger(__name__)


class CircuitBreakerState:
    """Simple circuit breaker for remote API calls."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: datetime | None = None
        self.state = "closed"  # closed, open, half-open

    def can_execute(self) -> bool:
        """Check if a request may be sent based on circuit breaker state."""

        if self.state == "closed":
            return True

        if self.state == "open":
            if self.last_failure_time:
                time_since_failure = datetime.now(UTC) - self.last_failure_time
                if time_since_failure.total_seconds() >= self.recovery_timeout:
                    self.state = "half-open"
                    return True
            return False

        # half-open lets one trial request through
        return True

    def record_success(self) -> None:
        self.failure_count = 0
        self.state = "closed"

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now(UTC)

        if self.state == "half-open" or self.failure_count >= self.failure_threshold:
            self.state = "open"


class HttpMonitoringApi:
    """Talks to the care-plan REST API."""

    def __init__(
        self, config: APIClientConfig | None = None, client: httpx.AsyncClient | None = None
    ) -> None:
        self.config = config or APIClientConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={"Accept": "application/json"},
            timeout=self.config.timeout_seconds,
        )
        self.circuit_breaker = CircuitBreakerState(
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout_seconds,
        )
        self.logger = logger.bind(component="http_monitoring_api")

    async def __aenter__(self) -> "HttpMonitoringApi":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        if not self.circuit_breaker.can_execute():
            self.logger.warning("api_circuit_open", path=path)
            raise TransientNetworkError(f"Circuit open, not calling {path}")

        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            self.logger.warning(
                "api_request_failed",
                method=method,
                path=path,
                error=str(e),
                circuit_state=self.circuit_breaker.state,
            )
            raise TransientNetworkError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            if response.status_code >= 500:
                self.circuit_breaker.record_failure()
            self.logger.warning(
                "api_request_rejected", method=method, path=path, status_code=response.status_code
            )
            raise TransientNetworkError(
                f"{method} {path} answered {response.status_code}", status_code=response.status_code
            )

        self.circuit_breaker.record_success()
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransientNetworkError(f"{method} {path} returned invalid JSON") from e

    async def fetch_config(self) -> JsonDict:
        return await self._request("GET", "/care-plans/monitoring/config")

    async def fetch_active_plans(self) -> list[JsonDict]:
        return await self._request("GET", "/care-plans/active")

    async def fetch_monitoring_data(self, care_plan_id: str) -> JsonDict:
        return await self._request("GET", f"/care-plans/{care_plan_id}/monitoring-data")

    async def push_alerts(self, alerts: list[JsonDict]) -> None:
        await self._request("POST", "/care-plans/alerts", json={"alerts": alerts})

    async def acknowledge_alert(self, alert_id: str, timestamp: str) -> None:
        await self._request(
            "POST", f"/care-plans/alerts/{alert_id}/acknowledge", json={"timestamp": timestamp}
        )

    async def send_operations(
        self, resource_type: str, operations: list[JsonDict], device_id: str
    ) -> JsonDict:
        return await self._request(
            "POST",
            f"/{resource_type}",
            json={"operations": operations},
            headers={
                "X-Client-ID": device_id,
                "X-Device-Timestamp": datetime.now(UTC).isoformat(),
            },
        )

    async def resolve_conflict(
        self, resource_type: str, payload: JsonDict, device_id: str
    ) -> None:
        await self._request(
            "POST",
            f"/{resource_type}/resolve-conflict",
            json=payload,
            headers={"X-Client-ID": device_id},
        )
