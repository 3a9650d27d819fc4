"""
Error taxonomy for the monitoring engine.

None of these are fatal: each one maps to a recovery path (cached data,
queued retry, default config) so the monitoring loop keeps running.
"""


class MonitoringError(Exception):
    """Base class for all monitoring engine errors."""


class TransientNetworkError(MonitoringError):
    """Remote call failed because the server is unreachable or answered non-2xx."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DataUnavailableError(MonitoringError):
    """No snapshot could be fetched and no cached copy exists."""

    def __init__(self, care_plan_id: str) -> None:
        super().__init__(f"No monitoring data available for care plan {care_plan_id}")
        self.care_plan_id = care_plan_id


class ConflictError(MonitoringError):
    """Server reported a version mismatch for a queued operation."""

    def __init__(self, operation_id: str, server_data: dict | None = None) -> None:
        super().__init__(f"Sync conflict for operation {operation_id}")
        self.operation_id = operation_id
        self.server_data = server_data or {}


class ConfigurationError(MonitoringError):
    """Monitoring configuration or thresholds failed validation."""
