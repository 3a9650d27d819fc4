"""
Threshold store: loads the monitoring configuration.

Sources, in order: remote config (merged into defaults and persisted),
last persisted local copy, hardcoded defaults. ``load()`` never fails.
"""

from typing import Any

import structlog
from pydantic import ValidationError

from careplan_monitor.domain.errors import ConfigurationError, TransientNetworkError
from careplan_monitor.domain.thresholds import MonitoringConfig, deep_merge
from careplan_monitor.services.protocols import (
    MONITORING_CACHE,
    Clock,
    ConnectivityListener,
    KeyValueStore,
    MonitoringApi,
    SystemClock,
)

logger = structlog.get_logger(__name__)

CONFIG_KEY = "config"


def parse_monitoring_config(
    payload: dict[str, Any], defaults: MonitoringConfig | None = None
) -> MonitoringConfig:
    """Merge a partial config payload into the defaults and validate it."""
    base = (defaults or MonitoringConfig()).to_json_dict()
    try:
        return MonitoringConfig.model_validate(deep_merge(base, payload))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid monitoring configuration: {e}") from e


class ThresholdStore:
    """Loads and caches the process-wide ``MonitoringConfig``."""

    def __init__(
        self,
        api: MonitoringApi,
        store: KeyValueStore,
        connectivity: ConnectivityListener,
        defaults: MonitoringConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.api = api
        self.store = store
        self.connectivity = connectivity
        self.defaults = defaults or MonitoringConfig()
        self.clock = clock or SystemClock()
        self.logger = logger.bind(component="threshold_store")
        self._current: MonitoringConfig | None = None

    @property
    def current(self) -> MonitoringConfig:
        """Last loaded config, or the defaults before the first load."""
        return self._current or self.defaults

    async def load(self) -> MonitoringConfig:
        """Load config from the best available source. Never raises."""
        config = await self._load_remote()
        source = "remote"

        if config is None:
            config = await self._load_local()
            source = "local"

        if config is None:
            config = self.defaults
            source = "defaults"
            self.logger.warning("monitoring_config_defaults_used")

        if config.thresholds.is_empty():
            self.logger.warning(
                "monitoring_thresholds_empty",
                source=source,
                detail="no threshold tables configured; rule checks will not raise alerts",
            )

        self._current = config
        self.logger.info(
            "monitoring_config_loaded",
            source=source,
            polling_interval_seconds=config.polling_interval_seconds,
            vital_sign_types=len(config.thresholds.vital_signs),
            anomaly_detection=config.anomaly_detection_enabled,
            predictive_model=config.predictive_model_enabled,
        )
        return config

    async def _load_remote(self) -> MonitoringConfig | None:
        if not self.connectivity.is_online():
            return None

        try:
            payload = await self.api.fetch_config()
            config = parse_monitoring_config(payload, self.defaults)
        except TransientNetworkError as e:
            self.logger.warning("monitoring_config_remote_failed", error=str(e))
            return None
        except ConfigurationError as e:
            self.logger.error("monitoring_config_remote_invalid", error=str(e))
            return None

        try:
            await self.store.put(
                MONITORING_CACHE,
                CONFIG_KEY,
                {
                    "id": CONFIG_KEY,
                    "data": config.to_json_dict(),
                    "storedAt": self.clock.now().isoformat(),
                },
            )
        except Exception as e:
            # The remote config is still valid for this process even if the copy failed.
            self.logger.exception("monitoring_config_persist_failed", error=str(e))

        return config

    async def _load_local(self) -> MonitoringConfig | None:
        stored = await self.store.get(MONITORING_CACHE, CONFIG_KEY)
        if not stored or "data" not in stored:
            return None

        try:
            return parse_monitoring_config(stored["data"], self.defaults)
        except ConfigurationError as e:
            self.logger.error("monitoring_config_local_invalid", error=str(e))
            return None
