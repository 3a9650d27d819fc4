"""
Tests for configuration management in `careplan_monitor/config.py`.

Covers:
- Environment parsing and debug defaults
- Logging level coercion to the expected Literal
- RUN_ON_INIT boolean parsing
- get_config cache behavior
- AppConfig validation (debug only allowed in development)
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from pydantic import ValidationError

from careplan_monitor.config import (
    APIClientConfig,
    AppConfig,
    EngineConfig,
    LoggingConfig,
    StorageConfig,
    configure_logging,
    get_config,
    load_config_from_env,
)


@pytest.fixture(autouse=True)
def clear_config_cache() -> Iterator[None]:
    """Ensure get_config cache is cleared before and after each test."""
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def test_load_config_dev_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("RUN_ON_INIT", raising=False)

    config = load_config_from_env()

    assert config.environment == "development"
    assert config.debug is True
    assert config.logging.format == "console"
    assert config.engine.run_on_init is True
    assert config.logging.level in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def test_production_uses_json_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "prod")

    config = load_config_from_env()

    assert config.environment == "production"
    assert config.debug is False
    assert config.logging.format == "json"


def test_api_and_engine_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "staging")
    monkeypatch.setenv("CAREPLAN_API_URL", "https://care.example/api")
    monkeypatch.setenv("CAREPLAN_API_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("CAREPLAN_API_FAILURE_THRESHOLD", "3")
    monkeypatch.setenv("MONITOR_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("PLAN_TIMEOUT_SECONDS", "4")
    monkeypatch.setenv("MAX_CONCURRENT_PLANS", "2")

    config = load_config_from_env()

    assert config.api.base_url == "https://care.example/api"
    assert config.api.timeout_seconds == 2.5
    assert config.api.failure_threshold == 3
    assert config.storage.url == "sqlite+aiosqlite:///:memory:"
    assert config.engine.plan_timeout_seconds == 4.0
    assert config.engine.max_concurrent_plans == 2


def test_run_on_init_boolean_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")

    monkeypatch.setenv("RUN_ON_INIT", "false")
    assert load_config_from_env().engine.run_on_init is False

    monkeypatch.setenv("RUN_ON_INIT", "yes")
    assert load_config_from_env().engine.run_on_init is True


def test_logging_level_literal_coercion(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "staging")

    # Unknown level should coerce to INFO
    monkeypatch.setenv("LOG_LEVEL", "unknown")
    config = load_config_from_env()
    assert config.logging.level == "INFO"

    # Known level should pass through
    monkeypatch.setenv("LOG_LEVEL", "error")
    config = load_config_from_env()
    assert config.logging.level == "ERROR"


def test_invalid_numeric_values_fail_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAX_CONCURRENT_PLANS", "0")

    with pytest.raises(ValidationError):
        load_config_from_env()


def test_get_config_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")

    c1 = get_config()
    c2 = get_config()
    assert c1 is c2  # same object due to lru_cache


def test_app_config_debug_only_in_dev_validation() -> None:
    with pytest.raises(ValueError, match="debug mode is only allowed"):
        AppConfig(
            environment="production",
            debug=True,
            api=APIClientConfig(),
            storage=StorageConfig(),
            engine=EngineConfig(),
            logging=LoggingConfig(),
        )


@pytest.mark.parametrize("fmt", ["json", "console"])
def test_configure_logging_accepts_both_formats(fmt: str) -> None:
    configure_logging(LoggingConfig(level="DEBUG", format=fmt))  # type: ignore[arg-type]
