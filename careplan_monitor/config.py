"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Clinical thresholds are NOT configured here: they are loaded at runtime
  by the threshold store (see ``careplan_monitor.services.threshold_store``)
"""

import logging
import os
from functools import lru_cache
from typing import Literal, cast

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()


class APIClientConfig(BaseModel):
    """Remote care-plan API configuration."""

    base_url: str = Field(default="http://localhost:8000/api", description="API base URL")
    timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Timeout for each remote request"
    )
    failure_threshold: int = Field(
        default=5, gt=0, description="Consecutive failures before the circuit opens"
    )
    recovery_timeout_seconds: int = Field(
        default=60, gt=0, description="Seconds before an open circuit is retried"
    )


class StorageConfig(BaseModel):
    """Durable local storage configuration."""

    url: str = Field(
        default="sqlite+aiosqlite:///./careplan_monitor.db", description="SQLAlchemy URL"
    )


class EngineConfig(BaseModel):
    """Monitoring loop tuning."""

    plan_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Upper bound for evaluating one care plan"
    )
    max_concurrent_plans: int = Field(
        default=5, gt=0, description="Maximum number of plans evaluated concurrently"
    )
    run_on_init: bool = Field(default=True, description="Run a full pass right after init()")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    api: APIClientConfig = Field(default_factory=APIClientConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    api_config = APIClientConfig(
        base_url=os.getenv("CAREPLAN_API_URL", "http://localhost:8000/api"),
        timeout_seconds=float(os.getenv("CAREPLAN_API_TIMEOUT_SECONDS", "10.0")),
        failure_threshold=int(os.getenv("CAREPLAN_API_FAILURE_THRESHOLD", "5")),
        recovery_timeout_seconds=int(os.getenv("CAREPLAN_API_RECOVERY_SECONDS", "60")),
    )

    storage_config = StorageConfig(
        url=os.getenv("MONITOR_DATABASE_URL", "sqlite+aiosqlite:///./careplan_monitor.db"),
    )

    engine_config = EngineConfig(
        plan_timeout_seconds=float(os.getenv("PLAN_TIMEOUT_SECONDS", "30.0")),
        max_concurrent_plans=int(os.getenv("MAX_CONCURRENT_PLANS", "5")),
        run_on_init=_parse_bool(os.getenv("RUN_ON_INIT"), True),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        api=api_config,
        storage=storage_config,
        engine=engine_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def configure_logging(config: LoggingConfig) -> None:
    """Install the structlog processor chain for the given logging config."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, config.level))

    renderer: structlog.types.Processor
    if config.format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
