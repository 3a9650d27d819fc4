"""HTTP adapter for the remote care-plan API."""

from .client import CircuitBreakerState, HttpMonitoringApi

__all__ = ["CircuitBreakerState", "HttpMonitoringApi"]
