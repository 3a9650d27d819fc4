"""
Monitoring services.

This package contains the service implementations of the monitoring engine:
config loading, data fetching, rule evaluation, statistical analysis, the
alert pipeline, the outbox and the orchestrating engine.
"""

from .alert_pipeline import AlertPipeline
from .analyzers import TrendAnalysis, TrendPredictor, analyze_trends, detect_anomalies
from .conflict_resolution import ConflictResolution, ConflictResolver, ConflictStrategy
from .data_fetcher import CarePlanDataFetcher, Result
from .monitoring_engine import EngineState, MonitoringEngine
from .rules import (
    evaluate_medication_compliance,
    evaluate_missed_visits,
    evaluate_rules,
    evaluate_task_completion,
    evaluate_vital_signs,
)
from .sync_coordinator import SyncCoordinator
from .threshold_store import ThresholdStore

__all__ = [
    "AlertPipeline",
    "CarePlanDataFetcher",
    "ConflictResolution",
    "ConflictResolver",
    "ConflictStrategy",
    "EngineState",
    "MonitoringEngine",
    "Result",
    "SyncCoordinator",
    "ThresholdStore",
    "TrendAnalysis",
    "TrendPredictor",
    "analyze_trends",
    "detect_anomalies",
    "evaluate_medication_compliance",
    "evaluate_missed_visits",
    "evaluate_rules",
    "evaluate_task_completion",
    "evaluate_vital_signs",
]
