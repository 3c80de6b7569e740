"""
Orchestream streaming core.

Dispatching across engines, stream admission, retries, statistics, and
health monitoring.
"""

from orchestream.streaming.admission import AdmissionController, AdmissionSlot
from orchestream.streaming.dispatcher import Dispatcher, Operation
from orchestream.streaming.health import CheckResult, HealthMonitor, HealthReport, HealthStatus
from orchestream.streaming.orchestrator import (
    StreamOrchestrator,
    get_orchestrator,
    init_orchestrator,
)
from orchestream.streaming.retry_manager import RetryConfig, RetryPolicy
from orchestream.streaming.stats import EngineStats, StatsAggregator

__all__ = [
    "AdmissionController",
    "AdmissionSlot",
    "CheckResult",
    "Dispatcher",
    "EngineStats",
    "HealthMonitor",
    "HealthReport",
    "HealthStatus",
    "Operation",
    "RetryConfig",
    "RetryPolicy",
    "StatsAggregator",
    "StreamOrchestrator",
    "get_orchestrator",
    "init_orchestrator",
]
