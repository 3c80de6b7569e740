"""
Health monitoring for the orchestrator.

Periodically checks engine availability, performance, stream utilization,
error rates, and memory, and triggers auto-recovery on critical reports.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

import psutil

from orchestream.config import HealthConfig
from orchestream.utils.logging_setup import log_exception

if TYPE_CHECKING:
    from orchestream.streaming.orchestrator import StreamOrchestrator

logger = logging.getLogger(__name__)

# Stream slot utilization that triggers a warning
STREAM_UTILIZATION_WARNING = 0.9

# Engines below this success rate (with enough traffic) are critical
MIN_ENGINE_SUCCESS_RATE = 20.0
MIN_REQUESTS_FOR_ERROR_RATE = 5


class HealthStatus(str, Enum):
    """Health check outcome, ordered by severity."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return {"healthy": 0, "warning": 1, "critical": 2}[self.value]


@dataclass
class CheckResult:
    """Result of a single health check."""

    status: HealthStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class HealthReport:
    """Combined result of one health check run."""

    status: HealthStatus
    checks: dict[str, CheckResult]
    issues: list[str]
    timestamp: datetime = field(default_factory=datetime.utcnow)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
            "issues": list(self.issues),
            "checks": {name: result.to_dict() for name, result in self.checks.items()},
        }


class HealthMonitor:
    """
    Periodic health checker for a StreamOrchestrator.

    Overall status is the most severe individual check. With auto-recovery
    enabled, a critical report clears caches and, when no engine is
    available, re-initializes engines.
    """

    def __init__(self, orchestrator: "StreamOrchestrator", config: Optional[HealthConfig] = None):
        self.orchestrator = orchestrator
        self.config = config or HealthConfig()
        self.last_report: Optional[HealthReport] = None
        self._task: Optional[asyncio.Task] = None

        self._checks: dict[str, Callable[[], CheckResult]] = {
            "engine_availability": self.check_engine_availability,
            "performance_metrics": self.check_performance_metrics,
            "concurrent_streams": self.check_concurrent_streams,
            "error_rates": self.check_error_rates,
            "memory_usage": self.check_memory_usage,
        }

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start periodic monitoring."""
        if self.running:
            return
        self._task = asyncio.create_task(self._monitoring_loop())
        logger.info(f"Health monitoring started (interval: {self.config.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop periodic monitoring."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Health monitoring stopped")

    async def _monitoring_loop(self) -> None:
        while True:
            try:
                await self.run_health_check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_exception(logger, e, "Health check failed")
            await asyncio.sleep(self.config.interval_seconds)

    async def run_health_check(self) -> HealthReport:
        """Run every check once and act on the result."""
        started = datetime.utcnow()
        results: dict[str, CheckResult] = {}
        issues: list[str] = []
        overall = HealthStatus.HEALTHY

        for name, check in self._checks.items():
            try:
                result = check()
            except Exception as e:
                logger.error(f"Health check {name} raised: {e}")
                result = CheckResult(HealthStatus.CRITICAL, f"Check failed: {e}")

            results[name] = result
            if result.status != HealthStatus.HEALTHY:
                issues.append(f"{name}: {result.message}")
            if result.status.severity > overall.severity:
                overall = result.status

        report = HealthReport(
            status=overall,
            checks=results,
            issues=issues,
            timestamp=started,
            duration_ms=(datetime.utcnow() - started).total_seconds() * 1000,
        )
        self.last_report = report

        if overall == HealthStatus.HEALTHY:
            logger.debug("Health check passed")
        else:
            logger.warning(f"Health check {overall.value}: {'; '.join(issues)}")

        if overall == HealthStatus.CRITICAL and self.config.auto_recovery:
            await self.attempt_recovery(report)

        return report

    def check_engine_availability(self) -> CheckResult:
        registry = self.orchestrator.registry
        available = [entry.name for entry in registry.available()]
        details = {
            "available": available,
            "total": len(registry),
            "min_required": self.config.min_available_engines,
        }

        if not available:
            return CheckResult(HealthStatus.CRITICAL, "No engines available", details)
        if len(available) < min(self.config.min_available_engines, len(registry)):
            return CheckResult(
                HealthStatus.WARNING,
                f"Only {len(available)} of {len(registry)} engines available",
                details,
            )
        return CheckResult(HealthStatus.HEALTHY, f"{len(available)} engines available", details)

    def check_performance_metrics(self) -> CheckResult:
        stats = self.orchestrator.stats.snapshot()
        total = stats["total_requests"]
        failure_rate = stats["failed_requests"] / total if total > 0 else 0.0
        slow = {
            name: engine["average_latency_ms"]
            for name, engine in stats["per_engine"].items()
            if engine["average_latency_ms"] > self.config.max_latency_ms
        }
        details = {"failure_rate": round(failure_rate, 3), "slow_engines": slow}

        if failure_rate > self.config.max_failure_rate:
            return CheckResult(
                HealthStatus.WARNING,
                f"High failure rate: {failure_rate * 100:.1f}%",
                details,
            )
        if slow:
            return CheckResult(
                HealthStatus.WARNING,
                f"Slow engines: {', '.join(sorted(slow))}",
                details,
            )
        return CheckResult(HealthStatus.HEALTHY, "Performance within limits", details)

    def check_concurrent_streams(self) -> CheckResult:
        admission = self.orchestrator.admission
        active = admission.active_count
        limit = admission.max_concurrent
        utilization = active / limit if limit else 0.0
        details = {"active": active, "max": limit, "utilization": round(utilization, 3)}

        if utilization > STREAM_UTILIZATION_WARNING:
            return CheckResult(
                HealthStatus.WARNING,
                f"Stream slots nearly exhausted ({active}/{limit})",
                details,
            )
        return CheckResult(HealthStatus.HEALTHY, f"{active}/{limit} streams active", details)

    def check_error_rates(self) -> CheckResult:
        per_engine = self.orchestrator.stats.snapshot()["per_engine"]
        failing = {
            name: engine["success_rate"]
            for name, engine in per_engine.items()
            if engine["requests"] > MIN_REQUESTS_FOR_ERROR_RATE
            and engine["success_rate"] < MIN_ENGINE_SUCCESS_RATE
        }

        if failing:
            return CheckResult(
                HealthStatus.CRITICAL,
                f"Engines with very low success rate: {', '.join(sorted(failing))}",
                {"failing_engines": failing},
            )
        return CheckResult(HealthStatus.HEALTHY, "Error rates normal", {"failing_engines": {}})

    def check_memory_usage(self) -> CheckResult:
        process = psutil.Process(os.getpid())
        rss_mb = process.memory_info().rss / (1024 * 1024)
        details = {"rss_mb": round(rss_mb, 1), "max_mb": self.config.max_memory_mb}

        if rss_mb > self.config.max_memory_mb:
            return CheckResult(HealthStatus.WARNING, f"High memory usage: {rss_mb:.0f}MB", details)
        return CheckResult(HealthStatus.HEALTHY, f"Memory usage {rss_mb:.0f}MB", details)

    async def attempt_recovery(self, report: HealthReport) -> list[str]:
        """Recovery actions for a critical report. Returns the actions taken."""
        actions = []
        logger.warning("Critical health status, attempting auto-recovery")

        await self.orchestrator.clear_caches()
        actions.append("cleared_caches")

        availability = report.checks.get("engine_availability")
        if availability is not None and availability.status == HealthStatus.CRITICAL:
            await self.orchestrator.reinitialize_engines()
            actions.append("reinitialized_engines")

        logger.info(f"Auto-recovery actions: {', '.join(actions)}")
        return actions

    def get_summary(self) -> dict[str, Any]:
        if self.last_report is None:
            return {"status": "unknown", "monitoring": self.running, "last_check": None}
        return {
            "status": self.last_report.status.value,
            "monitoring": self.running,
            "last_check": self.last_report.timestamp.isoformat(),
            "issues": list(self.last_report.issues),
        }
