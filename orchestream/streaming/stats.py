"""
Per-engine and per-operation statistics.

Counters are mutated only by the dispatcher, under a lock, and read as a
consistent snapshot.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class EngineStats:
    """
    Counters for one engine.

    Once every request has reached its outcome:
    requests == successes + failures + empty_results + skipped + cancelled
    """

    requests: int = 0
    successes: int = 0
    failures: int = 0
    empty_results: int = 0
    skipped: int = 0
    cancelled: int = 0
    average_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        """Successful share of requests, as a percentage."""
        return (self.successes / self.requests * 100) if self.requests > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "successes": self.successes,
            "failures": self.failures,
            "empty_results": self.empty_results,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "average_latency_ms": round(self.average_latency_ms, 2),
            "success_rate": round(self.success_rate, 2),
        }


class StatsAggregator:
    """
    Thread-safe statistics aggregator.

    Per-engine counters plus operation-level totals (an operation served
    from cache counts as a successful request and a cache hit).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._engines: dict[str, EngineStats] = {}
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.cache_hits = 0

    def _engine(self, name: str) -> EngineStats:
        stats = self._engines.get(name)
        if stats is None:
            stats = EngineStats()
            self._engines[name] = stats
        return stats

    def record_request(self, engine: str) -> None:
        with self._lock:
            self._engine(engine).requests += 1

    def record_success(self, engine: str, latency_ms: float) -> None:
        """Record a success and fold its latency into the running mean."""
        with self._lock:
            stats = self._engine(engine)
            stats.successes += 1
            stats.average_latency_ms += (latency_ms - stats.average_latency_ms) / stats.successes

    def record_failure(self, engine: str) -> None:
        with self._lock:
            self._engine(engine).failures += 1

    def record_empty(self, engine: str) -> None:
        with self._lock:
            self._engine(engine).empty_results += 1

    def record_skipped(self, engine: str) -> None:
        with self._lock:
            self._engine(engine).skipped += 1

    def record_cancelled(self, engine: str) -> None:
        with self._lock:
            self._engine(engine).cancelled += 1

    def record_operation(self, success: bool, cache_hit: bool = False) -> None:
        with self._lock:
            self.total_requests += 1
            if success:
                self.successful_requests += 1
            else:
                self.failed_requests += 1
            if cache_hit:
                self.cache_hits += 1

    def get_engine_stats(self, engine: str) -> EngineStats:
        """Copy of one engine's counters (zeros if never used)."""
        with self._lock:
            stats = self._engines.get(engine)
            return EngineStats(**vars(stats)) if stats else EngineStats()

    def snapshot(self, active_streams: int = 0, max_concurrent_streams: int = 0) -> dict[str, Any]:
        """Consistent point-in-time view of all counters."""
        with self._lock:
            per_engine = {name: stats.to_dict() for name, stats in self._engines.items()}
            total = self.total_requests
            successful = self.successful_requests
            failed = self.failed_requests
            cache_hits = self.cache_hits

        return {
            "per_engine": per_engine,
            "total_requests": total,
            "successful_requests": successful,
            "failed_requests": failed,
            "cache_hits": cache_hits,
            "overall_success_rate": round(successful / total * 100, 2) if total > 0 else 0.0,
            "active_streams": active_streams,
            "max_concurrent_streams": max_concurrent_streams,
        }

    def reset(self) -> None:
        with self._lock:
            self._engines.clear()
            self.total_requests = 0
            self.successful_requests = 0
            self.failed_requests = 0
            self.cache_hits = 0
        logger.info("Statistics reset")
