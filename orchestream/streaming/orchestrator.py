"""
Stream orchestrator facade.

Owns the engine registry, cache, admission controller, statistics, and
health monitor, and exposes resolve/search/open_stream to callers.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from orchestream.cache.base import CacheConfig
from orchestream.cache.memory import MemoryCache
from orchestream.config import OrchestreamConfig, get_config
from orchestream.engines.base import BaseEngine, StreamOptions, StreamTarget, TrackDescriptor
from orchestream.engines.registry import EngineRegistry, build_default_engines
from orchestream.engines.stream import StreamHandle
from orchestream.streaming.admission import AdmissionController
from orchestream.streaming.dispatcher import Dispatcher
from orchestream.streaming.health import HealthMonitor
from orchestream.streaming.retry_manager import RetryConfig
from orchestream.streaming.stats import StatsAggregator

logger = logging.getLogger(__name__)


class StreamOrchestrator:
    """
    Multi-engine streaming orchestrator.

    Usage:
        orchestrator = StreamOrchestrator(config)
        await orchestrator.start()
        tracks = await orchestrator.search("artist - song", limit=5)
        async with await orchestrator.open_stream(tracks[0]) as handle:
            async for chunk in handle:
                ...
        await orchestrator.shutdown()
    """

    def __init__(
        self,
        config: Optional[OrchestreamConfig] = None,
        engines: Optional[Sequence[BaseEngine]] = None,
        retry_configs: Optional[dict[str, RetryConfig]] = None,
        cache: Optional[MemoryCache] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Configuration (defaults to the global configuration)
            engines: Engine adapters in registration order (defaults to the
                reference engines enabled in config)
            retry_configs: Per-engine retry overrides
            cache: Cache instance (defaults to a MemoryCache from config)
        """
        self.config = config or get_config()
        self._engines: list[BaseEngine] = list(engines) if engines is not None else []
        self._use_default_engines = engines is None

        if cache is None and self.config.cache.enabled:
            cache = MemoryCache(CacheConfig(
                default_ttl=float(self.config.effective_cache_ttl),
                max_entries=self.config.cache.max_entries,
            ))
        self.cache = cache

        self.admission = AdmissionController(
            max_concurrent=self.config.effective_max_concurrent_streams,
            default_timeout=self.config.streaming.admission_timeout,
        )
        self.stats = StatsAggregator()
        self.dispatcher = Dispatcher(
            registry=EngineRegistry(),
            admission=self.admission,
            stats=self.stats,
            cache=self.cache,
            config=self.config,
            retry_configs=retry_configs,
        )
        self.health = HealthMonitor(self, self.config.health)

        self.started_at: Optional[datetime] = None
        self._started = False
        self._shutting_down = False

    @property
    def registry(self) -> EngineRegistry:
        return self.dispatcher.registry

    @property
    def engines(self) -> list[BaseEngine]:
        return list(self._engines)

    async def start(self) -> None:
        """Initialize engines, build the registry, and start health monitoring."""
        if self._started:
            return

        if self._use_default_engines and not self._engines:
            self._engines = build_default_engines(self.config)

        self.reconfigure(await EngineRegistry.build(self._engines, self.config))

        if self.config.health.enabled:
            await self.health.start()

        self.started_at = datetime.utcnow()
        self._started = True
        logger.info(
            f"Orchestrator started: {len(self.registry.available())} engines available, "
            f"max {self.admission.max_concurrent} concurrent streams "
            f"(profile: {self.config.profile})"
        )

    # Operations

    async def resolve(self, url: str) -> TrackDescriptor:
        """Resolve a URL to track metadata."""
        return await self.dispatcher.resolve(url)

    async def search(self, query: str, limit: int = 10) -> list[TrackDescriptor]:
        """Search for up to `limit` tracks."""
        return await self.dispatcher.search(query, limit)

    async def open_stream(
        self,
        target: StreamTarget,
        options: Optional[StreamOptions] = None,
    ) -> StreamHandle:
        """Open a live byte-stream for a track or URL."""
        return await self.dispatcher.open_stream(target, options)

    # Status

    def get_stats(self) -> dict[str, Any]:
        stats = self.stats.snapshot(
            active_streams=self.admission.active_count,
            max_concurrent_streams=self.admission.max_concurrent,
        )
        stats["cache"] = self.cache.get_stats().to_dict() if self.cache is not None else None
        return stats

    def get_system_status(self) -> dict[str, Any]:
        uptime = (datetime.utcnow() - self.started_at).total_seconds() if self.started_at else 0.0
        return {
            "started": self._started,
            "profile": self.config.profile,
            "uptime_seconds": round(uptime, 1),
            "engines": [
                {**entry.engine.describe_status(), **entry.descriptor.to_dict()}
                for entry in self.registry
            ],
            "admission": self.admission.get_status(),
            "stats": self.get_stats(),
            "health": self.health.get_summary(),
        }

    # Reconfiguration

    async def clear_caches(self) -> int:
        if self.cache is None:
            return 0
        cleared = await self.cache.clear()
        logger.info(f"Cleared {cleared} cache entries")
        return cleared

    def set_max_concurrent_streams(self, max_concurrent: int) -> None:
        self.admission.set_max_concurrent(max_concurrent)

    def reconfigure(self, registry: EngineRegistry) -> None:
        """Swap in a new registry snapshot; in-flight requests keep theirs."""
        self.dispatcher.registry = registry
        self.dispatcher.invalidate_policies()
        logger.debug(f"Registry replaced: {registry.names}")

    def disable_engine(self, name: str) -> None:
        self.reconfigure(self.registry.with_disabled(name))
        logger.info(f"Engine {name} disabled")

    def enable_engine(self, name: str) -> None:
        self.reconfigure(self.registry.with_enabled(name))
        logger.info(f"Engine {name} enabled")

    async def reinitialize_engines(self) -> EngineRegistry:
        """Re-run engine initialization and publish a fresh snapshot."""
        logger.info("Re-initializing engines")
        registry = await EngineRegistry.build(self._engines, self.config)
        self.reconfigure(registry)
        return registry

    # Lifecycle

    async def shutdown(self, grace_period: Optional[float] = None) -> None:
        """
        Shut down gracefully.

        New stream requests are rejected, open streams get up to the grace
        period to finish, and any remaining slots are force-released.
        """
        if self._shutting_down:
            return
        self._shutting_down = True

        if grace_period is None:
            grace_period = self.config.streaming.shutdown_grace_period

        logger.info(f"Shutting down orchestrator ({self.admission.active_count} active streams)")

        await self.health.stop()
        self.admission.close()

        if not await self.admission.drain(grace_period):
            self.admission.force_release_all()

        await self.clear_caches()

        for engine in self._engines:
            try:
                await engine.close()
            except Exception as e:
                logger.warning(f"Error closing engine {engine.name}: {e}")

        self._started = False
        logger.info("Orchestrator shut down")

    async def __aenter__(self) -> "StreamOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()


# Global orchestrator instance
_orchestrator: Optional[StreamOrchestrator] = None


def get_orchestrator() -> StreamOrchestrator:
    """Get the global StreamOrchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = StreamOrchestrator()
    return _orchestrator


async def init_orchestrator(config: Optional[OrchestreamConfig] = None) -> StreamOrchestrator:
    """Initialize and start the global orchestrator."""
    global _orchestrator
    if _orchestrator is None or config is not None:
        _orchestrator = StreamOrchestrator(config)
    await _orchestrator.start()
    return _orchestrator
