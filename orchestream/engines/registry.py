"""
Engine registry.

An immutable, priority-ordered snapshot of engine adapters and their
descriptors. Changes (disabling an engine, re-initializing) build a new
snapshot; requests already in flight keep the snapshot they started with.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, Optional, Sequence

import httpx

from orchestream.config import OrchestreamConfig
from orchestream.engines.archive_org import ArchiveOrgEngine
from orchestream.engines.base import BaseEngine, EngineCapability, EngineDescriptor
from orchestream.engines.direct_http import DirectHTTPEngine
from orchestream.engines.youtube import YouTubeEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredEngine:
    """An engine adapter paired with its descriptor."""

    descriptor: EngineDescriptor
    engine: BaseEngine

    @property
    def name(self) -> str:
        return self.descriptor.name


class EngineRegistry:
    """
    Priority-ordered engine snapshot.

    Engines are ordered by (priority, registration order). The snapshot is
    never mutated in place.

    Usage:
        registry = await EngineRegistry.build(engines, config)
        for entry in registry.capable(EngineCapability.SEARCH):
            ...
    """

    def __init__(self, entries: Iterable[RegisteredEngine] = ()):
        self._entries: tuple[RegisteredEngine, ...] = tuple(
            sorted(entries, key=lambda entry: entry.descriptor.sort_key)
        )

    @classmethod
    async def build(
        cls,
        engines: Sequence[BaseEngine],
        config: Optional[OrchestreamConfig] = None,
        priorities: Optional[dict[str, int]] = None,
    ) -> "EngineRegistry":
        """
        Initialize engines and build a snapshot.

        Priority comes from `priorities`, then the engine's config entry,
        then the engine's default. An engine whose initialize() fails is
        registered with initialized=False and is skipped by the dispatcher.
        """
        entries = []
        for index, engine in enumerate(engines):
            priority = engine.default_priority
            if config is not None:
                configured = config.engine_config(engine.name).priority
                if configured is not None:
                    priority = configured
            if priorities and engine.name in priorities:
                priority = priorities[engine.name]

            initialized = await cls._initialize(engine)
            entries.append(RegisteredEngine(
                descriptor=EngineDescriptor(
                    name=engine.name,
                    priority=priority,
                    capabilities=frozenset(engine.capabilities),
                    initialized=initialized,
                    registration_index=index,
                    requires_auth=engine.requires_auth,
                ),
                engine=engine,
            ))

        registry = cls(entries)
        logger.info(
            f"Engine registry built: "
            f"{', '.join(f'{e.name}(p{e.descriptor.priority})' for e in registry)} "
            f"({len(registry.available())}/{len(registry)} initialized)"
        )
        return registry

    @staticmethod
    async def _initialize(engine: BaseEngine) -> bool:
        try:
            ready = await engine.initialize()
        except Exception as e:
            logger.warning(f"Engine {engine.name} failed to initialize: {e}")
            return False
        if not ready:
            logger.warning(f"Engine {engine.name} is not available")
        return bool(ready)

    def __iter__(self) -> Iterator[RegisteredEngine]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[RegisteredEngine, ...]:
        return self._entries

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self._entries]

    def get(self, name: str) -> Optional[RegisteredEngine]:
        for entry in self._entries:
            if entry.name == name:
                return entry
        return None

    def available(self) -> list[RegisteredEngine]:
        """Initialized engines in priority order."""
        return [entry for entry in self._entries if entry.descriptor.initialized]

    def capable(self, capability: EngineCapability) -> list[RegisteredEngine]:
        """Initialized engines declaring `capability`, in priority order."""
        return [
            entry for entry in self._entries
            if entry.descriptor.initialized and entry.descriptor.supports(capability)
        ]

    def _with_initialized(self, name: str, initialized: bool) -> "EngineRegistry":
        if self.get(name) is None:
            raise KeyError(f"Unknown engine: {name}")
        return EngineRegistry(
            RegisteredEngine(replace(entry.descriptor, initialized=initialized), entry.engine)
            if entry.name == name else entry
            for entry in self._entries
        )

    def with_disabled(self, name: str) -> "EngineRegistry":
        """New snapshot with `name` marked unavailable."""
        return self._with_initialized(name, False)

    def with_enabled(self, name: str) -> "EngineRegistry":
        """New snapshot with `name` marked available."""
        return self._with_initialized(name, True)

    def describe(self) -> list[dict]:
        return [entry.descriptor.to_dict() for entry in self._entries]


def build_default_engines(
    config: OrchestreamConfig,
    client: Optional[httpx.AsyncClient] = None,
) -> list[BaseEngine]:
    """
    Create the reference engines enabled in the configuration.

    Args:
        config: Application configuration
        client: Optional shared HTTP client (engines create their own otherwise)
    """
    engines: list[BaseEngine] = []
    sources = config.sources

    def enabled(name: str, source_enabled: bool) -> bool:
        engine_config = config.engines.get(name)
        return source_enabled and (engine_config is None or engine_config.enabled)

    if enabled("youtube", sources.youtube.enabled):
        engines.append(YouTubeEngine(
            client=client,
            cookies_file=sources.youtube.cookies_file or None,
            preferred_quality=sources.youtube.preferred_quality,
        ))

    if enabled("archive_org", sources.archive_org.enabled):
        engines.append(ArchiveOrgEngine(client=client, base_url=sources.archive_org.base_url))

    if enabled("direct_http", sources.direct_http.enabled):
        engines.append(DirectHTTPEngine(client=client, user_agents=sources.direct_http.user_agents))

    logger.debug(f"Default engines: {[engine.name for engine in engines]}")
    return engines
