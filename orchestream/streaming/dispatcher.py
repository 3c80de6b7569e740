"""
Priority-ordered dispatch of operations across engines.

For each request the dispatcher checks the cache, acquires an admission
slot (streams only), then tries every capable engine in priority order
through that engine's retry policy until one succeeds. Engine errors are
absorbed here; callers only see admission errors or AllEnginesFailedError.
"""

import asyncio
import logging
import time
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import replace
from enum import Enum
from typing import Any, Optional

from orchestream.cache.base import CacheBackend, make_cache_key
from orchestream.config import OrchestreamConfig
from orchestream.engines.base import (
    EngineCapability,
    StreamOptions,
    StreamTarget,
    TrackDescriptor,
    target_urls,
)
from orchestream.engines.registry import EngineRegistry, RegisteredEngine
from orchestream.engines.stream import StreamHandle
from orchestream.errors import (
    AdmissionError,
    AllEnginesFailedError,
    EmptyResultError,
    EngineError,
    EngineFailure,
    FailureKind,
    NotSupportedError,
    failure_from_error,
)
from orchestream.streaming.admission import AdmissionController, AdmissionSlot
from orchestream.streaming.retry_manager import RetryConfig, RetryPolicy
from orchestream.streaming.stats import StatsAggregator

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Dispatchable operations."""

    RESOLVE_URL = "resolve"
    SEARCH = "search"
    OPEN_STREAM = "open_stream"

    @property
    def capability(self) -> EngineCapability:
        return {
            Operation.RESOLVE_URL: EngineCapability.RESOLVE_URL,
            Operation.SEARCH: EngineCapability.SEARCH,
            Operation.OPEN_STREAM: EngineCapability.OPEN_STREAM,
        }[self]


class _NothingFound(EngineError):
    """An engine answered a search with no matches; never retried."""

    def __init__(self, engine: str):
        super().__init__("no matches", engine=engine, is_retryable=False)


class Dispatcher:
    """
    Runs operations against the engine registry.

    The registry attribute may be replaced at any time; each request reads
    it once and keeps that snapshot for its whole iteration.
    """

    def __init__(
        self,
        registry: EngineRegistry,
        admission: AdmissionController,
        stats: StatsAggregator,
        cache: Optional[CacheBackend] = None,
        config: Optional[OrchestreamConfig] = None,
        retry_configs: Optional[dict[str, RetryConfig]] = None,
        cache_ttl: Optional[float] = None,
    ):
        self.registry = registry
        self.admission = admission
        self.stats = stats
        self.cache = cache
        self.config = config or OrchestreamConfig()
        self.cache_ttl = cache_ttl if cache_ttl is not None else self.config.effective_cache_ttl
        self.admission_timeout = self.config.streaming.admission_timeout

        self._retry_configs = dict(retry_configs or {})
        self._policies: dict[str, RetryPolicy] = {}

        # Per-key single-flight locks and their waiter counts
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_waiters: dict[str, int] = {}

    def policy_for(self, engine: str) -> RetryPolicy:
        """Retry policy for an engine (explicit override, else configuration)."""
        policy = self._policies.get(engine)
        if policy is None:
            retry_config = self._retry_configs.get(engine)
            if retry_config is None:
                retry_config = RetryConfig.from_engine_config(self.config.engine_config(engine))
            policy = RetryPolicy(retry_config)
            self._policies[engine] = policy
        return policy

    def set_retry_config(self, engine: str, retry_config: RetryConfig) -> None:
        self._retry_configs[engine] = retry_config
        self._policies.pop(engine, None)

    # Public operations

    async def resolve(self, url: str) -> TrackDescriptor:
        """Resolve a URL to track metadata (cached)."""
        key = make_cache_key(Operation.RESOLVE_URL.value, url)

        async def produce() -> TrackDescriptor:
            return await self._dispatch(
                Operation.RESOLVE_URL,
                urls=(url,),
                call=lambda engine, timeout: engine.resolve_url(url, timeout),
            )

        return await self._cached(key, produce)

    async def search(self, query: str, limit: int = 10) -> list[TrackDescriptor]:
        """Search engines in priority order (cached)."""
        key = make_cache_key(Operation.SEARCH.value, query, limit)

        async def produce() -> tuple[TrackDescriptor, ...]:
            tracks = await self._dispatch(
                Operation.SEARCH,
                call=lambda engine, timeout: engine.search(query, limit, timeout),
            )
            return tuple(tracks)

        # Each caller owns its list; the cached tuple is never handed out
        return list(await self._cached(key, produce))

    async def open_stream(
        self,
        target: StreamTarget,
        options: Optional[StreamOptions] = None,
    ) -> StreamHandle:
        """
        Open a stream under an admission slot.

        The slot is held across the whole engine iteration and bound to the
        returned handle, which releases it on its terminal event.
        """
        streaming = self.config.streaming
        options = options or StreamOptions(chunk_size=streaming.chunk_size)
        if options.first_byte_timeout is None:
            options = replace(options, first_byte_timeout=streaming.first_byte_timeout)
        label = target.title if isinstance(target, TrackDescriptor) else target

        try:
            slot = await self.admission.acquire(label, timeout=self.admission_timeout)
        except AdmissionError:
            self.stats.record_operation(success=False)
            raise

        handle: Optional[StreamHandle] = None
        try:
            handle = await self._dispatch(
                Operation.OPEN_STREAM,
                urls=target_urls(target),
                call=lambda engine, timeout: engine.open_stream(target, options, timeout),
                max_attempts=None if options.retry_on_error else 1,
            )
            self._bind_slot(handle, slot)
            return handle
        finally:
            if handle is None:
                self.admission.release(slot)

    def _bind_slot(self, handle: StreamHandle, slot: AdmissionSlot) -> None:
        """Release the slot on the handle's terminal event, or when it is collected."""
        admission = self.admission
        handle.add_terminal_callback(lambda _handle: admission.release(slot))
        weakref.finalize(handle, admission.release, slot)

    # Cache and single-flight

    async def _cached(self, key: str, produce: Callable[[], Awaitable[Any]]) -> Any:
        if self.cache is None:
            return await produce()

        cached = await self.cache.get(key)
        if cached is not None:
            return self._cache_hit(key, cached)

        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        self._key_waiters[key] = self._key_waiters.get(key, 0) + 1

        try:
            async with lock:
                # Filled by a concurrent identical request while we waited
                cached = await self.cache.get(key)
                if cached is not None:
                    return self._cache_hit(key, cached)

                result = await produce()
                await self.cache.set(key, result, ttl=self.cache_ttl)
                return result
        finally:
            self._key_waiters[key] -= 1
            if self._key_waiters[key] == 0:
                del self._key_waiters[key]
                del self._key_locks[key]

    def _cache_hit(self, key: str, value: Any) -> Any:
        self.stats.record_operation(success=True, cache_hit=True)
        logger.debug(f"Cache hit: {key}")
        return value

    # Engine iteration

    def _candidates(
        self,
        registry: EngineRegistry,
        operation: Operation,
        urls: tuple[str, ...],
    ) -> list[RegisteredEngine]:
        candidates = []
        for entry in registry.capable(operation.capability):
            if urls and not any(entry.engine.can_handle(url) for url in urls):
                logger.debug(f"[{entry.name}] Cannot handle {urls[0]}, skipping")
                continue
            candidates.append(entry)
        return candidates

    async def _dispatch(
        self,
        operation: Operation,
        call: Callable[[Any, float], Awaitable[Any]],
        urls: tuple[str, ...] = (),
        max_attempts: Optional[int] = None,
    ) -> Any:
        registry = self.registry
        candidates = self._candidates(registry, operation, urls)
        reasons: dict[str, EngineFailure] = {}

        if not candidates:
            logger.error(f"No engine available for {operation.value}")
            self.stats.record_operation(success=False)
            raise AllEnginesFailedError(operation.value, reasons)

        for entry in candidates:
            name = entry.name
            policy = self.policy_for(name)
            self.stats.record_request(name)
            logger.debug(f"[{name}] Trying {operation.value} (priority {entry.descriptor.priority})")

            async def attempt(timeout: float, engine=entry.engine) -> Any:
                result = await call(engine, timeout)
                if operation == Operation.SEARCH:
                    if not result:
                        raise _NothingFound(name)
                    return list(result)
                if result is None:
                    raise EmptyResultError(f"{name} returned no result", engine=name)
                return result

            start = time.monotonic()
            try:
                result = await policy.execute(
                    attempt,
                    operation_name=f"{name}.{operation.value}",
                    engine=name,
                    max_attempts=max_attempts,
                )
            except asyncio.CancelledError:
                self.stats.record_cancelled(name)
                logger.info(f"[{name}] {operation.value} cancelled")
                raise
            except _NothingFound:
                self.stats.record_empty(name)
                reasons[name] = EngineFailure(
                    engine=name,
                    kind=FailureKind.EMPTY,
                    message="no matches",
                )
                logger.info(f"[{name}] {operation.value} found nothing, trying next engine")
                continue
            except NotSupportedError as e:
                self.stats.record_skipped(name)
                reasons[name] = failure_from_error(name, e)
                logger.debug(f"[{name}] Not supported: {e}")
                continue
            except Exception as e:
                self.stats.record_failure(name)
                failure = failure_from_error(name, e, attempts=getattr(e, "attempts", 1))
                reasons[name] = failure
                logger.warning(
                    f"[{name}] {operation.value} failed after {failure.attempts} attempt(s) "
                    f"[{failure.kind.value}]: {failure.message}"
                )
                continue

            latency_ms = (time.monotonic() - start) * 1000
            self.stats.record_success(name, latency_ms)
            self.stats.record_operation(success=True)
            logger.info(f"[{name}] {operation.value} succeeded in {latency_ms:.0f}ms")
            return result

        self.stats.record_operation(success=False)
        error = AllEnginesFailedError(operation.value, reasons)
        logger.error(str(error))
        raise error

    def invalidate_policies(self) -> None:
        """Rebuild retry policies from configuration on next use."""
        self._policies.clear()
