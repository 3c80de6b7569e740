"""
Per-engine retry and timeout policy.

Each attempt runs under its own deadline; a timed-out attempt is cancelled
before the next one starts. Backoff between attempts is linear and capped.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional, TypeVar

from orchestream.config import EngineConfig
from orchestream.errors import EngineError, EngineTimeoutError, NotSupportedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry attempts."""

    max_attempts: int = 2
    per_attempt_timeout: float = 15.0
    backoff_base: float = 1.0
    backoff_max: float = 5.0
    jitter_ratio: float = 0.1

    @classmethod
    def from_engine_config(cls, engine_config: EngineConfig) -> "RetryConfig":
        return cls(
            max_attempts=engine_config.max_attempts,
            per_attempt_timeout=engine_config.per_attempt_timeout,
            backoff_base=engine_config.backoff_base,
            backoff_max=engine_config.backoff_max,
            jitter_ratio=engine_config.jitter_ratio,
        )


class RetryPolicy:
    """
    Executes an engine call with bounded attempts.

    The operation factory receives the per-attempt deadline in seconds so
    the engine can propagate it to its own I/O. After the last attempt the
    last error is re-raised with an `attempts` attribute set.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def should_retry(self, error: BaseException) -> bool:
        if isinstance(error, NotSupportedError):
            return False
        if isinstance(error, EngineError):
            return error.is_retryable
        return True

    def calculate_backoff(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        delay = min(self.config.backoff_base * attempt, self.config.backoff_max)
        if self.config.jitter_ratio > 0 and delay > 0:
            delay += random.uniform(0, delay * self.config.jitter_ratio)
            delay = min(delay, self.config.backoff_max)
        return delay

    async def execute(
        self,
        operation: Callable[[float], Awaitable[T]],
        operation_name: str = "operation",
        engine: str = "unknown",
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Execute an operation with retry.

        Args:
            operation: Async factory taking the per-attempt timeout
            operation_name: Name of the operation for logging
            engine: Engine name for error attribution
            max_attempts: Override of the configured attempt count

        Returns:
            Result of the operation

        Raises:
            The last error once attempts are exhausted or it is not retryable
        """
        attempts_allowed = max(1, max_attempts or self.config.max_attempts)
        timeout = self.config.per_attempt_timeout

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await asyncio.wait_for(operation(timeout), timeout)
            except asyncio.TimeoutError as e:
                error: BaseException = EngineTimeoutError(
                    f"{operation_name} timed out after {timeout}s",
                    engine=engine,
                    original_error=e,
                )
            except Exception as e:
                error = e
            else:
                if attempt > 1:
                    logger.info(f"{operation_name} succeeded after {attempt} attempts")
                return result

            if attempt >= attempts_allowed or not self.should_retry(error):
                error.attempts = attempt
                if isinstance(error, EngineTimeoutError):
                    raise error from error.original_error
                raise error

            delay = self.calculate_backoff(attempt)
            logger.debug(
                f"{operation_name} failed (attempt {attempt}/{attempts_allowed}): {error}. "
                f"Retrying in {delay:.2f}s"
            )
            await self._sleep(delay)
