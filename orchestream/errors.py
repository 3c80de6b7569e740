"""
Error taxonomy for the streaming orchestrator.

Engine-level errors are absorbed by the dispatcher (logged, counted, and
followed by fallback to the next engine). Only admission errors and
AllEnginesFailedError reach callers.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import httpx


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class EngineError(OrchestratorError):
    """Error raised by an engine adapter."""

    def __init__(
        self,
        message: str,
        engine: str = "unknown",
        is_retryable: bool = True,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.engine = engine
        self.is_retryable = is_retryable
        self.original_error = original_error


class NotSupportedError(EngineError):
    """Engine lacks the capability or does not recognize the input."""

    def __init__(self, message: str, engine: str = "unknown"):
        super().__init__(message, engine=engine, is_retryable=False)


class EmptyResultError(EngineError):
    """Engine returned nothing usable."""


class EngineTimeoutError(EngineError):
    """An engine call exceeded its deadline and was cancelled."""


class ResolutionFailedError(EngineError):
    """Engine recognized the URL but could not resolve track metadata."""


class StreamUnavailableError(EngineError):
    """Engine could not produce a readable byte-stream."""


class AdmissionError(OrchestratorError):
    """Base class for stream admission failures."""


class AdmissionTimeoutError(AdmissionError):
    """No stream slot became free before the wait deadline."""

    def __init__(self, timeout: Optional[float], active: int, limit: int):
        super().__init__(
            f"No stream slot available within {timeout}s "
            f"({active}/{limit} streams active)"
        )
        self.timeout = timeout
        self.active = active
        self.limit = limit


class AdmissionClosedError(AdmissionError):
    """The admission controller no longer accepts requests (shutdown)."""


class FailureKind(str, Enum):
    """Classification of a per-engine failure reason."""

    EMPTY = "empty"
    TIMEOUT = "timeout"
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    NOT_SUPPORTED = "not_supported"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class EngineFailure:
    """The last recorded error of one engine within one operation."""

    engine: str
    kind: FailureKind
    message: str
    attempts: int = 1
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine": self.engine,
            "kind": self.kind.value,
            "message": self.message,
            "attempts": self.attempts,
            "timestamp": self.timestamp.isoformat(),
        }


class AllEnginesFailedError(OrchestratorError):
    """
    Terminal failure: every capable engine failed, or none declared the capability.

    Carries the last error per attempted engine so operators can tell
    "nothing found" apart from "all sources down".
    """

    def __init__(self, operation: str, reasons: Optional[dict[str, EngineFailure]] = None):
        self.operation = operation
        self.reasons: dict[str, EngineFailure] = dict(reasons or {})
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        if not self.reasons:
            return f"All engines failed for {self.operation}: no engine supports this request"
        details = "; ".join(
            f"{name}: [{failure.kind.value}] {failure.message}"
            for name, failure in self.reasons.items()
        )
        return f"All engines failed for {self.operation}. {details}"

    @property
    def nothing_found(self) -> bool:
        """True when every engine answered but had nothing to offer."""
        return bool(self.reasons) and all(
            failure.kind in (FailureKind.EMPTY, FailureKind.NOT_SUPPORTED)
            for failure in self.reasons.values()
        )

    @property
    def all_sources_down(self) -> bool:
        """True when every attempted engine failed at the transport level."""
        return bool(self.reasons) and all(
            failure.kind in (FailureKind.TIMEOUT, FailureKind.NETWORK, FailureKind.HTTP_STATUS)
            for failure in self.reasons.values()
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "nothing_found": self.nothing_found,
            "all_sources_down": self.all_sources_down,
            "reasons": {name: failure.to_dict() for name, failure in self.reasons.items()},
        }


def classify_failure(error: BaseException) -> FailureKind:
    """
    Classify an engine error into a FailureKind.

    Wrapped errors are classified by their original exception when the
    wrapper itself is generic.
    """
    if isinstance(error, EmptyResultError):
        return FailureKind.EMPTY
    if isinstance(error, NotSupportedError):
        return FailureKind.NOT_SUPPORTED
    if isinstance(error, (EngineTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return FailureKind.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        return FailureKind.HTTP_STATUS
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return FailureKind.NETWORK

    if isinstance(error, EngineError) and error.original_error is not None:
        inner = classify_failure(error.original_error)
        if inner != FailureKind.UNKNOWN:
            return inner

    if isinstance(error, (StreamUnavailableError, ResolutionFailedError)):
        return FailureKind.UNAVAILABLE

    error_str = str(error).lower()
    if "timed out" in error_str or "timeout" in error_str:
        return FailureKind.TIMEOUT
    if any(term in error_str for term in ("connection", "network", "econnreset", "unreachable")):
        return FailureKind.NETWORK
    if any(term in error_str for term in ("http error", " 429", " 502", " 503", "status code")):
        return FailureKind.HTTP_STATUS

    return FailureKind.UNKNOWN


def failure_from_error(engine: str, error: BaseException, attempts: int = 1) -> EngineFailure:
    """Build an EngineFailure record for an engine's terminal error."""
    message = str(error) or error.__class__.__name__
    return EngineFailure(
        engine=engine,
        kind=classify_failure(error),
        message=message,
        attempts=attempts,
        error=error,
    )
