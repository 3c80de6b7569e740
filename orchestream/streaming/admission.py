"""
Stream admission control.

Bounds the number of concurrently open streams. Requests beyond the limit
wait in FIFO order until a slot frees up or their wait deadline passes.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from orchestream.errors import AdmissionClosedError, AdmissionTimeoutError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class AdmissionSlot:
    """One admitted stream; identity is the slot object itself."""

    slot_id: int
    label: str
    acquired_at: float = field(default_factory=time.monotonic)

    @property
    def held_seconds(self) -> float:
        return time.monotonic() - self.acquired_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "label": self.label,
            "held_seconds": round(self.held_seconds, 1),
        }


class AdmissionController:
    """
    Limits concurrently admitted streams.

    The active-set is the single source of truth: the active count is
    always len(active). A waiter whose future already holds a granted
    slot when it is cancelled hands that slot back, so cancellation never
    leaks capacity.

    Usage:
        slot = await admission.acquire("open_stream", timeout=30)
        try:
            ...
        finally:
            admission.release(slot)
    """

    def __init__(self, max_concurrent: int = 5, default_timeout: Optional[float] = 30.0):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._max_concurrent = max_concurrent
        self.default_timeout = default_timeout

        # Active slots keyed by id
        self._active: dict[int, AdmissionSlot] = {}

        # FIFO queue of (future, label) waiting for a slot
        self._waiters: deque[tuple[asyncio.Future, str]] = deque()

        self._ids = itertools.count(1)
        self._closed = False

        # Counters
        self.total_admitted = 0
        self.total_released = 0
        self.total_timeouts = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def waiting_count(self) -> int:
        return sum(1 for fut, _ in self._waiters if not fut.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def is_active(self, slot: AdmissionSlot) -> bool:
        return self._active.get(slot.slot_id) is slot

    def _grant(self, label: str) -> AdmissionSlot:
        slot = AdmissionSlot(slot_id=next(self._ids), label=label)
        self._active[slot.slot_id] = slot
        self.total_admitted += 1
        return slot

    def _wake_waiters(self) -> None:
        """Grant free capacity to waiters in arrival order."""
        while self._waiters and len(self._active) < self._max_concurrent:
            fut, label = self._waiters.popleft()
            if fut.done():
                continue
            fut.set_result(self._grant(label))

    async def acquire(self, label: str = "stream", timeout: Optional[float] = None) -> AdmissionSlot:
        """
        Acquire a stream slot.

        Args:
            label: Description for logging/status
            timeout: Seconds to wait (None uses default_timeout, which waits
                indefinitely when it is None itself)

        Raises:
            AdmissionTimeoutError: No slot freed up in time
            AdmissionClosedError: Controller has been closed
        """
        if self._closed:
            raise AdmissionClosedError("Admission controller is closed")

        if not self._waiters and len(self._active) < self._max_concurrent:
            slot = self._grant(label)
            logger.debug(
                f"Admitted {label} (slot {slot.slot_id}, "
                f"{len(self._active)}/{self._max_concurrent} active)"
            )
            return slot

        if timeout is None:
            timeout = self.default_timeout

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.append((fut, label))
        logger.debug(
            f"Waiting for stream slot: {label} "
            f"({len(self._active)}/{self._max_concurrent} active, "
            f"{self.waiting_count} waiting)"
        )

        try:
            slot = await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            self._abandon(fut)
            self.total_timeouts += 1
            logger.warning(
                f"Admission timeout for {label} after {timeout}s "
                f"({len(self._active)}/{self._max_concurrent} active)"
            )
            raise AdmissionTimeoutError(timeout, len(self._active), self._max_concurrent) from None
        except BaseException:
            self._abandon(fut)
            raise

        if self._closed:
            self.release(slot)
            raise AdmissionClosedError("Admission controller is closed")

        logger.debug(
            f"Admitted {label} after waiting (slot {slot.slot_id}, "
            f"{len(self._active)}/{self._max_concurrent} active)"
        )
        return slot

    def _abandon(self, fut: asyncio.Future) -> None:
        """Give up a wait; hand back a slot granted in the meantime."""
        if fut.done() and not fut.cancelled() and fut.exception() is None:
            self.release(fut.result())
            return
        fut.cancel()
        for index, (waiter, _) in enumerate(self._waiters):
            if waiter is fut:
                del self._waiters[index]
                break

    def release(self, slot: Optional[AdmissionSlot]) -> bool:
        """
        Release a slot. Idempotent.

        Returns:
            True if the slot was active and is now released
        """
        if slot is None or self._active.get(slot.slot_id) is not slot:
            return False

        del self._active[slot.slot_id]
        self.total_released += 1
        logger.debug(
            f"Released slot {slot.slot_id} ({slot.label}) after {slot.held_seconds:.1f}s, "
            f"{len(self._active)}/{self._max_concurrent} active"
        )
        self._wake_waiters()
        return True

    def set_max_concurrent(self, max_concurrent: int) -> None:
        """
        Change the stream limit.

        Lowering never evicts open streams; new slots are granted only
        once the active count drops below the new limit.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        old = self._max_concurrent
        self._max_concurrent = max_concurrent
        logger.info(f"Max concurrent streams changed: {old} -> {max_concurrent}")
        self._wake_waiters()

    async def drain(self, grace_period: float, poll_interval: float = 0.1) -> bool:
        """
        Wait for active slots to be released.

        Returns:
            True if all slots were released within the grace period
        """
        deadline = time.monotonic() + grace_period
        while self._active:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    f"Drain grace period ({grace_period}s) elapsed with "
                    f"{len(self._active)} active streams"
                )
                return False
            await asyncio.sleep(min(poll_interval, remaining))
        return True

    def force_release_all(self) -> int:
        """Release every active slot. Returns the number released."""
        slots = list(self._active.values())
        for slot in slots:
            self.release(slot)
        if slots:
            logger.info(f"Force-released {len(slots)} stream slots")
        return len(slots)

    def close(self) -> None:
        """Reject new acquires and fail pending waiters."""
        if self._closed:
            return
        self._closed = True
        while self._waiters:
            fut, label = self._waiters.popleft()
            if not fut.done():
                fut.set_exception(AdmissionClosedError("Admission controller is closed"))
        logger.info("Admission controller closed")

    def get_status(self) -> dict[str, Any]:
        return {
            "active": len(self._active),
            "max_concurrent": self._max_concurrent,
            "waiting": self.waiting_count,
            "closed": self._closed,
            "total_admitted": self.total_admitted,
            "total_released": self.total_released,
            "total_timeouts": self.total_timeouts,
            "slots": [slot.to_dict() for slot in self._active.values()],
        }
