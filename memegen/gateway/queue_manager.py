"""Wait Queue Manager: per-backend FIFO of pending admissions.

Each backend has a strict FIFO deque of PendingAdmission items. An item is
resolved exactly once: granted by a drain pass, timed out by its timer, or
cancelled when the waiting task goes away. Whichever path flips the state
first wins; the others see a resolved item and do nothing.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class PendingState(str, Enum):
    """Lifecycle of a queued admission."""

    WAITING = "waiting"
    GRANTED = "granted"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class PendingAdmission:
    """A caller suspended until its backend has capacity."""

    backend_id: str
    future: asyncio.Future
    enqueued_at: float
    admission_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    state: PendingState = PendingState.WAITING
    timer: asyncio.TimerHandle | None = None

    @property
    def resolved(self) -> bool:
        return self.state is not PendingState.WAITING

    def _cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def grant(self) -> bool:
        """Signal the waiter that it holds a slot.

        Returns False if the item was already resolved or its waiter is gone,
        in which case the caller must not count an admission.
        """
        if self.resolved:
            return False
        self._cancel_timer()
        if self.future.done():
            # Waiter was cancelled while still queued
            self.state = PendingState.CANCELLED
            return False
        self.state = PendingState.GRANTED
        self.future.set_result(None)
        return True

    def fail(self, exc: BaseException) -> bool:
        """Signal the waiter that it timed out. No-op if already resolved."""
        if self.resolved:
            return False
        self._cancel_timer()
        self.state = PendingState.TIMED_OUT
        if not self.future.done():
            self.future.set_exception(exc)
        return True

    def cancel(self) -> bool:
        """Mark abandoned by its waiter. No-op if already resolved."""
        if self.resolved:
            return False
        self._cancel_timer()
        self.state = PendingState.CANCELLED
        if not self.future.done():
            self.future.cancel()
        return True

    async def wait(self) -> None:
        """Suspend until granted; raises the failure passed to fail()."""
        await self.future


class WaitQueueManager:
    """Per-backend FIFO queues of PendingAdmission.

    Usage:
        qm = WaitQueueManager(["glm-4-air", "kimi-k2"])

        pending = qm.enqueue("glm-4-air", loop.create_future(), now)
        head = qm.pop_next("glm-4-air")
        qm.remove(pending)
    """

    def __init__(self, backend_ids: list[str]):
        self._queues: dict[str, deque[PendingAdmission]] = {b: deque() for b in backend_ids}

    def enqueue(self, backend_id: str, future: asyncio.Future, now: float) -> PendingAdmission:
        """Append a new pending admission to the tail of the backend's queue."""
        pending = PendingAdmission(backend_id=backend_id, future=future, enqueued_at=now)
        self._queues[backend_id].append(pending)
        logger.debug(
            "Queued admission %s for %s (position %d)",
            pending.admission_id,
            backend_id,
            len(self._queues[backend_id]),
        )
        return pending

    def peek(self, backend_id: str) -> PendingAdmission | None:
        queue = self._queues.get(backend_id)
        if not queue:
            return None
        return queue[0]

    def pop_next(self, backend_id: str) -> PendingAdmission | None:
        """Remove and return the head of the backend's queue."""
        queue = self._queues.get(backend_id)
        if not queue:
            return None
        return queue.popleft()

    def remove(self, pending: PendingAdmission) -> bool:
        """Remove an item by identity. Returns False if it is not queued."""
        queue = self._queues.get(pending.backend_id)
        if not queue:
            return False
        for index, item in enumerate(queue):
            if item is pending:
                del queue[index]
                return True
        return False

    def queue_size(self, backend_id: str) -> int:
        """Get the number of pending admissions for a backend."""
        return len(self._queues.get(backend_id, ()))

    def total_size(self) -> int:
        """Total pending admissions across all backends."""
        return sum(len(q) for q in self._queues.values())

    def drain_all(self) -> list[PendingAdmission]:
        """Empty every queue, returning the removed items in FIFO order per backend."""
        removed: list[PendingAdmission] = []
        for queue in self._queues.values():
            removed.extend(queue)
            queue.clear()
        return removed
