"""Admission Scheduler: owns per-backend limiter and wait queue state.

Main entry point for reserving a backend slot:
  1. try_admit_immediate: take a free slot if concurrency and RPM allow
  2. otherwise enqueue and suspend on the PendingAdmission
  3. drain grants queued items in FIFO order whenever capacity frees up
  4. the 30s queue timer fails items that were never granted

Usage:
    scheduler = AdmissionScheduler()

    async with scheduler.admit("glm-4-air"):
        text = await backend.generate(...)

Everything that touches counters or queues is plain synchronous code on the
event loop, so an admission check and its bookkeeping can never interleave
with another admission on the same backend.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from memegen.core.metrics import ADMISSION_TIMEOUTS, ADMISSION_WAIT, QUEUE_LENGTH
from memegen.gateway.errors import AdmissionTimeoutError
from memegen.gateway.queue_manager import PendingAdmission, PendingState, WaitQueueManager
from memegen.gateway.rate_limiter import AdmissionLimiter
from memegen.gateway.selector import select_backend
from memegen.gateway.types import (
    BACKEND_PRIORITY,
    DEFAULT_BACKEND_PROFILES,
    BackendProfile,
    BackendQueueStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_TIMEOUT = 30.0


class AdmissionSlot:
    """A held backend slot. release() frees it exactly once."""

    def __init__(self, scheduler: AdmissionScheduler, backend_id: str):
        self._scheduler = scheduler
        self.backend_id = backend_id
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._scheduler.release(self.backend_id)


class AdmissionScheduler:
    """Registry of AdmissionState per backend.

    Integrates:
      - AdmissionLimiter: in-flight counts and rolling RPM windows
      - WaitQueueManager: FIFO queues of suspended callers
      - select_backend: priority routing across backends
    """

    def __init__(
        self,
        profiles: dict[str, BackendProfile] | None = None,
        queue_timeout: float = DEFAULT_QUEUE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.profiles = profiles or DEFAULT_BACKEND_PROFILES
        self.queue_timeout = queue_timeout
        self.limiter = AdmissionLimiter(self.profiles, clock=clock)
        self.queue = WaitQueueManager(list(self.profiles))
        self._window_timers: dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Limiter operations
    # ------------------------------------------------------------------

    def profile(self, backend_id: str) -> BackendProfile:
        return self.limiter.profile(backend_id)

    def can_admit(self, backend_id: str) -> bool:
        return self.limiter.can_admit(backend_id)

    def try_admit_immediate(self, backend_id: str) -> bool:
        """Take a slot now if possible; False means the caller must queue.

        Pending waiters are drained first so a newcomer never overtakes
        callers already in the queue.
        """
        self.drain(backend_id)
        if self.queue.queue_size(backend_id):
            return False
        return self.limiter.try_admit_immediate(backend_id)

    def release(self, backend_id: str) -> None:
        """Free one slot (floored at zero) and hand capacity to waiters."""
        self.limiter.release(backend_id)
        self.drain(backend_id)

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def queue_length(self, backend_id: str) -> int:
        return self.queue.queue_size(backend_id)

    def enqueue(self, backend_id: str) -> PendingAdmission:
        """Queue a caller at the tail with a queue_timeout expiry timer."""
        self.limiter.profile(backend_id)
        loop = asyncio.get_running_loop()
        pending = self.queue.enqueue(backend_id, loop.create_future(), self.limiter.now())
        pending.timer = loop.call_later(self.queue_timeout, self._expire, pending)
        QUEUE_LENGTH.labels(backend=backend_id).set(self.queue.queue_size(backend_id))
        self._arm_window_timer(backend_id)
        return pending

    def drain(self, backend_id: str) -> int:
        """Grant queued admissions in FIFO order while capacity allows.

        Safe to call redundantly. Returns the number of grants made.
        """
        granted = 0
        while self.queue.queue_size(backend_id) and self.limiter.can_admit(backend_id):
            pending = self.queue.pop_next(backend_id)
            if not pending.grant():
                continue
            self.limiter.record_admission(backend_id)
            granted += 1
            ADMISSION_WAIT.labels(backend=backend_id).observe(self.limiter.now() - pending.enqueued_at)

        if granted:
            logger.debug("Granted %d queued admission(s) on %s", granted, backend_id)
        QUEUE_LENGTH.labels(backend=backend_id).set(self.queue.queue_size(backend_id))
        self._arm_window_timer(backend_id)
        return granted

    def _expire(self, pending: PendingAdmission) -> None:
        """Timer callback: fail a pending admission that was never granted."""
        pending.timer = None
        if not pending.fail(AdmissionTimeoutError()):
            return
        self.queue.remove(pending)
        QUEUE_LENGTH.labels(backend=pending.backend_id).set(self.queue.queue_size(pending.backend_id))
        ADMISSION_TIMEOUTS.labels(backend=pending.backend_id).inc()
        logger.warning(
            "Admission %s on %s timed out after %.1fs in queue",
            pending.admission_id,
            pending.backend_id,
            self.queue_timeout,
        )

    def _abandon(self, pending: PendingAdmission) -> None:
        """The waiting task was cancelled: dequeue it, or give back its slot."""
        if pending.cancel():
            self.queue.remove(pending)
        elif pending.state is PendingState.GRANTED:
            self.release(pending.backend_id)

    def _arm_window_timer(self, backend_id: str) -> None:
        """Schedule a drain for when the RPM window next has room.

        Only needed when waiters are blocked by the window alone; a
        concurrency-blocked queue is drained by the next release.
        """
        if backend_id in self._window_timers:
            return
        head = self.queue.peek(backend_id)
        if head is None:
            return
        if self.limiter.in_flight(backend_id) >= self.profile(backend_id).max_concurrency:
            return
        wait = self.limiter.window_wait(backend_id)
        if wait <= 0:
            return
        loop = head.future.get_loop()
        self._window_timers[backend_id] = loop.call_later(wait, self._on_window_open, backend_id)

    def _on_window_open(self, backend_id: str) -> None:
        self._window_timers.pop(backend_id, None)
        self.drain(backend_id)

    # ------------------------------------------------------------------
    # Scoped acquisition
    # ------------------------------------------------------------------

    async def acquire(self, backend_id: str) -> AdmissionSlot:
        """Reserve a slot, queueing if needed.

        Raises:
            AdmissionTimeoutError: the queue timeout elapsed first.
            UnknownBackendError: no profile for backend_id.
        """
        if self.try_admit_immediate(backend_id):
            return AdmissionSlot(self, backend_id)

        pending = self.enqueue(backend_id)
        try:
            await pending.wait()
        except asyncio.CancelledError:
            self._abandon(pending)
            raise
        return AdmissionSlot(self, backend_id)

    @asynccontextmanager
    async def admit(self, backend_id: str) -> AsyncIterator[AdmissionSlot]:
        """Hold a slot for the duration of the block; released on every exit path."""
        slot = await self.acquire(backend_id)
        try:
            yield slot
        finally:
            slot.release()

    # ------------------------------------------------------------------
    # Selection & telemetry
    # ------------------------------------------------------------------

    def select_backend(self, priority: tuple[str, ...] = BACKEND_PRIORITY) -> str:
        return select_backend(self, priority)

    def get_queue_status(self) -> dict[str, BackendQueueStatus]:
        """Per-backend queue length, in-flight count and RPM usage."""
        status: dict[str, BackendQueueStatus] = {}
        for backend_id, profile in self.profiles.items():
            status[backend_id] = BackendQueueStatus(
                backend_id=backend_id,
                display_name=profile.display_name,
                queue_length=self.queue.queue_size(backend_id),
                in_flight=self.limiter.in_flight(backend_id),
                rpm_used=self.limiter.rpm_used(backend_id),
                max_concurrency=profile.max_concurrency,
                requests_per_minute=profile.requests_per_minute,
            )
        return status

    def close(self) -> int:
        """Cancel window timers and fail every queued admission.

        Returns the number of waiters that were failed.
        """
        for handle in self._window_timers.values():
            handle.cancel()
        self._window_timers.clear()

        failed = 0
        for pending in self.queue.drain_all():
            if pending.fail(AdmissionTimeoutError()):
                failed += 1
        if failed:
            logger.info("Scheduler closed, failed %d queued admission(s)", failed)
        return failed
