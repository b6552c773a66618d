"""Admission Limiter: per-backend concurrency and rolling RPM window.

Tracks, for each backend, the number of in-flight generation calls and the
timestamps of admissions made during the trailing 60 seconds. A timestamp
recorded at T occupies the RPM budget until T+60 exactly, so bursts that
straddle a calendar minute are still throttled.

Stale timestamps are pruned lazily on every check; there is no background
timer. All methods are synchronous and never await, so on a single event
loop each check-then-record sequence is indivisible.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from memegen.gateway.errors import UnknownBackendError
from memegen.gateway.types import DEFAULT_BACKEND_PROFILES, WINDOW_SECONDS, BackendProfile

logger = logging.getLogger(__name__)


@dataclass
class _BackendWindow:
    """Sliding window and in-flight counter for a single backend."""

    profile: BackendProfile
    timestamps: deque[float] = field(default_factory=deque)
    in_flight: int = 0

    def _prune(self, now: float) -> None:
        """Drop timestamps that have left the 60-second window."""
        cutoff = now - WINDOW_SECONDS
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def rpm_used(self, now: float) -> int:
        self._prune(now)
        return len(self.timestamps)

    def can_admit(self, now: float) -> bool:
        self._prune(now)
        return (
            self.in_flight < self.profile.max_concurrency
            and len(self.timestamps) < self.profile.requests_per_minute
        )

    def record_admission(self, now: float) -> None:
        self.in_flight += 1
        self.timestamps.append(now)

    def record_release(self) -> bool:
        """Decrement in-flight, floored at zero. Returns False on a no-op."""
        if self.in_flight == 0:
            return False
        self.in_flight -= 1
        return True

    def window_wait(self, now: float) -> float:
        """Seconds until the RPM window has room again.

        Returns 0 if the window already has room.
        """
        self._prune(now)
        if len(self.timestamps) < self.profile.requests_per_minute:
            return 0.0
        return max((self.timestamps[0] + WINDOW_SECONDS) - now, 0.0)


class AdmissionLimiter:
    """Per-backend admission limiter.

    Usage:
        limiter = AdmissionLimiter(profiles)

        if limiter.try_admit_immediate("glm-4-air"):
            ...  # call the provider
            limiter.release("glm-4-air")
    """

    def __init__(
        self,
        profiles: dict[str, BackendProfile] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        profiles = profiles or DEFAULT_BACKEND_PROFILES
        self._clock = clock
        self._windows: dict[str, _BackendWindow] = {
            backend_id: _BackendWindow(profile=profile) for backend_id, profile in profiles.items()
        }

    @property
    def backend_ids(self) -> list[str]:
        return list(self._windows)

    def _get_window(self, backend_id: str) -> _BackendWindow:
        window = self._windows.get(backend_id)
        if window is None:
            raise UnknownBackendError(backend_id)
        return window

    def profile(self, backend_id: str) -> BackendProfile:
        return self._get_window(backend_id).profile

    def now(self) -> float:
        return self._clock()

    def can_admit(self, backend_id: str) -> bool:
        """True if a slot is free and the RPM window has room."""
        return self._get_window(backend_id).can_admit(self._clock())

    def try_admit_immediate(self, backend_id: str) -> bool:
        """Admit now if possible, recording the in-flight slot and timestamp."""
        window = self._get_window(backend_id)
        now = self._clock()
        if not window.can_admit(now):
            return False
        window.record_admission(now)
        return True

    def record_admission(self, backend_id: str) -> None:
        """Unconditionally record an admission; callers check can_admit first."""
        self._get_window(backend_id).record_admission(self._clock())

    def release(self, backend_id: str) -> None:
        """Free one in-flight slot. Releasing an idle backend is a no-op."""
        if not self._get_window(backend_id).record_release():
            logger.debug("Release on idle backend %s ignored", backend_id)

    def in_flight(self, backend_id: str) -> int:
        return self._get_window(backend_id).in_flight

    def rpm_used(self, backend_id: str) -> int:
        return self._get_window(backend_id).rpm_used(self._clock())

    def window_wait(self, backend_id: str) -> float:
        """Seconds until the RPM window frees a slot (0 if it has room)."""
        return self._get_window(backend_id).window_wait(self._clock())
