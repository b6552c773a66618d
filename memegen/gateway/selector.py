"""Backend Selector: pick which backend should serve a new request."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from memegen.gateway.types import BACKEND_PRIORITY

if TYPE_CHECKING:
    from memegen.gateway.scheduler import AdmissionScheduler

logger = logging.getLogger(__name__)


def select_backend(
    scheduler: AdmissionScheduler,
    priority: tuple[str, ...] = BACKEND_PRIORITY,
) -> str:
    """Return the first backend in priority order that can admit right now.

    If every backend is saturated, fall back to the one with the shortest
    wait queue (ties go to the earlier entry in the priority list). This
    only minimizes the expected wait; the caller may still have to queue.
    """
    candidates = [b for b in priority if b in scheduler.profiles]
    if not candidates:
        raise ValueError("No configured backend appears in the selection priority list")

    for backend_id in candidates:
        if scheduler.can_admit(backend_id):
            return backend_id

    # min() keeps the first of equal keys, i.e. priority order on ties
    chosen = min(candidates, key=scheduler.queue_length)
    logger.info(
        "All backends saturated, routing to %s (queue length %d)",
        chosen,
        scheduler.queue_length(chosen),
    )
    return chosen
