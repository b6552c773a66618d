"""Core types and DTOs for the meme generation core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


# ---------------------------------------------------------------------------
# Backend profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackendProfile:
    """Concurrency and rate budget for one generation backend."""

    backend_id: str
    display_name: str
    max_concurrency: int = 1
    requests_per_minute: int = 60

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1 for {self.backend_id}")
        if self.requests_per_minute < 1:
            raise ValueError(f"requests_per_minute must be >= 1 for {self.backend_id}")


DEFAULT_BACKEND_PROFILES: dict[str, BackendProfile] = {
    "glm-4.7": BackendProfile(
        backend_id="glm-4.7",
        display_name="GLM-4.7",
        max_concurrency=2,
        requests_per_minute=500,
    ),
    "glm-4-air": BackendProfile(
        backend_id="glm-4-air",
        display_name="GLM-4-Air",
        max_concurrency=100,
        requests_per_minute=500,
    ),
    "kimi-k2": BackendProfile(
        backend_id="kimi-k2",
        display_name="Kimi K2",
        max_concurrency=100,
        requests_per_minute=500,
    ),
}

# Selection order: highest-throughput backends first
BACKEND_PRIORITY: tuple[str, ...] = ("glm-4-air", "kimi-k2", "glm-4.7")

# Pseudo backend reported for template short-circuits (no admission state)
TEMPLATE_BACKEND_ID = "template"
TEMPLATE_DISPLAY_NAME = "Preset template"

# Rolling window used for the RPM budget
WINDOW_SECONDS = 60.0


# ---------------------------------------------------------------------------
# Pipeline output
# ---------------------------------------------------------------------------


@dataclass
class GenerationResult:
    """What the pipeline hands back to the API layer."""

    text: str
    backend_id: str
    display_name: str
    cache_hit: bool = False


@dataclass
class BackendQueueStatus:
    """Point-in-time admission telemetry for one backend."""

    backend_id: str
    display_name: str
    queue_length: int
    in_flight: int
    rpm_used: int
    max_concurrency: int
    requests_per_minute: int


@dataclass
class CacheStats:
    """Aggregate cache effectiveness."""

    total_cached: int = 0
    total_requests: int = 0
    hit_rate_percent: float = 0.0


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    """A generated text cached under (keyword, backend_id)."""

    keyword: str
    backend_id: str
    generated_text: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    access_count: int = 1
    last_accessed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class RequestLogEntry:
    """One completed (or short-circuited) pipeline run."""

    keyword: str
    backend_id: str
    cache_hit: bool
    response_time_ms: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
