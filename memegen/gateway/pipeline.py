"""Generation Pipeline: orchestrator integrating all core components.

Each run walks a fixed sequence and may exit early at any step:
  1. Validate keyword shape
  2. Profanity gate on the input
  3. Template short-circuit (exact, case-insensitive)
  4. Resolve backend (caller-pinned, else selector)
  5. Cache lookup on (keyword, backend)
  6. Admission (immediate or queued, 30s timeout)
  7. Provider generation call
  8. Release the slot (always)
  9. Mask profanity in the output, write cache, append request log

Usage:
    pipeline = GenerationPipeline(
        scheduler=AdmissionScheduler(),
        backends=build_backends(settings.backend_api_keys),
        cache_store=InMemoryCacheStore(),
        request_log=InMemoryRequestLog(),
        lexicon=ProfanityLexicon(words),
    )
    result = await pipeline.generate("表白", style="更夸张")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from memegen.core.metrics import GENERATION_DURATION, MEME_REQUESTS
from memegen.gateway.backends import BaseGenerationBackend
from memegen.gateway.errors import (
    AdmissionTimeoutError,
    GenerationFailedError,
    KeywordValidationError,
    MemeError,
    PolicyRejectedError,
)
from memegen.gateway.prompts import MEME_SYSTEM_PROMPT
from memegen.gateway.scheduler import AdmissionScheduler
from memegen.gateway.types import (
    BACKEND_PRIORITY,
    TEMPLATE_BACKEND_ID,
    TEMPLATE_DISPLAY_NAME,
    BackendQueueStatus,
    CacheEntry,
    CacheStats,
    GenerationResult,
)
from memegen.services.cache_service import CacheStore, RequestLogSink
from memegen.services.profanity_filter import ProfanityLexicon
from memegen.services.templates import MEME_TEMPLATES, MemeTemplate, match_template

logger = logging.getLogger(__name__)

DEFAULT_KEYWORD_MAX_LENGTH = 100


class GenerationPipeline:
    """Cache-then-generate decision pipeline in front of the scheduler."""

    def __init__(
        self,
        scheduler: AdmissionScheduler,
        backends: dict[str, BaseGenerationBackend],
        cache_store: CacheStore,
        request_log: RequestLogSink,
        lexicon: ProfanityLexicon | None = None,
        templates: tuple[MemeTemplate, ...] = MEME_TEMPLATES,
        priority: tuple[str, ...] = BACKEND_PRIORITY,
        keyword_max_length: int = DEFAULT_KEYWORD_MAX_LENGTH,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scheduler = scheduler
        self.backends = backends
        self.cache_store = cache_store
        self.request_log = request_log
        self.lexicon = lexicon or ProfanityLexicon()
        self.templates = templates
        self.priority = priority
        self.keyword_max_length = keyword_max_length
        self._clock = clock

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def generate(
        self,
        keyword: str,
        style: str | None = None,
        backend_id: str | None = None,
    ) -> GenerationResult:
        """Produce meme text for a keyword.

        Raises:
            KeywordValidationError: empty/too long keyword or unknown pinned backend.
            PolicyRejectedError: the keyword contains a forbidden term.
            AdmissionTimeoutError: no slot freed up within the queue timeout.
            GenerationFailedError: anything else.
        """
        try:
            return await self._run(keyword, style, backend_id)
        except MemeError:
            raise
        except Exception as e:
            logger.exception("Unexpected pipeline failure", extra={"keyword": keyword, "backend_id": backend_id})
            raise GenerationFailedError() from e

    def get_queue_status(self) -> dict[str, BackendQueueStatus]:
        return self.scheduler.get_queue_status()

    async def get_cache_stats(self) -> CacheStats:
        try:
            total_cached = await self.cache_store.count()
            total_requests, hits = await self.request_log.totals()
        except Exception:
            logger.exception("Failed to read cache stats")
            return CacheStats()

        hit_rate = (hits / total_requests) * 100 if total_requests > 0 else 0.0
        return CacheStats(
            total_cached=total_cached,
            total_requests=total_requests,
            hit_rate_percent=round(hit_rate, 2),
        )

    def list_backends(self) -> list[dict]:
        return [
            {
                "backend_id": p.backend_id,
                "display_name": p.display_name,
                "max_concurrency": p.max_concurrency,
                "requests_per_minute": p.requests_per_minute,
                "available": p.backend_id in self.backends,
            }
            for p in self.scheduler.profiles.values()
        ]

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run(self, keyword: str, style: str | None, pinned: str | None) -> GenerationResult:
        started = self._clock()
        keyword = self._validate(keyword)

        if self.lexicon.contains(keyword):
            MEME_REQUESTS.labels(backend="none", outcome="rejected").inc()
            logger.info("Rejected keyword containing forbidden content")
            raise PolicyRejectedError()

        template = match_template(keyword, self.templates)
        if template is not None:
            await self._log_request(keyword, TEMPLATE_BACKEND_ID, True, started)
            MEME_REQUESTS.labels(backend=TEMPLATE_BACKEND_ID, outcome="template").inc()
            return GenerationResult(
                text=template,
                backend_id=TEMPLATE_BACKEND_ID,
                display_name=TEMPLATE_DISPLAY_NAME,
                cache_hit=True,
            )

        backend_id = self._resolve_backend(pinned)
        display_name = self.scheduler.profile(backend_id).display_name

        cached = await self._cache_lookup(keyword, backend_id)
        if cached is not None:
            await self._log_request(keyword, backend_id, True, started)
            MEME_REQUESTS.labels(backend=backend_id, outcome="cache_hit").inc()
            return GenerationResult(
                text=cached.generated_text,
                backend_id=backend_id,
                display_name=display_name,
                cache_hit=True,
            )

        backend = self.backends.get(backend_id)
        if backend is None:
            logger.error("No generation backend configured for %s", backend_id, extra={"backend_id": backend_id})
            MEME_REQUESTS.labels(backend=backend_id, outcome="failed").inc()
            raise GenerationFailedError()

        raw_text = await self._generate(backend, backend_id, keyword, style)

        text = self.lexicon.redact(raw_text)
        await self._cache_insert(keyword, backend_id, text)
        await self._log_request(keyword, backend_id, False, started)
        MEME_REQUESTS.labels(backend=backend_id, outcome="generated").inc()

        return GenerationResult(text=text, backend_id=backend_id, display_name=display_name, cache_hit=False)

    def _validate(self, keyword: str) -> str:
        keyword = (keyword or "").strip()
        if not keyword:
            raise KeywordValidationError("Keyword must not be empty")
        if len(keyword) > self.keyword_max_length:
            raise KeywordValidationError("Keyword is too long")
        return keyword

    def _resolve_backend(self, pinned: str | None) -> str:
        if pinned:
            # Raises UnknownBackendError for ids without a profile
            self.scheduler.profile(pinned)
            return pinned
        return self.scheduler.select_backend(self.priority)

    async def _generate(
        self,
        backend: BaseGenerationBackend,
        backend_id: str,
        keyword: str,
        style: str | None,
    ) -> str:
        """Admission, provider call and release. Provider errors become GenerationFailedError."""
        try:
            async with self.scheduler.admit(backend_id):
                call_started = self._clock()
                try:
                    return await backend.generate(MEME_SYSTEM_PROMPT, keyword, style)
                except Exception as e:
                    logger.warning(
                        "Generation on %s failed: %s",
                        backend_id,
                        e,
                        extra={"backend_id": backend_id, "keyword": keyword},
                    )
                    raise GenerationFailedError() from e
                finally:
                    GENERATION_DURATION.labels(backend=backend_id).observe(self._clock() - call_started)
        except AdmissionTimeoutError:
            MEME_REQUESTS.labels(backend=backend_id, outcome="timeout").inc()
            raise
        except GenerationFailedError:
            MEME_REQUESTS.labels(backend=backend_id, outcome="failed").inc()
            raise

    # ------------------------------------------------------------------
    # Best-effort collaborators
    # ------------------------------------------------------------------

    async def _cache_lookup(self, keyword: str, backend_id: str) -> CacheEntry | None:
        try:
            return await self.cache_store.lookup(keyword, backend_id)
        except Exception:
            logger.exception("Cache lookup failed for %s", backend_id, extra={"backend_id": backend_id})
            return None

    async def _cache_insert(self, keyword: str, backend_id: str, text: str) -> None:
        try:
            await self.cache_store.insert(keyword, backend_id, text)
        except Exception:
            logger.exception("Cache write failed for %s", backend_id, extra={"backend_id": backend_id})

    async def _log_request(self, keyword: str, backend_id: str, cache_hit: bool, started: float) -> None:
        elapsed_ms = int((self._clock() - started) * 1000)
        try:
            await self.request_log.append(keyword, backend_id, cache_hit, elapsed_ms)
        except Exception:
            logger.exception("Request log write failed for %s", backend_id, extra={"backend_id": backend_id})
