"""Tests for the generation pipeline (end to end over in-memory collaborators)."""

from __future__ import annotations

import asyncio
import logging

import pytest

from memegen.gateway.errors import (
    AdmissionTimeoutError,
    GenerationFailedError,
    KeywordValidationError,
    PolicyRejectedError,
    ProviderError,
    UnknownBackendError,
)
from memegen.gateway.prompts import MEME_SYSTEM_PROMPT
from memegen.gateway.types import TEMPLATE_BACKEND_ID, TEMPLATE_DISPLAY_NAME, CacheStats
from tests.fakes import BrokenCacheStore, BrokenRequestLog, FakeBackend


def _assert_idle(scheduler):
    for status in scheduler.get_queue_status().values():
        assert status.in_flight == 0
        assert status.queue_length == 0


# ==========================================================================
# Test: Short-circuits
# ==========================================================================


class TestShortCircuits:
    @pytest.mark.asyncio
    async def test_template_skips_admission(self, make_pipeline, scheduler, request_log):
        pipeline = make_pipeline()

        result = await pipeline.generate("旮旯给木")

        assert result.text == "galgame template text"
        assert result.backend_id == TEMPLATE_BACKEND_ID
        assert result.display_name == TEMPLATE_DISPLAY_NAME
        assert result.cache_hit is True
        for status in scheduler.get_queue_status().values():
            assert status.rpm_used == 0
        assert [(e.backend_id, e.cache_hit) for e in request_log.entries] == [(TEMPLATE_BACKEND_ID, True)]

    @pytest.mark.asyncio
    async def test_template_match_is_case_insensitive(self, make_pipeline):
        pipeline = make_pipeline()

        result = await pipeline.generate("  hello ")

        assert result.text == "hello template text"

    @pytest.mark.asyncio
    async def test_template_needs_exact_keyword(self, make_pipeline):
        pipeline = make_pipeline()

        result = await pipeline.generate("Hello there")

        assert result.backend_id != TEMPLATE_BACKEND_ID

    @pytest.mark.asyncio
    async def test_profanity_rejected_without_side_effects(self, make_pipeline, cache_store, request_log):
        backends = {"air": FakeBackend(), "k2": FakeBackend(), "slow": FakeBackend()}
        pipeline = make_pipeline(backends=backends)

        with pytest.raises(PolicyRejectedError) as exc_info:
            await pipeline.generate("what a BadWord")

        assert exc_info.value.message == "Input contains forbidden content, please revise and try again"
        assert request_log.entries == []
        assert await cache_store.count() == 0
        assert all(not b.calls for b in backends.values())
        _assert_idle(pipeline.scheduler)


# ==========================================================================
# Test: Validation
# ==========================================================================


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("keyword", ["", "   "])
    async def test_empty_keyword(self, make_pipeline, keyword):
        with pytest.raises(KeywordValidationError, match="Keyword must not be empty"):
            await make_pipeline().generate(keyword)

    @pytest.mark.asyncio
    async def test_keyword_too_long(self, make_pipeline):
        pipeline = make_pipeline()

        with pytest.raises(KeywordValidationError, match="Keyword is too long"):
            await pipeline.generate("a" * 101)

        result = await pipeline.generate("a" * 100)
        assert result.cache_hit is False

    @pytest.mark.asyncio
    async def test_unknown_pinned_backend(self, make_pipeline):
        with pytest.raises(UnknownBackendError) as exc_info:
            await make_pipeline().generate("表白", backend_id="gpt-5")

        assert isinstance(exc_info.value, KeywordValidationError)
        assert exc_info.value.message == "Unknown model: gpt-5"


# ==========================================================================
# Test: Generation path
# ==========================================================================


class TestGeneration:
    @pytest.mark.asyncio
    async def test_cache_round_trip(self, make_pipeline, fake_backend, cache_store, request_log):
        pipeline = make_pipeline(backends={"air": fake_backend})

        first = await pipeline.generate("表白", backend_id="air")
        second = await pipeline.generate("表白", backend_id="air")

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.text == first.text == "generated meme"
        assert second.display_name == "Air"
        assert len(fake_backend.calls) == 1

        entry = await cache_store.lookup("表白", "air")
        assert entry.access_count == 3
        assert [e.cache_hit for e in request_log.entries] == [False, True]
        _assert_idle(pipeline.scheduler)

    @pytest.mark.asyncio
    async def test_cache_is_per_backend(self, make_pipeline):
        air, k2 = FakeBackend(text="air text"), FakeBackend(text="k2 text")
        pipeline = make_pipeline(backends={"air": air, "k2": k2})

        await pipeline.generate("表白", backend_id="air")
        result = await pipeline.generate("表白", backend_id="k2")

        assert result.cache_hit is False
        assert result.text == "k2 text"

    @pytest.mark.asyncio
    async def test_style_and_stripped_keyword_reach_backend(self, make_pipeline, fake_backend):
        pipeline = make_pipeline(backends={"air": fake_backend})

        await pipeline.generate("  表白 ", style="更夸张", backend_id="air")

        assert fake_backend.calls == [(MEME_SYSTEM_PROMPT, "表白", "更夸张")]

    @pytest.mark.asyncio
    async def test_auto_selection_skips_saturated_backend(self, make_pipeline, scheduler):
        pipeline = make_pipeline()
        await scheduler.acquire("air")
        await scheduler.acquire("air")

        result = await pipeline.generate("表白")

        assert result.backend_id == "k2"
        assert result.display_name == "K2"

    @pytest.mark.asyncio
    async def test_output_is_redacted_before_caching(self, make_pipeline, cache_store):
        pipeline = make_pipeline(backends={"air": FakeBackend(text="what a Darn mess")})

        result = await pipeline.generate("表白", backend_id="air")

        assert result.text == "what a **** mess"
        assert (await cache_store.lookup("表白", "air")).generated_text == "what a **** mess"

    @pytest.mark.asyncio
    async def test_queued_request_runs_after_slot_frees(self, make_pipeline, fake_backend, scheduler):
        fake_backend.gate = asyncio.Event()
        pipeline = make_pipeline(backends={"slow": fake_backend})

        first = asyncio.create_task(pipeline.generate("one", backend_id="slow"))
        second = asyncio.create_task(pipeline.generate("two", backend_id="slow"))
        await asyncio.sleep(0.01)

        assert scheduler.limiter.in_flight("slow") == 1
        assert scheduler.queue_length("slow") == 1

        fake_backend.gate.set()
        results = await asyncio.gather(first, second)

        assert [r.cache_hit for r in results] == [False, False]
        assert [c[1] for c in fake_backend.calls] == ["one", "two"]
        _assert_idle(scheduler)


# ==========================================================================
# Test: Failures
# ==========================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_admission_timeout(self, make_pipeline, scheduler, cache_store, request_log):
        pipeline = make_pipeline()
        held = await scheduler.acquire("slow")

        with pytest.raises(AdmissionTimeoutError) as exc_info:
            await pipeline.generate("表白", backend_id="slow")

        assert exc_info.value.message == "Request timed out, please try again later"
        assert scheduler.queue_length("slow") == 0
        assert await cache_store.count() == 0
        assert request_log.entries == []
        held.release()

    @pytest.mark.asyncio
    async def test_provider_failure_releases_slot(self, make_pipeline, cache_store, request_log):
        failing = FakeBackend(error=ProviderError("upstream 500", status_code=500))
        pipeline = make_pipeline(backends={"air": failing})

        with pytest.raises(GenerationFailedError) as exc_info:
            await pipeline.generate("表白", backend_id="air")

        assert exc_info.value.message == "Generation failed, please try again later"
        assert "upstream" not in str(exc_info.value)
        assert await cache_store.count() == 0
        assert request_log.entries == []
        _assert_idle(pipeline.scheduler)

    @pytest.mark.asyncio
    async def test_provider_failure_log_carries_backend(self, make_pipeline, caplog):
        pipeline = make_pipeline(backends={"k2": FakeBackend(error=ProviderError("upstream 500", status_code=500))})

        with caplog.at_level(logging.WARNING, logger="memegen.gateway.pipeline"):
            with pytest.raises(GenerationFailedError):
                await pipeline.generate("表白", backend_id="k2")

        record = next(r for r in caplog.records if r.levelno == logging.WARNING)
        assert record.backend_id == "k2"
        assert record.keyword == "表白"

    @pytest.mark.asyncio
    async def test_broken_cache_log_carries_backend(self, make_pipeline, caplog):
        pipeline = make_pipeline(backends={"air": FakeBackend()}, cache_store=BrokenCacheStore())

        with caplog.at_level(logging.ERROR, logger="memegen.gateway.pipeline"):
            await pipeline.generate("表白", backend_id="air")

        assert caplog.records
        assert all(r.backend_id == "air" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_missing_backend_instance(self, make_pipeline):
        pipeline = make_pipeline(backends={})

        with pytest.raises(GenerationFailedError):
            await pipeline.generate("表白", backend_id="air")

        _assert_idle(pipeline.scheduler)

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_generation_failed(self, make_pipeline):
        pipeline = make_pipeline(priority=("missing",))

        with pytest.raises(GenerationFailedError):
            await pipeline.generate("表白")

    @pytest.mark.asyncio
    async def test_broken_storage_does_not_change_result(self, make_pipeline, fake_backend):
        pipeline = make_pipeline(
            backends={"air": fake_backend},
            cache_store=BrokenCacheStore(),
            request_log=BrokenRequestLog(),
        )

        first = await pipeline.generate("表白", backend_id="air")
        second = await pipeline.generate("表白", backend_id="air")

        assert first.text == second.text == "generated meme"
        assert second.cache_hit is False
        assert len(fake_backend.calls) == 2
        assert await pipeline.get_cache_stats() == CacheStats()


# ==========================================================================
# Test: Telemetry
# ==========================================================================


class TestTelemetry:
    @pytest.mark.asyncio
    async def test_cache_stats(self, make_pipeline):
        pipeline = make_pipeline()

        await pipeline.generate("表白", backend_id="air")
        await pipeline.generate("表白", backend_id="air")
        await pipeline.generate("旮旯给木")

        stats = await pipeline.get_cache_stats()
        assert stats.total_cached == 1
        assert stats.total_requests == 3
        assert stats.hit_rate_percent == 66.67

    @pytest.mark.asyncio
    async def test_cache_stats_empty(self, make_pipeline):
        assert await make_pipeline().get_cache_stats() == CacheStats(0, 0, 0.0)

    def test_list_backends_marks_availability(self, make_pipeline):
        pipeline = make_pipeline(backends={"air": FakeBackend()})

        listed = {b["backend_id"]: b for b in pipeline.list_backends()}

        assert set(listed) == {"air", "k2", "slow"}
        assert listed["air"]["available"] is True
        assert listed["k2"]["available"] is False
        assert listed["slow"]["max_concurrency"] == 1

    @pytest.mark.asyncio
    async def test_queue_status_reflects_traffic(self, make_pipeline):
        pipeline = make_pipeline()

        await pipeline.generate("表白", backend_id="k2")

        status = pipeline.get_queue_status()
        assert status["k2"].rpm_used == 1
        assert status["k2"].in_flight == 0
        assert status["air"].rpm_used == 0
