from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from memegen.core.rate_limit import limiter
from memegen.gateway.backends import BaseGenerationBackend
from memegen.gateway.pipeline import GenerationPipeline
from memegen.gateway.scheduler import AdmissionScheduler
from memegen.gateway.types import BackendProfile
from memegen.main import app
from memegen.services.cache_service import InMemoryCacheStore, InMemoryRequestLog
from memegen.services.profanity_filter import ProfanityLexicon
from tests.fakes import TEST_PRIORITY, TEST_PROFILES, TEST_TEMPLATES, FakeBackend, FakeClock

# HTTP throttling would trip across API tests sharing one client address
limiter.enabled = False


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def profiles() -> dict[str, BackendProfile]:
    return dict(TEST_PROFILES)


@pytest.fixture
def scheduler(profiles) -> AdmissionScheduler:
    return AdmissionScheduler(profiles, queue_timeout=0.2)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def request_log() -> InMemoryRequestLog:
    return InMemoryRequestLog()


@pytest.fixture
def lexicon() -> ProfanityLexicon:
    return ProfanityLexicon(["badword", "darn"])


@pytest.fixture
def make_pipeline(scheduler, cache_store, request_log, lexicon):
    """Build a pipeline over the shared fixtures; backends default to one fake per profile."""

    def _make(backends: dict[str, BaseGenerationBackend] | None = None, **kwargs) -> GenerationPipeline:
        if backends is None:
            backends = {backend_id: FakeBackend() for backend_id in scheduler.profiles}
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("cache_store", cache_store)
        kwargs.setdefault("request_log", request_log)
        kwargs.setdefault("lexicon", lexicon)
        kwargs.setdefault("templates", TEST_TEMPLATES)
        kwargs.setdefault("priority", TEST_PRIORITY)
        return GenerationPipeline(backends=backends, **kwargs)

    return _make


@pytest.fixture
async def client(make_pipeline, fake_backend) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with a fake-backed pipeline installed."""
    app.state.pipeline = make_pipeline(backends={"air": fake_backend, "k2": FakeBackend()})
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    del app.state.pipeline
