import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from memegen.api.v1.router import api_v1_router
from memegen.core.config import APP_VERSION, settings, validate_settings_for_production
from memegen.core.logging import setup_logging
from memegen.core.metrics import PrometheusMiddleware, metrics_response
from memegen.core.rate_limit import limiter
from memegen.core.sentry import init_sentry
from memegen.gateway.backends import build_backends
from memegen.gateway.errors import (
    AdmissionTimeoutError,
    GenerationFailedError,
    KeywordValidationError,
    MemeError,
    PolicyRejectedError,
)
from memegen.gateway.pipeline import GenerationPipeline
from memegen.gateway.scheduler import AdmissionScheduler
from memegen.services.cache_service import (
    CacheStore,
    InMemoryCacheStore,
    InMemoryRequestLog,
    RequestLogSink,
    SqlCacheStore,
    SqlRequestLog,
)
from memegen.services.profanity_filter import ProfanityLexicon

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


def _build_storage() -> tuple[CacheStore, RequestLogSink]:
    if settings.cache_backend == "database":
        from memegen.db.postgres import async_session_factory

        return SqlCacheStore(async_session_factory), SqlRequestLog(async_session_factory)
    return InMemoryCacheStore(), InMemoryRequestLog()


def build_pipeline() -> GenerationPipeline:
    """Assemble the pipeline from settings."""
    cache_store, request_log = _build_storage()
    lexicon = (
        ProfanityLexicon.from_file(settings.profanity_lexicon_path)
        if settings.profanity_lexicon_path
        else ProfanityLexicon()
    )
    return GenerationPipeline(
        scheduler=AdmissionScheduler(queue_timeout=settings.admission_timeout_seconds),
        backends=build_backends(settings.backend_api_keys, timeout=settings.provider_timeout_seconds),
        cache_store=cache_store,
        request_log=request_log,
        lexicon=lexicon,
        keyword_max_length=settings.keyword_max_length,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting meme generator (cache=%s)...", settings.cache_backend)
    app.state.pipeline = build_pipeline()
    logger.info("Backends available: %s", ", ".join(app.state.pipeline.backends) or "none")

    yield

    # Shutdown
    app.state.pipeline.scheduler.close()
    if settings.cache_backend == "database":
        from memegen.db.postgres import engine

        await engine.dispose()
    logger.info("Meme generator shut down")


app = FastAPI(
    title="Meme Generator",
    description="Keyword-to-meme text with multi-model admission control and caching",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


_ERROR_STATUS: dict[type[MemeError], int] = {
    KeywordValidationError: 422,
    PolicyRejectedError: 400,
    AdmissionTimeoutError: 503,
    GenerationFailedError: 502,
}


@app.exception_handler(MemeError)
async def _meme_error_handler(request: Request, exc: MemeError):
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    headers = {"Retry-After": str(int(settings.admission_timeout_seconds))} if exc.retryable else None
    return JSONResponse(
        status_code=status,
        content={"success": False, "detail": exc.message, "retryable": exc.retryable},
        headers=headers,
    )


# Log unhandled exceptions with their traceback
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"success": False, "detail": "Internal server error"})


# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(PrometheusMiddleware)

# CORS, allowed_origins is comma-separated
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health(request: Request):
    pipeline: GenerationPipeline | None = getattr(request.app.state, "pipeline", None)
    return {
        "status": "ok",
        "cache_backend": settings.cache_backend,
        "backends": sorted(pipeline.backends) if pipeline else [],
        "queued": pipeline.scheduler.queue.total_size() if pipeline else 0,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
