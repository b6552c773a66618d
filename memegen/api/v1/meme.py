"""Meme API: generation, queue telemetry, cache stats, model list."""

from fastapi import APIRouter, Depends, Request

from memegen.core.config import settings
from memegen.core.dependencies import get_pipeline
from memegen.core.rate_limit import limiter
from memegen.gateway.pipeline import GenerationPipeline
from memegen.schemas.meme import (
    BackendInfo,
    CacheStatsResponse,
    MemeGenerateRequest,
    MemeGenerateResponse,
    QueueStatusItem,
)

router = APIRouter(prefix="/meme", tags=["meme"])


@router.post("/generate", response_model=MemeGenerateResponse)
@limiter.limit(settings.generate_rate_limit)
async def generate_meme(
    request: Request,
    body: MemeGenerateRequest,
    pipeline: GenerationPipeline = Depends(get_pipeline),
):
    """Generate meme text (template, cache, or a live backend)."""
    result = await pipeline.generate(body.keyword, style=body.style, backend_id=body.model)
    return MemeGenerateResponse(
        text=result.text,
        model=result.backend_id,
        model_display_name=result.display_name,
        cache_hit=result.cache_hit,
    )


@router.get("/queue-status", response_model=dict[str, QueueStatusItem])
async def queue_status(pipeline: GenerationPipeline = Depends(get_pipeline)):
    return {
        backend_id: QueueStatusItem(
            queue_length=s.queue_length,
            current_concurrency=s.in_flight,
            rpm=s.rpm_used,
            max_concurrency=s.max_concurrency,
            rpm_limit=s.requests_per_minute,
            display_name=s.display_name,
        )
        for backend_id, s in pipeline.get_queue_status().items()
    }


@router.get("/cache-stats", response_model=CacheStatsResponse)
async def cache_stats(pipeline: GenerationPipeline = Depends(get_pipeline)):
    stats = await pipeline.get_cache_stats()
    return CacheStatsResponse(
        total_cached=stats.total_cached,
        total_requests=stats.total_requests,
        cache_hit_rate=stats.hit_rate_percent,
    )


@router.get("/models", response_model=list[BackendInfo])
async def list_models(pipeline: GenerationPipeline = Depends(get_pipeline)):
    return [
        BackendInfo(
            id=b["backend_id"],
            name=b["display_name"],
            max_concurrency=b["max_concurrency"],
            rpm=b["requests_per_minute"],
            available=b["available"],
        )
        for b in pipeline.list_backends()
    ]
