"""Pydantic request/response models for the meme endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MemeGenerateRequest(BaseModel):
    keyword: str = Field(..., min_length=1, max_length=100)
    style: str | None = Field(None, max_length=200)
    model: str | None = Field(None, description="Pin a backend id; auto-selected when omitted")


class MemeGenerateResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    success: bool = True
    text: str
    model: str
    model_display_name: str
    cache_hit: bool


class QueueStatusItem(BaseModel):
    queue_length: int
    current_concurrency: int
    rpm: int
    max_concurrency: int
    rpm_limit: int
    display_name: str


class CacheStatsResponse(BaseModel):
    total_cached: int
    total_requests: int
    cache_hit_rate: float


class BackendInfo(BaseModel):
    id: str
    name: str
    max_concurrency: int
    rpm: int
    available: bool
