"""Meme generation core.

Async, single-event-loop infrastructure that sits between the API and the
LLM providers:
  - Admission Limiter (per-backend concurrency + rolling 60s RPM window)
  - FIFO Wait Queue with per-item timeout
  - Backend Selector (fixed priority, shortest-queue fallback)
  - Generation Backends (provider protocol adapters)
  - Generation Pipeline (template → cache → admission → generate → filter)
"""
