"""Generation Backends: protocol-level handling for each LLM provider.

Each backend wraps the keyword in the instructional prompt, sends it to the
provider and returns the generated text. Any non-success outcome raises
ProviderError; the pipeline is responsible for hiding it from callers.

Provider-specific behaviors:
  - Zhipu (GLM-4.7, GLM-4-Air): OpenAI-compatible chat completions, temperature 1.0
  - Moonshot (Kimi K2): OpenAI-compatible chat completions, temperature 0.8,
    key validation via the models listing
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import httpx

from memegen.gateway.errors import ProviderError, UnknownBackendError
from memegen.gateway.prompts import build_user_prompt

logger = logging.getLogger(__name__)


class BaseGenerationBackend(ABC):
    """Base class for all generation backends."""

    provider: str = ""
    default_model: str = ""

    def __init__(self, api_key: str, model: str = "", timeout: float = 60.0, **kwargs):
        self.api_key = api_key
        self.model = model or self.default_model
        self.timeout = timeout

    @abstractmethod
    async def generate(self, system_prompt: str, keyword: str, style: str | None = None) -> str:
        """Generate text for a keyword. Raises ProviderError on failure."""
        ...

    def _messages(self, system_prompt: str, keyword: str, style: str | None) -> list[dict]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": build_user_prompt(keyword, style)},
        ]


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------


class ChatCompletionsBackend(BaseGenerationBackend):
    """Shared request/response handling for OpenAI-compatible providers."""

    api_url: str = ""
    temperature: float = 1.0
    max_tokens: int | None = None

    def _payload(self, system_prompt: str, keyword: str, style: str | None) -> dict:
        payload = {
            "model": self.model,
            "messages": self._messages(system_prompt, keyword, style),
            "temperature": self.temperature,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload

    async def generate(self, system_prompt: str, keyword: str, style: str | None = None) -> str:
        payload = self._payload(system_prompt, keyword, style)
        start = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.api_url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.provider} timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider} transport error: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)

        if not resp.is_success:
            raise ProviderError(
                f"{self.provider} API call failed: {resp.status_code} - {resp.text[:500]}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"{self.provider} returned a malformed body", status_code=resp.status_code) from e

        if not content or not content.strip():
            raise ProviderError(f"{self.provider} returned no content", status_code=resp.status_code)

        usage = data.get("usage") or {}
        logger.debug(
            "%s/%s answered in %dms (tokens=%s)",
            self.provider,
            self.model,
            elapsed_ms,
            usage.get("total_tokens", "?"),
        )
        return content.strip()


class ZhipuBackend(ChatCompletionsBackend):
    """Zhipu AI (GLM family)."""

    provider = "zhipu"
    default_model = "glm-4-air"
    api_url = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    temperature = 1.0
    max_tokens = 500


class KimiBackend(ChatCompletionsBackend):
    """Moonshot Kimi."""

    provider = "kimi"
    default_model = "kimi-k2-0711-preview"
    api_url = "https://api.moonshot.cn/v1/chat/completions"
    models_url = "https://api.moonshot.cn/v1/models"
    temperature = 0.8

    async def check_api_key(self) -> bool:
        """True if the configured key can list models."""
        if not self.api_key:
            return False
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(self.models_url, headers={"Authorization": f"Bearer {self.api_key}"})
        except httpx.HTTPError as e:
            logger.warning("Kimi key check failed: %s", e)
            return False
        return resp.status_code == 200


# ---------------------------------------------------------------------------
# Backend registry
# ---------------------------------------------------------------------------

BACKEND_REGISTRY: dict[str, tuple[type[BaseGenerationBackend], str]] = {
    "glm-4.7": (ZhipuBackend, "glm-4"),
    "glm-4-air": (ZhipuBackend, "glm-4-air"),
    "kimi-k2": (KimiBackend, "kimi-k2-0711-preview"),
}


def get_backend(backend_id: str, api_key: str, **kwargs) -> BaseGenerationBackend:
    """Factory: get the appropriate backend for a backend id."""
    entry = BACKEND_REGISTRY.get(backend_id)
    if entry is None:
        raise UnknownBackendError(backend_id)
    cls, model = entry
    kwargs.setdefault("model", model)
    return cls(api_key=api_key, **kwargs)


def build_backends(api_keys: dict[str, str], **kwargs) -> dict[str, BaseGenerationBackend]:
    """Instantiate backends for every registered id with a configured key."""
    backends: dict[str, BaseGenerationBackend] = {}
    for backend_id, api_key in api_keys.items():
        if not api_key:
            logger.info("No API key for %s, backend disabled", backend_id)
            continue
        if backend_id not in BACKEND_REGISTRY:
            logger.warning("Ignoring API key for unregistered backend %s", backend_id)
            continue
        backends[backend_id] = get_backend(backend_id, api_key, **kwargs)
    return backends
