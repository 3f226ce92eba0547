# src/autopilot/llm/providers/anthropic.py

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..types import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    Capability,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMRequest,
    LLMResponse,
    ProviderError,
    Usage,
)

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"

ANTHROPIC_MODELS: dict[Capability, str] = {
    Capability.REASONING: "claude-opus-4-6",
    Capability.STATUS_PING: "claude-haiku-4-5",
}


class AnthropicClient:
    """
    Messages API over plain httpx.

    System messages are folded into the top-level `system` field.
    Anthropic has no embeddings endpoint, so `embeddings` is unsupported.
    """

    name = "anthropic"

    def __init__(
        self,
        *,
        base_url: str = ANTHROPIC_BASE_URL,
        timeout: httpx.Timeout | float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    def supports(self, capability: Capability) -> bool:
        return capability in ANTHROPIC_MODELS

    async def aclose(self) -> None:
        await self._http.aclose()

    async def complete(self, request: LLMRequest, credential: str) -> LLMResponse:
        model = ANTHROPIC_MODELS.get(request.capability)
        if model is None:
            raise ProviderError(
                f"anthropic does not support {request.capability.value}", provider=self.name
            )

        system = [m["content"] for m in request.messages if m["role"] == "system"]
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": (
                request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "messages": [
                {"role": m["role"], "content": m["content"]}
                for m in request.messages
                if m["role"] != "system"
            ],
        }
        if system:
            body["system"] = "\n".join(system)

        try:
            res = await self._http.post(
                f"{self._base_url}/messages",
                json=body,
                headers={
                    "x-api-key": credential,
                    "anthropic-version": ANTHROPIC_VERSION,
                },
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"anthropic network error: {e}", provider=self.name) from e

        if res.is_error:
            raise ProviderError(
                f"anthropic error {res.status_code}: {res.text}",
                status_code=res.status_code,
                provider=self.name,
            )

        data = res.json()
        text = next(
            (c.get("text") or "" for c in data.get("content") or [] if c.get("type") == "text"),
            "",
        )
        usage: Usage | None = None
        raw_usage = data.get("usage")
        if isinstance(raw_usage, dict):
            usage = Usage(
                input_tokens=int(raw_usage.get("input_tokens") or 0),
                output_tokens=int(raw_usage.get("output_tokens") or 0),
            )
        return LLMResponse(text=text, provider=self.name, model=model, usage=usage)

    async def embed(self, request: EmbeddingRequest, credential: str) -> EmbeddingResponse:
        raise ProviderError("anthropic does not support embeddings", provider=self.name)
