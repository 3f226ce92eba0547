# src/autopilot/llm/providers/openai_compat.py

"""
OpenAI-compatible provider clients (OpenAI itself, DeepSeek).

One AsyncOpenAI client is cached per credential. SDK retries are disabled:
failover across credentials/providers is the dispatcher's job.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

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

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"

OPENAI_MODELS: dict[Capability, str] = {
    Capability.REASONING: "gpt-4o",
    Capability.STATUS_PING: "gpt-4o-mini",
    Capability.EMBEDDINGS: "text-embedding-3-small",
}
DEEPSEEK_MODELS: dict[Capability, str] = {
    Capability.REASONING: "deepseek-chat",
    Capability.STATUS_PING: "deepseek-chat",
}


def make_timeout(connect_s: float, read_s: float) -> httpx.Timeout:
    return httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s)


class OpenAICompatibleClient:
    def __init__(
        self,
        name: str,
        *,
        base_url: str,
        models: Mapping[Capability, str],
        timeout: httpx.Timeout | float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self._base_url = base_url
        self._models = dict(models)
        self._timeout = timeout
        self._http_client = http_client
        self._clients: dict[str, AsyncOpenAI] = {}

    def supports(self, capability: Capability) -> bool:
        return capability in self._models

    def model_for(self, capability: Capability) -> str:
        try:
            return self._models[capability]
        except KeyError:
            raise ProviderError(
                f"{self.name} does not support {capability.value}", provider=self.name
            ) from None

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()

    def _client_for(self, credential: str) -> AsyncOpenAI:
        client = self._clients.get(credential)
        if client is None:
            client = AsyncOpenAI(
                api_key=credential,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
                http_client=self._http_client,
            )
            self._clients[credential] = client
        return client

    def _wrap_error(self, exc: Exception) -> ProviderError:
        if isinstance(exc, openai.APIStatusError):
            return ProviderError(
                f"{self.name} error {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                provider=self.name,
            )
        if isinstance(exc, openai.APIConnectionError):
            # APITimeoutError is a subclass; no status code either way.
            return ProviderError(f"{self.name} network error: {exc}", provider=self.name)
        return ProviderError(f"{self.name} error: {exc}", provider=self.name)

    async def complete(self, request: LLMRequest, credential: str) -> LLMResponse:
        model = self.model_for(request.capability)
        try:
            resp = await self._client_for(credential).chat.completions.create(
                model=model,
                messages=list(request.messages),  # type: ignore[arg-type]
                max_tokens=request.max_tokens or DEFAULT_MAX_TOKENS,
                temperature=(
                    request.temperature
                    if request.temperature is not None
                    else DEFAULT_TEMPERATURE
                ),
            )
        except openai.OpenAIError as e:
            raise self._wrap_error(e) from e

        text = ""
        if resp.choices:
            text = resp.choices[0].message.content or ""

        usage: Usage | None = None
        raw_usage: Any = getattr(resp, "usage", None)
        if raw_usage is not None:
            usage = Usage(
                input_tokens=int(raw_usage.prompt_tokens or 0),
                output_tokens=int(raw_usage.completion_tokens or 0),
            )

        return LLMResponse(text=text, provider=self.name, model=model, usage=usage)

    async def embed(self, request: EmbeddingRequest, credential: str) -> EmbeddingResponse:
        model = self.model_for(Capability.EMBEDDINGS)
        try:
            resp = await self._client_for(credential).embeddings.create(
                model=model,
                input=list(request.texts),
            )
        except openai.OpenAIError as e:
            raise self._wrap_error(e) from e

        return EmbeddingResponse(
            embeddings=[list(d.embedding) for d in resp.data],
            provider=self.name,
            model=model,
        )


def openai_client(
    *, timeout: httpx.Timeout | float = 30.0, http_client: httpx.AsyncClient | None = None
) -> OpenAICompatibleClient:
    return OpenAICompatibleClient(
        "openai",
        base_url=OPENAI_BASE_URL,
        models=OPENAI_MODELS,
        timeout=timeout,
        http_client=http_client,
    )


def deepseek_client(
    *, timeout: httpx.Timeout | float = 30.0, http_client: httpx.AsyncClient | None = None
) -> OpenAICompatibleClient:
    return OpenAICompatibleClient(
        "deepseek",
        base_url=DEEPSEEK_BASE_URL,
        models=DEEPSEEK_MODELS,
        timeout=timeout,
        http_client=http_client,
    )
