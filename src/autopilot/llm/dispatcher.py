# src/autopilot/llm/dispatcher.py

"""
Provider dispatcher: ordered, budgeted failover across providers and credentials.

Order is deterministic: provider priority first, then each provider's configured
credential order. Every call to a provider client costs one unit of the attempt
budget. Failures are classified once:
- rate limited         -> credential cools down, try the next one
- credential exhausted -> credential disabled for the process lifetime, try the next one
- anything else        -> try the next one, health untouched
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TypeVar

from ..core.ports import ProviderClient
from .failure_classifier import FailureKind, ProviderFailure, classify_failure
from .key_health import KeyHealthRegistry, ProviderHealth, mask_credential
from .types import (
    Capability,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMRequest,
    LLMResponse,
    ProviderExhaustedError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
STATUS_LINE_MAX_CHARS = 120

T = TypeVar("T")


class ProviderDispatcher:
    def __init__(
        self,
        registry: KeyHealthRegistry,
        clients: Mapping[str, ProviderClient],
        *,
        priority: Iterable[str],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._registry = registry
        self._clients = dict(clients)
        # Each provider is walked at most once per dispatch.
        self._priority = list(dict.fromkeys(p.strip() for p in priority if p and p.strip()))
        self._max_attempts = max(1, int(max_attempts))

        unknown = [p for p in self._priority if p not in self._clients]
        if unknown:
            logger.warning("No client for provider(s) in priority list: %s", ", ".join(unknown))

    @property
    def registry(self) -> KeyHealthRegistry:
        return self._registry

    @property
    def priority(self) -> list[str]:
        return list(self._priority)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Chat completion with provider/credential failover."""
        return await self._dispatch(
            request.capability,
            lambda client, key: client.complete(request, key),
        )

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Embeddings with failover; providers without embeddings support are skipped."""
        return await self._dispatch(
            Capability.EMBEDDINGS,
            lambda client, key: client.embed(request, key),
        )

    async def status_ping(self, prompt: str) -> str:
        """One short human-readable status line from the cheap model."""
        resp = await self.complete(
            LLMRequest(
                capability=Capability.STATUS_PING,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "Write one short status line (max 120 chars) describing "
                            "what the agent is doing. No extra detail."
                        ),
                    },
                    {"role": "user", "content": prompt},
                ],
                max_tokens=80,
                temperature=0.3,
            )
        )
        return resp.text.strip()[:STATUS_LINE_MAX_CHARS]

    def health_summary(self) -> list[ProviderHealth]:
        return self._registry.health_summary()

    async def aclose(self) -> None:
        """Release every provider client (HTTP connection pools). Failures are logged only."""
        for name, client in self._clients.items():
            try:
                await client.aclose()
            except Exception:
                logger.warning("Failed to close provider client %s", name, exc_info=True)

    async def _dispatch(
        self,
        capability: Capability,
        call: Callable[[ProviderClient, str], Awaitable[T]],
    ) -> T:
        attempts = 0
        last_error: Exception | None = None

        for provider in self._priority:
            if attempts >= self._max_attempts:
                break

            client = self._clients.get(provider)
            if client is None or not client.supports(capability):
                continue

            for key in self._registry.healthy_keys_for(provider):
                if attempts >= self._max_attempts:
                    break
                attempts += 1

                try:
                    result = await call(client, key)
                except Exception as e:
                    last_error = e
                    self._record_failure(provider, key, e)
                    continue

                logger.debug(
                    "LLM %s ok provider=%s key=%s attempt=%s",
                    capability.value,
                    provider,
                    mask_credential(key),
                    attempts,
                )
                return result

        reason = str(last_error) if last_error is not None else "no healthy credentials"
        raise ProviderExhaustedError(
            f"all providers/keys exhausted after {attempts} attempt(s) "
            f"for {capability.value}. Last error: {reason}",
            attempts=attempts,
            last_error=last_error,
        ) from last_error

    def _record_failure(self, provider: str, key: str, exc: Exception) -> None:
        failure = ProviderFailure.from_exception(exc)
        kind = classify_failure(failure)

        if kind == FailureKind.RATE_LIMITED:
            self._registry.mark_rate_limited(provider, key)
        elif kind == FailureKind.CREDENTIAL_EXHAUSTED:
            self._registry.mark_disabled(provider, key, failure.message or "credential exhausted")
        else:
            logger.info(
                "LLM error provider=%s key=%s status=%s (%s), trying next",
                provider,
                mask_credential(key),
                failure.status_code,
                exc.__class__.__name__,
            )
