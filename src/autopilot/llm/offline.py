# src/autopilot/llm/offline.py

from __future__ import annotations

import json

from .types import (
    Capability,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMRequest,
    LLMResponse,
    ProviderError,
)

OFFLINE_PROVIDER = "offline"
OFFLINE_CREDENTIAL = "offline-demo"


class OfflineProviderClient:
    """
    Offline deterministic provider used for demos when no API credentials are configured.

    Behavior:
    - Planner prompts -> a one-step JSON plan built from the goal line
    - Status pings    -> "Offline demo: <first line of the prompt>"
    - Step prompts    -> a short canned result naming the step
    - Embeddings      -> unsupported
    """

    name = OFFLINE_PROVIDER

    def supports(self, capability: Capability) -> bool:
        return capability in (Capability.REASONING, Capability.STATUS_PING)

    async def aclose(self) -> None:
        return

    async def complete(self, request: LLMRequest, credential: str) -> LLMResponse:
        system = "\n".join(m["content"] for m in request.messages if m["role"] == "system")
        user = "\n".join(m["content"] for m in request.messages if m["role"] == "user")

        if request.capability == Capability.STATUS_PING:
            first = (user.splitlines() or [""])[0]
            return self._reply(f"Offline demo: {first}"[:120])

        if "json array" in system.lower():
            goal = ""
            for line in user.splitlines():
                if line.startswith("Goal:"):
                    goal = line.removeprefix("Goal:").strip()
                    break
            return self._reply(json.dumps([goal or "Execute goal"]))

        step = ""
        for line in user.splitlines():
            if line.startswith("Step:"):
                step = line.removeprefix("Step:").strip()
                break
        return self._reply(f"Offline demo mode: pretended to do '{step}'.")

    async def embed(self, request: EmbeddingRequest, credential: str) -> EmbeddingResponse:
        raise ProviderError("offline provider has no embeddings", provider=self.name)

    @staticmethod
    def _reply(text: str) -> LLMResponse:
        return LLMResponse(text=text, provider=OFFLINE_PROVIDER, model="offline")
