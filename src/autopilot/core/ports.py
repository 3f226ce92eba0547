# src/autopilot/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The runner depends on Protocols instead of concrete implementations.
This keeps the browser, memory, activity feed and LLM providers swappable
and makes testing easier.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from ..llm.types import (
    Capability,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMRequest,
    LLMResponse,
)

BLOCKING_ALERT_TYPES = frozenset({"captcha", "2fa"})


@dataclass(frozen=True, slots=True)
class PageAlert:
    type: str
    text: str = ""


@dataclass(slots=True)
class PageState:
    """What the page observer saw. The runner only relies on alerts and hash."""

    url: str
    title: str = ""
    page_type: str = "unknown"
    elements: list[dict[str, Any]] = field(default_factory=list)
    alerts: list[PageAlert] = field(default_factory=list)
    hash: str = ""

    def blocking_alerts(self) -> list[PageAlert]:
        return [a for a in self.alerts if a.type in BLOCKING_ALERT_TYPES]


@dataclass(slots=True)
class MemoryEntry:
    agent_id: str
    summary: str
    tags: list[str] = field(default_factory=list)
    task_id: int | None = None


@dataclass(slots=True)
class ActivityEvent:
    agent_id: str
    message: str
    task_id: int | None = None


class PageObserver(Protocol):
    """Browser-side port: navigate/inspect a URL and describe what is on screen."""

    async def observe(self, url: str) -> PageState: ...


class EpisodicMemory(Protocol):
    """Search returns objects exposing at least a `summary` attribute."""

    async def search(self, query: str, limit: int, agent_id: str) -> list[Any]: ...
    async def store(self, entry: MemoryEntry) -> None: ...


class ActivityNotifier(Protocol):
    async def append(self, event: ActivityEvent) -> None: ...


class ProviderClient(Protocol):
    """
    One LLM backend. Errors must be raised as ProviderError with status_code set
    whenever the backend answered with an HTTP status.
    """

    name: str

    def supports(self, capability: Capability) -> bool: ...

    async def complete(self, request: LLMRequest, credential: str) -> LLMResponse: ...

    async def embed(self, request: EmbeddingRequest, credential: str) -> EmbeddingResponse: ...

    async def aclose(self) -> None: ...
