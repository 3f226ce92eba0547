# tests/fakes.py

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from autopilot.core.ports import ActivityEvent, MemoryEntry, PageAlert, PageState
from autopilot.llm.types import (
    Capability,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMRequest,
    LLMResponse,
    Usage,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProviderClient:
    """
    Deterministic provider client for unit tests.

    - reasoning calls pop the next scripted reply (str -> text, exception -> raised)
    - status pings echo the user prompt, so notification text is assertable
    - errors_by_key makes every call with that credential fail
    - calls are captured as (capability, credential)
    """

    def __init__(
        self,
        name: str,
        *,
        replies: Iterable[str | BaseException] = (),
        errors_by_key: dict[str, BaseException] | None = None,
        capabilities: Iterable[Capability] = (Capability.REASONING, Capability.STATUS_PING),
        usage: Usage | None = Usage(input_tokens=10, output_tokens=5),
    ) -> None:
        self.name = name
        self.replies: deque[str | BaseException] = deque(replies)
        self.errors_by_key = dict(errors_by_key or {})
        self.capabilities = set(capabilities)
        self.usage = usage
        self.calls: list[tuple[Capability, str]] = []
        self.closed = False

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    async def complete(self, request: LLMRequest, credential: str) -> LLMResponse:
        self.calls.append((request.capability, credential))
        err = self.errors_by_key.get(credential)
        if err is not None:
            raise err

        if request.capability == Capability.STATUS_PING:
            return LLMResponse(
                text=request.messages[-1]["content"], provider=self.name, model="fake-mini"
            )

        item: str | BaseException = self.replies.popleft() if self.replies else "ok"
        if isinstance(item, BaseException):
            raise item
        return LLMResponse(text=item, provider=self.name, model="fake", usage=self.usage)

    async def aclose(self) -> None:
        self.closed = True

    async def embed(self, request: EmbeddingRequest, credential: str) -> EmbeddingResponse:
        self.calls.append((Capability.EMBEDDINGS, credential))
        err = self.errors_by_key.get(credential)
        if err is not None:
            raise err
        return EmbeddingResponse(
            embeddings=[[float(len(t)), 0.5] for t in request.texts],
            provider=self.name,
            model="fake-embed",
        )


@dataclass
class Recalled:
    summary: str


@dataclass
class FakeMemory:
    hints: list[str] = field(default_factory=list)
    fail_search: bool = False
    fail_store: bool = False
    searches: list[tuple[str, int, str]] = field(default_factory=list)
    stored: list[MemoryEntry] = field(default_factory=list)

    async def search(self, query: str, limit: int, agent_id: str) -> list[Any]:
        self.searches.append((query, limit, agent_id))
        if self.fail_search:
            raise RuntimeError("memory offline")
        return [Recalled(summary=h) for h in self.hints[:limit]]

    async def store(self, entry: MemoryEntry) -> None:
        if self.fail_store:
            raise RuntimeError("memory offline")
        self.stored.append(entry)


@dataclass
class FakeActivity:
    fail: bool = False
    events: list[ActivityEvent] = field(default_factory=list)

    async def append(self, event: ActivityEvent) -> None:
        if self.fail:
            raise RuntimeError("feed offline")
        self.events.append(event)


class FakeObserver:
    """Returns the same page every time (or raises), optionally blocking until released."""

    def __init__(
        self,
        *,
        alerts: Iterable[str] = (),
        error: BaseException | None = None,
        page_hash: str = "hash-1",
    ) -> None:
        self.alerts = [PageAlert(type=a, text=f"{a} detected") for a in alerts]
        self.error = error
        self.page_hash = page_hash
        self.urls: list[str] = []
        self.entered = asyncio.Event()
        self.release: asyncio.Event | None = None
        self.on_observe = None

    async def observe(self, url: str) -> PageState:
        self.urls.append(url)
        self.entered.set()
        if self.on_observe is not None:
            self.on_observe()
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return PageState(
            url=url,
            title="Home / X",
            page_type="feed",
            elements=[{"role": "button", "text": "Like"}],
            alerts=list(self.alerts),
            hash=self.page_hash,
        )
