# src/autopilot/llm/types.py

"""Request/response types shared by the dispatcher and provider clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal, TypedDict

DEFAULT_MAX_TOKENS = 512
DEFAULT_TEMPERATURE = 0.3


class Capability(StrEnum):
    REASONING = "reasoning"
    STATUS_PING = "status_ping"
    EMBEDDINGS = "embeddings"


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(slots=True)
class LLMRequest:
    capability: Capability
    messages: list[ChatMessage]
    max_tokens: int | None = None
    temperature: float | None = None


@dataclass(slots=True)
class LLMResponse:
    text: str
    provider: str
    model: str
    usage: Usage | None = None


@dataclass(slots=True)
class EmbeddingRequest:
    texts: list[str]


@dataclass(slots=True)
class EmbeddingResponse:
    embeddings: list[list[float]] = field(default_factory=list)
    provider: str = ""
    model: str = ""


class ProviderError(RuntimeError):
    """
    A provider call failed.

    status_code carries the HTTP status when the backend answered at all
    (None for connection errors and timeouts).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class ProviderExhaustedError(RuntimeError):
    """Every attempt allowed by the dispatch budget failed (or nothing was usable)."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
