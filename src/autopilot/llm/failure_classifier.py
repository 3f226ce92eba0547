# src/autopilot/llm/failure_classifier.py

"""Deterministic provider failure classification for credential health."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

RATE_LIMIT_STATUS_CODES: tuple[int, ...] = (429,)
CREDENTIAL_EXHAUSTED_STATUS_CODES: tuple[int, ...] = (402, 403)

_CREDENTIAL_EXHAUSTED_PATTERNS: tuple[str, ...] = (
    "insufficient",
    "credits",
    "quota",
)


class FailureKind(StrEnum):
    RATE_LIMITED = "rate_limited"
    CREDENTIAL_EXHAUSTED = "credential_exhausted"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    """Normalized view of a failed provider call."""

    status_code: int | None
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> ProviderFailure:
        status = getattr(exc, "status_code", None)
        if status is None:
            status = getattr(exc, "status", None)
        try:
            status_code = int(status) if status is not None else None
        except (TypeError, ValueError):
            status_code = None
        return cls(status_code=status_code, message=str(exc))


def classify_failure(failure: ProviderFailure) -> FailureKind:
    """
    Status code wins when present:
    - 429      -> RATE_LIMITED
    - 402, 403 -> CREDENTIAL_EXHAUSTED
    - anything else -> OTHER

    Only without a status code is the message searched for credit/quota wording.
    """
    code = failure.status_code
    if code is not None:
        if code in RATE_LIMIT_STATUS_CODES:
            return FailureKind.RATE_LIMITED
        if code in CREDENTIAL_EXHAUSTED_STATUS_CODES:
            return FailureKind.CREDENTIAL_EXHAUSTED
        return FailureKind.OTHER

    haystack = (failure.message or "").lower()
    for pattern in _CREDENTIAL_EXHAUSTED_PATTERNS:
        if pattern in haystack:
            return FailureKind.CREDENTIAL_EXHAUSTED
    return FailureKind.OTHER
