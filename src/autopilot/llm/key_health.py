# src/autopilot/llm/key_health.py

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60.0


def mask_credential(credential: str) -> str:
    tail = credential[-4:] if len(credential) > 8 else ""
    return f"...{tail}" if tail else "***"


@dataclass(slots=True)
class KeyHealth:
    provider: str
    credential: str
    cooldown_until: float | None = None
    disabled: bool = False
    last_error: str | None = None

    def is_usable(self, now: float) -> bool:
        if self.disabled:
            return False
        return self.cooldown_until is None or self.cooldown_until <= now


@dataclass(frozen=True, slots=True)
class ProviderHealth:
    provider: str
    healthy: int
    total: int


class KeyHealthRegistry:
    """
    In-memory usability state for every (provider, credential) pair.

    Entries are created once from the configured credentials and never removed.
    The only mutations are a timed cooldown (rate limit) and permanent disablement.
    A lock serializes access so concurrent dispatches in one process stay consistent.
    """

    def __init__(
        self,
        credentials: Mapping[str, Sequence[str]],
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._cooldown_seconds = float(cooldown_seconds)
        self._entries: dict[str, list[KeyHealth]] = {}

        for provider, keys in credentials.items():
            seen: set[str] = set()
            bucket: list[KeyHealth] = []
            for key in keys:
                key = (key or "").strip()
                if not key or key in seen:
                    continue
                seen.add(key)
                bucket.append(KeyHealth(provider=provider, credential=key))
            if bucket:
                self._entries[provider] = bucket

        logger.info(
            "KeyHealthRegistry ready: %s",
            ", ".join(f"{p}={len(v)}" for p, v in self._entries.items()) or "no credentials",
        )

    @property
    def providers(self) -> list[str]:
        return list(self._entries)

    def _find(self, provider: str, credential: str) -> KeyHealth | None:
        for entry in self._entries.get(provider, []):
            if entry.credential == credential:
                return entry
        return None

    def healthy_keys_for(self, provider: str) -> list[str]:
        """Usable credentials for a provider, in configured order."""
        now = self._clock()
        with self._lock:
            return [e.credential for e in self._entries.get(provider, []) if e.is_usable(now)]

    def mark_rate_limited(self, provider: str, credential: str, reason: str = "rate-limited") -> None:
        with self._lock:
            entry = self._find(provider, credential)
            if entry is None:
                return
            entry.cooldown_until = self._clock() + self._cooldown_seconds
            entry.last_error = reason
        logger.warning(
            "Credential %s/%s cooling down for %.0fs",
            provider,
            mask_credential(credential),
            self._cooldown_seconds,
        )

    def mark_disabled(self, provider: str, credential: str, reason: str) -> None:
        with self._lock:
            entry = self._find(provider, credential)
            if entry is None:
                return
            entry.disabled = True
            entry.last_error = reason
        logger.warning(
            "Credential %s/%s disabled for this process: %s",
            provider,
            mask_credential(credential),
            reason,
        )

    def entries(self, provider: str | None = None) -> list[KeyHealth]:
        """Snapshot copies (safe to inspect without holding the lock)."""
        with self._lock:
            if provider is not None:
                return [replace(e) for e in self._entries.get(provider, [])]
            return [replace(e) for bucket in self._entries.values() for e in bucket]

    def health_summary(self) -> list[ProviderHealth]:
        now = self._clock()
        with self._lock:
            return [
                ProviderHealth(
                    provider=provider,
                    healthy=sum(1 for e in bucket if e.is_usable(now)),
                    total=len(bucket),
                )
                for provider, bucket in self._entries.items()
            ]
