# src/autopilot/runner/collaborators.py

"""Default collaborators used when nothing richer is wired in (demos, local runs)."""

from __future__ import annotations

import logging
from typing import Any

from ..core.ports import ActivityEvent, MemoryEntry

logger = logging.getLogger(__name__)


class NullEpisodicMemory:
    """Remembers nothing; planning simply gets no hints."""

    async def search(self, query: str, limit: int, agent_id: str) -> list[Any]:
        return []

    async def store(self, entry: MemoryEntry) -> None:
        logger.debug("memory(discarded) agent=%s: %s", entry.agent_id, entry.summary)


class LoggingActivityNotifier:
    """Activity feed that only writes to the log."""

    async def append(self, event: ActivityEvent) -> None:
        logger.info("[%s] task=%s %s", event.agent_id, event.task_id, event.message)
