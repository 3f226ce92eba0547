# src/autopilot/tasks/task_api.py

from __future__ import annotations

import logging
import time
from typing import Any

from ..core.state import AppState
from .task_models import DEFAULT_PRIORITY, Recurrence, Task, TaskPayload

logger = logging.getLogger(__name__)


def enqueue_goal(
    state: AppState,
    agent_id: str,
    goal: str,
    *,
    url: str | None = None,
    params: dict[str, Any] | None = None,
    constraints: list[str] | None = None,
    priority: int = DEFAULT_PRIORITY,
    recurrence: Recurrence | None = None,
    run_after_seconds: float = 0,
) -> Task:
    """
    Convenience helper: queue a goal for an agent.
    Uses state.task_store (already constructed in bootstrap).
    """
    next_run_at = None
    if run_after_seconds and run_after_seconds > 0:
        next_run_at = time.time() + float(run_after_seconds)

    payload = TaskPayload(
        goal=goal.strip(),
        url=url,
        params=dict(params or {}),
        constraints=list(constraints or []),
    )
    return state.task_store.enqueue(
        agent_id,
        payload,
        priority=priority,
        recurrence=recurrence,
        next_run_at=next_run_at,
    )


def resume_task(state: AppState, task_id: int) -> bool:
    """Re-queue a paused/failed task after the blocking condition was handled by a human."""
    resumed = state.task_store.resume_task(task_id)
    if resumed:
        logger.info("Task %s resumed", task_id)
    else:
        logger.info("Task %s not resumable (missing or not paused/failed)", task_id)
    return resumed
