# src/autopilot/runner/plan.py

"""Prompt construction for planning/step execution and tolerant plan parsing."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from ..core.ports import PageState
from ..llm.types import ChatMessage
from ..tasks.task_models import TaskPayload

logger = logging.getLogger(__name__)

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

PLAN_MAX_TOKENS = 512
STEP_MAX_TOKENS = 256
PAGE_ELEMENTS_IN_CONTEXT = 10


def hints_text(memories: Sequence[Any]) -> str:
    summaries = [str(getattr(m, "summary", "") or "").strip() for m in memories]
    summaries = [s for s in summaries if s]
    if not summaries:
        return ""
    return "Relevant past experience:\n" + "\n".join(f"- {s}" for s in summaries)


def build_plan_messages(payload: TaskPayload, hints: str = "") -> list[ChatMessage]:
    system = (
        "You are an autonomous web agent. Create a step-by-step action plan.\n"
        'Return ONLY a JSON array of step descriptions, e.g. ["Step 1", "Step 2"].'
    )
    if hints:
        system = f"{system}\n{hints}"
    user = (
        f"Goal: {payload.goal}\n"
        f"URL: {payload.url or 'not specified'}\n"
        f"Constraints: {'; '.join(payload.constraints)}"
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def parse_plan(text: str | None, goal: str) -> list[str]:
    """
    Pull the first JSON array of strings out of a model reply.

    Anything unusable (no array, bad JSON, empty list, non-string items only)
    degrades to a single step equal to the goal.
    """
    match = _ARRAY_RE.search(text or "")
    if match is None:
        return [goal]
    try:
        data = json.loads(match.group(0))
    except ValueError:
        logger.debug("Plan reply is not valid JSON; using the goal as the only step.")
        return [goal]
    if not isinstance(data, list):
        return [goal]

    steps = [s.strip() for s in data if isinstance(s, str) and s.strip()]
    return steps or [goal]


def page_context(state: PageState) -> str:
    elements = ", ".join(
        f"{e.get('role', '?')}:{e.get('text', '')}"
        for e in state.elements[:PAGE_ELEMENTS_IN_CONTEXT]
    )
    alerts = ", ".join(a.type for a in state.alerts)
    return (
        f"Current page: {state.title} ({state.page_type})\n"
        f"Elements: {elements}\n"
        f"Alerts: {alerts}"
    )


def build_step_messages(
    payload: TaskPayload,
    step: str,
    *,
    index: int,
    total: int,
    page: str = "",
) -> list[ChatMessage]:
    system = f"You are an autonomous agent executing step {index + 1} of {total}."
    if page:
        system = f"{system}\n{page}"
    return [
        {"role": "system", "content": system},
        {
            "role": "user",
            "content": (
                f"Goal: {payload.goal}\n"
                f"Step: {step}\n"
                "Describe the result of executing this step."
            ),
        },
    ]
