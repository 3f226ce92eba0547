# tests/test_plan.py

from __future__ import annotations

import pytest

from autopilot.core.ports import PageAlert, PageState
from autopilot.runner.plan import (
    build_plan_messages,
    build_step_messages,
    hints_text,
    page_context,
    parse_plan,
)
from autopilot.tasks.task_models import TaskPayload

from .fakes import Recalled

GOAL = "Like latest post"


@pytest.mark.parametrize(
    ("reply", "expected"),
    [
        ('["Open feed", "Click like"]', ["Open feed", "Click like"]),
        ('Sure! Here is the plan:\n["Open feed", " Click like "]\nGood luck.', ["Open feed", "Click like"]),
        ('["Open feed", 3, "", null, "Click like"]', ["Open feed", "Click like"]),
        ("I'd rather not.", [GOAL]),
        ("[Open feed, Click like]", [GOAL]),
        ("[]", [GOAL]),
        ("[1, 2, 3]", [GOAL]),
        ("", [GOAL]),
        (None, [GOAL]),
    ],
)
def test_parse_plan(reply: str | None, expected: list[str]) -> None:
    assert parse_plan(reply, GOAL) == expected


def test_hints_text_skips_blank_summaries() -> None:
    assert hints_text([]) == ""
    assert hints_text([Recalled(""), Recalled("  ")]) == ""
    assert hints_text([Recalled("liked a post before"), object()]) == (
        "Relevant past experience:\n- liked a post before"
    )


def test_plan_messages_carry_goal_url_constraints_and_hints() -> None:
    payload = TaskPayload(goal=GOAL, url="https://x.com/home", constraints=["no DMs", "be polite"])

    system, user = build_plan_messages(payload, "Relevant past experience:\n- tip")

    assert system["role"] == "system"
    assert "JSON array" in system["content"]
    assert system["content"].endswith("- tip")
    assert user["content"] == (
        "Goal: Like latest post\nURL: https://x.com/home\nConstraints: no DMs; be polite"
    )

    _, bare = build_plan_messages(TaskPayload(goal=GOAL))
    assert "URL: not specified" in bare["content"]


def test_step_messages_include_position_and_page() -> None:
    page = PageState(
        url="https://x.com/home",
        title="Home / X",
        page_type="feed",
        elements=[{"role": "button", "text": "Like"}],
        alerts=[PageAlert(type="cookie", text="Accept cookies")],
        hash="h",
    )
    ctx = page_context(page)
    assert ctx == "Current page: Home / X (feed)\nElements: button:Like\nAlerts: cookie"

    system, user = build_step_messages(
        TaskPayload(goal=GOAL), "Click like", index=1, total=3, page=ctx
    )
    assert system["content"].startswith("You are an autonomous agent executing step 2 of 3.")
    assert "Current page: Home / X" in system["content"]
    assert user["content"] == (
        "Goal: Like latest post\nStep: Click like\nDescribe the result of executing this step."
    )
