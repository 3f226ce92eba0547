# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from autopilot.tasks.task_store import TaskStore

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root and runner.

    We intentionally use a SimpleNamespace rather than reading the environment,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="autopilot-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        tasks_db_path=tmp_path / "data" / "tasks.sqlite3",
        agent_ids=["A", "B"],
        provider_priority=["openai", "anthropic", "deepseek"],
        provider_keys={"openai": [], "anthropic": [], "deepseek": []},
        rate_limit_cooldown_seconds=60.0,
        dispatch_max_attempts=3,
        llm_connect_timeout_seconds=1.0,
        llm_timeout_seconds=2.0,
        poll_interval_seconds=0.01,
        max_steps_per_run=20,
        max_consecutive_failures=3,
        status_interval_seconds=300.0,
        observe_timeout_seconds=1.0,
        stale_running_seconds=300.0,
    )


@pytest.fixture()
def store(tmp_path: Path) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
