# tests/test_task_store.py

from __future__ import annotations

import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import pytest

from autopilot.tasks.task_models import (
    AgentState,
    Recurrence,
    RunStep,
    TaskPayload,
    TaskRun,
    TaskStatus,
    WorkingMemory,
)
from autopilot.tasks.task_store import STALE_RESET_REASON, TaskStore


def _goal(text: str = "Like latest post", **kw) -> TaskPayload:
    return TaskPayload(goal=text, **kw)


def _force_updated_at(db: Path, task_id: int, ts: float) -> None:
    conn = sqlite3.connect(str(db))
    try:
        conn.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (ts, task_id))
        conn.commit()
    finally:
        conn.close()


def test_enqueue_and_get_roundtrip(store: TaskStore) -> None:
    task = store.enqueue(
        "A",
        _goal(url="https://x.com/home", params={"n": 1}, constraints=["no DMs"]),
        priority=2,
    )
    assert task.status == TaskStatus.QUEUED
    assert task.id > 0

    loaded = store.get_task(task.id)
    assert loaded is not None
    assert loaded.agent_id == "A"
    assert loaded.priority == 2
    assert loaded.payload.goal == "Like latest post"
    assert loaded.payload.url == "https://x.com/home"
    assert loaded.payload.params == {"n": 1}
    assert loaded.payload.constraints == ["no DMs"]
    assert loaded.recurrence is None
    assert loaded.next_run_at is None
    assert store.get_task(99999) is None


@pytest.mark.parametrize("priority", [0, 6, -1])
def test_enqueue_rejects_out_of_range_priority(store: TaskStore, priority: int) -> None:
    with pytest.raises(ValueError):
        store.enqueue("A", _goal(), priority=priority)


def test_enqueue_rejects_empty_goal_and_bad_recurrence(store: TaskStore) -> None:
    with pytest.raises(ValueError):
        store.enqueue("A", _goal("   "))
    with pytest.raises(ValueError):
        store.enqueue("A", _goal(), recurrence=Recurrence.cron("not a cron"))
    with pytest.raises(ValueError):
        store.enqueue("A", _goal(), recurrence=Recurrence.every(0))
    assert store.count_tasks() == 0


def test_claim_equal_priority_follows_creation_order(store: TaskStore) -> None:
    ids = [store.enqueue("A", _goal(f"goal {i}"), priority=3).id for i in range(4)]

    claimed = [store.claim_next("A") for _ in range(4)]
    assert [t.id for t in claimed if t is not None] == ids
    assert all(t is not None and t.status == TaskStatus.RUNNING for t in claimed)
    assert store.claim_next("A") is None


def test_claim_prefers_lower_priority_value(store: TaskStore) -> None:
    low = store.enqueue("A", _goal("later"), priority=5)
    high = store.enqueue("A", _goal("urgent"), priority=1)
    mid = store.enqueue("A", _goal("normal"), priority=3)

    order = [store.claim_next("A").id for _ in range(3)]  # type: ignore[union-attr]
    assert order == [high.id, mid.id, low.id]


def test_claim_skips_future_next_run_at(store: TaskStore) -> None:
    future = time.time() + 3600
    task = store.enqueue("A", _goal(), next_run_at=future)

    assert store.claim_next("A") is None
    assert store.get_task(task.id).status == TaskStatus.QUEUED  # type: ignore[union-attr]

    claimed = store.claim_next("A", now_ts=future + 1)
    assert claimed is not None and claimed.id == task.id


def test_claim_ignores_non_queued_and_other_agents(store: TaskStore) -> None:
    paused = store.enqueue("A", _goal("blocked"))
    store.update_status(paused.id, TaskStatus.PAUSED, "Blocked by captcha")
    store.enqueue("B", _goal("someone else's"))

    assert store.claim_next("A") is None

    other = store.claim_next("B")
    assert other is not None and other.agent_id == "B"


def test_concurrent_claims_never_hand_out_the_same_task(store: TaskStore) -> None:
    total = 40
    for i in range(total):
        store.enqueue("A", _goal(f"goal {i}"), priority=1 + i % 5)

    def drain() -> list[int]:
        got: list[int] = []
        while True:
            t = store.claim_next("A")
            if t is None:
                return got
            got.append(t.id)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: drain(), range(8)))

    claimed = [i for chunk in results for i in chunk]
    assert len(claimed) == total
    assert len(set(claimed)) == total
    assert store.list_tasks("A", TaskStatus.QUEUED) == []


def test_update_status_sets_reason(store: TaskStore) -> None:
    task = store.enqueue("A", _goal())
    store.update_status(task.id, TaskStatus.FAILED, "3 consecutive failures")

    loaded = store.get_task(task.id)
    assert loaded is not None
    assert loaded.status == TaskStatus.FAILED
    assert loaded.status_reason == "3 consecutive failures"
    assert loaded.updated_at >= task.updated_at


def test_stale_running_task_is_reset_exactly_once(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    store = TaskStore(db)
    task = store.enqueue("A", _goal())
    assert store.claim_next("A") is not None
    _force_updated_at(db, task.id, time.time() - 600)

    # "Restart": a new store on the same file runs the startup scan.
    restarted = TaskStore(db)
    loaded = restarted.get_task(task.id)
    assert loaded is not None
    assert loaded.status == TaskStatus.QUEUED
    assert loaded.status_reason == STALE_RESET_REASON

    assert restarted.reset_stale_running() == 0
    again = TaskStore(db).get_task(task.id)
    assert again is not None and again.status_reason == STALE_RESET_REASON


def test_recent_running_task_survives_restart(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    store = TaskStore(db)
    task = store.enqueue("A", _goal())
    store.claim_next("A")

    loaded = TaskStore(db).get_task(task.id)
    assert loaded is not None
    assert loaded.status == TaskStatus.RUNNING
    assert loaded.status_reason is None


def test_touch_running_only_bumps_running_rows(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    store = TaskStore(db)
    running = store.enqueue("A", _goal("running"), priority=1)
    queued = store.enqueue("A", _goal("queued"), priority=2)
    store.claim_next("A")

    old = time.time() - 600
    _force_updated_at(db, running.id, old)
    _force_updated_at(db, queued.id, old)

    store.touch_running(running.id)
    store.touch_running(queued.id)

    assert store.get_task(running.id).updated_at > old  # type: ignore[union-attr]
    assert store.get_task(queued.id).updated_at == old  # type: ignore[union-attr]


@pytest.mark.parametrize("recurrence", [None, Recurrence.once()])
def test_requeue_one_shot_is_noop(store: TaskStore, recurrence: Recurrence | None) -> None:
    task = store.enqueue("A", _goal(), recurrence=recurrence)
    claimed = store.claim_next("A")
    assert claimed is not None
    store.update_status(task.id, TaskStatus.DONE)
    before = store.get_task(task.id)

    assert store.requeue_recurring(claimed) is False

    after = store.get_task(task.id)
    assert after == before


def test_requeue_every_schedules_next_run(store: TaskStore) -> None:
    task = store.enqueue("A", _goal(), recurrence=Recurrence.every(60_000))
    claimed = store.claim_next("A")
    assert claimed is not None
    store.update_status(task.id, TaskStatus.DONE, "finished")

    before = time.time()
    assert store.requeue_recurring(claimed) is True
    after = time.time()

    loaded = store.get_task(task.id)
    assert loaded is not None
    assert loaded.status == TaskStatus.QUEUED
    assert loaded.status_reason is None
    assert loaded.next_run_at is not None
    assert before + 60 <= loaded.next_run_at <= after + 60
    assert store.claim_next("A") is None


def test_requeue_cron_uses_next_match(store: TaskStore) -> None:
    task = store.enqueue("A", _goal(), recurrence=Recurrence.cron("0 * * * *"))
    claimed = store.claim_next("A")
    assert claimed is not None

    now = datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc).timestamp()
    store.requeue_recurring(claimed, now_ts=now)

    loaded = store.get_task(task.id)
    assert loaded is not None
    assert loaded.recurrence == Recurrence.cron("0 * * * *")
    assert loaded.next_run_at == datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc).timestamp()


def test_resume_task_only_from_paused_or_failed(store: TaskStore) -> None:
    paused = store.enqueue("A", _goal("paused"))
    store.update_status(paused.id, TaskStatus.PAUSED, "Blocked by 2fa")
    queued = store.enqueue("A", _goal("queued"))

    assert store.resume_task(paused.id) is True
    assert store.resume_task(queued.id) is False
    assert store.resume_task(12345) is False

    loaded = store.get_task(paused.id)
    assert loaded is not None
    assert loaded.status == TaskStatus.QUEUED
    assert loaded.status_reason is None


def test_list_tasks_filters_by_status(store: TaskStore) -> None:
    a = store.enqueue("A", _goal("a"), priority=2)
    b = store.enqueue("A", _goal("b"), priority=1)
    store.enqueue("B", _goal("c"))
    store.update_status(a.id, TaskStatus.DONE)

    assert [t.id for t in store.list_tasks("A")] == [b.id, a.id]
    assert [t.id for t in store.list_tasks("A", TaskStatus.DONE)] == [a.id]
    assert [t.id for t in store.list_tasks("A", TaskStatus.QUEUED)] == [b.id]


def test_task_runs_roundtrip(store: TaskStore) -> None:
    task = store.enqueue("A", _goal())
    run = TaskRun(id="run-1", task_id=task.id, agent_id="A", started_at=100.0)
    store.save_task_run(run)

    run.steps.append(RunStep(index=0, description="Open feed", result="opened", timestamp=101.0))
    run.finished_at = 102.0
    run.tokens_estimate = 42
    run.error = None
    store.save_task_run(run)

    runs = store.list_task_runs(task.id)
    assert len(runs) == 1
    assert runs[0] == run


def test_agent_state_defaults_and_roundtrip(store: TaskStore) -> None:
    empty = store.get_agent_state("A")
    assert empty == AgentState(agent_id="A")

    state = AgentState(
        agent_id="A",
        current_task_id=7,
        last_heartbeat_at=123.5,
        working_memory=WorkingMemory(
            goal="Like latest post",
            plan=["Open feed", "Click like"],
            step_index=1,
            last_page_hash="abc",
            context={"k": "v"},
        ),
    )
    store.save_agent_state(state)
    assert store.get_agent_state("A") == state

    store.save_agent_state(AgentState(agent_id="A", last_heartbeat_at=200.0))
    cleared = store.get_agent_state("A")
    assert cleared.current_task_id is None
    assert cleared.working_memory == WorkingMemory()
