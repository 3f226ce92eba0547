# src/autopilot/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from .recurrence import next_run_for, validate_recurrence
from .task_models import (
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
    SCHEMA_VERSION,
    AgentState,
    Recurrence,
    RecurrenceKind,
    RunStep,
    Task,
    TaskPayload,
    TaskRun,
    TaskStatus,
    WorkingMemory,
)

logger = logging.getLogger(__name__)

DEFAULT_STALE_RUNNING_SECONDS = 5 * 60
STALE_RESET_REASON = "reset after stale run"


class TaskStore:
    """
    SQLite task store: tasks, their run history and per-agent working state.

    Schema handling is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - claim_next() takes the write lock (BEGIN IMMEDIATE) and flips the row with a
      status-guarded UPDATE, so concurrent callers never claim the same task

    On construction, tasks stuck in 'running' for longer than stale_running_seconds are
    put back to 'queued' (crash recovery).
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        stale_running_seconds: float = DEFAULT_STALE_RUNNING_SECONDS,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._stale_running_seconds = float(stale_running_seconds)
        self._ensure_schema()
        reset = self.reset_stale_running()
        logger.info(
            "TaskStore ready db=%s total=%s stale_reset=%s",
            self._db_path,
            self.count_tasks(),
            reset,
        )

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'queued',
                    priority INTEGER NOT NULL DEFAULT 3,
                    payload_json TEXT NOT NULL,
                    recurrence_json TEXT,
                    next_run_at REAL,
                    status_reason TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column tasks.%s", name)

            add_col("recurrence_json", "TEXT")
            add_col("next_run_at", "REAL")
            add_col("status_reason", "TEXT")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_agent_status "
                "ON tasks(agent_id, status, priority, created_at)"
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_runs (
                    id TEXT PRIMARY KEY,
                    task_id INTEGER NOT NULL REFERENCES tasks(id),
                    agent_id TEXT NOT NULL,
                    started_at REAL NOT NULL,
                    finished_at REAL,
                    steps_json TEXT NOT NULL DEFAULT '[]',
                    tokens_estimate INTEGER,
                    error TEXT
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_task_runs_task ON task_runs(task_id)")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS agent_state (
                    agent_id TEXT PRIMARY KEY,
                    current_task_id INTEGER,
                    last_heartbeat_at REAL,
                    working_memory_json TEXT
                )
                """
            )

            conn.commit()
        finally:
            conn.close()

    # ---- encoding (store boundary only) ----

    @staticmethod
    def _encode(data: Any) -> str:
        return json.dumps({"v": SCHEMA_VERSION, "data": data}, ensure_ascii=False)

    @staticmethod
    def _decode(raw: str | None) -> Any:
        if not raw:
            return None
        doc = json.loads(raw)
        if isinstance(doc, dict) and "v" in doc and "data" in doc:
            return doc["data"]
        # Rows written before the envelope existed.
        return doc

    def _decode_working_memory(self, raw: str | None) -> WorkingMemory:
        try:
            data = self._decode(raw)
        except ValueError:
            logger.warning("Unreadable working memory snapshot; starting empty.")
            return WorkingMemory()
        return WorkingMemory.from_dict(data) if isinstance(data, dict) else WorkingMemory()

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        recurrence_data = self._decode(row["recurrence_json"])
        return Task(
            id=int(row["id"]),
            agent_id=str(row["agent_id"]),
            status=TaskStatus.from_db(row["status"]),
            priority=int(row["priority"] or DEFAULT_PRIORITY),
            payload=TaskPayload.from_dict(self._decode(row["payload_json"]) or {}),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            recurrence=Recurrence.from_dict(recurrence_data) if recurrence_data else None,
            next_run_at=float(row["next_run_at"]) if row["next_run_at"] is not None else None,
            status_reason=row["status_reason"],
        )

    def _row_to_run(self, row: sqlite3.Row) -> TaskRun:
        steps = self._decode(row["steps_json"]) or []
        return TaskRun(
            id=str(row["id"]),
            task_id=int(row["task_id"]),
            agent_id=str(row["agent_id"]),
            started_at=float(row["started_at"]),
            finished_at=float(row["finished_at"]) if row["finished_at"] is not None else None,
            steps=[RunStep.from_dict(s) for s in steps],
            tokens_estimate=(
                int(row["tokens_estimate"]) if row["tokens_estimate"] is not None else None
            ),
            error=row["error"],
        )

    # ---- recovery ----

    def reset_stale_running(self, *, now_ts: float | None = None) -> int:
        """
        Put tasks left in 'running' by a dead process back into the queue.

        Only rows whose last update is older than the stale threshold are touched.
        Returns the number of tasks reset.
        """
        if now_ts is None:
            now_ts = time.time()
        threshold = float(now_ts) - self._stale_running_seconds

        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = 'queued', status_reason = ?, updated_at = ?
                WHERE status = 'running' AND updated_at < ?
                """,
                (STALE_RESET_REASON, float(now_ts), threshold),
            )
            conn.commit()
            if cur.rowcount:
                logger.warning("Reset %s stale running task(s) to queued", cur.rowcount)
            return int(cur.rowcount)
        finally:
            conn.close()

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def enqueue(
        self,
        agent_id: str,
        payload: TaskPayload,
        *,
        priority: int = DEFAULT_PRIORITY,
        recurrence: Recurrence | None = None,
        next_run_at: float | None = None,
    ) -> Task:
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id is required")
        if not payload.goal or not payload.goal.strip():
            raise ValueError("goal is required")
        if not MIN_PRIORITY <= int(priority) <= MAX_PRIORITY:
            raise ValueError(f"priority must be in {MIN_PRIORITY}..{MAX_PRIORITY}")
        validate_recurrence(recurrence)

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO tasks(
                    agent_id, status, priority, payload_json, recurrence_json,
                    next_run_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    agent_id.strip(),
                    TaskStatus.QUEUED.value,
                    int(priority),
                    self._encode(payload.to_dict()),
                    self._encode(recurrence.to_dict()) if recurrence else None,
                    float(next_run_at) if next_run_at is not None else None,
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
        finally:
            conn.close()

        task = Task(
            id=int(rowid),
            agent_id=agent_id.strip(),
            status=TaskStatus.QUEUED,
            priority=int(priority),
            payload=payload,
            created_at=now,
            updated_at=now,
            recurrence=recurrence,
            next_run_at=float(next_run_at) if next_run_at is not None else None,
        )
        logger.debug(
            "Task enqueued id=%s agent=%s priority=%s recurrence=%s",
            task.id,
            task.agent_id,
            task.priority,
            recurrence.kind.value if recurrence else None,
        )
        return task

    def claim_next(self, agent_id: str, *, now_ts: float | None = None) -> Task | None:
        """
        Atomically claim the next eligible task for an agent.

        Eligible: status 'queued' and next_run_at unset or <= now.
        Order: priority ASC, created_at ASC (insertion order breaks exact ties).
        The chosen row moves to 'running' inside the same write transaction.
        """
        if now_ts is None:
            now_ts = time.time()

        conn = self._get_conn()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    """
                    SELECT *
                    FROM tasks
                    WHERE agent_id = ?
                      AND status = 'queued'
                      AND (next_run_at IS NULL OR next_run_at <= ?)
                    ORDER BY priority ASC, created_at ASC, id ASC
                    LIMIT 1
                    """,
                    (agent_id, float(now_ts)),
                ).fetchone()

                if row is None:
                    conn.execute("COMMIT")
                    return None

                cur = conn.execute(
                    """
                    UPDATE tasks
                    SET status = 'running', updated_at = ?
                    WHERE id = ? AND status = 'queued'
                    """,
                    (float(now_ts), int(row["id"])),
                )
                if cur.rowcount != 1:
                    conn.execute("ROLLBACK")
                    return None

                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

        task = self._row_to_task(row)
        task.status = TaskStatus.RUNNING
        task.updated_at = float(now_ts)
        logger.info("Task claimed id=%s agent=%s priority=%s", task.id, agent_id, task.priority)
        return task

    def update_status(self, task_id: int, status: TaskStatus, reason: str | None = None) -> None:
        status = TaskStatus(status)
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE tasks SET status = ?, status_reason = ?, updated_at = ? WHERE id = ?",
                (status.value, reason, now, int(task_id)),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Task %s -> %s%s", task_id, status.value, f" ({reason})" if reason else "")

    def touch_running(self, task_id: int) -> None:
        """Heartbeat: keep a long run from looking stale to a restarting process."""
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE tasks SET updated_at = ? WHERE id = ? AND status = 'running'",
                (time.time(), int(task_id)),
            )
            conn.commit()
        finally:
            conn.close()

    def requeue_recurring(self, task: Task, *, now_ts: float | None = None) -> bool:
        """
        Put a finished recurring task back in the queue with its next run time.

        Returns False (and touches nothing) for one-shot tasks.
        """
        rule = task.recurrence
        if rule is None or rule.kind == RecurrenceKind.ONCE:
            return False

        if now_ts is None:
            now_ts = time.time()
        next_run_at = next_run_for(rule, now_ts=now_ts)

        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE tasks
                SET status = 'queued', next_run_at = ?, status_reason = NULL, updated_at = ?
                WHERE id = ?
                """,
                (next_run_at, float(now_ts), int(task.id)),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Task %s requeued (%s) next_run_at=%s", task.id, rule.kind.value, next_run_at)
        return True

    def resume_task(self, task_id: int) -> bool:
        """
        Re-queue a paused or failed task (manual intervention done).

        Returns True if the row was in a resumable state and was moved.
        """
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = 'queued', status_reason = NULL, next_run_at = NULL, updated_at = ?
                WHERE id = ? AND status IN ('paused', 'failed')
                """,
                (now, int(task_id)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks(self, agent_id: str, status: TaskStatus | None = None) -> list[Task]:
        conn = self._get_conn()
        try:
            if status is None:
                rows = conn.execute(
                    """
                    SELECT * FROM tasks
                    WHERE agent_id = ?
                    ORDER BY priority ASC, created_at ASC, id ASC
                    """,
                    (agent_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM tasks
                    WHERE agent_id = ? AND status = ?
                    ORDER BY priority ASC, created_at ASC, id ASC
                    """,
                    (agent_id, TaskStatus(status).value),
                ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    # ---- runs ----

    def save_task_run(self, run: TaskRun) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO task_runs(
                    id, task_id, agent_id, started_at, finished_at,
                    steps_json, tokens_estimate, error
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    int(run.task_id),
                    run.agent_id,
                    float(run.started_at),
                    float(run.finished_at) if run.finished_at is not None else None,
                    self._encode([s.to_dict() for s in run.steps]),
                    run.tokens_estimate,
                    run.error,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def list_task_runs(self, task_id: int) -> list[TaskRun]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM task_runs WHERE task_id = ? ORDER BY started_at ASC",
                (int(task_id),),
            ).fetchall()
            return [self._row_to_run(r) for r in rows]
        finally:
            conn.close()

    # ---- agent state ----

    def get_agent_state(self, agent_id: str) -> AgentState:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM agent_state WHERE agent_id = ?", (agent_id,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return AgentState(agent_id=agent_id)
        return AgentState(
            agent_id=agent_id,
            current_task_id=(
                int(row["current_task_id"]) if row["current_task_id"] is not None else None
            ),
            last_heartbeat_at=(
                float(row["last_heartbeat_at"]) if row["last_heartbeat_at"] is not None else None
            ),
            working_memory=self._decode_working_memory(row["working_memory_json"]),
        )

    def save_agent_state(self, state: AgentState) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO agent_state(
                    agent_id, current_task_id, last_heartbeat_at, working_memory_json
                )
                VALUES (?, ?, ?, ?)
                """,
                (
                    state.agent_id,
                    state.current_task_id,
                    state.last_heartbeat_at,
                    self._encode(state.working_memory.to_dict()),
                ),
            )
            conn.commit()
        finally:
            conn.close()
