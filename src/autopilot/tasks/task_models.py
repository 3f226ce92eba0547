# src/autopilot/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# Bumped whenever the JSON shape of payload/recurrence/steps/working memory changes.
SCHEMA_VERSION = 1

MIN_PRIORITY = 1
MAX_PRIORITY = 5
DEFAULT_PRIORITY = 3


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    queued -> running -> done | failed | paused
    done (with an active recurrence) -> queued again via requeue.
    paused / failed stay put until something re-queues them explicitly.
    """

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    PAUSED = "paused"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.QUEUED
        return cls(raw)


class RecurrenceKind(StrEnum):
    ONCE = "once"
    EVERY = "every"
    CRON = "cron"


@dataclass(frozen=True, slots=True)
class Recurrence:
    """Whether and when a completed task re-enters the queue."""

    kind: RecurrenceKind
    interval_ms: int | None = None
    expr: str | None = None
    tz: str | None = None

    @classmethod
    def once(cls) -> Recurrence:
        return cls(kind=RecurrenceKind.ONCE)

    @classmethod
    def every(cls, interval_ms: int) -> Recurrence:
        return cls(kind=RecurrenceKind.EVERY, interval_ms=int(interval_ms))

    @classmethod
    def cron(cls, expr: str, tz: str | None = None) -> Recurrence:
        return cls(kind=RecurrenceKind.CRON, expr=expr, tz=tz)

    @property
    def is_recurring(self) -> bool:
        return self.kind != RecurrenceKind.ONCE

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind.value}
        if self.kind == RecurrenceKind.EVERY:
            out["interval_ms"] = self.interval_ms
        elif self.kind == RecurrenceKind.CRON:
            out["expr"] = self.expr
            if self.tz:
                out["tz"] = self.tz
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Recurrence:
        kind = RecurrenceKind(data.get("kind", "once"))
        if kind == RecurrenceKind.EVERY:
            return cls.every(int(data["interval_ms"]))
        if kind == RecurrenceKind.CRON:
            return cls.cron(str(data["expr"]), data.get("tz"))
        return cls.once()


@dataclass(slots=True)
class TaskPayload:
    goal: str
    url: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    constraints: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal": self.goal,
            "url": self.url,
            "params": dict(self.params),
            "constraints": list(self.constraints),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskPayload:
        return cls(
            goal=str(data.get("goal") or ""),
            url=data.get("url") or None,
            params=dict(data.get("params") or {}),
            constraints=[str(c) for c in (data.get("constraints") or [])],
        )


@dataclass(slots=True)
class Task:
    id: int
    agent_id: str
    status: TaskStatus
    priority: int
    payload: TaskPayload
    created_at: float
    updated_at: float

    recurrence: Recurrence | None = None
    next_run_at: float | None = None
    status_reason: str | None = None


@dataclass(frozen=True, slots=True)
class RunStep:
    index: int
    description: str
    result: str
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "description": self.description,
            "result": self.result,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunStep:
        return cls(
            index=int(data["index"]),
            description=str(data.get("description") or ""),
            result=str(data.get("result") or ""),
            timestamp=float(data.get("timestamp") or 0.0),
        )


@dataclass(slots=True)
class TaskRun:
    """One execution attempt of a task. Appended to while running, saved at the end."""

    id: str
    task_id: int
    agent_id: str
    started_at: float
    finished_at: float | None = None
    steps: list[RunStep] = field(default_factory=list)
    tokens_estimate: int | None = None
    error: str | None = None


@dataclass(slots=True)
class WorkingMemory:
    goal: str | None = None
    plan: list[str] = field(default_factory=list)
    step_index: int = 0
    last_page_hash: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal": self.goal,
            "plan": list(self.plan),
            "step_index": self.step_index,
            "last_page_hash": self.last_page_hash,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkingMemory:
        return cls(
            goal=data.get("goal"),
            plan=[str(s) for s in (data.get("plan") or [])],
            step_index=int(data.get("step_index") or 0),
            last_page_hash=data.get("last_page_hash"),
            context=dict(data.get("context") or {}),
        )


@dataclass(slots=True)
class AgentState:
    agent_id: str
    current_task_id: int | None = None
    last_heartbeat_at: float | None = None
    working_memory: WorkingMemory = field(default_factory=WorkingMemory)
