# src/autopilot/runner/engine.py

"""
Execution engine: one polling loop per agent.

Every poll interval:
- claim at most one task for this agent (atomic, in the task store),
- ask the dispatcher for a step plan (seeded with episodic memory hints),
- run the steps strictly in order, observing the target page when there is one,
- persist the working memory after every step,
- finish as done / requeued / paused / failed, save the run log, clear the agent pointer.

Stop conditions inside a run:
- all planned steps executed (capped at max_steps_per_run)
- captcha / 2FA on the observed page -> paused
- max_consecutive_failures step errors in a row -> failed
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from ..core.ports import (
    ActivityEvent,
    ActivityNotifier,
    EpisodicMemory,
    MemoryEntry,
    PageObserver,
    PageState,
)
from ..llm.dispatcher import ProviderDispatcher
from ..llm.types import Capability, LLMRequest, LLMResponse
from ..tasks.task_models import AgentState, RunStep, Task, TaskRun, TaskStatus, WorkingMemory
from ..tasks.task_store import TaskStore
from .plan import (
    PLAN_MAX_TOKENS,
    STEP_MAX_TOKENS,
    build_plan_messages,
    build_step_messages,
    hints_text,
    page_context,
    parse_plan,
)

logger = logging.getLogger(__name__)

NOTIFICATION_FALLBACK_CHARS = 120


@dataclass(frozen=True, slots=True)
class RunnerConfig:
    poll_interval_seconds: float = 3.0
    max_steps_per_run: int = 20
    max_consecutive_failures: int = 3
    status_interval_seconds: float = 5 * 60
    observe_timeout_seconds: float = 20.0
    memory_hints_limit: int = 5

    @classmethod
    def from_settings(cls, settings: object) -> RunnerConfig:
        d = cls()
        return cls(
            poll_interval_seconds=float(
                getattr(settings, "poll_interval_seconds", d.poll_interval_seconds)
            ),
            max_steps_per_run=int(getattr(settings, "max_steps_per_run", d.max_steps_per_run)),
            max_consecutive_failures=int(
                getattr(settings, "max_consecutive_failures", d.max_consecutive_failures)
            ),
            status_interval_seconds=float(
                getattr(settings, "status_interval_seconds", d.status_interval_seconds)
            ),
            observe_timeout_seconds=float(
                getattr(settings, "observe_timeout_seconds", d.observe_timeout_seconds)
            ),
        )


class AgentRunner:
    def __init__(
        self,
        agent_id: str,
        *,
        task_store: TaskStore,
        dispatcher: ProviderDispatcher,
        memory: EpisodicMemory,
        activity: ActivityNotifier,
        page_observer: PageObserver | None = None,
        config: RunnerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not agent_id:
            raise ValueError("agent_id is required")
        self.agent_id = agent_id
        self.task_store = task_store
        self.dispatcher = dispatcher
        self.memory = memory
        self.activity = activity
        self.page_observer = page_observer
        self.config = config or RunnerConfig()

        self._clock = clock
        self._last_status_at: float | None = None
        self._stop = asyncio.Event()
        self._busy = asyncio.Lock()
        self._loop_task: asyncio.Task[None] | None = None

    # ---- lifecycle ----

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> asyncio.Task[None]:
        """Start the polling loop on the running event loop (first tick runs immediately)."""
        if self._loop_task is not None and not self._loop_task.done():
            return self._loop_task
        self._stop.clear()
        self._loop_task = asyncio.create_task(
            self.run_forever(), name=f"agent-runner:{self.agent_id}"
        )
        logger.info("[%s] runner started", self.agent_id)
        return self._loop_task

    async def stop(self) -> None:
        """
        Stop polling and wait for an in-flight tick to finish.

        Re-raises the error that killed the loop, if any (persistence failures).
        """
        self._stop.set()
        task, self._loop_task = self._loop_task, None
        if task is not None:
            await task
        logger.info("[%s] runner stopped", self.agent_id)

    async def run_forever(self) -> None:
        interval = max(0.01, float(self.config.poll_interval_seconds))
        while not self._stop.is_set():
            try:
                await self.tick()
            except sqlite3.Error:
                logger.exception("[%s] task store failure; stopping runner", self.agent_id)
                raise
            except Exception:
                logger.exception("[%s] tick error", self.agent_id)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                pass

    async def tick(self) -> bool:
        """Claim and execute at most one task. Returns True if a task was executed."""
        if self._busy.locked():
            return False
        async with self._busy:
            task = self.task_store.claim_next(self.agent_id)
            if task is None:
                return False
            await self.execute_task(task)
            return True

    # ---- execution ----

    async def execute_task(self, task: Task) -> TaskStatus:
        """Run one claimed task to a final state. Returns the status it was left in."""
        run = TaskRun(
            id=uuid.uuid4().hex,
            task_id=task.id,
            agent_id=self.agent_id,
            started_at=time.time(),
        )
        memory = WorkingMemory(goal=task.payload.goal)
        self._save_state(task.id, memory)

        try:
            await self._notify(f"Starting task: {task.payload.goal}", task)

            plan = await self._make_plan(task, run)
            memory.plan = plan
            memory.step_index = 0
            self._save_state(task.id, memory)

            outcome, reason = await self._run_steps(task, run, memory, plan)
            return await self._finish(task, run, outcome, reason)
        except Exception as e:
            run.error = run.error or f"unexpected error: {e}"
            if not isinstance(e, sqlite3.Error):
                self.task_store.update_status(task.id, TaskStatus.FAILED, run.error)
            raise
        finally:
            run.finished_at = time.time()
            self.task_store.save_task_run(run)
            self._save_state(None, WorkingMemory())

    async def _make_plan(self, task: Task, run: TaskRun) -> list[str]:
        goal = task.payload.goal
        try:
            memories = await self.memory.search(
                goal, self.config.memory_hints_limit, self.agent_id
            )
        except Exception:
            logger.warning("[%s] memory search failed", self.agent_id, exc_info=True)
            memories = []

        try:
            resp = await self.dispatcher.complete(
                LLMRequest(
                    capability=Capability.REASONING,
                    messages=build_plan_messages(task.payload, hints_text(memories)),
                    max_tokens=PLAN_MAX_TOKENS,
                )
            )
        except Exception:
            logger.warning(
                "[%s] planning failed; goal becomes the only step", self.agent_id, exc_info=True
            )
            return [goal]

        self._add_usage(run, resp)
        plan = parse_plan(resp.text, goal)
        logger.info("[%s] task %s plan: %d step(s)", self.agent_id, task.id, len(plan))
        return plan

    async def _run_steps(
        self,
        task: Task,
        run: TaskRun,
        memory: WorkingMemory,
        plan: list[str],
    ) -> tuple[TaskStatus, str | None]:
        max_failures = self.config.max_consecutive_failures
        consecutive_failures = 0
        total = len(plan)

        for index, step in enumerate(plan[: self.config.max_steps_per_run]):
            memory.step_index = index

            page = ""
            if task.payload.url and self.page_observer is not None:
                observed = await self._observe(self.page_observer, task.payload.url)
                if observed is not None:
                    blocking = observed.blocking_alerts()
                    if blocking:
                        kinds = list(dict.fromkeys(a.type for a in blocking))
                        return TaskStatus.PAUSED, f"Blocked by {', '.join(kinds)}"
                    memory.last_page_hash = observed.hash or None
                    page = page_context(observed)

            try:
                resp = await self.dispatcher.complete(
                    LLMRequest(
                        capability=Capability.REASONING,
                        messages=build_step_messages(
                            task.payload, step, index=index, total=total, page=page
                        ),
                        max_tokens=STEP_MAX_TOKENS,
                    )
                )
            except Exception as e:
                result = f"Error: {e}"
                consecutive_failures += 1
                logger.info(
                    "[%s] task %s step %d failed (%d in a row)",
                    self.agent_id,
                    task.id,
                    index + 1,
                    consecutive_failures,
                )
            else:
                self._add_usage(run, resp)
                result = resp.text.strip()
                consecutive_failures = 0

            run.steps.append(
                RunStep(index=index, description=step, result=result, timestamp=time.time())
            )
            self._save_state(task.id, memory)

            if consecutive_failures >= max_failures:
                return TaskStatus.FAILED, f"{max_failures} consecutive failures"

            await self._notify(f"Step {index + 1}/{total}: {result[:80]}", task)

        return TaskStatus.DONE, None

    async def _finish(
        self,
        task: Task,
        run: TaskRun,
        outcome: TaskStatus,
        reason: str | None,
    ) -> TaskStatus:
        if outcome == TaskStatus.PAUSED:
            run.error = reason
            self.task_store.update_status(task.id, TaskStatus.PAUSED, reason)
            await self._notify(f"Paused: {reason}", task, force=True)
            return TaskStatus.PAUSED

        if outcome == TaskStatus.FAILED:
            run.error = reason
            self.task_store.update_status(task.id, TaskStatus.FAILED, reason)
            await self._notify(f"Failed: {reason}", task, force=True)
            return TaskStatus.FAILED

        final = TaskStatus.DONE
        if task.recurrence is not None and task.recurrence.is_recurring:
            self.task_store.requeue_recurring(task)
            final = TaskStatus.QUEUED
        else:
            self.task_store.update_status(task.id, TaskStatus.DONE)

        summary = f'Completed task "{task.payload.goal}" in {len(run.steps)} steps.'
        try:
            await self.memory.store(
                MemoryEntry(
                    agent_id=self.agent_id,
                    summary=summary,
                    tags=["task-complete"],
                    task_id=task.id,
                )
            )
        except Exception:
            logger.warning("[%s] memory store failed", self.agent_id, exc_info=True)

        await self._notify(f"Done: {task.payload.goal[:80]}", task, force=True)
        return final

    # ---- helpers ----

    async def _observe(self, observer: PageObserver, url: str) -> PageState | None:
        try:
            return await asyncio.wait_for(
                observer.observe(url),
                timeout=self.config.observe_timeout_seconds,
            )
        except Exception:
            logger.warning(
                "[%s] page observation failed for %s; continuing without it",
                self.agent_id,
                url,
                exc_info=True,
            )
            return None

    def _save_state(self, task_id: int | None, memory: WorkingMemory) -> None:
        self.task_store.save_agent_state(
            AgentState(
                agent_id=self.agent_id,
                current_task_id=task_id,
                last_heartbeat_at=time.time(),
                working_memory=memory,
            )
        )
        if task_id is not None:
            self.task_store.touch_running(task_id)

    @staticmethod
    def _add_usage(run: TaskRun, resp: LLMResponse) -> None:
        if resp.usage is None:
            return
        run.tokens_estimate = (run.tokens_estimate or 0) + resp.usage.total

    async def _notify(self, event: str, task: Task, *, force: bool = False) -> None:
        """
        Post a status line to the activity feed.

        Non-forced posts are dropped inside the minimum interval. Nothing here may
        fail the run.
        """
        now = self._clock()
        if (
            not force
            and self._last_status_at is not None
            and now - self._last_status_at < self.config.status_interval_seconds
        ):
            return

        try:
            try:
                message = await self.dispatcher.status_ping(
                    f"Task: {task.payload.goal} | Event: {event}"
                )
            except Exception:
                logger.debug("[%s] status ping failed; posting raw event", self.agent_id)
                message = ""
            message = message or event[:NOTIFICATION_FALLBACK_CHARS]

            await self.activity.append(
                ActivityEvent(agent_id=self.agent_id, message=message, task_id=task.id)
            )
            self._last_status_at = now
        except Exception:
            logger.debug("[%s] activity notification failed", self.agent_id, exc_info=True)
