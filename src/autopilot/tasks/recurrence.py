# src/autopilot/tasks/recurrence.py

"""
Next-run computation for recurring tasks.

- once  -> never re-queued
- every -> now + interval
- cron  -> next match of a standard 5-field expression (croniter), optionally in an IANA zone
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter  # type: ignore[import-untyped]

from .task_models import Recurrence, RecurrenceKind


def _zone(tz: str | None):
    if not tz:
        return timezone.utc
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown time zone: {tz!r}") from e


def validate_recurrence(rule: Recurrence | None) -> None:
    """Raise ValueError if the rule can never produce a next run."""
    if rule is None or rule.kind == RecurrenceKind.ONCE:
        return

    if rule.kind == RecurrenceKind.EVERY:
        if rule.interval_ms is None or int(rule.interval_ms) <= 0:
            raise ValueError("every() recurrence needs a positive interval_ms")
        return

    expr = (rule.expr or "").strip()
    if not expr or not croniter.is_valid(expr):
        raise ValueError(f"invalid cron expression: {rule.expr!r}")
    _zone(rule.tz)


def next_run_for(rule: Recurrence | None, *, now_ts: float | None = None) -> float | None:
    """Return the next eligible timestamp (epoch seconds), or None for one-shot rules."""
    if rule is None or rule.kind == RecurrenceKind.ONCE:
        return None

    if now_ts is None:
        now_ts = time.time()

    if rule.kind == RecurrenceKind.EVERY:
        validate_recurrence(rule)
        return float(now_ts) + int(rule.interval_ms or 0) / 1000.0

    validate_recurrence(rule)
    base = datetime.fromtimestamp(float(now_ts), tz=_zone(rule.tz))
    return float(croniter((rule.expr or "").strip(), base).get_next(float))
