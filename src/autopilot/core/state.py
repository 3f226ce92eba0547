# src/autopilot/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .ports import ActivityNotifier, EpisodicMemory, PageObserver

if TYPE_CHECKING:
    from ..llm.dispatcher import ProviderDispatcher
    from ..llm.key_health import KeyHealthRegistry
    from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    """
    Process context, built once by the composition root and passed down explicitly.

    Nothing in the core reads module-level singletons; two AppState instances
    (e.g. in tests) share no state.
    """

    settings: Any

    task_store: TaskStore
    key_health: KeyHealthRegistry
    dispatcher: ProviderDispatcher

    memory: EpisodicMemory
    activity: ActivityNotifier
    page_observer: PageObserver | None = None
