# src/autopilot/cli/bootstrap.py

"""
Composition root.

- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (task store, key health, dispatcher,
  collaborators),
- builds one AgentRunner per configured agent.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import ActivityNotifier, EpisodicMemory, PageObserver, ProviderClient
from ..core.state import AppState
from ..llm.dispatcher import ProviderDispatcher
from ..llm.key_health import KeyHealthRegistry
from ..llm.offline import OFFLINE_CREDENTIAL, OFFLINE_PROVIDER, OfflineProviderClient
from ..llm.providers import AnthropicClient, deepseek_client, make_timeout, openai_client
from ..runner.collaborators import LoggingActivityNotifier, NullEpisodicMemory
from ..runner.engine import AgentRunner, RunnerConfig
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_provider_clients(settings) -> dict[str, ProviderClient]:
    timeout = make_timeout(
        connect_s=float(settings.llm_connect_timeout_seconds),
        read_s=float(settings.llm_timeout_seconds),
    )
    return {
        "openai": openai_client(timeout=timeout),
        "anthropic": AnthropicClient(timeout=timeout),
        "deepseek": deepseek_client(timeout=timeout),
    }


def create_initial_state(
    *,
    settings=None,
    memory: EpisodicMemory | None = None,
    activity: ActivityNotifier | None = None,
    page_observer: PageObserver | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    credentials = {p: list(settings.provider_keys.get(p, [])) for p in settings.provider_priority}
    priority = list(settings.provider_priority)

    clients: dict[str, ProviderClient]
    if any(credentials.values()):
        clients = build_provider_clients(settings)
    else:
        # Fallback for demos / local runs without external services.
        logger.warning("No LLM credentials configured; running with the offline provider.")
        clients = {OFFLINE_PROVIDER: OfflineProviderClient()}
        credentials = {OFFLINE_PROVIDER: [OFFLINE_CREDENTIAL]}
        priority = [OFFLINE_PROVIDER]

    key_health = KeyHealthRegistry(
        credentials,
        cooldown_seconds=float(settings.rate_limit_cooldown_seconds),
    )
    dispatcher = ProviderDispatcher(
        key_health,
        clients,
        priority=priority,
        max_attempts=int(settings.dispatch_max_attempts),
    )

    return AppState(
        settings=settings,
        task_store=TaskStore(
            settings.tasks_db_path,
            stale_running_seconds=float(settings.stale_running_seconds),
        ),
        key_health=key_health,
        dispatcher=dispatcher,
        memory=memory or NullEpisodicMemory(),
        activity=activity or LoggingActivityNotifier(),
        page_observer=page_observer,
    )


def build_runners(state: AppState) -> list[AgentRunner]:
    config = RunnerConfig.from_settings(state.settings)
    return [
        AgentRunner(
            agent_id,
            task_store=state.task_store,
            dispatcher=state.dispatcher,
            memory=state.memory,
            activity=state.activity,
            page_observer=state.page_observer,
            config=config,
        )
        for agent_id in state.settings.agent_ids
    ]
