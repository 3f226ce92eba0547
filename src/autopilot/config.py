# src/autopilot/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Core components never read settings themselves; the composition root passes them down.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "AUTOPILOT"

KNOWN_PROVIDERS: tuple[str, ...] = ("openai", "anthropic", "deepseek")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _provider_keys(provider: str) -> list[str]:
    """
    Credentials for one provider: <PROVIDER>_API_KEY first, then the comma
    separated <PROVIDER>_API_KEYS. Duplicates are dropped, order is kept.
    """
    upper = provider.upper()
    keys: list[str] = []
    single = _env(f"{upper}_API_KEY").strip()
    if single:
        keys.append(single)
    for k in _env(f"{upper}_API_KEYS").split(","):
        k = k.strip()
        if k and k not in keys:
            keys.append(k)
    return keys


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Agents ----
    agent_ids: list[str]

    # ---- LLM providers ----
    provider_priority: list[str]
    provider_keys: dict[str, list[str]]
    rate_limit_cooldown_seconds: float
    dispatch_max_attempts: int
    llm_connect_timeout_seconds: float
    llm_timeout_seconds: float

    # ---- Runner ----
    poll_interval_seconds: float
    max_steps_per_run: int
    max_consecutive_failures: int
    status_interval_seconds: float
    observe_timeout_seconds: float
    stale_running_seconds: float

    @property
    def has_credentials(self) -> bool:
        return any(self.provider_keys.get(p) for p in self.provider_priority)

    @staticmethod
    def from_env() -> Settings:
        app_name = _env(_k("APP_NAME"), "autopilot").strip() or "autopilot"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/autopilot"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        requested = _env_list(_k("LLM_PRIORITY"), list(KNOWN_PROVIDERS))
        provider_priority = list(dict.fromkeys(p.lower() for p in requested))
        provider_keys = {p: _provider_keys(p) for p in provider_priority}

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            agent_ids=_env_list(_k("AGENT_IDS"), []),
            provider_priority=provider_priority,
            provider_keys=provider_keys,
            rate_limit_cooldown_seconds=_env_float(_k("RATE_LIMIT_COOLDOWN_SECONDS"), 60.0),
            dispatch_max_attempts=_env_int(_k("DISPATCH_MAX_ATTEMPTS"), 3),
            llm_connect_timeout_seconds=_env_float(_k("LLM_CONNECT_TIMEOUT_SECONDS"), 5.0),
            llm_timeout_seconds=_env_float(_k("LLM_TIMEOUT_SECONDS"), 30.0),
            poll_interval_seconds=_env_float(_k("POLL_INTERVAL_SECONDS"), 3.0),
            max_steps_per_run=_env_int(_k("MAX_STEPS_PER_RUN"), 20),
            max_consecutive_failures=_env_int(_k("MAX_CONSECUTIVE_FAILURES"), 3),
            status_interval_seconds=_env_float(_k("STATUS_INTERVAL_SECONDS"), 300.0),
            observe_timeout_seconds=_env_float(_k("OBSERVE_TIMEOUT_SECONDS"), 20.0),
            stale_running_seconds=_env_float(_k("STALE_RUNNING_SECONDS"), 300.0),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Load .env (if any) and build Settings once per process."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
