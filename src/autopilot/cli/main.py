# src/autopilot/cli/main.py

"""
Process entrypoint.

Initializes logging, builds AppState, starts one runner per configured agent
and waits for SIGINT/SIGTERM. On shutdown every runner finishes its in-flight
task before the process exits.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..config import get_settings
from ..logging_setup import setup_logging
from .bootstrap import build_runners, create_initial_state

logger = logging.getLogger(__name__)


async def _run(state) -> None:
    try:
        await _run_agents(state)
    finally:
        await state.dispatcher.aclose()


async def _run_agents(state) -> None:
    runners = build_runners(state)
    if not runners:
        logger.warning("No agents configured. Set AUTOPILOT_AGENT_IDS.")
        return

    stop_main = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not every platform lets asyncio own signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop_main.set)
            installed.append(sig)

    loops = [runner.start() for runner in runners]
    logger.info("Running %d agent(s). Press Ctrl+C to stop.", len(runners))

    # A runner loop only ends on its own after a task store failure; shut everything down then.
    stop_waiter = asyncio.create_task(stop_main.wait())
    try:
        await asyncio.wait([stop_waiter, *loops], return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_waiter.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)
        logger.info("Shutting down runners...")
        results = await asyncio.gather(*(r.stop() for r in runners), return_exceptions=True)
        for runner, result in zip(runners, results):
            if isinstance(result, BaseException):
                logger.error("Runner %s ended with error: %r", runner.agent_id, result)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        pass
    finally:
        state.task_store.close()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
