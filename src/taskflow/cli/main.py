# src/taskflow/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs:
- the reminder dispatcher as a background asyncio task,
- the console REPL (optional) until the user quits.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state, shutdown_state, start_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleMessenger, run_console_loop
from ..logging_setup import level_from_name, setup_logging
from ..notifications.dispatcher import run_reminder_dispatcher

logger = logging.getLogger(__name__)


async def _run(state) -> None:
    settings = state.settings
    await start_state(state)

    dispatcher = asyncio.create_task(
        run_reminder_dispatcher(
            state.notification_center,
            ConsoleMessenger(),
            interval_seconds=settings.reminder_poll_seconds,
            retry_delay_seconds=settings.reminder_retry_seconds,
        )
    )
    try:
        if settings.console_enabled:
            await run_console_loop(state)
        else:
            logger.info("Console disabled. Delivering reminders only. Press Ctrl+C to stop.")
            await dispatcher
    finally:
        dispatcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await dispatcher


def main() -> None:
    settings = get_settings()

    console_level = level_from_name(settings.log_level)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)
    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        shutdown_state(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
