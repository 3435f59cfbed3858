# src/taskflow/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, reminder scheduler, lifecycle manager and façade into AppState,
- tears everything down again on shutdown.
"""

from __future__ import annotations

import logging

from ..config import Settings, get_settings
from ..core.ports import Clock
from ..core.state import AppState
from ..notifications.local_center import LocalNotificationCenter
from ..notifications.reminders import ReminderScheduler
from ..tasks.lifecycle import TaskLifecycle
from ..tasks.repository import TaskRepository
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings: Settings | None = None,
    clock: Clock | None = None,
    center: LocalNotificationCenter | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path, tz=settings.timezone)
    center = center or LocalNotificationCenter(permission=settings.reminders_enabled)
    reminders = ReminderScheduler(center, clock=clock, tz=settings.timezone)
    lifecycle = TaskLifecycle(store, reminders, clock=clock)

    return AppState(
        settings=settings,
        store=store,
        notification_center=center,
        reminders=reminders,
        lifecycle=lifecycle,
        repository=TaskRepository(lifecycle),
    )


async def start_state(state: AppState) -> None:
    """Ask for notification permission and re-arm reminders for open tasks from disk."""
    if not await state.reminders.request_permission():
        logger.warning("Reminders disabled: notification permission was not granted")
        return
    try:
        n = await state.lifecycle.reschedule_all_reminders()
        logger.info("Restored %s reminders", n)
    except Exception:
        logger.exception("Failed to restore reminders on startup")


def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.store.close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)
