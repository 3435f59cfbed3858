# src/taskflow/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..config import Settings
from ..notifications.local_center import LocalNotificationCenter
from ..notifications.reminders import ReminderScheduler
from ..tasks.lifecycle import TaskLifecycle
from ..tasks.repository import TaskRepository
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    """
    Everything the app runs on, constructed once by the composition root.

    One store instance is shared by the lifecycle manager, the reminder
    scheduler and the façade; nothing is a process-wide singleton.
    """

    settings: Settings
    store: TaskStore
    notification_center: LocalNotificationCenter
    reminders: ReminderScheduler
    lifecycle: TaskLifecycle
    repository: TaskRepository
