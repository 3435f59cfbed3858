# tests/conftest.py

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from taskflow.cli.bootstrap import create_initial_state
from taskflow.config import Settings
from taskflow.core.state import AppState
from taskflow.notifications.local_center import LocalNotificationCenter
from taskflow.notifications.reminders import ReminderScheduler
from taskflow.tasks.lifecycle import TaskLifecycle
from taskflow.tasks.repository import TaskRepository
from taskflow.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeNotificationCenter

NOW = datetime(2025, 1, 15, 9, 0, tzinfo=UTC)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def center() -> FakeNotificationCenter:
    return FakeNotificationCenter()


@pytest.fixture()
def store(tmp_path: Path) -> TaskStore:
    """
    Real SQLite store per test.

    Its transactional behavior is part of what we want to test, so no in-memory fake here.
    """
    return TaskStore(tmp_path / "tasks.sqlite3", tz=UTC)


@pytest.fixture()
def reminders(center: FakeNotificationCenter, clock: FakeClock) -> ReminderScheduler:
    return ReminderScheduler(center, clock=clock)


@pytest.fixture()
def lifecycle(store: TaskStore, reminders: ReminderScheduler, clock: FakeClock) -> TaskLifecycle:
    return TaskLifecycle(store, reminders, clock=clock)


@pytest.fixture()
def repo(lifecycle: TaskLifecycle) -> TaskRepository:
    return TaskRepository(lifecycle)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings built directly (not from env) to keep tests isolated and deterministic."""
    return Settings(
        app_name="taskflow-test",
        log_level="DEBUG",
        console_enabled=False,
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "app.sqlite3",
        timezone=UTC,
        reminders_enabled=True,
        reminder_poll_seconds=0.01,
        reminder_retry_seconds=0.01,
    )


@pytest.fixture()
def state(settings: Settings, clock: FakeClock) -> AppState:
    """AppState wired through the real composition root with a pinned clock."""
    return create_initial_state(
        settings=settings,
        clock=clock,
        center=LocalNotificationCenter(permission=True),
    )
