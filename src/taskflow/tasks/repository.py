# src/taskflow/tasks/repository.py

"""
Repository façade: the only entry point for views and connectors.

- reads are predicate queries over the committed store snapshot, in the default order
- writes check boundary input (blank titles/names) and forward to the lifecycle manager
- subscribe() replays the current result set and re-emits after every commit
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from .lifecycle import CompletionResult, TaskLifecycle
from .task_feed import Subscription
from .task_models import (
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    Category,
    RecurrenceType,
    Task,
    TaskPriority,
)
from .task_queries import TaskQuery, apply_query

logger = logging.getLogger(__name__)


def _require_text(value: str | None, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required")
    return text


class TaskRepository:
    def __init__(self, lifecycle: TaskLifecycle) -> None:
        self._lifecycle = lifecycle
        self._store = lifecycle.store

    # ---- queries ----

    async def fetch(
        self,
        query: TaskQuery,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Task]:
        tasks = await self._store.query_tasks()
        return apply_query(tasks, query, self._lifecycle.now(), limit=limit, offset=offset)

    async def all_tasks(self, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.all(), **page)

    async def tasks_for_category(self, category_id: str, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.for_category(category_id), **page)

    async def completed_tasks(self, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.completed(), **page)

    async def incomplete_tasks(self, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.incomplete(), **page)

    async def overdue_tasks(self, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.overdue(), **page)

    async def tasks_due_today(self, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.due_today(), **page)

    async def tasks_due_tomorrow(self, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.due_tomorrow(), **page)

    async def search_tasks(self, text: str, **page: Any) -> list[Task]:
        return await self.fetch(TaskQuery.search(text), **page)

    async def get_task(self, task_id: str) -> Task | None:
        return await self._store.get_task(task_id)

    async def subtasks_of(self, task_id: str) -> list[Task]:
        """Direct subtasks, oldest first."""
        return await self._store.subtasks(task_id)

    async def completion_percentage(self, task_id: str) -> float:
        task = await self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task.completion_percentage(await self._store.subtasks(task_id))

    async def list_categories(self) -> list[Category]:
        return await self._store.list_categories()

    async def get_category(self, category_id: str) -> Category | None:
        return await self._store.get_category(category_id)

    async def overdue_count(self) -> int:
        """Badge count: open tasks whose due date has passed."""
        return len(await self.overdue_tasks())

    def subscribe(self, query: TaskQuery | None = None) -> Subscription[list[Task]]:
        q = query or TaskQuery.all()
        logger.debug("New subscription query=%s", q.name)
        return self._store.subscribe(lambda: self.fetch(q))

    # ---- task writes ----

    async def create_task(
        self,
        title: str,
        *,
        notes: str | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        due_date: datetime | None = None,
        category_id: str | None = None,
        parent_id: str | None = None,
        recurrence_type: RecurrenceType = RecurrenceType.NONE,
    ) -> Task:
        return await self._lifecycle.create_task(
            title=_require_text(title, "title"),
            notes=notes,
            priority=priority,
            due_date=due_date,
            category_id=category_id,
            parent_id=parent_id,
            recurrence_type=recurrence_type,
        )

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        if "title" in changes:
            changes["title"] = _require_text(changes["title"], "title")
        return await self._lifecycle.update_task(task_id, **changes)

    async def delete_task(self, task_id: str) -> list[str]:
        return await self._lifecycle.delete_task(task_id)

    async def toggle_completion(self, task_id: str) -> CompletionResult:
        return await self._lifecycle.toggle_completion(task_id)

    # ---- category writes ----

    async def create_category(
        self,
        name: str,
        color_hex: str = DEFAULT_CATEGORY_COLOR,
        icon: str = DEFAULT_CATEGORY_ICON,
    ) -> Category:
        return await self._lifecycle.create_category(
            name=_require_text(name, "category name"),
            color_hex=color_hex,
            icon=icon,
        )

    async def update_category(self, category_id: str, **changes: Any) -> Category:
        if "name" in changes:
            changes["name"] = _require_text(changes["name"], "category name")
        return await self._lifecycle.update_category(category_id, **changes)

    async def delete_category(self, category_id: str) -> list[str]:
        return await self._lifecycle.delete_category(category_id)

    # ---- bulk ----

    async def delete_tasks_in_category(self, category_id: str) -> int:
        return await self._lifecycle.delete_tasks_in_category(category_id)

    async def clear_all_tasks(self) -> int:
        return await self._lifecycle.clear_all_tasks()

    async def clear_all_data(self) -> None:
        await self._lifecycle.clear_all_data()

    # ---- reminders ----

    async def pending_reminder_ids(self) -> list[str]:
        return await self._lifecycle.reminders.pending_ids()

    async def reschedule_all_reminders(self) -> int:
        return await self._lifecycle.reschedule_all_reminders()
