# src/taskflow/tasks/lifecycle.py

"""
Task lifecycle manager.

Every mutation runs as one store write transaction:
- create / update / delete validate references (and parent cycles) before writing
- toggle_completion flips the flag, forces subtasks complete, spawns the next
  recurring instance (skipping it when the series already has one on that
  date) and re-evaluates the ancestor chain; all of it commits or none of it does

Reminders are reconciled only after the commit. Their failures are reported by
the scheduler and never undo the data change.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from ..core.ports import Clock
from ..notifications.reminders import ReminderScheduler
from .recurrence import next_due_date
from .task_models import (
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    Category,
    RecurrenceType,
    Task,
    TaskPriority,
)
from .task_store import StoreTransaction, TaskStore

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class CompletionResult:
    """Outcome of toggle_completion once the cascade has settled."""

    task: Task
    spawned: list[Task]
    completed_ids: list[str]
    reopened_ids: list[str]


@dataclass(slots=True)
class _Cascade:
    now: datetime
    completed: dict[str, Task] = field(default_factory=dict)
    reopened: dict[str, Task] = field(default_factory=dict)
    spawned: list[Task] = field(default_factory=list)
    latest: dict[str, Task] = field(default_factory=dict)

    def stamp(self, task: Task) -> datetime:
        return max(self.now, task.created_at)

    def record(self, task: Task) -> None:
        self.latest[task.id] = task
        if task.is_completed:
            self.completed[task.id] = task
            self.reopened.pop(task.id, None)
        else:
            self.reopened[task.id] = task
            self.completed.pop(task.id, None)


class TaskLifecycle:
    def __init__(
        self,
        store: TaskStore,
        reminders: ReminderScheduler,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._reminders = reminders
        self._clock = clock or (lambda: datetime.now(store.tz))

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def reminders(self) -> ReminderScheduler:
        return self._reminders

    def now(self) -> datetime:
        return self._aware(self._clock())

    def _aware(self, dt: datetime) -> datetime:
        return dt if dt.tzinfo is not None else dt.replace(tzinfo=self._store.tz)

    # ---- validation ----

    @staticmethod
    def _require_task(tx: StoreTransaction, task_id: str) -> Task:
        task = tx.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    @staticmethod
    def _require_category(tx: StoreTransaction, category_id: str) -> Category:
        category = tx.get_category(category_id)
        if category is None:
            raise NotFoundError("category", category_id)
        return category

    def _check_parent(self, tx: StoreTransaction, task_id: str, parent_id: str) -> None:
        """Reject a parent that is missing or that has task_id among its ancestors."""
        if parent_id == task_id:
            raise ValidationError("a task cannot be its own parent")
        self._require_task(tx, parent_id)

        seen: set[str] = set()
        pid: str | None = parent_id
        while pid is not None and pid not in seen:
            if pid == task_id:
                raise ValidationError(f"moving {task_id} under {parent_id} would create a cycle")
            seen.add(pid)
            ancestor = tx.get_task(pid)
            pid = ancestor.parent_id if ancestor is not None else None

    # ---- cascade ----

    def _complete(self, tx: StoreTransaction, task: Task, cascade: _Cascade) -> Task:
        done = replace(task, is_completed=True, updated_at=cascade.stamp(task))
        tx.update_task(done)
        cascade.record(done)

        for sub in tx.subtasks(task.id):
            if not sub.is_completed and sub.id not in cascade.latest:
                self._complete(tx, sub, cascade)

        if done.has_recurrence:
            done = self._spawn_next(tx, done, cascade)
        return done

    def _reopen(self, tx: StoreTransaction, task: Task, cascade: _Cascade) -> Task:
        reopened = replace(task, is_completed=False, updated_at=cascade.stamp(task))
        tx.update_task(reopened)
        cascade.record(reopened)
        return reopened

    def _spawn_next(self, tx: StoreTransaction, task: Task, cascade: _Cascade) -> Task:
        if task.due_date is None:
            logger.debug("Recurring task %s has no due date; nothing to spawn", task.id)
            return task

        if task.series_id is None:
            task = replace(task, series_id=task.id)
            tx.update_task(task)
            cascade.record(task)
        series_id = task.series_id or task.id

        due = next_due_date(task.due_date, task.recurrence_type)
        existing = tx.find_series_instance(series_id, due)
        if existing is not None:
            logger.info(
                "Series %s already has an instance due %s (id=%s); not spawning",
                series_id,
                due,
                existing.id,
            )
            return task

        now = cascade.now
        instance = Task(
            id=_new_id(),
            title=task.title,
            notes=task.notes,
            priority=task.priority,
            due_date=due,
            is_completed=False,
            created_at=now,
            updated_at=now,
            category_id=task.category_id,
            parent_id=None,
            is_recurring=True,
            recurrence_type=task.recurrence_type,
            series_id=series_id,
        )
        tx.insert_task(instance)
        cascade.spawned.append(instance)
        logger.info("Spawned recurring instance id=%s series=%s due=%s", instance.id, series_id, due)
        return task

    def _reevaluate_ancestors(self, tx: StoreTransaction, parent_id: str | None, cascade: _Cascade) -> None:
        seen: set[str] = set()
        pid = parent_id
        while pid is not None and pid not in seen:
            seen.add(pid)
            parent = tx.get_task(pid)
            if parent is None:
                return
            subs = tx.subtasks(pid)
            if not subs:
                return
            all_done = all(s.is_completed for s in subs)
            if all_done and not parent.is_completed:
                self._complete(tx, parent, cascade)
            elif not all_done and parent.is_completed:
                self._reopen(tx, parent, cascade)
            else:
                return
            pid = parent.parent_id

    async def _reconcile_reminders(self, cascade: _Cascade) -> None:
        if cascade.completed:
            await self._reminders.cancel_many(cascade.completed)
        for task in cascade.reopened.values():
            await self._reminders.schedule_for(task)
        for task in cascade.spawned:
            await self._reminders.schedule_for(task)

    # ---- tasks ----

    async def create_task(
        self,
        *,
        title: str,
        notes: str | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        due_date: datetime | None = None,
        category_id: str | None = None,
        parent_id: str | None = None,
        recurrence_type: RecurrenceType = RecurrenceType.NONE,
        is_recurring: bool | None = None,
    ) -> Task:
        now = self.now()
        kind = RecurrenceType(recurrence_type)
        recurring = (kind != RecurrenceType.NONE) if is_recurring is None else bool(is_recurring)
        task_id = _new_id()
        task = Task(
            id=task_id,
            title=title,
            notes=notes,
            priority=TaskPriority(priority),
            due_date=self._aware(due_date) if due_date is not None else None,
            is_completed=False,
            created_at=now,
            updated_at=now,
            category_id=category_id,
            parent_id=parent_id,
            is_recurring=recurring,
            recurrence_type=kind,
            series_id=task_id if recurring else None,
        )

        def _tx(tx: StoreTransaction) -> _Cascade:
            if category_id is not None:
                self._require_category(tx, category_id)
            if parent_id is not None:
                self._check_parent(tx, task_id, parent_id)
            tx.insert_task(task)
            cascade = _Cascade(now)
            # A new open subtask reopens a completed parent chain.
            self._reevaluate_ancestors(tx, parent_id, cascade)
            return cascade

        cascade = await self._store.write(_tx)
        logger.info("Task created id=%s parent=%s recurrence=%s", task.id, parent_id, kind.value)

        await self._reminders.schedule_for(task)
        await self._reconcile_reminders(cascade)
        return task

    async def update_task(
        self,
        task_id: str,
        *,
        title: str = _UNSET,
        notes: str | None = _UNSET,
        priority: TaskPriority = _UNSET,
        due_date: datetime | None = _UNSET,
        category_id: str | None = _UNSET,
        parent_id: str | None = _UNSET,
        recurrence_type: RecurrenceType = _UNSET,
        is_recurring: bool = _UNSET,
    ) -> Task:
        now = self.now()

        def _tx(tx: StoreTransaction) -> tuple[Task, Task, _Cascade]:
            current = self._require_task(tx, task_id)
            changes: dict[str, Any] = {}

            if title is not _UNSET:
                changes["title"] = title
            if notes is not _UNSET:
                changes["notes"] = notes
            if priority is not _UNSET:
                changes["priority"] = TaskPriority(priority)
            if due_date is not _UNSET:
                changes["due_date"] = self._aware(due_date) if due_date is not None else None
            if category_id is not _UNSET:
                if category_id is not None:
                    self._require_category(tx, category_id)
                changes["category_id"] = category_id
            if parent_id is not _UNSET:
                if parent_id is not None:
                    self._check_parent(tx, task_id, parent_id)
                changes["parent_id"] = parent_id

            if recurrence_type is not _UNSET or is_recurring is not _UNSET:
                kind = (
                    RecurrenceType(recurrence_type)
                    if recurrence_type is not _UNSET
                    else current.recurrence_type
                )
                recurring = (kind != RecurrenceType.NONE) if is_recurring is _UNSET else bool(is_recurring)
                changes["recurrence_type"] = kind
                changes["is_recurring"] = recurring
                if recurring and current.series_id is None:
                    changes["series_id"] = current.id

            updated = replace(current, **changes, updated_at=max(now, current.created_at))
            moved = (updated.series_id, updated.due_date) != (current.series_id, current.due_date)
            rejoined = updated.is_recurring and not current.is_recurring
            if (moved or rejoined) and updated.series_id is not None and updated.due_date is not None:
                clash = tx.find_series_instance(updated.series_id, updated.due_date, exclude_id=task_id)
                if clash is not None:
                    raise ValidationError(
                        f"series {updated.series_id} already has an instance due {updated.due_date} (id={clash.id})"
                    )
            tx.update_task(updated)

            cascade = _Cascade(now)
            if updated.parent_id != current.parent_id:
                self._reevaluate_ancestors(tx, current.parent_id, cascade)
                self._reevaluate_ancestors(tx, updated.parent_id, cascade)
            return current, updated, cascade

        before, after, cascade = await self._store.write(_tx)
        logger.info("Task updated id=%s", task_id)

        if (before.due_date, before.title, before.notes) != (after.due_date, after.title, after.notes):
            if self._reminders.is_eligible(after):
                await self._reminders.schedule_for(after)
            else:
                await self._reminders.cancel_for(after)
        await self._reconcile_reminders(cascade)
        return after

    async def delete_task(self, task_id: str) -> list[str]:
        """Delete one task. Direct subtasks become root-level; recurring successors are kept."""

        def _tx(tx: StoreTransaction) -> list[str]:
            self._require_task(tx, task_id)
            return tx.delete_task(task_id)

        orphans = await self._store.write(_tx)
        logger.info("Task deleted id=%s orphaned_subtasks=%s", task_id, len(orphans))
        await self._reminders.cancel_for(task_id)
        return orphans

    async def toggle_completion(self, task_id: str) -> CompletionResult:
        now = self.now()

        def _tx(tx: StoreTransaction) -> tuple[Task, _Cascade]:
            task = self._require_task(tx, task_id)
            cascade = _Cascade(now)
            if task.is_completed:
                self._reopen(tx, task, cascade)
            else:
                self._complete(tx, task, cascade)
            self._reevaluate_ancestors(tx, task.parent_id, cascade)
            return cascade.latest[task_id], cascade

        task, cascade = await self._store.write(_tx)
        logger.info(
            "Task %s -> %s (completed=%s reopened=%s spawned=%s)",
            task_id,
            "completed" if task.is_completed else "active",
            len(cascade.completed),
            len(cascade.reopened),
            len(cascade.spawned),
        )

        await self._reconcile_reminders(cascade)
        return CompletionResult(
            task=task,
            spawned=list(cascade.spawned),
            completed_ids=list(cascade.completed),
            reopened_ids=list(cascade.reopened),
        )

    # ---- categories ----

    async def create_category(
        self,
        *,
        name: str,
        color_hex: str = DEFAULT_CATEGORY_COLOR,
        icon: str = DEFAULT_CATEGORY_ICON,
    ) -> Category:
        now = self.now()

        def _tx(tx: StoreTransaction) -> Category:
            category = Category(
                id=_new_id(),
                name=name,
                color_hex=color_hex,
                icon=icon,
                sort_order=tx.count_categories(),
                created_at=now,
            )
            tx.insert_category(category)
            return category

        category = await self._store.write(_tx)
        logger.info("Category created id=%s name=%s", category.id, category.name)
        return category

    async def update_category(
        self,
        category_id: str,
        *,
        name: str = _UNSET,
        color_hex: str = _UNSET,
        icon: str = _UNSET,
        sort_order: int = _UNSET,
    ) -> Category:
        changes: dict[str, Any] = {
            k: v
            for k, v in (("name", name), ("color_hex", color_hex), ("icon", icon), ("sort_order", sort_order))
            if v is not _UNSET
        }

        def _tx(tx: StoreTransaction) -> Category:
            updated = replace(self._require_category(tx, category_id), **changes)
            tx.update_category(updated)
            return updated

        return await self._store.write(_tx)

    async def delete_category(self, category_id: str) -> list[str]:
        """Delete a category; its tasks survive with no category. Returns their ids."""
        now = self.now()

        def _tx(tx: StoreTransaction) -> list[str]:
            self._require_category(tx, category_id)
            return tx.delete_category(category_id, updated_at=now)

        detached = await self._store.write(_tx)
        logger.info("Category deleted id=%s detached_tasks=%s", category_id, len(detached))
        return detached

    # ---- bulk ----

    async def delete_tasks_in_category(self, category_id: str) -> int:
        def _tx(tx: StoreTransaction) -> list[str]:
            self._require_category(tx, category_id)
            ids = [t.id for t in tx.tasks_in_category(category_id)]
            tx.delete_tasks(ids)
            return ids

        ids = await self._store.write(_tx)
        await self._reminders.cancel_many(ids)
        logger.info("Deleted %s tasks from category %s", len(ids), category_id)
        return len(ids)

    async def clear_all_tasks(self) -> int:
        n = await self._store.write(lambda tx: tx.delete_all_tasks())
        await self._reminders.cancel_all()
        logger.info("Cleared all tasks (%s)", n)
        return n

    async def clear_all_data(self) -> None:
        def _tx(tx: StoreTransaction) -> None:
            tx.delete_all_tasks()
            tx.delete_all_categories()

        await self._store.write(_tx)
        await self._reminders.cancel_all()
        logger.info("Cleared all tasks and categories")

    async def reschedule_all_reminders(self) -> int:
        tasks = await self._store.query_tasks(lambda t: not t.is_completed and t.due_date is not None)
        return await self._reminders.reschedule_all(tasks)
