# src/taskflow/tasks/task_queries.py

"""
Named task predicates and the default list ordering.

A TaskQuery is evaluated against a snapshot plus "now", so a subscription
re-evaluating "due today" after midnight gets tomorrow's answer.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from .task_models import Task

TaskPredicate = Callable[[Task, datetime], bool]

# Stands in for "no due date" so undated tasks sort after every dated one.
_NO_DUE = float("inf")


def _day_bounds(now: datetime, offset_days: int) -> tuple[datetime, datetime]:
    start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo) + timedelta(days=offset_days)
    return start, start + timedelta(days=1)


def _due_within(task: Task, start: datetime, end: datetime) -> bool:
    return task.due_date is not None and start <= task.due_date < end


@dataclass(frozen=True, slots=True)
class TaskQuery:
    name: str
    predicate: TaskPredicate

    def matches(self, task: Task, now: datetime) -> bool:
        return self.predicate(task, now)

    @classmethod
    def all(cls) -> TaskQuery:
        return cls("all", lambda t, now: True)

    @classmethod
    def for_category(cls, category_id: str) -> TaskQuery:
        return cls(f"category:{category_id}", lambda t, now: t.category_id == category_id)

    @classmethod
    def completed(cls) -> TaskQuery:
        return cls("completed", lambda t, now: t.is_completed)

    @classmethod
    def incomplete(cls) -> TaskQuery:
        return cls("incomplete", lambda t, now: not t.is_completed)

    @classmethod
    def overdue(cls) -> TaskQuery:
        return cls("overdue", lambda t, now: t.is_overdue(now))

    @classmethod
    def due_today(cls) -> TaskQuery:
        return cls("due_today", lambda t, now: _due_within(t, *_day_bounds(now, 0)))

    @classmethod
    def due_tomorrow(cls) -> TaskQuery:
        return cls("due_tomorrow", lambda t, now: _due_within(t, *_day_bounds(now, 1)))

    @classmethod
    def search(cls, text: str) -> TaskQuery:
        needle = (text or "").casefold()

        def _match(t: Task, now: datetime) -> bool:
            if needle in t.title.casefold():
                return True
            return bool(t.notes) and needle in (t.notes or "").casefold()

        return cls(f"search:{text}", _match)

    @classmethod
    def subtasks_of(cls, parent_id: str) -> TaskQuery:
        return cls(f"subtasks:{parent_id}", lambda t, now: t.parent_id == parent_id)


def default_sort_key(task: Task) -> tuple[int, int, float, float]:
    """Incomplete first, then priority high->low, due ascending (undated last), newest first."""
    due = task.due_date.timestamp() if task.due_date is not None else _NO_DUE
    return (
        int(task.is_completed),
        -int(task.priority),
        due,
        -task.created_at.timestamp(),
    )


def apply_query(
    tasks: list[Task],
    query: TaskQuery,
    now: datetime,
    *,
    limit: int | None = None,
    offset: int = 0,
) -> list[Task]:
    out = sorted((t for t in tasks if query.matches(t, now)), key=default_sort_key)
    if offset:
        out = out[max(0, int(offset)) :]
    if limit is not None:
        out = out[: max(0, int(limit))]
    return out
