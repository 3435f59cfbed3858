# src/taskflow/tasks/task_models.py

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum, StrEnum

DEFAULT_CATEGORY_COLOR = "#007AFF"
DEFAULT_CATEGORY_ICON = "folder"


class TaskPriority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2

    @classmethod
    def from_db(cls, raw: int | None) -> TaskPriority:
        try:
            return cls(int(raw if raw is not None else cls.MEDIUM))
        except ValueError:
            return cls.MEDIUM

    @property
    def title(self) -> str:
        return self.name.capitalize()


class RecurrenceType(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def from_db(cls, raw: str | None) -> RecurrenceType:
        if not raw:
            return cls.NONE
        try:
            return cls(raw)
        except ValueError:
            return cls.NONE


@dataclass(frozen=True, slots=True)
class Task:
    """
    Immutable snapshot of a stored task.

    Records are never mutated in place: the lifecycle manager writes a new
    version through the store and readers get fresh snapshots.
    Subtasks are not stored on the record; ask the store for tasks whose
    parent_id equals this id.
    """

    id: str
    title: str
    notes: str | None
    priority: TaskPriority
    due_date: datetime | None
    is_completed: bool
    created_at: datetime
    updated_at: datetime

    category_id: str | None = None
    parent_id: str | None = None

    is_recurring: bool = False
    recurrence_type: RecurrenceType = RecurrenceType.NONE
    series_id: str | None = None

    @property
    def has_recurrence(self) -> bool:
        return self.is_recurring and self.recurrence_type != RecurrenceType.NONE

    def is_overdue(self, now: datetime) -> bool:
        if self.due_date is None or self.is_completed:
            return False
        return self.due_date < now

    def completion_percentage(self, subtasks: Sequence[Task]) -> float:
        if not subtasks:
            return 1.0 if self.is_completed else 0.0
        done = sum(1 for t in subtasks if t.is_completed)
        return done / len(subtasks)


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    name: str
    color_hex: str
    icon: str
    sort_order: int
    created_at: datetime
