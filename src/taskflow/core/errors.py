# src/taskflow/core/errors.py

from __future__ import annotations


class TaskflowError(Exception):
    """Base class for errors raised by the task core."""


class StorageError(TaskflowError):
    """A store read/write failed; the store is left as it was before the call."""


class ValidationError(TaskflowError):
    """A request was rejected before any write (blank title, bad reference, cycle)."""


class NotFoundError(ValidationError):
    """The referenced task or category does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id
