# src/taskflow/notifications/reminders.py

"""
Reminder scheduler.

Keeps at most one pending local reminder per task id:
- schedule_for() always cancels before adding (idempotent reschedule)
- calls run after the store commit and never raise; platform refusals are
  logged and recorded on the scheduler instead
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, tzinfo

from ..core.ports import Clock, NotificationCenter, ReminderRequest
from ..tasks.task_models import Task, TaskPriority

logger = logging.getLogger(__name__)

MAX_NOTES_IN_BODY = 50
DEFAULT_BODY = "Task is due"

_PRIORITY_STYLE: dict[TaskPriority, tuple[str, str]] = {
    TaskPriority.HIGH: ("[!!!]", "HIGH_PRIORITY_TASK"),
    TaskPriority.MEDIUM: ("[!!]", "MEDIUM_PRIORITY_TASK"),
    TaskPriority.LOW: ("[!]", "LOW_PRIORITY_TASK"),
}


@dataclass(frozen=True, slots=True)
class ReminderFailure:
    task_id: str | None
    operation: str
    reason: str
    at: float


def build_request(task: Task) -> ReminderRequest | None:
    if task.due_date is None:
        return None
    marker, category = _PRIORITY_STYLE.get(task.priority, _PRIORITY_STYLE[TaskPriority.MEDIUM])
    notes = (task.notes or "").strip()
    if notes and len(notes) <= MAX_NOTES_IN_BODY:
        body = notes
    else:
        body = f"{marker} {DEFAULT_BODY}"
    return ReminderRequest(
        id=task.id,
        title=task.title or "Task",
        body=body,
        fire_at=task.due_date,
        category=category,
    )


class ReminderScheduler:
    def __init__(
        self,
        center: NotificationCenter,
        *,
        clock: Clock | None = None,
        tz: tzinfo = UTC,
    ) -> None:
        self._center = center
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz))
        self._lock = asyncio.Lock()
        self.permission_granted: bool | None = None
        self.failures: list[ReminderFailure] = []

    @property
    def last_failure(self) -> ReminderFailure | None:
        return self.failures[-1] if self.failures else None

    def _report(self, task_id: str | None, operation: str, reason: str) -> None:
        self.failures.append(ReminderFailure(task_id, operation, reason, time.time()))
        logger.warning("Reminder %s failed task_id=%s: %s", operation, task_id, reason)

    async def request_permission(self) -> bool:
        try:
            granted = bool(await self._center.request_permission())
        except Exception as e:
            logger.exception("Notification permission request failed")
            self._report(None, "permission", repr(e))
            granted = False
        self.permission_granted = granted
        if granted:
            logger.info("Notification permission granted")
        else:
            logger.warning("Notification permission denied")
        return granted

    def _aware(self, dt: datetime) -> datetime:
        return dt if dt.tzinfo is not None else dt.replace(tzinfo=self._tz)

    def now(self) -> datetime:
        return self._aware(self._clock())

    def is_eligible(self, task: Task) -> bool:
        if task.due_date is None or task.is_completed:
            return False
        return self._aware(task.due_date) > self.now()

    async def schedule_for(self, task: Task) -> bool:
        """Cancel-then-add. Returns True when a reminder is pending for task.id afterwards."""
        if not self.is_eligible(task):
            logger.debug("Reminder not scheduled task_id=%s (no future due date or completed)", task.id)
            return False

        if self.permission_granted is False:
            self._report(task.id, "schedule", "notification permission denied")
            return False

        request = build_request(task)
        if request is None:
            return False
        request = replace(request, fire_at=self._aware(request.fire_at))

        async with self._lock:
            await self._cancel_ids([task.id])
            try:
                await self._center.add(request)
            except Exception as e:
                self._report(task.id, "schedule", repr(e))
                return False

        logger.info("Scheduled reminder task_id=%s at %s", task.id, request.fire_at)
        return True

    async def _cancel_ids(self, ids: list[str]) -> None:
        if not ids:
            return
        try:
            await self._center.remove_pending(ids)
            await self._center.remove_delivered(ids)
        except Exception as e:
            self._report(ids[0] if len(ids) == 1 else None, "cancel", repr(e))

    async def cancel_for(self, task: Task | str) -> None:
        task_id = task if isinstance(task, str) else task.id
        async with self._lock:
            await self._cancel_ids([task_id])
        logger.debug("Cancelled reminder task_id=%s", task_id)

    async def cancel_many(self, task_ids: Iterable[str]) -> None:
        ids = list(dict.fromkeys(task_ids))
        async with self._lock:
            await self._cancel_ids(ids)

    async def cancel_all(self) -> None:
        async with self._lock:
            try:
                await self._center.remove_all()
            except Exception as e:
                self._report(None, "cancel_all", repr(e))
                return
        logger.info("Cancelled all reminders")

    async def pending_ids(self) -> list[str]:
        try:
            return list(await self._center.pending_ids())
        except Exception as e:
            self._report(None, "pending_ids", repr(e))
            return []

    async def reschedule_all(self, tasks: Iterable[Task]) -> int:
        """Drop every reminder, then schedule each eligible task again."""
        await self.cancel_all()
        n = 0
        for task in tasks:
            if await self.schedule_for(task):
                n += 1
        logger.info("Rescheduled %s reminders", n)
        return n
