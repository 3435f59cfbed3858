# src/taskflow/notifications/local_center.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

from ..core.ports import ReminderRequest

logger = logging.getLogger(__name__)


class LocalNotificationCenter:
    """
    In-process notification centre.

    Stands in for the OS service: keeps pending and delivered requests keyed by
    id, replaces a pending request when the same id is added again, and hands
    due requests to the reminder dispatcher.

    Requests handed out by take_due() stay "in flight" until the dispatcher
    reports back through mark_delivered() or requeue(). Cancelling an in-flight
    id makes that report a no-op, so a cancelled reminder never comes back.
    """

    def __init__(self, *, permission: bool = True) -> None:
        self._permission = permission
        self._pending: dict[str, ReminderRequest] = {}
        self._delivered: dict[str, ReminderRequest] = {}
        self._in_flight: set[str] = set()
        self._cancelled: set[str] = set()
        self._lock = asyncio.Lock()

    async def request_permission(self) -> bool:
        return self._permission

    async def add(self, request: ReminderRequest) -> None:
        if not self._permission:
            raise PermissionError("notifications are not authorized")
        async with self._lock:
            self._pending[request.id] = request

    async def remove_pending(self, ids: Iterable[str]) -> None:
        async with self._lock:
            for i in ids:
                self._pending.pop(i, None)
                if i in self._in_flight:
                    self._cancelled.add(i)

    async def remove_delivered(self, ids: Iterable[str]) -> None:
        async with self._lock:
            for i in ids:
                self._delivered.pop(i, None)

    async def remove_all(self) -> None:
        async with self._lock:
            self._pending.clear()
            self._delivered.clear()
            self._cancelled.update(self._in_flight)

    async def pending_ids(self) -> list[str]:
        async with self._lock:
            return list(self._pending)

    async def get_pending(self, request_id: str) -> ReminderRequest | None:
        async with self._lock:
            return self._pending.get(request_id)

    async def delivered_ids(self) -> list[str]:
        async with self._lock:
            return list(self._delivered)

    async def take_due(self, now: datetime, *, limit: int = 32) -> list[ReminderRequest]:
        """Pop pending requests whose fire time has passed, oldest first, and mark them in flight."""
        async with self._lock:
            due = sorted(
                (r for r in self._pending.values() if r.fire_at <= now),
                key=lambda r: r.fire_at,
            )[: max(1, int(limit))]
            for r in due:
                del self._pending[r.id]
                self._in_flight.add(r.id)
                self._cancelled.discard(r.id)
            return due

    def _settle(self, request_id: str) -> bool:
        """End the in-flight state; False when the id was cancelled meanwhile."""
        self._in_flight.discard(request_id)
        if request_id in self._cancelled:
            self._cancelled.discard(request_id)
            logger.debug("Dropping reminder %s: cancelled while in flight", request_id)
            return False
        return True

    async def mark_delivered(self, request: ReminderRequest) -> bool:
        async with self._lock:
            if not self._settle(request.id):
                return False
            self._delivered[request.id] = request
            return True

    async def requeue(self, request: ReminderRequest) -> bool:
        """Put a request back unless it was cancelled in flight or a newer one was added meanwhile."""
        async with self._lock:
            if not self._settle(request.id):
                return False
            self._pending.setdefault(request.id, request)
            return True
