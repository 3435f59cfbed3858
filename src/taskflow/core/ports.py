# src/taskflow/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the platform notification service and outbound transports
swappable and makes testing easier.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

Clock = Callable[[], datetime]
# Returns a timezone-aware "now"; injected so tests can pin time.


@dataclass(frozen=True, slots=True)
class ReminderRequest:
    """
    One local reminder, keyed by task id.

    title/body are a snapshot taken when the reminder was scheduled; later
    edits to the task do not change an already registered request.
    """

    id: str
    title: str
    body: str
    fire_at: datetime
    category: str
    thread: str = "task-notifications"


class NotificationCenter(Protocol):
    """
    Platform notification service (OS notification centre or a stand-in).

    add() with an id that is already pending replaces the pending request.
    """

    def request_permission(self) -> Awaitable[bool]: ...
    def add(self, request: ReminderRequest) -> Awaitable[None]: ...
    def remove_pending(self, ids: Iterable[str]) -> Awaitable[None]: ...
    def remove_delivered(self, ids: Iterable[str]) -> Awaitable[None]: ...
    def remove_all(self) -> Awaitable[None]: ...
    def pending_ids(self) -> Awaitable[list[str]]: ...


class OutboundMessenger(Protocol):
    """
    Connector-side port: how the reminder dispatcher delivers a due reminder.

    The connector decides formatting and transport (console line, push, ...).
    """

    def send_text(self, *, text: str, reminder_id: str | None = None) -> Awaitable[None]: ...
