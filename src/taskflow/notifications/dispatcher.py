# src/taskflow/notifications/dispatcher.py

from __future__ import annotations

"""
Reminder dispatcher.

A small polling loop that:
- takes due reminders from the local notification centre,
- sends them via an injected messenger port,
- marks them delivered, or puts them back with a delay on failure.

Transport (formatting, where the text ends up) belongs to the connector, not the dispatcher.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from ..core.ports import Clock, OutboundMessenger, ReminderRequest
from .local_center import LocalNotificationCenter

logger = logging.getLogger(__name__)


def format_reminder(request: ReminderRequest) -> str:
    return f"Reminder: {request.title} - {request.body}"


async def dispatch_due(
    center: LocalNotificationCenter,
    messenger: OutboundMessenger,
    *,
    now: datetime,
    retry_delay_seconds: float = 60.0,
    batch_limit: int = 32,
) -> int:
    """One dispatcher tick. Returns the number of reminders delivered."""
    sent = 0
    for request in await center.take_due(now, limit=batch_limit):
        try:
            await messenger.send_text(text=format_reminder(request), reminder_id=request.id)
        except Exception:
            logger.exception("reminder send failed id=%s", request.id)
            retry = replace(request, fire_at=now + timedelta(seconds=retry_delay_seconds))
            if not await center.requeue(retry):
                logger.info("Reminder %s was cancelled during send; not retrying", request.id)
            continue

        sent += 1
        if await center.mark_delivered(request):
            logger.info("Reminder %s delivered", request.id)
        else:
            logger.info("Reminder %s delivered after it was cancelled", request.id)
    return sent


async def run_reminder_dispatcher(
        center: LocalNotificationCenter,
        messenger: OutboundMessenger,
        *,
        clock: Clock | None = None,
        interval_seconds: float = 15.0,
        retry_delay_seconds: float = 60.0,
        batch_limit: int = 32,
) -> None:
    """
    Simple polling dispatcher.

    Every interval_seconds deliver whatever is due. On send failure the
    reminder is pushed forward by retry_delay_seconds.

    To stop the dispatcher, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    retry_s = max(0.01, float(retry_delay_seconds))
    now_fn = clock or (lambda: datetime.now(UTC))

    while True:
        try:
            await dispatch_due(
                center,
                messenger,
                now=now_fn(),
                retry_delay_seconds=retry_s,
                batch_limit=batch_limit,
            )
        except Exception:
            logger.exception("reminder dispatch tick failed")

        await asyncio.sleep(sleep_s)
