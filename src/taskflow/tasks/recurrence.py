# src/taskflow/tasks/recurrence.py

"""
Recurrence calculator.

Pure date arithmetic on the anchor's own wall clock: hour/minute/second and
tzinfo are carried over unchanged, only the calendar date moves.

Month-end handling:
- monthly keeps the day-of-month, clamped to the target month's last day
  (Jan 31 -> Feb 28/29, Mar 31 -> Apr 30).
- yearly keeps month/day; Feb 29 lands on Feb 28 when the target year is not leap.

The clamp is applied against the anchor only, so a series that started on the
31st drifts to the 28th/30th after a short month and stays there.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from .task_models import RecurrenceType


def _clamped(anchor: datetime, year: int, month: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return anchor.replace(year=year, month=month, day=min(anchor.day, last_day))


def next_due_date(anchor: datetime, kind: RecurrenceType) -> datetime:
    if kind == RecurrenceType.DAILY:
        return anchor + timedelta(days=1)
    if kind == RecurrenceType.WEEKLY:
        return anchor + timedelta(days=7)
    if kind == RecurrenceType.MONTHLY:
        year, month = divmod(anchor.month, 12)
        return _clamped(anchor, anchor.year + year, month + 1)
    if kind == RecurrenceType.YEARLY:
        return _clamped(anchor, anchor.year + 1, anchor.month)
    return anchor
