# src/task_reminder/tasks/recurrence.py

"""
Recurrence expander.

Computes the next due date of a recurring task. All calendar math happens in
an explicit timezone so "same weekday" / "same day-of-month" mean what the
user sees, not what the server's local clock says.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, tzinfo

from .task_models import RecurrencePattern, RecurrenceType, Task

logger = logging.getLogger(__name__)

# Guard against patterns that can never pass not_before (e.g. a task years overdue).
_MAX_STEPS = 10_000


@dataclass(slots=True, frozen=True)
class RecurrenceOutcome:
    """
    Result of advancing a recurring task.

    finished=True means the next occurrence would pass end_at: the task should
    be completed and no further occurrences generated.
    """

    finished: bool
    due_at: float | None = None
    reminder_time: float | None = None
    pattern: RecurrencePattern | None = None


def _js_weekday(dt: datetime) -> int:
    # Python: Monday=0; pattern: Sunday=0.
    return (dt.weekday() + 1) % 7


def _add_months(dt: datetime, months: int, anchor_day: int) -> datetime:
    total = dt.month - 1 + months
    year = dt.year + total // 12
    month = total % 12 + 1
    last = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(anchor_day, last))


def _next_weekly(dt: datetime, interval: int, days: tuple[int, ...]) -> datetime:
    if not days:
        return dt + timedelta(weeks=interval)

    current = _js_weekday(dt)
    later_this_week = [d for d in days if d > current]
    if later_this_week:
        return dt + timedelta(days=later_this_week[0] - current)

    # Jump to the first listed day of the week `interval` weeks ahead.
    week_start = dt - timedelta(days=current)
    return week_start + timedelta(weeks=interval, days=days[0])


def next_local(dt: datetime, pattern: RecurrencePattern, anchor_day: int) -> datetime:
    interval = max(1, int(pattern.interval))
    if pattern.type == RecurrenceType.DAILY:
        return dt + timedelta(days=interval)
    if pattern.type == RecurrenceType.WEEKLY:
        return _next_weekly(dt, interval, pattern.days_of_week)
    if pattern.type == RecurrenceType.MONTHLY:
        return _add_months(dt, interval, anchor_day)
    if pattern.type == RecurrenceType.YEARLY:
        return _add_months(dt, 12 * interval, anchor_day)
    raise ValueError(f"unknown recurrence type: {pattern.type!r}")


def next_due_at(
    due_at: float,
    pattern: RecurrencePattern,
    tz: tzinfo,
    *,
    not_before: float | None = None,
) -> float:
    """
    Next due date strictly after due_at.

    With not_before, keep stepping until the result is also strictly after it,
    so a long-overdue task does not replay every missed occurrence.
    """
    local = datetime.fromtimestamp(float(due_at), tz=tz)
    anchor = pattern.anchor_day or local.day

    nxt = next_local(local, pattern, anchor)
    steps = 1
    while not_before is not None and nxt.timestamp() <= not_before and steps < _MAX_STEPS:
        nxt = next_local(nxt, pattern, anchor)
        steps += 1
    return nxt.timestamp()


def advance(task: Task, tz: tzinfo, *, now_ts: float | None = None) -> RecurrenceOutcome:
    """
    Compute the next occurrence for a recurring task.

    An explicit reminder_time moves by the same delta as the due date; an
    offset-based reminder needs no change because it is derived from due_at.
    """
    pattern = task.recurrence
    if not task.is_recurring or pattern is None:
        raise ValueError(f"task {task.id} is not recurring")

    if pattern.anchor_day is None and pattern.type in (RecurrenceType.MONTHLY, RecurrenceType.YEARLY):
        pattern = replace(pattern, anchor_day=datetime.fromtimestamp(task.due_at, tz=tz).day)

    new_due = next_due_at(task.due_at, pattern, tz, not_before=now_ts)

    if pattern.end_at is not None and new_due > pattern.end_at:
        logger.debug("Recurrence finished task_id=%s next=%s end_at=%s", task.id, new_due, pattern.end_at)
        return RecurrenceOutcome(finished=True, pattern=pattern)

    reminder_time = task.reminder_time
    if reminder_time is not None:
        reminder_time = reminder_time + (new_due - task.due_at)

    return RecurrenceOutcome(finished=False, due_at=new_due, reminder_time=reminder_time, pattern=pattern)
