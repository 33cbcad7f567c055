# src/task_reminder/tasks/task_api.py

from __future__ import annotations

"""
Owner-scoped task operations.

Every function takes the AppState and the acting owner. An id that does not
resolve raises NotFoundError; a task owned by somebody else raises
ForbiddenError. Day/week boundaries are computed in the state's timezone
unless one is passed explicitly.
"""

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, tzinfo
from typing import Any

from ..core.clock import to_datetime
from ..core.errors import ForbiddenError, ValidationError
from ..core.state import AppState
from . import recurrence
from .task_models import Category, Priority, Subtask, Task, TaskStatus
from .transitions import coerce_fields

logger = logging.getLogger(__name__)

_CLOSED = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


@dataclass(slots=True, frozen=True)
class TaskPage:
    tasks: list[Task]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def _owned(state: AppState, owner: str, task_id: int) -> Task:
    task = state.task_store.get_task(task_id)
    if task.owner != owner:
        raise ForbiddenError(f"task {task_id} belongs to another user")
    return task


def _start_of_day(now_ts: float, tz: tzinfo) -> datetime:
    local = to_datetime(now_ts, tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def _next_midnight(day: datetime, days: int) -> datetime:
    # Aware arithmetic is wall-clock: midnight stays midnight across DST.
    return day + timedelta(days=days)


# ---- CRUD ----


def create_task(state: AppState, owner: str, *, title: str, due_at: float, **fields: Any) -> Task:
    values = coerce_fields({"title": title, "due_at": due_at, **fields})
    now = state.clock.now()
    task = Task(id=0, owner=owner, created_at=now, updated_at=now, **values)
    created = state.task_store.add_task(task, now_ts=now)
    logger.info("Task created id=%s owner=%s", created.id, owner)
    return created


def get_task(state: AppState, owner: str, task_id: int) -> Task:
    return _owned(state, owner, task_id)


def update_task(state: AppState, owner: str, task_id: int, changes: dict[str, Any]) -> Task:
    _owned(state, owner, task_id)
    return state.task_store.update_task(task_id, changes, now_ts=state.clock.now(), tz=state.tz)


def delete_task(state: AppState, owner: str, task_id: int) -> None:
    _owned(state, owner, task_id)
    state.task_store.delete_task(task_id)


# ---- status ----


def complete_task(state: AppState, owner: str, task_id: int) -> Task:
    """
    Mark a task done.

    A recurring task moves on to its next occurrence instead (pending again),
    unless that occurrence would pass the pattern's end date, in which case
    it is completed for good.
    """
    task = _owned(state, owner, task_id)
    now = state.clock.now()
    if task.is_recurring and task.recurrence is not None and task.status not in _CLOSED:
        outcome = recurrence.advance(task, state.tz)
        applied = state.task_store.apply_recurrence(
            task_id,
            expected_due_at=task.due_at,
            new_due_at=outcome.due_at,
            reminder_time=outcome.reminder_time,
            pattern=outcome.pattern,
            finished=outcome.finished,
            now_ts=now,
        )
        if not applied:
            # A scan tick advanced this occurrence first; return what it left.
            logger.debug("Recurrence not applied task_id=%s expected_due_at=%s", task_id, task.due_at)
        return state.task_store.get_task(task_id)
    return state.task_store.update_task(task_id, {"status": TaskStatus.COMPLETED}, now_ts=now, tz=state.tz)


def reopen_task(state: AppState, owner: str, task_id: int) -> Task:
    _owned(state, owner, task_id)
    return state.task_store.update_task(task_id, {"status": TaskStatus.PENDING}, now_ts=state.clock.now(), tz=state.tz)


def toggle_complete(state: AppState, owner: str, task_id: int) -> Task:
    task = _owned(state, owner, task_id)
    if task.status == TaskStatus.COMPLETED:
        return reopen_task(state, owner, task_id)
    return complete_task(state, owner, task_id)


def set_status(state: AppState, owner: str, task_id: int, status: TaskStatus | str) -> Task:
    _owned(state, owner, task_id)
    return state.task_store.update_task(task_id, {"status": status}, now_ts=state.clock.now(), tz=state.tz)


# ---- subtasks ----


def add_subtask(state: AppState, owner: str, task_id: int, title: str) -> Task:
    task = _owned(state, owner, task_id)
    subtasks = [*task.subtasks, Subtask(title=(title or "").strip())]
    return state.task_store.update_task(task_id, {"subtasks": subtasks}, now_ts=state.clock.now(), tz=state.tz)


def toggle_subtask(state: AppState, owner: str, task_id: int, index: int) -> Task:
    """Flip one subtask; finishing the last open one completes the task."""
    task = _owned(state, owner, task_id)
    if not 0 <= index < len(task.subtasks):
        raise ValidationError(f"subtask index {index} out of range")
    subtasks = list(task.subtasks)
    sub = subtasks[index]
    subtasks[index] = replace(sub, completed=not sub.completed, completed_at=None)
    return state.task_store.update_task(task_id, {"subtasks": subtasks}, now_ts=state.clock.now(), tz=state.tz)


# ---- queries ----


def list_tasks(
    state: AppState,
    owner: str,
    *,
    status: TaskStatus | str | None = None,
    category: Category | str | None = None,
    priority: Priority | str | None = None,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    include_archived: bool = False,
) -> TaskPage:
    filters = coerce_fields(
        {k: v for k, v in {"status": status, "category": category, "priority": priority}.items() if v is not None}
    )
    page = max(1, int(page))
    limit = max(1, int(limit))
    tasks = state.task_store.list_tasks(
        owner,
        **filters,
        include_archived=include_archived,
        order_by=sort_by,
        descending=str(sort_order).lower() == "desc",
        limit=limit,
        offset=(page - 1) * limit,
    )
    total = state.task_store.count_matching(owner, **filters, include_archived=include_archived)
    return TaskPage(tasks=tasks, page=page, limit=limit, total=total)


def tasks_due_today(state: AppState, owner: str, *, tz: tzinfo | None = None) -> list[Task]:
    tz = tz or state.tz
    start = _start_of_day(state.clock.now(), tz)
    end = _next_midnight(start, 1)
    return state.task_store.list_tasks(owner, due_from=start.timestamp(), due_before=end.timestamp())


def tasks_due_this_week(state: AppState, owner: str, *, tz: tzinfo | None = None) -> list[Task]:
    """Sunday-to-Saturday week containing now."""
    tz = tz or state.tz
    today = _start_of_day(state.clock.now(), tz)
    days_since_sunday = (today.weekday() + 1) % 7
    start = _next_midnight(today, -days_since_sunday)
    end = _next_midnight(start, 7)
    return state.task_store.list_tasks(owner, due_from=start.timestamp(), due_before=end.timestamp())


def tasks_in_range(state: AppState, owner: str, start_ts: float | None, end_ts: float | None) -> list[Task]:
    """Both bounds inclusive."""
    if start_ts is None or end_ts is None:
        raise ValidationError("start and end dates are required")
    if end_ts < start_ts:
        raise ValidationError("end date is before start date")
    return state.task_store.list_tasks(owner, due_from=start_ts, due_until=end_ts)


def overdue_tasks(state: AppState, owner: str) -> list[Task]:
    return state.task_store.list_tasks(
        owner,
        due_before=state.clock.now(),
        exclude_statuses=_CLOSED,
    )


def task_stats(state: AppState, owner: str) -> dict[str, Any]:
    return state.task_store.stats(owner, now_ts=state.clock.now())
