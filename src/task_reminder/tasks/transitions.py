# src/task_reminder/tasks/transitions.py

"""
Explicit task validation and state transitions.

The TaskStore calls these on every write path instead of relying on
implicit save hooks:
- validate_task(): field bounds, enums, recurrence sanity
- set_status(): keeps completed_at consistent with status
- apply_subtask_autocomplete(): non-empty + all done -> completed

All functions are pure: they return a new Task and never touch storage.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from ..core.errors import ValidationError
from .task_models import (
    DESCRIPTION_MAX,
    LOCATION_MAX,
    NOTES_MAX,
    TAG_MAX,
    TITLE_MAX,
    Category,
    Priority,
    RecurrencePattern,
    RecurrenceType,
    Subtask,
    Task,
    TaskStatus,
    parse_reminder_offset,
)

# Fields a caller may change through update_task(); everything else is owned
# by the store (ids, owner, audit fields) or by the transitions below.
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "due_at",
        "priority",
        "category",
        "status",
        "reminder_offset",
        "reminder_time",
        "is_recurring",
        "recurrence",
        "subtasks",
        "tags",
        "location",
        "notes",
        "estimated_minutes",
        "is_archived",
    }
)


def _coerce_enum(enum_cls, raw: Any, field_name: str):
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"{field_name} must be one of: {allowed}") from None


def _check_text(value: str | None, field_name: str, max_len: int, *, required: bool = False) -> None:
    if value is None:
        if required:
            raise ValidationError(f"{field_name} is required")
        return
    if required and not value.strip():
        raise ValidationError(f"{field_name} is required")
    if len(value) > max_len:
        raise ValidationError(f"{field_name} must be at most {max_len} characters")


def coerce_recurrence(raw: RecurrencePattern | dict[str, Any] | None) -> RecurrencePattern | None:
    if raw is None or isinstance(raw, RecurrencePattern):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("recurrence must be a mapping")
    rtype = _coerce_enum(RecurrenceType, raw.get("type"), "recurrence.type")
    try:
        interval = int(raw.get("interval", 1))
    except (TypeError, ValueError):
        raise ValidationError("recurrence.interval must be an integer") from None
    try:
        days = tuple(sorted({int(d) for d in raw.get("days_of_week") or []}))
    except (TypeError, ValueError):
        raise ValidationError("recurrence.days_of_week must be integers 0..6") from None
    end_at = raw.get("end_at")
    anchor = raw.get("anchor_day")
    return RecurrencePattern(
        type=rtype,
        interval=interval,
        days_of_week=days,
        end_at=float(end_at) if end_at is not None else None,
        anchor_day=int(anchor) if anchor is not None else None,
    )


def coerce_fields(changes: dict[str, Any]) -> dict[str, Any]:
    """Normalise raw caller input (strings, dicts) into model types."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"unknown or read-only fields: {', '.join(sorted(unknown))}")

    out = dict(changes)
    if "priority" in out:
        out["priority"] = _coerce_enum(Priority, out["priority"], "priority")
    if "category" in out:
        out["category"] = _coerce_enum(Category, out["category"], "category")
    if "status" in out:
        out["status"] = _coerce_enum(TaskStatus, out["status"], "status")
    if "reminder_offset" in out:
        try:
            out["reminder_offset"] = parse_reminder_offset(out["reminder_offset"])
        except ValueError as e:
            raise ValidationError(str(e)) from None
    if "recurrence" in out:
        out["recurrence"] = coerce_recurrence(out["recurrence"])
    if "subtasks" in out:
        out["subtasks"] = [
            s if isinstance(s, Subtask) else Subtask.from_dict(s) for s in out["subtasks"] or []
        ]
    if "tags" in out:
        out["tags"] = [str(t).strip() for t in out["tags"] or [] if str(t).strip()]
    if "due_at" in out and out["due_at"] is not None:
        out["due_at"] = float(out["due_at"])
    if "reminder_time" in out and out["reminder_time"] is not None:
        out["reminder_time"] = float(out["reminder_time"])
    return out


def validate_task(task: Task) -> None:
    _check_text(task.title, "title", TITLE_MAX, required=True)
    _check_text(task.description, "description", DESCRIPTION_MAX)
    _check_text(task.notes, "notes", NOTES_MAX)
    _check_text(task.location, "location", LOCATION_MAX)
    for tag in task.tags:
        _check_text(tag, "tag", TAG_MAX)
    for sub in task.subtasks:
        _check_text(sub.title, "subtask title", TITLE_MAX, required=True)

    if task.due_at is None:
        raise ValidationError("due_at is required")
    if task.reminder_offset is not None and task.reminder_offset < 0:
        raise ValidationError("reminder offset must be >= 0")
    if task.estimated_minutes is not None and task.estimated_minutes < 0:
        raise ValidationError("estimated_minutes must be >= 0")

    if task.is_recurring:
        pat = task.recurrence
        if pat is None:
            raise ValidationError("recurring task needs a recurrence pattern")
        if pat.interval < 1:
            raise ValidationError("recurrence.interval must be >= 1")
        if any(d < 0 or d > 6 for d in pat.days_of_week):
            raise ValidationError("recurrence.days_of_week must be integers 0..6")
        if pat.end_at is not None and pat.end_at < task.due_at:
            raise ValidationError("recurrence.end_at is before due_at")
        if pat.anchor_day is not None and not 1 <= pat.anchor_day <= 31:
            raise ValidationError("recurrence.anchor_day must be 1..31")


def set_status(task: Task, new_status: TaskStatus, now_ts: float) -> Task:
    """completed_at is set exactly when the task enters completed, cleared when it leaves."""
    if new_status == task.status:
        return task
    completed_at = task.completed_at
    if new_status == TaskStatus.COMPLETED:
        completed_at = completed_at or float(now_ts)
    else:
        completed_at = None
    return replace(task, status=new_status, completed_at=completed_at)


def apply_subtask_autocomplete(task: Task, now_ts: float) -> Task:
    if not task.subtasks:
        return task
    if task.status == TaskStatus.COMPLETED:
        return task
    if all(s.completed for s in task.subtasks):
        return set_status(task, TaskStatus.COMPLETED, now_ts)
    return task


def stamp_subtasks(old: list[Subtask], new: list[Subtask], now_ts: float) -> list[Subtask]:
    """Give newly-completed subtasks a completed_at; clear it on un-completion."""
    out: list[Subtask] = []
    for i, sub in enumerate(new):
        prev = old[i] if i < len(old) else None
        if sub.completed and sub.completed_at is None:
            keep = prev.completed_at if prev is not None and prev.completed else None
            sub = replace(sub, completed_at=keep or float(now_ts))
        elif not sub.completed and sub.completed_at is not None:
            sub = replace(sub, completed_at=None)
        out.append(sub)
    return out


def prepare_new(task: Task, now_ts: float) -> Task:
    task = replace(task, subtasks=stamp_subtasks([], task.subtasks, now_ts))
    if task.status == TaskStatus.COMPLETED and task.completed_at is None:
        task = replace(task, completed_at=float(now_ts))
    validate_task(task)
    return apply_subtask_autocomplete(task, now_ts)


def prepare_update(task: Task, changes: dict[str, Any], now_ts: float) -> Task:
    """
    Apply caller changes and run all transitions.

    Raises ValidationError without side effects; the stored task is untouched
    until the caller persists the returned value.
    """
    fields = coerce_fields(changes)
    new_status = fields.pop("status", None)

    updated = replace(task, **fields)
    if "subtasks" in fields:
        updated = replace(updated, subtasks=stamp_subtasks(task.subtasks, updated.subtasks, now_ts))
    if new_status is not None:
        updated = set_status(updated, new_status, now_ts)
    if "due_at" in fields and "recurrence" not in fields and updated.recurrence is not None:
        # A manual reschedule moves the anchor; the expander re-derives it.
        updated = replace(updated, recurrence=replace(updated.recurrence, anchor_day=None))

    validate_task(updated)
    return apply_subtask_autocomplete(updated, now_ts)
