# tests/test_recurrence.py

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from task_reminder.core.errors import ValidationError
from task_reminder.tasks import recurrence, task_api
from task_reminder.tasks.task_models import RecurrencePattern, RecurrenceType, Task

from .fakes import ts

UTC = timezone.utc


def _task(due_at: float, pattern: RecurrencePattern, **kw) -> Task:
    return Task(
        id=1,
        owner="alice",
        title="recurring",
        due_at=due_at,
        created_at=0.0,
        updated_at=0.0,
        is_recurring=True,
        recurrence=pattern,
        **kw,
    )


def test_daily_interval() -> None:
    pat = RecurrencePattern(type=RecurrenceType.DAILY, interval=3)
    assert recurrence.next_due_at(ts(2025, 7, 15, 9), pat, UTC) == ts(2025, 7, 18, 9)


def test_weekly_with_days_of_week() -> None:
    # Monday, Wednesday, Friday (Sunday=0).
    pat = RecurrencePattern(type=RecurrenceType.WEEKLY, interval=1, days_of_week=(1, 3, 5))

    # Monday -> Wednesday
    assert recurrence.next_due_at(ts(2025, 7, 14, 9), pat, UTC) == ts(2025, 7, 16, 9)
    # Friday -> next Monday
    assert recurrence.next_due_at(ts(2025, 7, 18, 9), pat, UTC) == ts(2025, 7, 21, 9)

    every_other = RecurrencePattern(type=RecurrenceType.WEEKLY, interval=2, days_of_week=(1, 3, 5))
    assert recurrence.next_due_at(ts(2025, 7, 18, 9), every_other, UTC) == ts(2025, 7, 28, 9)


def test_weekly_without_days_keeps_weekday() -> None:
    pat = RecurrencePattern(type=RecurrenceType.WEEKLY, interval=2)
    assert recurrence.next_due_at(ts(2025, 7, 15, 9), pat, UTC) == ts(2025, 7, 29, 9)


def test_monthly_clamps_and_keeps_anchor() -> None:
    task = _task(ts(2025, 1, 31, 9), RecurrencePattern(type=RecurrenceType.MONTHLY))

    first = recurrence.advance(task, UTC)
    assert first.finished is False
    assert first.due_at == ts(2025, 2, 28, 9)
    assert first.pattern.anchor_day == 31

    second = recurrence.advance(_task(first.due_at, first.pattern), UTC)
    assert second.due_at == ts(2025, 3, 31, 9)


def test_yearly_leap_day_clamps() -> None:
    task = _task(ts(2024, 2, 29, 9), RecurrencePattern(type=RecurrenceType.YEARLY))

    outcome = recurrence.advance(task, UTC)

    assert outcome.due_at == ts(2025, 2, 28, 9)


def test_not_before_skips_missed_occurrences() -> None:
    pat = RecurrencePattern(type=RecurrenceType.DAILY)

    nxt = recurrence.next_due_at(ts(2025, 7, 1, 9), pat, UTC, not_before=ts(2025, 7, 15, 12))

    assert nxt == ts(2025, 7, 16, 9)


def test_end_at_finishes_pattern() -> None:
    pat = RecurrencePattern(type=RecurrenceType.DAILY, end_at=ts(2025, 7, 15, 23, 59))

    assert recurrence.advance(_task(ts(2025, 7, 14, 9), pat), UTC).due_at == ts(2025, 7, 15, 9)

    outcome = recurrence.advance(_task(ts(2025, 7, 15, 9), pat), UTC)
    assert outcome.finished is True
    assert outcome.due_at is None


def test_explicit_reminder_time_moves_with_due_date() -> None:
    pat = RecurrencePattern(type=RecurrenceType.DAILY)
    task = _task(ts(2025, 7, 15, 9), pat, reminder_time=ts(2025, 7, 15, 7, 30))

    outcome = recurrence.advance(task, UTC)

    assert outcome.due_at == ts(2025, 7, 16, 9)
    assert outcome.reminder_time == ts(2025, 7, 16, 7, 30)


def test_offset_reminder_needs_no_shift() -> None:
    task = _task(ts(2025, 7, 15, 9), RecurrencePattern(type=RecurrenceType.DAILY), reminder_offset=900.0)

    outcome = recurrence.advance(task, UTC)

    assert outcome.reminder_time is None


def test_daily_keeps_wall_clock_across_dst() -> None:
    berlin = ZoneInfo("Europe/Berlin")
    due = datetime(2025, 3, 29, 9, 0, tzinfo=berlin).timestamp()
    pat = RecurrencePattern(type=RecurrenceType.DAILY)

    nxt = recurrence.next_due_at(due, pat, berlin)

    assert nxt == datetime(2025, 3, 30, 9, 0, tzinfo=berlin).timestamp()
    # 23 hours of real time: the clocks went forward overnight.
    assert nxt - due == 23 * 3600


def test_non_recurring_task_cannot_advance() -> None:
    task = Task(id=7, owner="alice", title="once", due_at=0.0, created_at=0.0, updated_at=0.0)
    with pytest.raises(ValueError):
        recurrence.advance(task, UTC)


def test_invalid_patterns_are_rejected(state) -> None:
    due = ts(2025, 7, 15, 9)
    with pytest.raises(ValidationError):
        task_api.create_task(
            state, "alice", title="bad", due_at=due, is_recurring=True, recurrence={"type": "daily", "interval": 0}
        )
    with pytest.raises(ValidationError):
        task_api.create_task(
            state,
            "alice",
            title="bad",
            due_at=due,
            is_recurring=True,
            recurrence={"type": "daily", "end_at": due - 86400},
        )
    with pytest.raises(ValidationError):
        task_api.create_task(
            state, "alice", title="bad", due_at=due, is_recurring=True, recurrence={"type": "hourly"}
        )
    with pytest.raises(ValidationError):
        task_api.create_task(state, "alice", title="bad", due_at=due, is_recurring=True)

    assert state.task_store.count_tasks() == 0
