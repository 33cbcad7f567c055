# tests/test_task_api.py

from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from task_reminder.core.errors import ForbiddenError, NotFoundError, ValidationError
from task_reminder.tasks import recurrence, task_api
from task_reminder.tasks.task_models import TaskStatus

from .fakes import ts

# The clock fixture starts on Tuesday 2025-07-15 08:00 UTC.


def _add(state, due_at: float, title: str = "task", owner: str = "alice", **fields):
    return task_api.create_task(state, owner, title=title, due_at=due_at, **fields)


def test_tasks_due_today(state) -> None:
    morning = _add(state, ts(2025, 7, 15, 0, 0), "midnight")
    evening = _add(state, ts(2025, 7, 15, 23, 59), "late")
    _add(state, ts(2025, 7, 16, 0, 0), "tomorrow")
    _add(state, ts(2025, 7, 14, 23, 59), "yesterday")
    _add(state, ts(2025, 7, 15, 12, 0), "bob's", owner="bob")

    assert [t.id for t in task_api.tasks_due_today(state, "alice")] == [morning.id, evening.id]


def test_tasks_due_today_uses_given_timezone(state) -> None:
    tokyo = ZoneInfo("Asia/Tokyo")
    # 08:00 UTC is 17:00 in Tokyo; the local day is 07-14 15:00Z .. 07-15 15:00Z.
    early = _add(state, ts(2025, 7, 14, 16, 0))
    _add(state, ts(2025, 7, 15, 16, 0))

    assert [t.id for t in task_api.tasks_due_today(state, "alice", tz=tokyo)] == [early.id]


def test_tasks_due_this_week_starts_on_sunday(state) -> None:
    sunday = _add(state, ts(2025, 7, 13, 0, 0), "sunday")
    saturday = _add(state, ts(2025, 7, 19, 23, 0), "saturday")
    _add(state, ts(2025, 7, 12, 23, 59), "last saturday")
    _add(state, ts(2025, 7, 20, 0, 0), "next sunday")

    week = task_api.tasks_due_this_week(state, "alice")

    assert [t.title for t in week] == ["sunday", "saturday"]
    assert {t.id for t in week} == {sunday.id, saturday.id}


def test_tasks_in_range_is_inclusive(state) -> None:
    start, end = ts(2025, 7, 10), ts(2025, 7, 20)
    first = _add(state, start, "start")
    last = _add(state, end, "end")
    _add(state, end + 1, "after")

    assert [t.id for t in task_api.tasks_in_range(state, "alice", start, end)] == [first.id, last.id]


def test_tasks_in_range_validation(state) -> None:
    with pytest.raises(ValidationError):
        task_api.tasks_in_range(state, "alice", None, ts(2025, 7, 20))
    with pytest.raises(ValidationError):
        task_api.tasks_in_range(state, "alice", ts(2025, 7, 20), None)
    with pytest.raises(ValidationError):
        task_api.tasks_in_range(state, "alice", ts(2025, 7, 20), ts(2025, 7, 10))


def test_overdue_excludes_completed_and_cancelled(state) -> None:
    late = _add(state, ts(2025, 7, 14, 9), "late")
    started = _add(state, ts(2025, 7, 14, 10), "started", status="in-progress")
    done = _add(state, ts(2025, 7, 14, 11), "done")
    dropped = _add(state, ts(2025, 7, 14, 12), "dropped")
    _add(state, ts(2025, 7, 16, 9), "future")
    task_api.complete_task(state, "alice", done.id)
    task_api.set_status(state, "alice", dropped.id, "cancelled")

    assert [t.id for t in task_api.overdue_tasks(state, "alice")] == [late.id, started.id]
    assert state.task_store.get_task(late.id).is_overdue(state.clock.now()) is True
    assert state.task_store.get_task(done.id).is_overdue(state.clock.now()) is False


def test_stats(state) -> None:
    assert task_api.task_stats(state, "alice")["completion_rate"] == 0

    a = _add(state, ts(2025, 7, 14, 9))
    _add(state, ts(2025, 7, 16, 9), status="in-progress")
    c = _add(state, ts(2025, 7, 16, 9))
    _add(state, ts(2025, 7, 14, 9), owner="bob")
    task_api.complete_task(state, "alice", a.id)
    task_api.set_status(state, "alice", c.id, TaskStatus.CANCELLED)

    stats = task_api.task_stats(state, "alice")

    assert stats == {
        "total": 3,
        "completed": 1,
        "pending": 0,
        "in_progress": 1,
        "cancelled": 1,
        "overdue": 0,
        "completion_rate": 33,
    }


def test_list_tasks_pagination_and_filters(state, clock) -> None:
    for i in range(5):
        clock.advance(1)
        _add(state, ts(2025, 7, 20 + i), f"work {i}", category="work", priority="high" if i % 2 else "low")
    _add(state, ts(2025, 7, 20), "personal", category="personal")

    page1 = task_api.list_tasks(state, "alice", category="work", page=1, limit=2)
    assert page1.total == 5
    assert page1.total_pages == 3
    assert page1.has_next is True
    assert page1.has_prev is False
    # Default sort: newest first.
    assert [t.title for t in page1.tasks] == ["work 4", "work 3"]

    page3 = task_api.list_tasks(state, "alice", category="work", page=3, limit=2)
    assert [t.title for t in page3.tasks] == ["work 0"]
    assert page3.has_next is False

    high = task_api.list_tasks(state, "alice", priority="high", sort_by="due_at", sort_order="asc")
    assert [t.title for t in high.tasks] == ["work 1", "work 3"]

    with pytest.raises(ValidationError):
        task_api.list_tasks(state, "alice", sort_by="owner")
    with pytest.raises(ValidationError):
        task_api.list_tasks(state, "alice", status="done")


def test_archived_tasks_hidden_unless_requested(state) -> None:
    _add(state, ts(2025, 7, 20), "visible")
    _add(state, ts(2025, 7, 20), "archived", is_archived=True)

    assert task_api.list_tasks(state, "alice").total == 1
    assert task_api.list_tasks(state, "alice", include_archived=True).total == 2


def test_other_owner_cannot_touch_task(state) -> None:
    task = _add(state, ts(2025, 7, 20), owner="alice")

    with pytest.raises(ForbiddenError):
        task_api.get_task(state, "bob", task.id)
    with pytest.raises(ForbiddenError):
        task_api.update_task(state, "bob", task.id, {"title": "mine now"})
    with pytest.raises(ForbiddenError):
        task_api.delete_task(state, "bob", task.id)
    with pytest.raises(NotFoundError):
        task_api.get_task(state, "bob", 999)

    assert task_api.get_task(state, "alice", task.id).title == "task"


def test_toggle_complete_round_trip(state) -> None:
    task = _add(state, ts(2025, 7, 20))

    done = task_api.toggle_complete(state, "alice", task.id)
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at is not None

    back = task_api.toggle_complete(state, "alice", task.id)
    assert back.status == TaskStatus.PENDING
    assert back.completed_at is None


def test_completing_recurring_task_moves_to_next_occurrence(state) -> None:
    task = _add(state, ts(2025, 7, 15, 9), is_recurring=True, recurrence={"type": "weekly"})

    nxt = task_api.complete_task(state, "alice", task.id)

    assert nxt.status == TaskStatus.PENDING
    assert nxt.due_at == ts(2025, 7, 22, 9)
    assert nxt.completed_at is None


def test_completing_last_occurrence_finishes_pattern(state, clock) -> None:
    task = _add(
        state,
        ts(2025, 7, 15, 9),
        is_recurring=True,
        recurrence={"type": "weekly", "end_at": ts(2025, 7, 20)},
    )

    done = task_api.complete_task(state, "alice", task.id)

    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at == clock.now()
    assert done.due_at == ts(2025, 7, 15, 9)


def test_recurring_wall_clock_in_user_timezone(state, settings) -> None:
    settings.timezone = "America/New_York"
    ny = ZoneInfo("America/New_York")
    # 2025-11-01 09:00 EDT; DST ends overnight on 11-02.
    due = datetime(2025, 11, 1, 9, 0, tzinfo=ny).timestamp()
    task = _add(state, due, is_recurring=True, recurrence={"type": "daily"})

    nxt = task_api.complete_task(state, "alice", task.id)

    assert nxt.due_at == datetime(2025, 11, 2, 9, 0, tzinfo=ny).timestamp()


def test_checking_last_subtask_moves_recurring_task_on(state) -> None:
    task = _add(state, ts(2025, 7, 15, 9), is_recurring=True, recurrence={"type": "daily"})
    task_api.add_subtask(state, "alice", task.id, "pack bag")

    nxt = task_api.toggle_subtask(state, "alice", task.id, 0)

    assert nxt.status == TaskStatus.PENDING
    assert nxt.due_at == ts(2025, 7, 16, 9)
    assert [(s.title, s.completed) for s in nxt.subtasks] == [("pack bag", False)]


def test_every_completion_path_moves_recurring_task_on(state) -> None:
    task = _add(state, ts(2025, 7, 15, 9), is_recurring=True, recurrence={"type": "daily"})

    nxt = task_api.set_status(state, "alice", task.id, "completed")
    assert (nxt.status, nxt.due_at) == (TaskStatus.PENDING, ts(2025, 7, 16, 9))

    nxt = task_api.update_task(state, "alice", task.id, {"status": "completed"})
    assert (nxt.status, nxt.due_at) == (TaskStatus.PENDING, ts(2025, 7, 17, 9))
    assert nxt.completed_at is None


def test_set_status_on_last_occurrence_finishes_pattern(state, clock) -> None:
    task = _add(
        state,
        ts(2025, 7, 15, 9),
        is_recurring=True,
        recurrence={"type": "weekly", "end_at": ts(2025, 7, 20)},
    )

    done = task_api.set_status(state, "alice", task.id, "completed")

    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at == clock.now()
    assert done.due_at == ts(2025, 7, 15, 9)


def test_completing_cancelled_recurring_task_does_not_advance(state) -> None:
    task = _add(state, ts(2025, 7, 15, 9), is_recurring=True, recurrence={"type": "daily"})
    task_api.set_status(state, "alice", task.id, "cancelled")

    done = task_api.set_status(state, "alice", task.id, "completed")

    assert done.status == TaskStatus.COMPLETED
    assert done.due_at == ts(2025, 7, 15, 9)


def test_complete_after_tick_advanced_first_keeps_tick_result(state, clock, monkeypatch, caplog) -> None:
    task = _add(state, ts(2025, 7, 15, 9), is_recurring=True, recurrence={"type": "daily"})
    real_advance = recurrence.advance

    def advance_with_concurrent_tick(t, tz, **kwargs):
        outcome = real_advance(t, tz, **kwargs)
        # A scan tick moves the same occurrence on between the read and the write.
        state.task_store.apply_recurrence(
            t.id,
            expected_due_at=t.due_at,
            new_due_at=outcome.due_at,
            reminder_time=outcome.reminder_time,
            pattern=outcome.pattern,
            finished=False,
            now_ts=clock.now(),
        )
        return outcome

    monkeypatch.setattr(recurrence, "advance", advance_with_concurrent_tick)
    caplog.set_level(logging.DEBUG, logger="task_reminder.tasks.task_api")

    nxt = task_api.complete_task(state, "alice", task.id)

    assert nxt.due_at == ts(2025, 7, 16, 9)
    assert "Recurrence not applied" in caplog.text
