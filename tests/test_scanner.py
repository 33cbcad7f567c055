# tests/test_scanner.py

from __future__ import annotations

import asyncio

import pytest

from task_reminder.notifications.notification_models import DeliveryMethod, DeliveryStatus, NotificationType
from task_reminder.reminders.scanner import ReminderScanner, RetryPolicy
from task_reminder.tasks import recurrence, task_api
from task_reminder.tasks.task_models import TaskStatus
from task_reminder.users.user_settings import NotificationPreferences

from .fakes import FakeGateway, FakeUserSettings, ts

DUE = ts(2025, 7, 15, 9, 0)
TRIGGER = ts(2025, 7, 15, 8, 45)


def _add(state, owner: str = "alice", title: str = "Write report", **fields):
    fields.setdefault("reminder_offset", "15min")
    return task_api.create_task(state, owner, title=title, due_at=fields.pop("due_at", DUE), **fields)


@pytest.mark.asyncio
async def test_no_notification_before_trigger_time(state, clock, gateway) -> None:
    task = _add(state)

    clock.set(TRIGGER - 1)
    report = await state.scanner.scan_once()

    assert report.fired == 0
    assert state.notification_store.list_for_task(task.id) == []
    assert gateway.calls == []

    clock.set(TRIGGER)
    report = await state.scanner.scan_once()

    assert report.fired == 1
    [note] = state.notification_store.list_for_task(task.id)
    assert note.scheduled_for == TRIGGER
    assert note.type == NotificationType.REMINDER


@pytest.mark.asyncio
async def test_reminder_fires_once_per_occurrence(state, clock, gateway) -> None:
    task = _add(state)
    clock.set(TRIGGER + 300)

    first = await state.scanner.scan_once()
    second = await state.scanner.scan_once()
    clock.advance(3600)
    third = await state.scanner.scan_once()

    assert (first.fired, second.fired, third.fired) == (1, 0, 0)
    notes = state.notification_store.list_for_task(task.id)
    assert len(notes) == 1
    assert notes[0].is_delivered is True
    assert notes[0].delivered_at == TRIGGER + 300
    assert state.task_store.reminders_sent(task.id) == [TRIGGER]
    assert gateway.task_ids() == [task.id]


@pytest.mark.asyncio
async def test_overlapping_ticks_from_two_scanners_do_not_double_fire(state, clock, gateway) -> None:
    tasks = [_add(state, title=f"task {i}") for i in range(5)]
    clock.set(TRIGGER + 60)

    other = ReminderScanner(
        state.task_store,
        state.notification_store,
        gateway,
        state.user_settings,
        clock=clock,
    )
    r1, r2 = await asyncio.gather(state.scanner.scan_once(), other.scan_once())

    assert r1.fired + r2.fired == 5
    for t in tasks:
        assert len(state.notification_store.list_for_task(t.id)) == 1
    assert sorted(gateway.task_ids()) == sorted(t.id for t in tasks)


def test_claim_is_compare_and_append(state, clock) -> None:
    task = _add(state)

    assert state.task_store.try_record_reminder_sent(task.id, TRIGGER, now_ts=clock.now()) is True
    assert state.task_store.try_record_reminder_sent(task.id, TRIGGER, now_ts=clock.now()) is False
    # A stale trigger time (task edited meanwhile) cannot be claimed.
    assert state.task_store.try_record_reminder_sent(task.id, TRIGGER - 60, now_ts=clock.now()) is False
    assert state.task_store.reminders_sent(task.id) == [TRIGGER]


def test_duplicate_reminder_row_is_rejected_by_store(state, clock) -> None:
    task = _add(state)
    kwargs = dict(
        owner="alice",
        task_id=task.id,
        type=NotificationType.REMINDER,
        title="Task Reminder: Write report",
        message="due soon",
        delivery_method=DeliveryMethod.IN_APP,
        scheduled_for=TRIGGER,
        now_ts=clock.now(),
    )

    assert state.notification_store.create_notification(**kwargs) is not None
    assert state.notification_store.create_notification(**kwargs) is None


@pytest.mark.asyncio
async def test_partial_failure_is_isolated(state, clock, gateway) -> None:
    t1, t2, t3 = (_add(state, title=f"task {i}") for i in range(1, 4))
    gateway.fail_task_ids.add(t2.id)
    clock.set(TRIGGER + 10)

    report = await state.scanner.scan_once()

    assert report.fired == 3
    assert report.delivered == 2
    assert report.failed == 1
    assert report.errors == 0

    [n1] = state.notification_store.list_for_task(t1.id)
    [n2] = state.notification_store.list_for_task(t2.id)
    [n3] = state.notification_store.list_for_task(t3.id)
    assert n1.is_delivered and n3.is_delivered
    assert n2.is_delivered is False
    assert n2.delivered_at is None
    assert n2.attempts == 1
    assert n2.last_error == "gateway unavailable"
    assert n2.delivery_status == DeliveryStatus.PENDING
    assert n2.next_attempt_at == TRIGGER + 10 + 60
    assert len(gateway.calls) == 3
    # Recorded as sent regardless of the delivery outcome.
    assert state.task_store.reminders_sent(t2.id) == [TRIGGER]


@pytest.mark.asyncio
async def test_gateway_exception_counts_as_failed_delivery(state, clock, gateway) -> None:
    t1, t2 = _add(state, title="a"), _add(state, title="b")
    gateway.raise_task_ids.add(t1.id)
    clock.set(TRIGGER)

    report = await state.scanner.scan_once()

    assert report.delivered == 1
    assert report.failed == 1
    [n1] = state.notification_store.list_for_task(t1.id)
    assert n1.is_delivered is False
    assert "exploded" in (n1.last_error or "")
    assert state.notification_store.list_for_task(t2.id)[0].is_delivered


@pytest.mark.asyncio
async def test_failed_delivery_is_retried_after_backoff(state, clock, gateway) -> None:
    task = _add(state)
    gateway.fail_task_ids.add(task.id)
    clock.set(TRIGGER)

    await state.scanner.scan_once()
    # Not re-attempted in the same tick, nor before the backoff elapses.
    assert len(gateway.calls) == 1
    clock.advance(30)
    report = await state.scanner.scan_once()
    assert report.retried == 0
    assert len(gateway.calls) == 1

    gateway.fail_task_ids.clear()
    clock.set(TRIGGER + 60)
    report = await state.scanner.scan_once()

    assert report.fired == 0
    assert report.retried == 1
    assert report.delivered == 1
    [note] = state.notification_store.list_for_task(task.id)
    assert note.is_delivered is True
    assert note.delivery_status == DeliveryStatus.DELIVERED
    assert note.attempts == 2


@pytest.mark.asyncio
async def test_delivery_gives_up_after_max_attempts(state, clock) -> None:
    gateway = FakeGateway(fail_all=True)
    scanner = ReminderScanner(
        state.task_store,
        state.notification_store,
        gateway,
        state.user_settings,
        clock=clock,
        retry_policy=RetryPolicy(max_attempts=3, base_seconds=60, max_seconds=3600),
    )
    task = _add(state)

    clock.set(TRIGGER)
    await scanner.scan_once()  # attempt 1, next in 60s
    clock.advance(60)
    await scanner.scan_once()  # attempt 2, next in 120s
    clock.advance(120)
    report = await scanner.scan_once()  # attempt 3, give up

    assert report.gave_up == 1
    [note] = state.notification_store.list_for_task(task.id)
    assert note.attempts == 3
    assert note.delivery_status == DeliveryStatus.FAILED
    assert note.is_delivered is False
    assert note.next_attempt_at is None

    clock.advance(86400)
    report = await scanner.scan_once()
    assert report.retried == 0
    assert len(gateway.calls) == 3


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicy(max_attempts=10, base_seconds=60, max_seconds=300)

    assert policy.next_attempt_at(1, 1000) == 1060
    assert policy.next_attempt_at(2, 1000) == 1120
    assert policy.next_attempt_at(3, 1000) == 1240
    assert policy.next_attempt_at(4, 1000) == 1300
    assert policy.next_attempt_at(10, 1000) is None


@pytest.mark.asyncio
async def test_owner_isolation(state, clock) -> None:
    a = _add(state, owner="alice", title="alice task")
    b = _add(state, owner="bob", title="bob task")
    clock.set(TRIGGER)

    await state.scanner.scan_once()

    [na] = state.notification_store.list_for_task(a.id)
    [nb] = state.notification_store.list_for_task(b.id)
    assert na.owner == "alice"
    assert nb.owner == "bob"
    assert [n.task_id for n in state.lifecycle.list_notifications("alice")] == [a.id]
    assert state.lifecycle.unread_count("alice") == 1

    await state.lifecycle.send_test_notification("bob")
    state.lifecycle.mark_all_read("bob")

    assert state.lifecycle.unread_count("alice") == 1
    assert state.lifecycle.unread_count("bob") == 0


@pytest.mark.asyncio
async def test_completed_and_cancelled_tasks_are_not_reminded(state, clock, gateway) -> None:
    done = _add(state, title="done")
    cancelled = _add(state, title="cancelled")
    task_api.complete_task(state, "alice", done.id)
    task_api.set_status(state, "alice", cancelled.id, TaskStatus.CANCELLED)
    clock.set(TRIGGER + 60)

    report = await state.scanner.scan_once()

    assert report.scanned == 0
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_task_without_reminder_is_ignored(state, clock, gateway) -> None:
    _add(state, reminder_offset=None)
    clock.set(DUE + 3600)

    report = await state.scanner.scan_once()

    assert report.scanned == 0
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_explicit_reminder_time_wins_over_offset(state, clock) -> None:
    remind_at = ts(2025, 7, 15, 7, 0)
    task = _add(state, reminder_time=remind_at)
    clock.set(remind_at + 1)

    report = await state.scanner.scan_once()

    assert report.fired == 1
    assert state.notification_store.list_for_task(task.id)[0].scheduled_for == remind_at


@pytest.mark.asyncio
async def test_rescheduled_task_fires_again_for_new_occurrence(state, clock) -> None:
    task = _add(state)
    clock.set(TRIGGER)
    await state.scanner.scan_once()

    new_due = ts(2025, 7, 15, 18, 0)
    task_api.update_task(state, "alice", task.id, {"due_at": new_due})
    clock.set(new_due - 15 * 60)
    report = await state.scanner.scan_once()

    assert report.fired == 1
    assert state.task_store.reminders_sent(task.id) == [TRIGGER, new_due - 15 * 60]
    assert len(state.notification_store.list_for_task(task.id)) == 2


@pytest.mark.asyncio
async def test_daily_recurrence_advances_after_fire(state, clock) -> None:
    task = _add(state, is_recurring=True, recurrence={"type": "daily", "interval": 1})
    clock.set(TRIGGER + 300)

    report = await state.scanner.scan_once()

    assert report.fired == 1
    assert report.advanced == 1
    advanced = state.task_store.get_task(task.id)
    assert advanced.due_at == ts(2025, 7, 16, 9, 0)
    assert advanced.status == TaskStatus.PENDING
    assert advanced.trigger_at == ts(2025, 7, 16, 8, 45)
    # Append-only audit across occurrences.
    assert advanced.reminders_sent == [TRIGGER]

    clock.advance(60)
    assert (await state.scanner.scan_once()).fired == 0

    clock.set(ts(2025, 7, 16, 8, 45))
    report = await state.scanner.scan_once()
    assert report.fired == 1
    assert state.task_store.get_task(task.id).reminders_sent == [TRIGGER, ts(2025, 7, 16, 8, 45)]
    assert len(state.notification_store.list_for_task(task.id)) == 2


@pytest.mark.asyncio
async def test_recurrence_bound_completes_task(state, clock, gateway) -> None:
    due = ts(2025, 7, 14, 9, 0)
    task = _add(
        state,
        due_at=due,
        reminder_offset="1hour",
        is_recurring=True,
        recurrence={"type": "weekly", "interval": 1, "end_at": ts(2025, 7, 20)},
    )
    clock.set(ts(2025, 7, 14, 8, 30))

    report = await state.scanner.scan_once()

    assert report.fired == 1
    assert report.finished == 1
    done = state.task_store.get_task(task.id)
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at == clock.now()
    assert done.due_at == due

    clock.set(ts(2025, 7, 28))
    assert state.task_store.list_due_reminders(now_ts=clock.now()) == []
    assert (await state.scanner.scan_once()).scanned == 0
    assert len(gateway.calls) == 1


@pytest.mark.asyncio
async def test_delivery_method_follows_user_settings(state, clock) -> None:
    gateway = FakeGateway(unregistered=["stale-token"])
    prefs = FakeUserSettings(
        {
            "alice": NotificationPreferences(owner="alice", push_enabled=True, device_tokens=("tok-1", "stale-token")),
            "bob": NotificationPreferences(owner="bob", push_enabled=False, email_enabled=True, email="bob@example.com"),
        }
    )
    scanner = ReminderScanner(state.task_store, state.notification_store, gateway, prefs, clock=clock)
    a = _add(state, owner="alice")
    b = _add(state, owner="bob")
    c = _add(state, owner="carol")
    clock.set(TRIGGER)

    await scanner.scan_once()

    methods = {n.task_id: n.delivery_method for o in ("alice", "bob", "carol") for n in state.lifecycle.list_notifications(o)}
    assert methods == {a.id: DeliveryMethod.PUSH, b.id: DeliveryMethod.EMAIL, c.id: DeliveryMethod.IN_APP}

    by_task = {int(p.data["taskId"]): p for p in gateway.calls}
    assert by_task[a.id].target_tokens == ("tok-1", "stale-token")
    assert by_task[b.id].target_email == "bob@example.com"
    assert by_task[a.id].title == "Task Reminder: Write report"
    assert by_task[a.id].data["priority"] == "medium"
    assert ("alice", "stale-token") in prefs.removed


@pytest.mark.asyncio
async def test_one_broken_task_does_not_abort_tick(state, clock, gateway, monkeypatch) -> None:
    t1, t2, t3 = (_add(state, title=f"task {i}") for i in range(1, 4))
    clock.set(TRIGGER)

    original = state.task_store.try_record_reminder_sent

    def flaky(task_id, trigger_at, **kwargs):
        if task_id == t2.id:
            raise RuntimeError("disk hiccup")
        return original(task_id, trigger_at, **kwargs)

    monkeypatch.setattr(state.task_store, "try_record_reminder_sent", flaky)

    report = await state.scanner.scan_once()

    assert report.errors == 1
    assert report.delivered == 2
    assert state.notification_store.list_for_task(t2.id) == []
    # The failed claim rolled back; the occurrence is still due next tick.
    monkeypatch.setattr(state.task_store, "try_record_reminder_sent", original)
    report = await state.scanner.scan_once()
    assert report.fired == 1
    assert len(state.notification_store.list_for_task(t2.id)) == 1


@pytest.mark.asyncio
async def test_failed_recurrence_advance_is_retried_next_tick(state, clock, monkeypatch) -> None:
    task = _add(state, reminder_offset="10min", is_recurring=True, recurrence={"type": "daily"})
    real_advance = recurrence.advance
    calls: list[int] = []

    def advance_once_broken(t, tz, **kwargs):
        calls.append(t.id)
        if len(calls) == 1:
            raise RuntimeError("calendar lookup failed")
        return real_advance(t, tz, **kwargs)

    monkeypatch.setattr(recurrence, "advance", advance_once_broken)

    clock.set(ts(2025, 7, 15, 8, 51))
    report = await state.scanner.scan_once()

    assert report.errors == 1
    assert report.fired == 0
    # Nothing was claimed, so the occurrence is still due.
    assert state.task_store.reminders_sent(task.id) == []
    assert state.notification_store.list_for_task(task.id) == []

    clock.set(ts(2025, 7, 15, 8, 55))
    report = await state.scanner.scan_once()

    assert (report.fired, report.advanced) == (1, 1)
    assert state.task_store.get_task(task.id).due_at == ts(2025, 7, 16, 9, 0)

    for day in (16, 17):
        clock.set(ts(2025, 7, day, 8, 55))
        assert (await state.scanner.scan_once()).fired == 1

    assert len(state.notification_store.list_for_task(task.id)) == 3
    assert state.task_store.get_task(task.id).due_at == ts(2025, 7, 18, 9, 0)


@pytest.mark.asyncio
async def test_claim_rolls_back_when_recurrence_write_fails(state, clock, gateway, monkeypatch) -> None:
    task = _add(state, is_recurring=True, recurrence={"type": "daily"})
    original = state.task_store.apply_recurrence

    def broken(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(state.task_store, "apply_recurrence", broken)
    clock.set(TRIGGER)

    report = await state.scanner.scan_once()

    assert report.errors == 1
    assert state.task_store.reminders_sent(task.id) == []
    assert state.notification_store.list_for_task(task.id) == []
    assert gateway.calls == []

    monkeypatch.setattr(state.task_store, "apply_recurrence", original)
    report = await state.scanner.scan_once()

    assert (report.fired, report.advanced) == (1, 1)
    assert state.task_store.reminders_sent(task.id) == [TRIGGER]
    assert state.task_store.get_task(task.id).due_at == ts(2025, 7, 16, 9, 0)
