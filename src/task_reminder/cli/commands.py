# src/task_reminder/cli/commands.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from ..core.clock import to_datetime
from ..core.errors import TaskReminderError, to_error_response
from ..core.state import AppState
from ..notifications.notification_models import Notification
from ..tasks import task_api
from ..tasks.task_models import Task

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], str]

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the admin console (/help, /scan, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, emit: CommandEmitter | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return handler(state, args, emit)
        except TaskReminderError as e:
            err = to_error_response(e)
            return f"Error ({err['error']}): {err['message']}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def run_async(state: AppState, coro: Coroutine[Any, Any, T]) -> T:
    """
    Run a coroutine from the (blocking) console thread.

    Uses the scheduler's loop when it is running so the started delivery
    clients are shared; otherwise starts the clients for this one call.
    """
    scheduler = state.scheduler
    if scheduler is not None and scheduler.running:
        return scheduler.run(coro)

    async def _with_clients() -> T:
        if state.clients.started:
            return await coro
        async with state.clients:
            return await coro

    return asyncio.run(_with_clients())


def _fmt_ts(state: AppState, ts: float | None) -> str:
    if ts is None:
        return "-"
    return to_datetime(ts, state.tz).strftime("%Y-%m-%d %H:%M")


def _fmt_task(state: AppState, t: Task) -> str:
    flags = []
    if t.is_recurring and t.recurrence is not None:
        flags.append(f"every {t.recurrence.interval} {t.recurrence.type.value}")
    if t.trigger_at is not None:
        flags.append(f"remind {_fmt_ts(state, t.trigger_at)}")
    extra = f" ({', '.join(flags)})" if flags else ""
    return f"#{t.id} [{t.status.value}] {t.title} due {_fmt_ts(state, t.due_at)}{extra}"


def _fmt_note(state: AppState, n: Notification) -> str:
    read = " " if n.is_read else "*"
    delivered = n.delivery_status.value
    return f"{read} #{n.id} [{n.type.value}/{n.delivery_method.value}/{delivered}] {n.title} @ {_fmt_ts(state, n.scheduled_for)}"


def _task_list(state: AppState, header: str, tasks: list[Task]) -> str:
    if not tasks:
        return f"{header}: none."
    return "\n".join([f"{header}:"] + [f"  {_fmt_task(state, t)}" for t in tasks])


def _need(args: list[str], n: int, usage: str) -> str | None:
    return None if len(args) >= n else f"Usage: {usage}"


def _int_arg(raw: str) -> int | None:
    try:
        return int(raw)
    except ValueError:
        return None


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    scheduler = state.scheduler
    running = "ON" if scheduler is not None and scheduler.running else "OFF"
    methods = ", ".join(sorted(getattr(state.gateway, "methods", None) or [])) or "-"
    return (
        "Status:\n"
        f"  Scheduler: {running} (every {getattr(state.settings, 'scan_interval_seconds', '?')}s)\n"
        f"  Timezone: {state.tz}\n"
        f"  Transports: {methods}\n"
        f"  Tasks stored: {state.task_store.count_tasks()}"
    )


def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/add <owner> <minutes> <title...>: due in N minutes, reminder 10 minutes before."""
    usage = _need(args, 3, "/add <owner> <minutes> <title...>")
    if usage:
        return usage
    minutes = _int_arg(args[1])
    if minutes is None:
        return "Minutes must be an integer."
    due_at = state.clock.now() + minutes * 60
    task = task_api.create_task(
        state,
        args[0],
        title=" ".join(args[2:]),
        due_at=due_at,
        reminder_offset="10min",
    )
    return f"Created {_fmt_task(state, task)}"


def cmd_tasks(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/tasks <owner>")
    if usage:
        return usage
    page = task_api.list_tasks(state, args[0], limit=20, sort_by="due_at", sort_order="asc")
    return _task_list(state, f"Tasks of {args[0]} ({page.total} total)", page.tasks)


def cmd_today(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/today <owner>")
    if usage:
        return usage
    return _task_list(state, "Due today", task_api.tasks_due_today(state, args[0]))


def cmd_week(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/week <owner>")
    if usage:
        return usage
    return _task_list(state, "Due this week", task_api.tasks_due_this_week(state, args[0]))


def cmd_overdue(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/overdue <owner>")
    if usage:
        return usage
    return _task_list(state, "Overdue", task_api.overdue_tasks(state, args[0]))


def cmd_stats(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/stats <owner>")
    if usage:
        return usage
    s = task_api.task_stats(state, args[0])
    return (
        f"Stats for {args[0]}:\n"
        f"  total={s['total']} completed={s['completed']} pending={s['pending']} "
        f"in_progress={s['in_progress']} cancelled={s['cancelled']}\n"
        f"  overdue={s['overdue']} completion={s['completion_rate']}%"
    )


def cmd_done(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 2, "/done <owner> <task_id>")
    if usage:
        return usage
    task_id = _int_arg(args[1])
    if task_id is None:
        return "Task id must be an integer."
    task = task_api.complete_task(state, args[0], task_id)
    return f"Done: {_fmt_task(state, task)}"


def cmd_rm(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 2, "/rm <owner> <task_id>")
    if usage:
        return usage
    task_id = _int_arg(args[1])
    if task_id is None:
        return "Task id must be an integer."
    task_api.delete_task(state, args[0], task_id)
    return f"Task #{task_id} deleted (with its notifications)."


def cmd_notes(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/notes <owner>")
    if usage:
        return usage
    owner = args[0]
    notes = state.lifecycle.list_notifications(owner, limit=20)
    unread = state.lifecycle.unread_count(owner)
    if not notes:
        return f"No notifications for {owner}."
    lines = [f"Notifications of {owner} ({unread} unread):"]
    lines.extend(f"  {_fmt_note(state, n)}" for n in notes)
    return "\n".join(lines)


def cmd_read(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 2, "/read <owner> <notification_id|all>")
    if usage:
        return usage
    owner = args[0]
    if args[1].lower() == "all":
        n = state.lifecycle.mark_all_read(owner)
        return f"Marked {n} notification(s) read."
    notification_id = _int_arg(args[1])
    if notification_id is None:
        return "Notification id must be an integer or 'all'."
    note = state.lifecycle.mark_read(owner, notification_id)
    return f"Read at {_fmt_ts(state, note.read_at)}: {note.title}"


def cmd_unread(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/unread <owner>")
    if usage:
        return usage
    return f"Unread notifications for {args[0]}: {state.lifecycle.unread_count(args[0])}"


def cmd_clear(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/clear <owner>")
    if usage:
        return usage
    n = state.lifecycle.clear_all(args[0])
    return f"Cleared {n} notification(s)."


def cmd_scan(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("[SCAN] Running one reminder scan...")
    report = run_async(state, state.scanner.scan_once())
    return (
        f"Scan done: scanned={report.scanned} fired={report.fired} delivered={report.delivered} "
        f"failed={report.failed} retried={report.retried} skipped={report.skipped} errors={report.errors}"
    )


def cmd_testnote(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    usage = _need(args, 1, "/testnote <owner>")
    if usage:
        return usage
    note = run_async(state, state.lifecycle.send_test_notification(args[0]))
    return f"Test notification #{note.id} delivered via {note.delivery_method.value}."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show scheduler/transport status.")
registry.register("add", cmd_add, help_text="Add a task: /add <owner> <minutes> <title...>.")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks <owner>.")
registry.register("today", cmd_today, help_text="Tasks due today: /today <owner>.")
registry.register("week", cmd_week, help_text="Tasks due this week: /week <owner>.")
registry.register("overdue", cmd_overdue, help_text="Overdue tasks: /overdue <owner>.")
registry.register("stats", cmd_stats, help_text="Task statistics: /stats <owner>.")
registry.register("done", cmd_done, help_text="Complete a task: /done <owner> <task_id>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <owner> <task_id>.")
registry.register("notes", cmd_notes, help_text="List notifications: /notes <owner>.", aliases=["notifications"])
registry.register("read", cmd_read, help_text="Mark read: /read <owner> <id|all>.")
registry.register("unread", cmd_unread, help_text="Unread count: /unread <owner>.")
registry.register("clear", cmd_clear, help_text="Delete all notifications: /clear <owner>.")
registry.register("scan", cmd_scan, help_text="Run one reminder scan now.")
registry.register("testnote", cmd_testnote, help_text="Send a test notification: /testnote <owner>.")
