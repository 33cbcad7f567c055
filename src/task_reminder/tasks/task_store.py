# src/task_reminder/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import replace
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any

from ..core import db
from ..core.errors import NotFoundError, ValidationError
from . import recurrence
from .task_models import (
    Category,
    Priority,
    RecurrencePattern,
    Subtask,
    Task,
    TaskStatus,
)
from .transitions import prepare_new, prepare_update

logger = logging.getLogger(__name__)

_TASK_COLUMNS = {
    "owner": "TEXT NOT NULL DEFAULT ''",
    "title": "TEXT NOT NULL DEFAULT ''",
    "description": "TEXT NOT NULL DEFAULT ''",
    "status": "TEXT NOT NULL DEFAULT 'pending'",
    "priority": "TEXT NOT NULL DEFAULT 'medium'",
    "category": "TEXT NOT NULL DEFAULT 'other'",
    "created_at": "REAL NOT NULL DEFAULT 0",
    "updated_at": "REAL NOT NULL DEFAULT 0",
    "due_at": "REAL NOT NULL DEFAULT 0",
    "reminder_offset": "REAL",
    "reminder_time": "REAL",
    "trigger_at": "REAL",
    "is_recurring": "INTEGER NOT NULL DEFAULT 0",
    "recurrence": "TEXT",
    "completed_at": "REAL",
    "subtasks": "TEXT NOT NULL DEFAULT '[]'",
    "tags": "TEXT NOT NULL DEFAULT '[]'",
    "location": "TEXT",
    "notes": "TEXT",
    "estimated_minutes": "INTEGER",
    "is_archived": "INTEGER NOT NULL DEFAULT 0",
}

_SORTABLE = frozenset({"due_at", "created_at", "updated_at", "priority", "title", "status"})

_CLOSED = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


def _completes_occurrence(before: Task, after: Task) -> bool:
    """True when an update moves an open recurring task into completed."""
    return (
        after.is_recurring
        and after.recurrence is not None
        and before.status not in _CLOSED
        and after.status == TaskStatus.COMPLETED
    )


def _next_occurrence(
    task: Task,
    *,
    finished: bool,
    new_due_at: float | None,
    reminder_time: float | None,
    pattern: RecurrencePattern | None,
    now_ts: float,
) -> Task:
    if finished:
        return replace(
            task,
            status=TaskStatus.COMPLETED,
            completed_at=task.completed_at or now_ts,
            recurrence=pattern or task.recurrence,
        )
    if new_due_at is None:
        raise ValueError("new_due_at is required unless finished")
    # The next occurrence starts fresh: open status, subtasks unchecked.
    return replace(
        task,
        due_at=float(new_due_at),
        reminder_time=reminder_time,
        recurrence=pattern or task.recurrence,
        status=TaskStatus.PENDING,
        completed_at=None,
        subtasks=[Subtask(title=s.title) for s in task.subtasks],
    )


class TaskStore:
    """
    SQLite task store.

    The schema is migration-safe:
    - create tables if missing
    - add missing columns with ALTER TABLE only when needed

    Reminder bookkeeping:
    - trigger_at is denormalised from (due_at, reminder_offset, reminder_time)
      on every write so the scanner query is a single indexed range scan
    - task_reminders_sent is the append-only remindersSent audit; its primary
      key (task_id, trigger_at) is the at-most-once claim for an occurrence

    Thread-safety:
    - each method opens its own SQLite connection unless the caller passes one
    """

    def __init__(self, db_path: str | Path = "reminders.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    def transaction(self) -> contextlib.AbstractContextManager[sqlite3.Connection]:
        """Write transaction on the shared database (tasks + notifications)."""
        return db.transaction(self._db_path)

    # ---- low-level helpers ----

    def _ensure_schema(self) -> None:
        conn = db.connect(self._db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner TEXT NOT NULL,
                    title TEXT NOT NULL,
                    due_at REAL NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            db.add_missing_columns(cur, "tasks", _TASK_COLUMNS)

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_reminders_sent (
                    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    trigger_at REAL NOT NULL,
                    sent_at REAL NOT NULL,
                    PRIMARY KEY (task_id, trigger_at)
                )
                """
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_due ON tasks(owner, due_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_status ON tasks(owner, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_category ON tasks(owner, category)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_trigger ON tasks(status, trigger_at)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row, sent: list[float]) -> Task:
        pattern = RecurrencePattern.from_dict(db.loads(row["recurrence"], {}))
        subtasks = [Subtask.from_dict(s) for s in db.loads(row["subtasks"], []) if isinstance(s, dict)]
        try:
            priority = Priority(row["priority"])
        except ValueError:
            priority = Priority.MEDIUM
        try:
            category = Category(row["category"])
        except ValueError:
            category = Category.OTHER

        return Task(
            id=int(row["id"]),
            owner=str(row["owner"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            due_at=float(row["due_at"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            status=TaskStatus.from_db(row["status"]),
            priority=priority,
            category=category,
            reminder_offset=row["reminder_offset"],
            reminder_time=row["reminder_time"],
            is_recurring=bool(row["is_recurring"]),
            recurrence=pattern,
            reminders_sent=sent,
            completed_at=row["completed_at"],
            subtasks=subtasks,
            tags=[str(t) for t in db.loads(row["tags"], [])],
            location=row["location"],
            notes=row["notes"],
            estimated_minutes=row["estimated_minutes"],
            is_archived=bool(row["is_archived"]),
        )

    @staticmethod
    def _task_values(task: Task) -> dict[str, Any]:
        return {
            "owner": task.owner,
            "title": task.title.strip(),
            "description": (task.description or "").strip(),
            "status": task.status.value,
            "priority": task.priority.value,
            "category": task.category.value,
            "due_at": float(task.due_at),
            "reminder_offset": task.reminder_offset,
            "reminder_time": task.reminder_time,
            "trigger_at": task.trigger_at,
            "is_recurring": 1 if task.is_recurring else 0,
            "recurrence": db.dumps(task.recurrence.to_dict()) if task.recurrence else None,
            "completed_at": task.completed_at,
            "subtasks": db.dumps([s.to_dict() for s in task.subtasks], "[]"),
            "tags": db.dumps(task.tags, "[]"),
            "location": task.location,
            "notes": task.notes,
            "estimated_minutes": task.estimated_minutes,
            "is_archived": 1 if task.is_archived else 0,
        }

    def _load_sent(self, conn: sqlite3.Connection, task_ids: list[int]) -> dict[int, list[float]]:
        out: dict[int, list[float]] = {tid: [] for tid in task_ids}
        if not task_ids:
            return out
        placeholders = ",".join("?" for _ in task_ids)
        cur = conn.execute(
            f"""
            SELECT task_id, trigger_at
            FROM task_reminders_sent
            WHERE task_id IN ({placeholders})
            ORDER BY sent_at ASC, rowid ASC
            """,
            task_ids,
        )
        for r in cur.fetchall():
            out[int(r["task_id"])].append(float(r["trigger_at"]))
        return out

    def _rows_to_tasks(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Task]:
        sent = self._load_sent(conn, [int(r["id"]) for r in rows])
        return [self._row_to_task(r, sent[int(r["id"])]) for r in rows]

    def _write(self, conn: sqlite3.Connection, task_id: int, values: dict[str, Any], now_ts: float) -> None:
        values = dict(values, updated_at=float(now_ts))
        assignments = ", ".join(f"{k} = ?" for k in values)
        conn.execute(f"UPDATE tasks SET {assignments} WHERE id = ?", (*values.values(), int(task_id)))

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = db.connect(self._db_path)
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(self, task: Task, *, now_ts: float | None = None) -> Task:
        """
        Validate, run creation transitions and insert.

        The id/created_at/updated_at on the passed Task are ignored.
        """
        if not task.owner or not task.owner.strip():
            raise ValidationError("owner is required")
        now = time.time() if now_ts is None else float(now_ts)
        task = prepare_new(task, now)
        values = self._task_values(task)
        values["created_at"] = now
        values["updated_at"] = now

        cols = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute(f"INSERT INTO tasks({cols}) VALUES ({placeholders})", tuple(values.values()))
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
        task_id = int(rowid)
        logger.debug(
            "Task added id=%s owner=%s due_at=%s trigger_at=%s recurring=%s",
            task_id,
            task.owner,
            task.due_at,
            task.trigger_at,
            task.is_recurring,
        )
        return self.get_task(task_id)

    def get_task(self, task_id: int, *, conn: sqlite3.Connection | None = None) -> Task:
        with db.use_conn(self._db_path, conn) as c:
            row = c.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            if row is None:
                raise NotFoundError(f"task {task_id} not found")
            return self._rows_to_tasks(c, [row])[0]

    def find_task(self, task_id: int) -> Task | None:
        try:
            return self.get_task(task_id)
        except NotFoundError:
            return None

    def update_task(
        self,
        task_id: int,
        changes: dict[str, Any],
        *,
        now_ts: float | None = None,
        tz: tzinfo | None = None,
    ) -> Task:
        """
        Apply changes through the transition functions and persist atomically.

        If the update completes an open recurring task (explicit status or the
        last subtask checked), the task moves to its next occurrence instead,
        computed in `tz` (UTC when omitted), or finishes when the pattern ends.

        ValidationError leaves the stored task unchanged.
        """
        now = time.time() if now_ts is None else float(now_ts)
        with db.transaction(self._db_path) as conn:
            current = self.get_task(task_id, conn=conn)
            updated = prepare_update(current, changes, now)
            if _completes_occurrence(current, updated):
                outcome = recurrence.advance(updated, tz or timezone.utc)
                updated = _next_occurrence(
                    updated,
                    finished=outcome.finished,
                    new_due_at=outcome.due_at,
                    reminder_time=outcome.reminder_time,
                    pattern=outcome.pattern,
                    now_ts=now,
                )
                logger.info(
                    "Recurring task completed id=%s finished=%s next_due_at=%s",
                    task_id,
                    outcome.finished,
                    outcome.due_at,
                )
            self._write(conn, task_id, self._task_values(updated), now)
        logger.debug("Task updated id=%s fields=%s", task_id, sorted(changes))
        return self.get_task(task_id)

    def delete_task(self, task_id: int) -> None:
        """Hard delete; notifications and the reminders-sent ledger cascade."""
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (int(task_id),))
            if cur.rowcount != 1:
                raise NotFoundError(f"task {task_id} not found")
        logger.info("Task deleted id=%s", task_id)

    @staticmethod
    def _where(
        owner: str,
        *,
        status: TaskStatus | None,
        category: Category | None,
        priority: Priority | None,
        due_from: float | None,
        due_before: float | None,
        due_until: float | None,
        exclude_statuses: tuple[TaskStatus, ...],
        include_archived: bool,
    ) -> tuple[str, list[Any]]:
        clauses = ["owner = ?"]
        params: list[Any] = [owner]
        if not include_archived:
            clauses.append("is_archived = 0")
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if exclude_statuses:
            clauses.append(f"status NOT IN ({','.join('?' for _ in exclude_statuses)})")
            params.extend(s.value for s in exclude_statuses)
        if category is not None:
            clauses.append("category = ?")
            params.append(category.value)
        if priority is not None:
            clauses.append("priority = ?")
            params.append(priority.value)
        if due_from is not None:
            clauses.append("due_at >= ?")
            params.append(float(due_from))
        if due_before is not None:
            clauses.append("due_at < ?")
            params.append(float(due_before))
        if due_until is not None:
            clauses.append("due_at <= ?")
            params.append(float(due_until))
        return " AND ".join(clauses), params

    def list_tasks(
        self,
        owner: str,
        *,
        status: TaskStatus | None = None,
        category: Category | None = None,
        priority: Priority | None = None,
        due_from: float | None = None,
        due_before: float | None = None,
        due_until: float | None = None,
        exclude_statuses: tuple[TaskStatus, ...] = (),
        include_archived: bool = False,
        order_by: str = "due_at",
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Task]:
        """
        Owner-scoped filtered query.

        due_from is inclusive, due_before exclusive, due_until inclusive.
        """
        if order_by not in _SORTABLE:
            raise ValidationError(f"cannot sort by {order_by!r}")
        where, params = self._where(
            owner,
            status=status,
            category=category,
            priority=priority,
            due_from=due_from,
            due_before=due_before,
            due_until=due_until,
            exclude_statuses=exclude_statuses,
            include_archived=include_archived,
        )
        direction = "DESC" if descending else "ASC"
        sql = f"SELECT * FROM tasks WHERE {where} ORDER BY {order_by} {direction}, id {direction}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([int(limit), max(0, int(offset))])

        with db.use_conn(self._db_path, None) as conn:
            rows = conn.execute(sql, params).fetchall()
            return self._rows_to_tasks(conn, rows)

    def count_matching(
        self,
        owner: str,
        *,
        status: TaskStatus | None = None,
        category: Category | None = None,
        priority: Priority | None = None,
        include_archived: bool = False,
    ) -> int:
        where, params = self._where(
            owner,
            status=status,
            category=category,
            priority=priority,
            due_from=None,
            due_before=None,
            due_until=None,
            exclude_statuses=(),
            include_archived=include_archived,
        )
        with db.use_conn(self._db_path, None) as conn:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM tasks WHERE {where}", params).fetchone()
        return int(n)

    def status_counts(self, owner: str) -> dict[str, int]:
        with db.use_conn(self._db_path, None) as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM tasks WHERE owner = ? AND is_archived = 0 GROUP BY status",
                (owner,),
            ).fetchall()
        return {str(r["status"]): int(r["n"]) for r in rows}

    def count_overdue(self, owner: str, *, now_ts: float) -> int:
        with db.use_conn(self._db_path, None) as conn:
            (n,) = conn.execute(
                """
                SELECT COUNT(*)
                FROM tasks
                WHERE owner = ?
                  AND is_archived = 0
                  AND due_at < ?
                  AND status NOT IN ('completed','cancelled')
                """,
                (owner, float(now_ts)),
            ).fetchone()
        return int(n)

    def stats(self, owner: str, *, now_ts: float) -> dict[str, Any]:
        counts = self.status_counts(owner)
        total = sum(counts.values())
        completed = counts.get(TaskStatus.COMPLETED.value, 0)
        return {
            "total": total,
            "completed": completed,
            "pending": counts.get(TaskStatus.PENDING.value, 0),
            "in_progress": counts.get(TaskStatus.IN_PROGRESS.value, 0),
            "cancelled": counts.get(TaskStatus.CANCELLED.value, 0),
            "overdue": self.count_overdue(owner, now_ts=now_ts),
            "completion_rate": round(completed * 100 / total) if total else 0,
        }

    # ---- scanner API ----

    def list_due_reminders(self, *, now_ts: float, limit: int = 100) -> list[Task]:
        """
        Return tasks whose current reminder occurrence is due and not yet sent.

        Spans all owners; only the scanner may call this.

        A task is due if:
        - status is not completed/cancelled and it is not archived
        - a reminder is configured (trigger_at IS NOT NULL)
        - trigger_at <= now_ts
        - (id, trigger_at) is not in the reminders-sent ledger
        """
        with db.use_conn(self._db_path, None) as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks AS t
                WHERE t.status NOT IN ('completed','cancelled')
                  AND t.is_archived = 0
                  AND t.trigger_at IS NOT NULL
                  AND t.trigger_at <= ?
                  AND NOT EXISTS (
                    SELECT 1 FROM task_reminders_sent AS s
                    WHERE s.task_id = t.id AND s.trigger_at = t.trigger_at
                  )
                ORDER BY t.trigger_at ASC, t.id ASC
                LIMIT ?
                """,
                (float(now_ts), int(limit)),
            ).fetchall()
            return self._rows_to_tasks(conn, rows)

    def try_record_reminder_sent(
        self,
        task_id: int,
        trigger_at: float,
        *,
        now_ts: float | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """
        Compare-and-append on remindersSent.

        Appends trigger_at only if the task still exists, is still open and
        still has this trigger time. Returns True if this caller appended it;
        False means another tick already claimed the occurrence (or the task
        changed underneath us).
        """
        now = time.time() if now_ts is None else float(now_ts)
        with db.use_conn(self._db_path, conn) as c:
            cur = c.execute(
                """
                INSERT OR IGNORE INTO task_reminders_sent(task_id, trigger_at, sent_at)
                SELECT id, trigger_at, ?
                FROM tasks
                WHERE id = ?
                  AND trigger_at = ?
                  AND status NOT IN ('completed','cancelled')
                """,
                (now, int(task_id), float(trigger_at)),
            )
            return cur.rowcount == 1

    def reminders_sent(self, task_id: int) -> list[float]:
        with db.use_conn(self._db_path, None) as conn:
            return self._load_sent(conn, [int(task_id)])[int(task_id)]

    def apply_recurrence(
        self,
        task_id: int,
        *,
        expected_due_at: float,
        new_due_at: float | None,
        reminder_time: float | None,
        pattern: RecurrencePattern | None,
        finished: bool,
        now_ts: float | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """
        Move a recurring task to its next occurrence (or complete it).

        Conditional on due_at still being expected_due_at so two overlapping
        ticks cannot advance the same occurrence twice. Returns True if applied.

        With `conn` the write joins the caller's transaction (the scanner
        commits it together with the occurrence claim).
        """
        now = time.time() if now_ts is None else float(now_ts)
        scope = db.use_conn(self._db_path, conn) if conn is not None else db.transaction(self._db_path)
        with scope as c:
            row = c.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            if row is None:
                return False
            task = self._rows_to_tasks(c, [row])[0]
            if task.due_at != float(expected_due_at):
                return False
            advanced = _next_occurrence(
                task,
                finished=finished,
                new_due_at=new_due_at,
                reminder_time=reminder_time,
                pattern=pattern,
                now_ts=now,
            )
            self._write(c, task_id, self._task_values(advanced), now)

        logger.info(
            "Recurrence applied task_id=%s finished=%s next_due_at=%s",
            task_id,
            finished,
            new_due_at,
        )
        return True
