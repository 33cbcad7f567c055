# src/task_reminder/notifications/notification_store.py

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..core import db
from ..core.errors import NotFoundError, ValidationError
from .notification_models import (
    MESSAGE_MAX,
    TITLE_MAX,
    DeliveryMethod,
    DeliveryStatus,
    Notification,
    NotificationType,
)

logger = logging.getLogger(__name__)

_NOTIFICATION_COLUMNS = {
    "task_id": "INTEGER REFERENCES tasks(id) ON DELETE CASCADE",
    "type": "TEXT NOT NULL DEFAULT 'reminder'",
    "title": "TEXT NOT NULL DEFAULT ''",
    "message": "TEXT NOT NULL DEFAULT ''",
    "delivery_method": "TEXT NOT NULL DEFAULT 'in-app'",
    "scheduled_for": "REAL NOT NULL DEFAULT 0",
    "created_at": "REAL NOT NULL DEFAULT 0",
    "updated_at": "REAL NOT NULL DEFAULT 0",
    "is_delivered": "INTEGER NOT NULL DEFAULT 0",
    "delivered_at": "REAL",
    "is_read": "INTEGER NOT NULL DEFAULT 0",
    "read_at": "REAL",
    "metadata": "TEXT NOT NULL DEFAULT '{}'",
    "delivery_status": "TEXT NOT NULL DEFAULT 'pending'",
    "attempts": "INTEGER NOT NULL DEFAULT 0",
    "last_error": "TEXT",
    "next_attempt_at": "REAL",
}


class NotificationStore:
    """
    SQLite notification store.

    Lives in the same database file as the TaskStore: notifications.task_id
    references tasks(id) with ON DELETE CASCADE.

    Delivery attempts are lease-based:
    - next_attempt_at is the earliest time anyone may attempt delivery
    - a claimer pushes it forward by a lease before calling the gateway
    - success clears it, failure sets it to the backoff time
    so a crashed attempt is retried after the lease, and two schedulers never
    deliver the same row concurrently.
    """

    def __init__(self, db_path: str | Path = "reminders.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("NotificationStore ready db=%s", self._db_path)

    def close(self) -> None:
        return

    # ---- low-level helpers ----

    def _ensure_schema(self) -> None:
        conn = db.connect(self._db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner TEXT NOT NULL,
                    task_id INTEGER REFERENCES tasks(id) ON DELETE CASCADE
                )
                """
            )
            db.add_missing_columns(cur, "notifications", _NOTIFICATION_COLUMNS)

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_owner_created "
                "ON notifications(owner, created_at)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_owner_read ON notifications(owner, is_read)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_retry "
                "ON notifications(delivery_status, next_attempt_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notifications_task ON notifications(task_id)")
            # At most one reminder notification per occurrence, whatever the scanner does.
            cur.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_notifications_reminder_occurrence "
                "ON notifications(task_id, scheduled_for) WHERE type = 'reminder'"
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        try:
            ntype = NotificationType(row["type"])
        except ValueError:
            ntype = NotificationType.REMINDER
        try:
            method = DeliveryMethod(row["delivery_method"])
        except ValueError:
            method = DeliveryMethod.IN_APP
        try:
            status = DeliveryStatus(row["delivery_status"])
        except ValueError:
            status = DeliveryStatus.PENDING

        return Notification(
            id=int(row["id"]),
            owner=str(row["owner"]),
            task_id=int(row["task_id"]) if row["task_id"] is not None else None,
            type=ntype,
            title=str(row["title"] or ""),
            message=str(row["message"] or ""),
            delivery_method=method,
            scheduled_for=float(row["scheduled_for"] or 0.0),
            created_at=float(row["created_at"] or 0.0),
            is_delivered=bool(row["is_delivered"]),
            delivered_at=row["delivered_at"],
            is_read=bool(row["is_read"]),
            read_at=row["read_at"],
            metadata=db.loads(row["metadata"], {}),
            delivery_status=status,
            attempts=int(row["attempts"] or 0),
            last_error=row["last_error"],
            next_attempt_at=row["next_attempt_at"],
        )

    # ---- create / read ----

    def create_notification(
        self,
        *,
        owner: str,
        type: NotificationType,
        title: str,
        message: str,
        delivery_method: DeliveryMethod,
        scheduled_for: float,
        task_id: int | None = None,
        metadata: dict[str, Any] | None = None,
        next_attempt_at: float | None = None,
        now_ts: float | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> int | None:
        """
        Insert an undelivered notification.

        Returns the new id, or None if a reminder for the same
        (task_id, scheduled_for) occurrence already exists.
        """
        if not owner:
            raise ValidationError("owner is required")
        title = (title or "").strip()
        message = (message or "").strip()
        if not title or len(title) > TITLE_MAX:
            raise ValidationError(f"title must be 1..{TITLE_MAX} characters")
        if not message or len(message) > MESSAGE_MAX:
            raise ValidationError(f"message must be 1..{MESSAGE_MAX} characters")

        now = time.time() if now_ts is None else float(now_ts)
        with db.use_conn(self._db_path, conn) as c:
            cur = c.execute(
                """
                INSERT OR IGNORE INTO notifications(
                    owner, task_id, type, title, message, delivery_method,
                    scheduled_for, created_at, updated_at, metadata,
                    delivery_status, attempts, next_attempt_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', 0, ?)
                """,
                (
                    owner,
                    task_id,
                    type.value,
                    title,
                    message,
                    delivery_method.value,
                    float(scheduled_for),
                    now,
                    now,
                    db.dumps(metadata),
                    next_attempt_at,
                ),
            )
            if cur.rowcount != 1:
                logger.info(
                    "Duplicate notification ignored owner=%s task_id=%s scheduled_for=%s",
                    owner,
                    task_id,
                    scheduled_for,
                )
                return None
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for notifications insert")
        logger.debug("Notification created id=%s owner=%s type=%s", rowid, owner, type.value)
        return int(rowid)

    def get_notification(self, notification_id: int) -> Notification:
        with db.use_conn(self._db_path, None) as conn:
            row = conn.execute("SELECT * FROM notifications WHERE id = ?", (int(notification_id),)).fetchone()
        if row is None:
            raise NotFoundError(f"notification {notification_id} not found")
        return self._row_to_notification(row)

    def list_for_owner(self, owner: str, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        sql = "SELECT * FROM notifications WHERE owner = ?"
        params: list[Any] = [owner]
        if unread_only:
            sql += " AND is_read = 0"
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))
        with db.use_conn(self._db_path, None) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def list_for_task(self, task_id: int) -> list[Notification]:
        with db.use_conn(self._db_path, None) as conn:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE task_id = ? ORDER BY scheduled_for ASC, id ASC",
                (int(task_id),),
            ).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def unread_count(self, owner: str) -> int:
        with db.use_conn(self._db_path, None) as conn:
            (n,) = conn.execute(
                "SELECT COUNT(*) FROM notifications WHERE owner = ? AND is_read = 0", (owner,)
            ).fetchone()
        return int(n)

    # ---- delivery state ----

    def list_retryable(self, *, now_ts: float, limit: int = 100) -> list[Notification]:
        """Undelivered, not permanently failed, and past their next_attempt_at."""
        with db.use_conn(self._db_path, None) as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM notifications
                WHERE is_delivered = 0
                  AND delivery_status = 'pending'
                  AND next_attempt_at IS NOT NULL
                  AND next_attempt_at <= ?
                ORDER BY next_attempt_at ASC, id ASC
                LIMIT ?
                """,
                (float(now_ts), int(limit)),
            ).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def try_claim_delivery(self, notification_id: int, *, now_ts: float, lease_until: float) -> bool:
        """Atomically take the right to attempt delivery until lease_until."""
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute(
                """
                UPDATE notifications
                SET next_attempt_at = ?, updated_at = ?
                WHERE id = ?
                  AND is_delivered = 0
                  AND delivery_status = 'pending'
                  AND next_attempt_at IS NOT NULL
                  AND next_attempt_at <= ?
                """,
                (float(lease_until), float(now_ts), int(notification_id), float(now_ts)),
            )
            return cur.rowcount == 1

    def mark_delivered(self, notification_id: int, *, now_ts: float | None = None) -> bool:
        """
        undelivered -> delivered. deliveredAt is set once; never reversed.

        Returns False if it was already delivered (or does not exist).
        """
        now = time.time() if now_ts is None else float(now_ts)
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute(
                """
                UPDATE notifications
                SET is_delivered = 1,
                    delivered_at = COALESCE(delivered_at, ?),
                    delivery_status = 'delivered',
                    attempts = attempts + 1,
                    last_error = NULL,
                    next_attempt_at = NULL,
                    updated_at = ?
                WHERE id = ?
                  AND is_delivered = 0
                """,
                (now, now, int(notification_id)),
            )
            return cur.rowcount == 1

    def record_delivery_failure(
        self,
        notification_id: int,
        *,
        error: str,
        next_attempt_at: float | None,
        permanent: bool,
        now_ts: float | None = None,
    ) -> None:
        now = time.time() if now_ts is None else float(now_ts)
        status = DeliveryStatus.FAILED if permanent else DeliveryStatus.PENDING
        with db.use_conn(self._db_path, None) as conn:
            conn.execute(
                """
                UPDATE notifications
                SET attempts = attempts + 1,
                    last_error = ?,
                    delivery_status = ?,
                    next_attempt_at = ?,
                    updated_at = ?
                WHERE id = ?
                  AND is_delivered = 0
                """,
                (
                    (error or "")[:500],
                    status.value,
                    None if permanent else next_attempt_at,
                    now,
                    int(notification_id),
                ),
            )

    # ---- read state ----

    def mark_read(self, notification_id: int, *, now_ts: float | None = None) -> bool:
        """Sets readAt only the first time; returns False if it was already read."""
        now = time.time() if now_ts is None else float(now_ts)
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute(
                """
                UPDATE notifications
                SET is_read = 1, read_at = COALESCE(read_at, ?), updated_at = ?
                WHERE id = ? AND is_read = 0
                """,
                (now, now, int(notification_id)),
            )
            return cur.rowcount == 1

    def mark_all_read(self, owner: str, *, now_ts: float | None = None) -> int:
        now = time.time() if now_ts is None else float(now_ts)
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute(
                """
                UPDATE notifications
                SET is_read = 1, read_at = COALESCE(read_at, ?), updated_at = ?
                WHERE owner = ? AND is_read = 0
                """,
                (now, now, owner),
            )
            return int(cur.rowcount)

    # ---- delete ----

    def delete_notification(self, notification_id: int) -> bool:
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute("DELETE FROM notifications WHERE id = ?", (int(notification_id),))
            return cur.rowcount == 1

    def clear_all(self, owner: str) -> int:
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute("DELETE FROM notifications WHERE owner = ?", (owner,))
            n = int(cur.rowcount)
        logger.info("Notifications cleared owner=%s count=%s", owner, n)
        return n

    def delete_for_task(self, task_id: int) -> int:
        """Explicit cleanup; deleting the task itself cascades the same way."""
        with db.use_conn(self._db_path, None) as conn:
            cur = conn.execute("DELETE FROM notifications WHERE task_id = ?", (int(task_id),))
            return int(cur.rowcount)
