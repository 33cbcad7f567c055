# src/task_reminder/users/user_settings.py

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from ..core import db
from ..core.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class NotificationPreferences:
    """Per-user delivery preferences used to pick a delivery method and target."""

    owner: str
    push_enabled: bool = True
    email_enabled: bool = False
    email: str | None = None
    device_tokens: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "push_enabled": self.push_enabled,
            "email_enabled": self.email_enabled,
            "email": self.email,
            "device_tokens": list(self.device_tokens),
        }


_UPDATABLE = frozenset({"push_enabled", "email_enabled", "email"})


class UserSettingsStore:
    """
    SQLite-backed user settings provider.

    Users without a row get defaults (push on, email off, no tokens), which
    resolves to in-app delivery until a device registers.
    """

    def __init__(self, db_path: str | Path = "reminders.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("UserSettingsStore ready db=%s", self._db_path)

    def _ensure_schema(self) -> None:
        conn = db.connect(self._db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS user_settings (
                    owner TEXT PRIMARY KEY,
                    push_enabled INTEGER NOT NULL DEFAULT 1,
                    email_enabled INTEGER NOT NULL DEFAULT 0,
                    email TEXT,
                    device_tokens TEXT NOT NULL DEFAULT '[]',
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_prefs(owner: str, row: sqlite3.Row | None) -> NotificationPreferences:
        if row is None:
            return NotificationPreferences(owner=owner)
        return NotificationPreferences(
            owner=owner,
            push_enabled=bool(row["push_enabled"]),
            email_enabled=bool(row["email_enabled"]),
            email=row["email"],
            device_tokens=tuple(str(t) for t in db.loads(row["device_tokens"], []) if t),
        )

    def _save(self, prefs: NotificationPreferences) -> None:
        with db.use_conn(self._db_path, None) as conn:
            conn.execute(
                """
                INSERT INTO user_settings(owner, push_enabled, email_enabled, email, device_tokens, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner) DO UPDATE SET
                    push_enabled = excluded.push_enabled,
                    email_enabled = excluded.email_enabled,
                    email = excluded.email,
                    device_tokens = excluded.device_tokens,
                    updated_at = excluded.updated_at
                """,
                (
                    prefs.owner,
                    1 if prefs.push_enabled else 0,
                    1 if prefs.email_enabled else 0,
                    prefs.email,
                    db.dumps(list(prefs.device_tokens), "[]"),
                    time.time(),
                ),
            )

    # ---- provider API ----

    def get_preferences(self, owner: str) -> NotificationPreferences:
        with db.use_conn(self._db_path, None) as conn:
            row = conn.execute("SELECT * FROM user_settings WHERE owner = ?", (owner,)).fetchone()
        return self._row_to_prefs(owner, row)

    def update_preferences(self, owner: str, **changes: Any) -> NotificationPreferences:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"unknown settings: {', '.join(sorted(unknown))}")
        if "email" in changes and changes["email"] is not None and "@" not in str(changes["email"]):
            raise ValidationError("email address is malformed")

        prefs = replace(self.get_preferences(owner), **changes)
        self._save(prefs)
        logger.info("Notification settings updated owner=%s fields=%s", owner, sorted(changes))
        return prefs

    def register_device_token(self, owner: str, token: str) -> NotificationPreferences:
        token = (token or "").strip()
        if not token:
            raise ValidationError("device token is required")
        prefs = self.get_preferences(owner)
        if token not in prefs.device_tokens:
            prefs = replace(prefs, device_tokens=(*prefs.device_tokens, token))
            self._save(prefs)
            logger.info("Device token registered owner=%s tokens=%s", owner, len(prefs.device_tokens))
        return prefs

    def remove_device_token(self, owner: str, token: str) -> NotificationPreferences:
        prefs = self.get_preferences(owner)
        if token in prefs.device_tokens:
            prefs = replace(prefs, device_tokens=tuple(t for t in prefs.device_tokens if t != token))
            self._save(prefs)
            logger.info("Device token removed owner=%s", owner)
        return prefs
