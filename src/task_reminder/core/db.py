# src/task_reminder/core/db.py

"""
SQLite connection helpers shared by the stores.

Tasks, notifications and user settings live in one database file so that the
task -> notification cascade and the scanner's claim+insert can run inside a
single transaction.

Thread-safety:
- each call opens its own connection; nothing is shared across threads
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=30.0)
    conn.row_factory = sqlite3.Row
    with contextlib.suppress(Exception):
        conn.execute("PRAGMA journal_mode=WAL")
    # Off by default in SQLite; the notification cascade depends on it.
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextlib.contextmanager
def transaction(db_path: str | Path) -> Iterator[sqlite3.Connection]:
    """
    BEGIN IMMEDIATE ... COMMIT, rolled back on any exception.

    IMMEDIATE takes the write lock up front so two overlapping scan ticks
    serialise on the claim instead of both reading "not sent yet".
    """
    conn = connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextlib.contextmanager
def use_conn(db_path: str | Path, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
    """
    Reuse the caller's connection (no commit: the caller owns the transaction)
    or open a short-lived one that commits on success.
    """
    if conn is not None:
        yield conn
        return
    own = connect(db_path)
    try:
        yield own
        own.commit()
    except BaseException:
        own.rollback()
        raise
    finally:
        own.close()


def add_missing_columns(cur: sqlite3.Cursor, table: str, columns: dict[str, str]) -> None:
    """Migration-safe schema evolution: ALTER TABLE only for columns not present yet."""
    cur.execute(f"PRAGMA table_info({table})")
    existing = {row["name"] for row in cur.fetchall()}
    for name, decl in columns.items():
        if name in existing:
            continue
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
        logger.info("Schema migration: %s.%s added", table, name)


def dumps(value: Any, default: str = "{}") -> str:
    if value is None:
        return default
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        logger.exception("Failed to JSON-encode value; storing %s.", default)
        return default


def loads(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        val = json.loads(raw)
    except ValueError:
        return default
    return val if isinstance(val, type(default)) else default
