# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from task_reminder.cli.bootstrap import create_initial_state
from task_reminder.core.state import AppState

from .fakes import FakeClock, FakeGateway, ts


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="task-reminder-test",
        data_dir=tmp_path,
        db_path=tmp_path / "reminders.sqlite3",
        timezone="UTC",
        scan_interval_seconds=60.0,
        scan_batch_limit=100,
        max_concurrency=4,
        max_delivery_attempts=5,
        retry_base_seconds=60.0,
        retry_max_seconds=3600.0,
        # Transports off: tests inject a FakeGateway.
        push_enabled=False,
        push_endpoint="http://push.invalid/send",
        push_access_token=None,
        push_timeout_seconds=5.0,
        smtp_host="",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(ts(2025, 7, 15, 8, 0))


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock, gateway: FakeGateway) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep real SQLite stores here because their correctness
    (claims, cascades, conditional updates) is part of what we want to test.
    """
    return create_initial_state(settings=settings, clock=clock, gateway=gateway)
