# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from task_reminder.cli.bootstrap import build_gateway
from task_reminder.config import Settings
from task_reminder.delivery.clients import DeliveryClients


def _clear_env(monkeypatch) -> None:
    for name in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS", "FROM_EMAIL", "FROM_NAME"):
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"REMINDER_{name}", raising=False)


def test_settings_defaults(monkeypatch) -> None:
    _clear_env(monkeypatch)
    for name in ("DATA_DIR", "DB_PATH", "TIMEZONE", "MAX_DELIVERY_ATTEMPTS", "PUSH_ENABLED"):
        monkeypatch.delenv(f"REMINDER_{name}", raising=False)

    s = Settings.from_env()

    assert s.db_path == Path(".local/task-reminder") / "reminders.sqlite3"
    assert s.timezone == "UTC"
    assert s.max_delivery_attempts == 5
    assert s.push_enabled is True
    assert s.smtp_configured is False


def test_settings_from_env(monkeypatch, tmp_path) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("REMINDER_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("REMINDER_DB_PATH", raising=False)
    monkeypatch.setenv("REMINDER_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("REMINDER_SCAN_INTERVAL_SECONDS", "15")
    monkeypatch.setenv("REMINDER_MAX_CONCURRENCY", "not-a-number")
    monkeypatch.setenv("REMINDER_PUSH_ENABLED", "off")
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "2525")

    s = Settings.from_env()

    assert s.db_path == tmp_path / "reminders.sqlite3"
    assert s.timezone == "Europe/Berlin"
    assert s.scan_interval_seconds == 15.0
    assert s.max_concurrency == 8
    assert s.push_enabled is False
    assert s.smtp_host == "smtp.example.com"
    assert s.smtp_port == 2525

    clients = DeliveryClients.from_settings(s)
    assert clients.smtp is not None
    assert clients.smtp.port == 2525
    assert build_gateway(s, clients).methods == {"in-app", "email"}


def test_gateway_without_transports_is_in_app_only(settings) -> None:
    gateway = build_gateway(settings, DeliveryClients.from_settings(settings))
    assert gateway.methods == {"in-app"}

    settings.push_enabled = True
    assert build_gateway(settings, DeliveryClients.from_settings(settings)).methods == {"in-app", "push"}


def test_invalid_settings_fail_fast(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("REMINDER_TIMEZONE", "Mars/Olympus_Mons")
    with pytest.raises(ValueError, match="unknown timezone"):
        Settings.from_env()

    monkeypatch.setenv("REMINDER_TIMEZONE", "UTC")
    monkeypatch.setenv("REMINDER_RETRY_BASE_SECONDS", "600")
    monkeypatch.setenv("REMINDER_RETRY_MAX_SECONDS", "60")
    with pytest.raises(ValueError, match="RETRY_MAX_SECONDS"):
        Settings.from_env()
