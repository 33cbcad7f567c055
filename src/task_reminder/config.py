# src/task_reminder/config.py

"""Centralized settings loaded from environment variables (+ optional local .env).

Design goals:
- One Settings object for the whole service.
- No secrets required at import time (push/SMTP credentials are optional).
- Every tunable of the reminder scanner lives here, not in module constants.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

ENV_PREFIX = "REMINDER"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Real environment wins over .env.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Storage ----
    data_dir: Path
    db_path: Path

    # ---- Time ----
    timezone: str

    # ---- Reminder scanner ----
    scan_interval_seconds: float
    scan_batch_limit: int
    max_concurrency: int
    max_delivery_attempts: int
    retry_base_seconds: float
    retry_max_seconds: float

    # ---- Push transport ----
    push_enabled: bool
    push_endpoint: str
    push_access_token: Optional[str]
    push_timeout_seconds: float

    # ---- SMTP transport ----
    smtp_host: str
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    smtp_use_tls: bool
    from_email: str
    from_name: str

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)

    def validate(self) -> None:
        """Fail fast on values that would make the scanner misbehave silently."""
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"{_k('TIMEZONE')}: unknown timezone {self.timezone!r}") from None
        if self.scan_interval_seconds <= 0:
            raise ValueError(f"{_k('SCAN_INTERVAL_SECONDS')} must be > 0")
        if self.max_delivery_attempts < 1:
            raise ValueError(f"{_k('MAX_DELIVERY_ATTEMPTS')} must be >= 1")
        if self.retry_max_seconds < self.retry_base_seconds:
            raise ValueError(f"{_k('RETRY_MAX_SECONDS')} must be >= {_k('RETRY_BASE_SECONDS')}")

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "task-reminder")
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/task-reminder"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "reminders.sqlite3")

        timezone = (_env(_k("TIMEZONE"), "UTC") or "UTC").strip()

        scan_interval_seconds = _env_float(_k("SCAN_INTERVAL_SECONDS"), 60.0)
        scan_batch_limit = _env_int(_k("SCAN_BATCH_LIMIT"), 100)
        max_concurrency = _env_int(_k("MAX_CONCURRENCY"), 8)
        max_delivery_attempts = _env_int(_k("MAX_DELIVERY_ATTEMPTS"), 5)
        retry_base_seconds = _env_float(_k("RETRY_BASE_SECONDS"), 60.0)
        retry_max_seconds = _env_float(_k("RETRY_MAX_SECONDS"), 3600.0)

        push_enabled = _env_bool(_k("PUSH_ENABLED"), True)
        push_endpoint = _env(_k("PUSH_ENDPOINT"), "https://exp.host/--/api/v2/push/send")
        push_access_token = _first_env(_k("PUSH_ACCESS_TOKEN"), default=None)
        push_timeout_seconds = _env_float(_k("PUSH_TIMEOUT_SECONDS"), 10.0)

        # Accept the bare SMTP_* names too; they are what most mail hosts document.
        smtp_host = (_first_env(_k("SMTP_HOST"), "SMTP_HOST", default="") or "").strip()
        smtp_port = _env_int(_k("SMTP_PORT"), _env_int("SMTP_PORT", 587))
        smtp_username = _first_env(_k("SMTP_USERNAME"), "SMTP_USER", default=None)
        smtp_password = _first_env(_k("SMTP_PASSWORD"), "SMTP_PASS", default=None)
        smtp_use_tls = _env_bool(_k("SMTP_USE_TLS"), True)
        from_email = _first_env(_k("FROM_EMAIL"), "FROM_EMAIL", default="no-reply@localhost") or ""
        from_name = _first_env(_k("FROM_NAME"), "FROM_NAME", default="Task Reminder") or ""

        settings = Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            db_path=db_path,
            timezone=timezone,
            scan_interval_seconds=scan_interval_seconds,
            scan_batch_limit=scan_batch_limit,
            max_concurrency=max_concurrency,
            max_delivery_attempts=max_delivery_attempts,
            retry_base_seconds=retry_base_seconds,
            retry_max_seconds=retry_max_seconds,
            push_enabled=push_enabled,
            push_endpoint=push_endpoint,
            push_access_token=push_access_token,
            push_timeout_seconds=push_timeout_seconds,
            smtp_host=smtp_host,
            smtp_port=smtp_port,
            smtp_username=smtp_username,
            smtp_password=smtp_password,
            smtp_use_tls=smtp_use_tls,
            from_email=from_email,
            from_name=from_name,
        )
        settings.validate()
        return settings


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
