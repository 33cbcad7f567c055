# src/task_reminder/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Logs on every tick; the console shows it at WARNING+ only.
_QUIET_ON_CONSOLE = ("task_reminder.reminders.scheduler",)

# Transport libraries log every request at INFO/DEBUG.
_LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosmtplib": logging.WARNING,
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    The admin console shares stderr with the log stream, so keep it short:
    - task_reminder logs pass, except the per-tick scheduler chatter
    - anything else (third-party, captured py.warnings) only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if not name.startswith("task_reminder."):
            return record.levelno >= logging.ERROR
        if name.startswith(_QUIET_ON_CONSOLE):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/task-reminder",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """
    Install a filtered console handler and a rotating file handler.

    The file (reminder.log) gets everything at file_level, including every
    scan tick, so a missing reminder can be traced afterwards. Call once,
    before the first log line. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "reminder.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    return log_file
