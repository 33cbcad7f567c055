# src/task_reminder/cli/main.py

"""
CLI entrypoint.

Sets up logging and AppState, runs the reminder scheduler on a background
thread with its own asyncio loop, and keeps the admin console (when
enabled) on the main thread.
"""

from __future__ import annotations

import logging
import signal
import threading

from ..config import get_settings
from ..logging_setup import setup_logging
from ..reminders.scheduler import ReminderScheduler
from .bootstrap import create_initial_state
from .console import run_console_loop

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle(signum, _frame) -> None:
        logger.info("Signal %s received, stopping.", signal.Signals(signum).name)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handle)
        except (ValueError, OSError):
            # Not on the main thread, or unsupported on this platform.
            logger.debug("Cannot install handler for %s", sig)


def main() -> None:
    settings = get_settings()

    console_level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO
    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info(
        "Starting %s (db=%s, tz=%s, log=%s)",
        settings.app_name,
        settings.db_path,
        settings.timezone,
        log_file,
    )

    state = create_initial_state(settings=settings)
    scheduler = ReminderScheduler(
        state.scanner,
        state.clients,
        interval_seconds=settings.scan_interval_seconds,
    )
    if scheduler.start():
        state.scheduler = scheduler

    try:
        if settings.console_enabled:
            # Ctrl+C reaches input() as KeyboardInterrupt.
            run_console_loop(state)
        else:
            stop = threading.Event()
            _install_signal_handlers(stop)
            logger.info("Console disabled; scanning every %.0fs until Ctrl+C.", settings.scan_interval_seconds)
            stop.wait()
    finally:
        scheduler.stop()
        scheduler.join(timeout=10.0)
        logger.info("Stopped.")


if __name__ == "__main__":
    main()
