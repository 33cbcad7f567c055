# src/task_reminder/cli/console.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..core.state import AppState
from .commands import registry as command_registry

logger = logging.getLogger(__name__)

_EXIT_WORDS = frozenset({"/exit", "/quit", "/q"})


class ConsoleOutput:
    """Prints console lines stamped with the app clock in the app timezone."""

    def __init__(self, state: AppState) -> None:
        self._state = state

    def stamp(self) -> str:
        now = datetime.fromtimestamp(self._state.clock.now(), tz=self._state.tz)
        return now.strftime("%Y-%m-%d %H:%M:%S")

    def line(self, text: str) -> None:
        print(f"[{self.stamp()}] {text}", flush=True)

    def echo_input(self, text: str) -> None:
        # On a terminal, overwrite the raw prompt line with a stamped copy.
        stamped = f"[{self.stamp()}] >>> {text}"
        if not sys.stdout.isatty():
            return
        try:
            sys.stdout.write("\033[1A\033[2K\r" + stamped + "\n")
            sys.stdout.flush()
        except OSError:
            pass


def run_console_loop(state: AppState) -> None:
    """Blocking admin REPL; returns on /exit, EOF or Ctrl+C."""
    out = ConsoleOutput(state)
    scheduler_state = "running" if state.scheduler is not None and state.scheduler.running else "stopped"
    logger.info("Admin console started (scheduler %s).", scheduler_state)
    out.line(f"[CONSOLE] tz={state.tz}, scheduler {scheduler_state}. /help lists commands, /exit quits.")

    while True:
        try:
            line = input(">>> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            logger.info("Console input closed, exiting.")
            break

        if not line:
            continue
        out.echo_input(line)

        if line.lower() in _EXIT_WORDS:
            break

        try:
            response = command_registry.handle(state, line, emit=out.line)
        except Exception:
            logger.exception("Console command failed: %s", line)
            response = "Internal error while handling a command."

        out.line(response if response is not None else "Commands start with '/'. Use /help to list them.")

    logger.info("Admin console finished.")
