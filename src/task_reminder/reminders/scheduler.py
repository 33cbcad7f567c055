# src/task_reminder/reminders/scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

A small polling loop around ReminderScanner.scan_once():
- tick every interval_seconds (the clock and the sleep are injectable),
- log and swallow a failed tick so the next one still runs,
- stop on task cancellation or when stop_event is set.

ReminderScheduler runs the loop on its own event loop in a background thread,
so the blocking console REPL can run in the main thread. The delivery clients
(httpx pool) are started and closed inside that loop.
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from ..core.clock import SystemClock
from ..core.ports import Clock
from ..delivery.clients import DeliveryClients
from .scanner import ReminderScanner, ScanReport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Ticker:
    """Fixed-rate pacing: waits out whatever is left of the interval after a tick."""

    def __init__(
        self,
        interval_seconds: float = 60.0,
        *,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.interval_seconds = max(0.5, float(interval_seconds))
        self._clock = clock or SystemClock()
        self._sleep = sleep

    async def wait(self, tick_started_at: float) -> None:
        elapsed = self._clock.now() - tick_started_at
        await self._sleep(max(0.0, self.interval_seconds - elapsed))


async def run_reminder_scheduler(
        scanner: ReminderScanner,
        ticker: Ticker | None = None,
        *,
        stop_event: asyncio.Event | None = None,
        max_ticks: int | None = None,
        on_report: Callable[[ScanReport], None] | None = None,
) -> None:
    """
    Run scan ticks until cancelled, stop_event is set or max_ticks is reached.

    A tick never raises out of this loop: scanner failures are logged and the
    loop keeps its cadence.
    """
    ticker = ticker or Ticker(clock=scanner.clock)
    ticks = 0

    while stop_event is None or not stop_event.is_set():
        started = scanner.clock.now()
        try:
            report = await scanner.scan_once()
            if on_report is not None:
                on_report(report)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reminder scan tick failed")

        ticks += 1
        if max_ticks is not None and ticks >= max_ticks:
            break

        if stop_event is None:
            await ticker.wait(started)
            continue

        # Wake up early if asked to stop.
        sleeper = asyncio.ensure_future(ticker.wait(started))
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (sleeper, stopper):
                fut.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await fut

    logger.info("Reminder scheduler loop finished after %s tick(s)", ticks)


class ReminderScheduler:
    """
    Background-thread runner for the scheduler loop.

    Other threads can hand coroutines to the scheduler's loop with run(), which
    is how the console triggers a manual scan or a test notification using the
    same started delivery clients.
    """

    def __init__(
        self,
        scanner: ReminderScanner,
        clients: DeliveryClients,
        *,
        interval_seconds: float = 60.0,
    ) -> None:
        self._scanner = scanner
        self._clients = clients
        self._interval = float(interval_seconds)
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, *, ready_timeout: float = 5.0) -> bool:
        if self.running:
            return True

        ready = threading.Event()

        def runner() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._loop = loop
            self._stop_event = asyncio.Event()
            ready.set()
            try:
                loop.run_until_complete(self._main())
            except Exception:
                logger.exception("Reminder scheduler crashed.")
            finally:
                with contextlib.suppress(Exception):
                    loop.run_until_complete(loop.shutdown_asyncgens())
                with contextlib.suppress(Exception):
                    loop.close()

        self._thread = threading.Thread(target=runner, name="reminder-scheduler", daemon=True)
        self._thread.start()

        if not ready.wait(timeout=ready_timeout) or self._loop is None:
            logger.error("Reminder scheduler thread did not initialize properly.")
            return False

        logger.info("Reminder scheduler started (interval=%ss).", self._interval)
        return True

    async def _main(self) -> None:
        assert self._stop_event is not None
        async with self._clients:
            await run_reminder_scheduler(
                self._scanner,
                Ticker(self._interval, clock=self._scanner.clock),
                stop_event=self._stop_event,
            )

    def run(self, coro: Coroutine[Any, Any, T], *, timeout: float | None = 60.0) -> T:
        """Run a coroutine on the scheduler loop and wait for its result."""
        loop = self._loop
        if loop is None or not self.running:
            coro.close()
            raise RuntimeError("Reminder scheduler is not running")
        return asyncio.run_coroutine_threadsafe(coro, loop).result(timeout=timeout)

    def stop(self) -> None:
        loop, stop_event = self._loop, self._stop_event
        if loop is None or stop_event is None:
            return
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            # Loop already closed.
            logger.debug("Scheduler loop already closed.")

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
