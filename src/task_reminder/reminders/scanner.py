# src/task_reminder/reminders/scanner.py

from __future__ import annotations

"""
Reminder scanner.

One call to scan_once() is one tick:
- find tasks whose reminder trigger time has passed and is not in remindersSent
- per task, in one transaction: compare-and-append the trigger time, create the
  reminder notification (at most one per occurrence) and move a recurring task
  to its next occurrence
- deliver new notifications (bounded concurrency), then re-attempt earlier
  failures whose backoff has elapsed
- mark delivered, or record the failure for a later tick

Per-task failures are logged and counted; they never abort the tick.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timezone, tzinfo

from ..core.clock import SystemClock, to_datetime
from ..core.ports import (
    Clock,
    DeliveryGateway,
    DeliveryPayload,
    DeliveryResult,
    NotificationRepo,
    TaskRepo,
    UserSettingsProvider,
)
from ..delivery.gateway import payload_for, select_delivery
from ..notifications.notification_models import (
    MESSAGE_MAX,
    TITLE_MAX,
    Notification,
    NotificationType,
)
from ..tasks import recurrence
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """
    Exponential backoff for failed deliveries.

    After max_attempts failures the notification is marked failed for good.
    lease_seconds is how long a delivery attempt may take before another
    scheduler may assume it crashed and try again.
    """

    max_attempts: int = 5
    base_seconds: float = 60.0
    max_seconds: float = 3600.0
    lease_seconds: float = 300.0

    def next_attempt_at(self, failed_attempts: int, now_ts: float) -> float | None:
        """None means give up."""
        if failed_attempts >= self.max_attempts:
            return None
        delay = self.base_seconds * (2 ** max(0, failed_attempts - 1))
        return float(now_ts) + min(delay, self.max_seconds)


@dataclass(slots=True)
class ScanReport:
    now_ts: float = 0.0
    scanned: int = 0
    fired: int = 0
    skipped: int = 0
    delivered: int = 0
    failed: int = 0
    gave_up: int = 0
    retried: int = 0
    advanced: int = 0
    finished: int = 0
    errors: int = 0
    notification_ids: list[int] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class _DeliveryJob:
    notification_id: int
    task_id: int | None
    owner: str
    payload: DeliveryPayload
    attempts: int


def compose_reminder(task: Task, trigger_at: float, tz: tzinfo) -> tuple[str, str, dict[str, object]]:
    due_local = to_datetime(task.due_at, tz)
    due_text = due_local.strftime("%Y-%m-%d %H:%M %Z").strip()

    title = f"Task Reminder: {task.title}"
    if len(title) > TITLE_MAX:
        title = title[: TITLE_MAX - 3].rstrip() + "..."
    message = f'"{task.title}" is due {due_text}'
    if len(message) > MESSAGE_MAX:
        message = message[: MESSAGE_MAX - 3].rstrip() + "..."

    metadata: dict[str, object] = {
        "task_id": task.id,
        "trigger_at": trigger_at,
        "due_at": task.due_at,
        "due": due_text,
        "priority": task.priority.value,
        "category": task.category.value,
    }
    return title, message, metadata


class ReminderScanner:
    def __init__(
        self,
        task_store: TaskRepo,
        notification_store: NotificationRepo,
        gateway: DeliveryGateway,
        user_settings: UserSettingsProvider,
        *,
        clock: Clock | None = None,
        tz: tzinfo = timezone.utc,
        batch_limit: int = 100,
        max_concurrency: int = 8,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._tasks = task_store
        self._notifications = notification_store
        self._gateway = gateway
        self._user_settings = user_settings
        self._clock = clock or SystemClock()
        self._tz = tz
        self._batch_limit = max(1, int(batch_limit))
        self._max_concurrency = max(1, int(max_concurrency))
        self._retry = retry_policy or RetryPolicy()
        self._tick_lock = asyncio.Lock()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    # ---- tick ----

    async def scan_once(self, now_ts: float | None = None) -> ScanReport:
        async with self._tick_lock:
            now = self._clock.now() if now_ts is None else float(now_ts)
            report = ScanReport(now_ts=now)

            jobs = self._fire_due(now, report)
            busy = {j.task_id for j in jobs if j.task_id is not None}
            jobs.extend(self._claim_retries(now, report, busy))

            if jobs:
                sem = asyncio.Semaphore(self._max_concurrency)
                await asyncio.gather(*(self._deliver(job, sem, report) for job in jobs))

            if report.fired or report.retried or report.errors:
                logger.info(
                    "Scan tick: scanned=%s fired=%s delivered=%s failed=%s retried=%s skipped=%s errors=%s",
                    report.scanned,
                    report.fired,
                    report.delivered,
                    report.failed,
                    report.retried,
                    report.skipped,
                    report.errors,
                )
            return report

    # ---- phase 1: new occurrences ----

    def _fire_due(self, now: float, report: ScanReport) -> list[_DeliveryJob]:
        try:
            due = self._tasks.list_due_reminders(now_ts=now, limit=self._batch_limit)
        except Exception:
            logger.exception("list_due_reminders failed")
            report.errors += 1
            return []

        report.scanned = len(due)
        jobs: list[_DeliveryJob] = []
        for task in due:
            try:
                job = self._fire_one(task, now, report)
            except Exception:
                logger.exception("Reminder processing failed task_id=%s", getattr(task, "id", None))
                report.errors += 1
                continue
            if job is not None:
                jobs.append(job)
        return jobs

    def _fire_one(self, task: Task, now: float, report: ScanReport) -> _DeliveryJob | None:
        trigger_at = task.trigger_at
        if trigger_at is None or trigger_at > now:
            # Query and model disagree (edited between query and here); try next tick.
            report.skipped += 1
            return None

        prefs = self._user_settings.get_preferences(task.owner)
        method, _, _ = select_delivery(prefs, available=getattr(self._gateway, "methods", None))
        title, message, metadata = compose_reminder(task, trigger_at, self._tz)
        # Computed up front: if it fails, nothing is claimed and the next tick retries.
        outcome = recurrence.advance(task, self._tz, now_ts=now) if task.is_recurring else None

        # The claim, the notification row and the recurrence advance commit
        # together, so a claimed occurrence always leaves the task on its next one.
        with self._tasks.transaction() as conn:
            claimed = self._tasks.try_record_reminder_sent(task.id, trigger_at, now_ts=now, conn=conn)
            if not claimed:
                report.skipped += 1
                logger.debug("Occurrence already claimed task_id=%s trigger_at=%s", task.id, trigger_at)
                return None
            notification_id = self._notifications.create_notification(
                owner=task.owner,
                task_id=task.id,
                type=NotificationType.REMINDER,
                title=title,
                message=message,
                delivery_method=method,
                scheduled_for=trigger_at,
                metadata=metadata,
                next_attempt_at=now + self._retry.lease_seconds,
                now_ts=now,
                conn=conn,
            )
            applied = outcome is not None and self._tasks.apply_recurrence(
                task.id,
                expected_due_at=task.due_at,
                new_due_at=outcome.due_at,
                reminder_time=outcome.reminder_time,
                pattern=outcome.pattern,
                finished=outcome.finished,
                now_ts=now,
                conn=conn,
            )

        if applied:
            if outcome.finished:
                report.finished += 1
            else:
                report.advanced += 1
        elif outcome is not None:
            logger.debug("Recurrence not applied task_id=%s expected_due_at=%s", task.id, task.due_at)

        if notification_id is None:
            report.skipped += 1
            return None

        report.fired += 1
        report.notification_ids.append(notification_id)
        logger.info(
            "Reminder fired task_id=%s owner=%s trigger_at=%s notification_id=%s method=%s",
            task.id,
            task.owner,
            trigger_at,
            notification_id,
            method.value,
        )

        notification = self._notifications.get_notification(notification_id)
        return _DeliveryJob(
            notification_id=notification_id,
            task_id=task.id,
            owner=task.owner,
            payload=payload_for(notification, prefs),
            attempts=notification.attempts,
        )

    # ---- phase 2: retries ----

    def _claim_retries(self, now: float, report: ScanReport, busy: set[int]) -> list[_DeliveryJob]:
        try:
            candidates = self._notifications.list_retryable(now_ts=now, limit=self._batch_limit)
        except Exception:
            logger.exception("list_retryable failed")
            report.errors += 1
            return []

        jobs: list[_DeliveryJob] = []
        for n in candidates:
            # One occurrence in flight per task.
            if n.task_id is not None and n.task_id in busy:
                continue
            try:
                if not self._notifications.try_claim_delivery(
                    n.id, now_ts=now, lease_until=now + self._retry.lease_seconds
                ):
                    continue
                prefs = self._user_settings.get_preferences(n.owner)
                jobs.append(self._job_for(n, prefs))
            except Exception:
                logger.exception("Retry claim failed notification_id=%s", n.id)
                report.errors += 1
                continue
            if n.task_id is not None:
                busy.add(n.task_id)
            report.retried += 1
        return jobs

    @staticmethod
    def _job_for(notification: Notification, prefs) -> _DeliveryJob:
        return _DeliveryJob(
            notification_id=notification.id,
            task_id=notification.task_id,
            owner=notification.owner,
            payload=payload_for(notification, prefs),
            attempts=notification.attempts,
        )

    # ---- delivery ----

    async def _deliver(self, job: _DeliveryJob, sem: asyncio.Semaphore, report: ScanReport) -> None:
        async with sem:
            try:
                result = await self._gateway.deliver(job.payload)
            except Exception as e:
                # Gateways should not raise; treat it as a failed attempt.
                logger.exception("Gateway raised notification_id=%s", job.notification_id)
                result = DeliveryResult.failure(f"{type(e).__name__}: {e}", category="exception")

        try:
            self.record_result(job.notification_id, job.owner, job.attempts, result, report)
        except Exception:
            logger.exception("Recording delivery result failed notification_id=%s", job.notification_id)
            report.errors += 1

    def record_result(
        self,
        notification_id: int,
        owner: str,
        attempts_before: int,
        result: DeliveryResult,
        report: ScanReport | None = None,
    ) -> None:
        now = self._clock.now()
        if result.success:
            self._notifications.mark_delivered(notification_id, now_ts=now)
            if report is not None:
                report.delivered += 1
            logger.debug("Notification delivered id=%s owner=%s", notification_id, owner)
        else:
            failed_attempts = attempts_before + 1
            next_at = self._retry.next_attempt_at(failed_attempts, now)
            self._notifications.record_delivery_failure(
                notification_id,
                error=result.error_message or "delivery failed",
                next_attempt_at=next_at,
                permanent=next_at is None,
                now_ts=now,
            )
            if report is not None:
                report.failed += 1
                if next_at is None:
                    report.gave_up += 1
            if next_at is None:
                logger.warning(
                    "Delivery failed permanently id=%s owner=%s attempts=%s error=%s",
                    notification_id,
                    owner,
                    failed_attempts,
                    result.error_message,
                )
            else:
                logger.warning(
                    "Delivery failed id=%s owner=%s attempt=%s category=%s retry_at=%s",
                    notification_id,
                    owner,
                    failed_attempts,
                    result.error_category,
                    next_at,
                )

        self._prune_tokens(owner, result)

    def _prune_tokens(self, owner: str, result: DeliveryResult) -> None:
        stale = (result.metadata or {}).get("unregistered_tokens") or []
        remove = getattr(self._user_settings, "remove_device_token", None)
        if not stale or remove is None:
            return
        for token in stale:
            try:
                remove(owner, token)
            except Exception:
                logger.exception("Failed to prune device token owner=%s", owner)
