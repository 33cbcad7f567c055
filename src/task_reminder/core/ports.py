# src/task_reminder/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scanner and the lifecycle manager depend on Protocols instead of concrete
implementations. This keeps transports/storage swappable and lets tests drive
everything with a fake clock and a scripted gateway.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, ContextManager, Protocol


class Clock(Protocol):
    """Injectable "now" as POSIX seconds."""

    def now(self) -> float: ...


@dataclass(slots=True, frozen=True)
class DeliveryPayload:
    """
    What a transport needs to deliver one notification.

    method is one of the DeliveryMethod values; targets are resolved from the
    owner's settings before the gateway is called.
    """

    method: str
    title: str
    body: str
    target_tokens: tuple[str, ...] = ()
    target_email: str | None = None
    data: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    success: bool
    error_message: str | None = None
    error_category: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def ok(cls, **metadata: Any) -> DeliveryResult:
        return cls(success=True, metadata=metadata or None)

    @classmethod
    def failure(cls, message: str, category: str = "error") -> DeliveryResult:
        return cls(success=False, error_message=message, error_category=category)


class DeliveryGateway(Protocol):
    """
    Transport-side port: push/email/in-app delivery.

    Must not raise: failures are reported as DeliveryResult(success=False) so
    the scanner can carry on with other tasks.
    """

    def deliver(self, payload: DeliveryPayload) -> Awaitable[DeliveryResult]: ...


class UserSettingsProvider(Protocol):
    # Returns NotificationPreferences (kept as Any to avoid import coupling).
    def get_preferences(self, owner: str) -> Any: ...


class TaskRepo(Protocol):
    # Claim, notification insert and recurrence advance share one transaction.
    def transaction(self) -> ContextManager[Any]: ...

    # Scanner API
    def list_due_reminders(self, *, now_ts: float, limit: int = 100) -> list[Any]: ...
    def try_record_reminder_sent(
            self,
            task_id: int,
            trigger_at: float,
            *,
            now_ts: float | None = None,
            conn: Any = None,
    ) -> bool: ...
    def apply_recurrence(
            self,
            task_id: int,
            *,
            expected_due_at: float,
            new_due_at: float | None,
            reminder_time: float | None,
            pattern: Any,
            finished: bool,
            now_ts: float | None = None,
            conn: Any = None,
    ) -> bool: ...

    def get_task(self, task_id: int, *, conn: Any = None) -> Any: ...


class NotificationRepo(Protocol):
    def create_notification(
            self,
            *,
            owner: str,
            type: Any,
            title: str,
            message: str,
            delivery_method: Any,
            scheduled_for: float,
            task_id: int | None = None,
            metadata: dict[str, Any] | None = None,
            next_attempt_at: float | None = None,
            now_ts: float | None = None,
            conn: Any = None,
    ) -> int | None: ...

    def get_notification(self, notification_id: int) -> Any: ...
    def list_retryable(self, *, now_ts: float, limit: int = 100) -> list[Any]: ...
    def try_claim_delivery(self, notification_id: int, *, now_ts: float, lease_until: float) -> bool: ...
    def mark_delivered(self, notification_id: int, *, now_ts: float | None = None) -> bool: ...
    def record_delivery_failure(
            self,
            notification_id: int,
            *,
            error: str,
            next_attempt_at: float | None,
            permanent: bool,
            now_ts: float | None = None,
    ) -> None: ...
