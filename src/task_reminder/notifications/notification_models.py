# src/task_reminder/notifications/notification_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class NotificationType(StrEnum):
    REMINDER = "reminder"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    ASSIGNED = "assigned"
    COMMENT = "comment"
    TEST = "test"


class DeliveryMethod(StrEnum):
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in-app"


class DeliveryStatus(StrEnum):
    """
    Retry bookkeeping, orthogonal to is_delivered.

    - pending: not delivered yet, eligible for (re)delivery
    - delivered: is_delivered is true
    - failed: gave up after the maximum number of attempts
    """

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


TITLE_MAX = 200
MESSAGE_MAX = 500


@dataclass(slots=True)
class Notification:
    id: int
    owner: str
    task_id: int | None
    type: NotificationType
    title: str
    message: str
    delivery_method: DeliveryMethod
    scheduled_for: float
    created_at: float

    is_delivered: bool = False
    delivered_at: float | None = None
    is_read: bool = False
    read_at: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    next_attempt_at: float | None = None
