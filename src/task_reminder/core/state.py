# src/task_reminder/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from .ports import Clock, DeliveryGateway

if TYPE_CHECKING:
    from ..delivery.clients import DeliveryClients
    from ..notifications.lifecycle import NotificationLifecycle
    from ..notifications.notification_store import NotificationStore
    from ..reminders.scanner import ReminderScanner
    from ..reminders.scheduler import ReminderScheduler
    from ..tasks.task_store import TaskStore
    from ..users.user_settings import UserSettingsStore


@dataclass
class AppState:
    """
    Runtime application state.

    Owns the stores, the delivery gateway and the clock so every operation
    receives them explicitly.
    """

    settings: Any

    task_store: TaskStore
    notification_store: NotificationStore
    user_settings: UserSettingsStore

    clients: DeliveryClients
    gateway: DeliveryGateway
    clock: Clock

    lifecycle: NotificationLifecycle
    scanner: ReminderScanner

    # Set by the entrypoint once the background loop runs.
    scheduler: ReminderScheduler | None = None

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(str(getattr(self.settings, "timezone", "UTC") or "UTC"))
