# src/task_reminder/notifications/lifecycle.py

from __future__ import annotations

"""
Notification lifecycle (user-facing side).

Everything here is scoped to an owner:
- an id that does not exist -> NotFoundError
- an id that belongs to somebody else -> ForbiddenError
Read state is monotonic: marking read twice is a no-op and keeps the first
read_at.
"""

import logging
from typing import Any

from ..core.clock import SystemClock
from ..core.errors import DeliveryFailure, ForbiddenError, NotFoundError
from ..core.ports import Clock, DeliveryGateway
from ..delivery.gateway import payload_for, select_delivery
from ..users.user_settings import NotificationPreferences, UserSettingsStore
from .notification_models import Notification, NotificationType
from .notification_store import NotificationStore

logger = logging.getLogger(__name__)


class NotificationLifecycle:
    def __init__(
        self,
        store: NotificationStore,
        user_settings: UserSettingsStore,
        gateway: DeliveryGateway,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._user_settings = user_settings
        self._gateway = gateway
        self._clock = clock or SystemClock()

    def _owned(self, owner: str, notification_id: int) -> Notification:
        n = self._store.get_notification(notification_id)
        if n.owner != owner:
            raise ForbiddenError(f"notification {notification_id} belongs to another user")
        return n

    # ---- listing ----

    def list_notifications(self, owner: str, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        return self._store.list_for_owner(owner, unread_only=unread_only, limit=limit)

    def unread_count(self, owner: str) -> int:
        return self._store.unread_count(owner)

    # ---- read state ----

    def mark_read(self, owner: str, notification_id: int) -> Notification:
        self._owned(owner, notification_id)
        if self._store.mark_read(notification_id, now_ts=self._clock.now()):
            logger.debug("Notification read id=%s owner=%s", notification_id, owner)
        return self._store.get_notification(notification_id)

    def mark_all_read(self, owner: str) -> int:
        n = self._store.mark_all_read(owner, now_ts=self._clock.now())
        logger.info("Notifications marked read owner=%s count=%s", owner, n)
        return n

    # ---- delete ----

    def delete(self, owner: str, notification_id: int) -> None:
        self._owned(owner, notification_id)
        if not self._store.delete_notification(notification_id):
            raise NotFoundError(f"notification {notification_id} not found")
        logger.info("Notification deleted id=%s owner=%s", notification_id, owner)

    def clear_all(self, owner: str) -> int:
        return self._store.clear_all(owner)

    # ---- settings ----

    def get_settings(self, owner: str) -> NotificationPreferences:
        return self._user_settings.get_preferences(owner)

    def update_settings(self, owner: str, **changes: Any) -> NotificationPreferences:
        return self._user_settings.update_preferences(owner, **changes)

    def register_device_token(self, owner: str, token: str) -> NotificationPreferences:
        return self._user_settings.register_device_token(owner, token)

    # ---- test delivery ----

    async def send_test_notification(self, owner: str) -> Notification:
        """
        Create and deliver a test notification through the owner's current method.

        Raises DeliveryFailure if the transport reports failure; the stored
        notification is then marked failed (tests are not retried).
        """
        now = self._clock.now()
        prefs = self._user_settings.get_preferences(owner)
        method, _, _ = select_delivery(prefs, available=getattr(self._gateway, "methods", None))

        notification_id = self._store.create_notification(
            owner=owner,
            type=NotificationType.TEST,
            title="Test Notification",
            message="This is a test notification from Task Reminder",
            delivery_method=method,
            scheduled_for=now,
            metadata={"test": True},
            now_ts=now,
        )
        if notification_id is None:
            raise RuntimeError("test notification was not stored")

        notification = self._store.get_notification(notification_id)
        result = await self._gateway.deliver(payload_for(notification, prefs))

        if not result.success:
            self._store.record_delivery_failure(
                notification_id,
                error=result.error_message or "delivery failed",
                next_attempt_at=None,
                permanent=True,
                now_ts=self._clock.now(),
            )
            logger.warning("Test notification failed owner=%s method=%s: %s", owner, method.value, result.error_message)
            raise DeliveryFailure(result.error_message or "delivery failed", category=result.error_category)

        self._store.mark_delivered(notification_id, now_ts=self._clock.now())
        logger.info("Test notification delivered owner=%s method=%s", owner, method.value)
        return self._store.get_notification(notification_id)
