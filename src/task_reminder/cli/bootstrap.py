# src/task_reminder/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires stores, delivery transports, the scanner and the lifecycle manager
  into AppState.
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from ..config import get_settings
from ..core.clock import SystemClock
from ..core.ports import DeliveryGateway
from ..core.state import AppState
from ..delivery.clients import DeliveryClients
from ..delivery.email import EmailGateway
from ..delivery.gateway import InAppGateway, RoutingGateway
from ..delivery.push import PushGateway
from ..notifications.lifecycle import NotificationLifecycle
from ..notifications.notification_models import DeliveryMethod
from ..notifications.notification_store import NotificationStore
from ..reminders.scanner import ReminderScanner, RetryPolicy
from ..tasks.task_store import TaskStore
from ..users.user_settings import UserSettingsStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def build_gateway(settings, clients: DeliveryClients) -> RoutingGateway:
    """In-app is always available; push and email only when configured."""
    routes: dict[str, DeliveryGateway] = {DeliveryMethod.IN_APP.value: InAppGateway()}
    if getattr(settings, "push_enabled", False):
        routes[DeliveryMethod.PUSH.value] = PushGateway(
            clients,
            endpoint=settings.push_endpoint,
            access_token=settings.push_access_token,
        )
    if clients.smtp is not None:
        routes[DeliveryMethod.EMAIL.value] = EmailGateway(clients)
    logger.info("Delivery transports: %s", ", ".join(sorted(routes)))
    return RoutingGateway(routes)


def create_initial_state(*, settings=None, clock=None, gateway: DeliveryGateway | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    clock = clock or SystemClock()
    tz = ZoneInfo(settings.timezone)

    # Task store first: notifications reference tasks(id).
    task_store = TaskStore(settings.db_path)
    notification_store = NotificationStore(settings.db_path)
    user_settings = UserSettingsStore(settings.db_path)

    clients = DeliveryClients.from_settings(settings)
    if gateway is None:
        gateway = build_gateway(settings, clients)

    scanner = ReminderScanner(
        task_store,
        notification_store,
        gateway,
        user_settings,
        clock=clock,
        tz=tz,
        batch_limit=settings.scan_batch_limit,
        max_concurrency=settings.max_concurrency,
        retry_policy=RetryPolicy(
            max_attempts=settings.max_delivery_attempts,
            base_seconds=settings.retry_base_seconds,
            max_seconds=settings.retry_max_seconds,
        ),
    )
    lifecycle = NotificationLifecycle(notification_store, user_settings, gateway, clock=clock)

    return AppState(
        settings=settings,
        task_store=task_store,
        notification_store=notification_store,
        user_settings=user_settings,
        clients=clients,
        gateway=gateway,
        clock=clock,
        lifecycle=lifecycle,
        scanner=scanner,
    )
