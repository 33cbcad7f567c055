# src/task_reminder/delivery/gateway.py

"""
Delivery gateway routing.

The scanner calls exactly one DeliveryGateway. RoutingGateway picks the
transport by delivery method and turns every exception into a failed
DeliveryResult, so a broken transport can never abort a scan tick.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from ..core.ports import DeliveryGateway, DeliveryPayload, DeliveryResult
from ..notifications.notification_models import DeliveryMethod

logger = logging.getLogger(__name__)


class InAppGateway:
    """The stored notification row is the delivery; always succeeds."""

    async def deliver(self, payload: DeliveryPayload) -> DeliveryResult:
        return DeliveryResult.ok(channel=DeliveryMethod.IN_APP.value)


class RoutingGateway:
    def __init__(self, routes: Mapping[str, DeliveryGateway]) -> None:
        self._routes = {str(k): v for k, v in routes.items()}

    @property
    def methods(self) -> set[str]:
        return set(self._routes)

    async def deliver(self, payload: DeliveryPayload) -> DeliveryResult:
        gateway = self._routes.get(payload.method)
        if gateway is None:
            return DeliveryResult.failure(
                f"no transport configured for {payload.method!r}", category="unsupported"
            )
        try:
            return await gateway.deliver(payload)
        except Exception as e:
            logger.exception("Gateway %s raised; reporting failure", payload.method)
            return DeliveryResult.failure(f"{type(e).__name__}: {e}", category="exception")


def select_delivery(prefs, *, available: set[str] | None = None) -> tuple[DeliveryMethod, tuple[str, ...], str | None]:
    """
    Pick (method, device tokens, email) for an owner.

    push if enabled and at least one device token is registered, else email if
    enabled and an address is known, else in-app. `available` restricts the
    choice to transports that are actually configured.
    """

    def usable(method: DeliveryMethod) -> bool:
        return available is None or method.value in available

    tokens = tuple(getattr(prefs, "device_tokens", ()) or ())
    if getattr(prefs, "push_enabled", False) and tokens and usable(DeliveryMethod.PUSH):
        return DeliveryMethod.PUSH, tokens, None

    email = getattr(prefs, "email", None)
    if getattr(prefs, "email_enabled", False) and email and usable(DeliveryMethod.EMAIL):
        return DeliveryMethod.EMAIL, (), email

    return DeliveryMethod.IN_APP, (), None


def payload_for(notification, prefs) -> DeliveryPayload:
    """
    Build the transport payload for a stored notification.

    The method is the one recorded on the notification; targets come from the
    owner's current settings so a retry picks up a newly registered device.
    """
    data = {str(k): str(v) for k, v in (notification.metadata or {}).items() if v is not None}
    data["type"] = notification.type.value
    data["notificationId"] = str(notification.id)
    if notification.task_id is not None:
        data["taskId"] = str(notification.task_id)
    return DeliveryPayload(
        method=notification.delivery_method.value,
        title=notification.title,
        body=notification.message,
        target_tokens=tuple(getattr(prefs, "device_tokens", ()) or ()),
        target_email=getattr(prefs, "email", None),
        data=data,
    )
