# src/task_reminder/delivery/push.py

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.ports import DeliveryPayload, DeliveryResult
from .clients import DeliveryClients

logger = logging.getLogger(__name__)

DEFAULT_PUSH_URL = "https://exp.host/--/api/v2/push/send"


class PushGateway:
    """
    Push transport over an Expo-compatible HTTP push API.

    One message per registered device token. The delivery counts as
    successful if at least one ticket comes back "ok"; tokens the service
    reports as unregistered are listed in the result metadata so the caller
    can prune them.
    """

    def __init__(
        self,
        clients: DeliveryClients,
        *,
        endpoint: str = DEFAULT_PUSH_URL,
        access_token: str | None = None,
    ) -> None:
        self._clients = clients
        self._endpoint = endpoint
        self._access_token = access_token

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
        }
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    @staticmethod
    def build_messages(payload: DeliveryPayload) -> list[dict[str, Any]]:
        return [
            {
                "to": token,
                "title": payload.title,
                "body": payload.body,
                "data": dict(payload.data),
                "sound": "default",
                "priority": "high",
                "channelId": "default",
            }
            for token in payload.target_tokens
        ]

    async def deliver(self, payload: DeliveryPayload) -> DeliveryResult:
        if not payload.target_tokens:
            return DeliveryResult.failure("no device tokens registered", category="validation")

        messages = self.build_messages(payload)
        try:
            response = await self._clients.http.post(self._endpoint, json=messages, headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning("Push request failed: %s", e)
            return DeliveryResult.failure(f"push request failed: {e}", category="network")

        if response.status_code != 200:
            logger.warning("Push API returned %s: %s", response.status_code, response.text[:200])
            return DeliveryResult.failure(f"push API returned {response.status_code}", category="http")

        try:
            tickets = response.json().get("data", [])
        except ValueError:
            return DeliveryResult.failure("push API returned invalid JSON", category="http")
        if isinstance(tickets, dict):
            tickets = [tickets]

        ok = [t for t in tickets if isinstance(t, dict) and t.get("status") == "ok"]
        unregistered: list[str] = []
        for token, ticket in zip(payload.target_tokens, tickets):
            if not isinstance(ticket, dict) or ticket.get("status") != "error":
                continue
            details = ticket.get("details") or {}
            if details.get("error") == "DeviceNotRegistered":
                unregistered.append(token)

        if not ok:
            first_err = next(
                (t.get("message") for t in tickets if isinstance(t, dict) and t.get("message")),
                "all push tickets failed",
            )
            return DeliveryResult(
                success=False,
                error_message=str(first_err),
                error_category="push_provider",
                metadata={"unregistered_tokens": unregistered} if unregistered else None,
            )

        logger.debug("Push delivered ok=%s/%s", len(ok), len(messages))
        return DeliveryResult.ok(sent=len(ok), failed=len(messages) - len(ok), unregistered_tokens=unregistered)
