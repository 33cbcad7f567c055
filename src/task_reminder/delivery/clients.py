# src/task_reminder/delivery/clients.py

"""
Process-wide transport clients.

One shared httpx.AsyncClient (connection pool) for push delivery, plus the SMTP
connection parameters. Created by the composition root, started inside the
event loop that will use them, and closed on shutdown. Gateways receive this
object; nothing reaches for a module-level global.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SmtpConfig:
    host: str
    port: int = 587
    username: str | None = None
    password: str | None = None
    start_tls: bool = True
    from_email: str = "no-reply@localhost"
    from_name: str = "Task Reminder"
    timeout: float = 30.0

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>" if self.from_name else self.from_email


class DeliveryClients:
    def __init__(
        self,
        *,
        http_timeout: float = 10.0,
        smtp: SmtpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http_timeout = float(http_timeout)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None
        self.smtp = smtp

    @classmethod
    def from_settings(cls, settings) -> DeliveryClients:
        smtp = None
        if getattr(settings, "smtp_host", ""):
            smtp = SmtpConfig(
                host=settings.smtp_host,
                port=int(settings.smtp_port),
                username=settings.smtp_username,
                password=settings.smtp_password,
                start_tls=bool(settings.smtp_use_tls),
                from_email=settings.from_email,
                from_name=settings.from_name,
            )
        return cls(http_timeout=getattr(settings, "push_timeout_seconds", 10.0), smtp=smtp)

    @property
    def started(self) -> bool:
        return self._http is not None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("DeliveryClients not started; call start() first")
        return self._http

    async def start(self) -> None:
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(timeout=self._http_timeout, transport=self._transport)
        logger.info("Delivery clients started (smtp=%s)", "on" if self.smtp else "off")

    async def aclose(self) -> None:
        client, self._http = self._http, None
        if client is not None:
            await client.aclose()
            logger.info("Delivery clients closed")

    async def __aenter__(self) -> DeliveryClients:
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
