# src/task_reminder/delivery/email.py

from __future__ import annotations

import html
import logging
from email.message import EmailMessage

import aiosmtplib

from ..core.ports import DeliveryPayload, DeliveryResult
from .clients import DeliveryClients

logger = logging.getLogger(__name__)


def render_reminder_html(payload: DeliveryPayload) -> str:
    title = html.escape(payload.title)
    body = html.escape(payload.body)
    due = html.escape(payload.data.get("due", ""))
    priority = html.escape(payload.data.get("priority", "").capitalize())
    details = ""
    if due:
        details += f'<p style="margin: 0; color: #666;"><strong>Due:</strong> {due}</p>'
    if priority:
        details += f'<p style="margin: 5px 0 0 0; color: #666;"><strong>Priority:</strong> {priority}</p>'
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h2 style="color: #333;">Task Reminder</h2>'
        '<div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">'
        f'<h3 style="color: #2563eb; margin: 0 0 10px 0;">{title}</h3>'
        f'<p style="margin: 0 0 10px 0;">{body}</p>'
        f"{details}"
        "</div>"
        "<p>Don't forget to complete this task on time!</p>"
        "</div>"
    )


class EmailGateway:
    """SMTP transport (aiosmtplib). One connection per send."""

    def __init__(self, clients: DeliveryClients) -> None:
        self._clients = clients

    def build_message(self, payload: DeliveryPayload) -> EmailMessage:
        smtp = self._clients.smtp
        msg = EmailMessage()
        msg["From"] = smtp.sender if smtp else "no-reply@localhost"
        msg["To"] = payload.target_email or ""
        msg["Subject"] = payload.title
        msg.set_content(payload.body)
        msg.add_alternative(render_reminder_html(payload), subtype="html")
        return msg

    async def deliver(self, payload: DeliveryPayload) -> DeliveryResult:
        smtp = self._clients.smtp
        if smtp is None:
            return DeliveryResult.failure("SMTP is not configured", category="unsupported")
        if not payload.target_email:
            return DeliveryResult.failure("no email address for user", category="validation")

        message = self.build_message(payload)
        try:
            await aiosmtplib.send(
                message,
                hostname=smtp.host,
                port=smtp.port,
                username=smtp.username,
                password=smtp.password,
                start_tls=smtp.start_tls,
                timeout=smtp.timeout,
            )
        except aiosmtplib.SMTPAuthenticationError as e:
            logger.error("SMTP authentication failed: %s", e)
            return DeliveryResult.failure(str(e), category="auth")
        except aiosmtplib.SMTPRecipientsRefused as e:
            logger.warning("SMTP recipient refused: %s", e)
            return DeliveryResult.failure(str(e), category="recipient")
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning("SMTP send failed: %s", e)
            return DeliveryResult.failure(str(e), category="network")

        logger.debug("Email delivered to=%s", payload.target_email)
        return DeliveryResult.ok(recipient=payload.target_email)
