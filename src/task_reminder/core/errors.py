# src/task_reminder/core/errors.py

"""
Error taxonomy shared by stores, the lifecycle manager and the CLI.

Every error carries a stable `kind` string so callers can build structured
failure responses without matching on exception classes.
"""

from __future__ import annotations

from typing import Any


class TaskReminderError(Exception):
    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class NotFoundError(TaskReminderError):
    """Entity id does not resolve (for the given owner)."""

    kind = "not_found"


class ForbiddenError(TaskReminderError):
    """Entity exists but belongs to another owner."""

    kind = "forbidden"


class ValidationError(TaskReminderError, ValueError):
    """Malformed input rejected at write time; nothing was changed."""

    kind = "validation"


class DeliveryFailure(TaskReminderError):
    """
    A delivery gateway reported failure.

    Gateways never raise this; they return a failed DeliveryResult. It is raised
    where a caller is waiting on one delivery, e.g. a user-triggered test
    notification.
    """

    kind = "delivery_failure"

    def __init__(self, message: str = "", *, category: str | None = None) -> None:
        super().__init__(message)
        self.category = category


def to_error_response(exc: Exception) -> dict[str, Any]:
    """Map an exception to the structured failure shape used by the CLI/API layer."""
    if isinstance(exc, TaskReminderError):
        return {"success": False, "error": exc.kind, "message": exc.message}
    return {"success": False, "error": "internal", "message": "Internal error"}
