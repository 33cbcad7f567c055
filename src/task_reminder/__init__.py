"""Task reminder service: scheduled reminders for owner-scoped tasks."""

__version__ = "0.1.0"
