"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Subtask, RecurrencePattern, enums)
- transitions.py: validation and explicit status transitions
- recurrence.py: next-occurrence computation for recurring tasks
- task_store.py: SQLite-backed storage + the reminders-sent ledger
- task_api.py: owner-scoped operations and date-range queries
"""
