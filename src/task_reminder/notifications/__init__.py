"""
Notification subsystem.

- notification_models.py: Notification + enums
- notification_store.py: SQLite storage, delivery and read state
- lifecycle.py: owner-scoped read/delete/settings operations
"""
