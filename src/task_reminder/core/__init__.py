"""
Core building blocks shared by every subsystem.

- ports.py: Protocols (clock, gateway, repositories) and delivery value types
- errors.py: error taxonomy with stable `kind` strings
- db.py: SQLite connection/transaction helpers
- clock.py: system clock + timestamp conversion
- state.py: AppState
"""
