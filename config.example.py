# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Put SMTP passwords and push access tokens in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "REMINDER_APP_NAME": "App display name (default: task-reminder).",
    "REMINDER_LOG_LEVEL": "Console logging level (default: INFO).",
    "REMINDER_CONSOLE_ENABLED": "Run the admin console REPL (true/false, default: true).",
    # Paths (gitignored)
    "REMINDER_DATA_DIR": "Local data directory (default: .local/task-reminder).",
    "REMINDER_DB_PATH": "SQLite database path (default: <data_dir>/reminders.sqlite3).",
    # Time
    "REMINDER_TIMEZONE": "IANA timezone for recurrence and day/week queries (default: UTC).",
    # Scanner
    "REMINDER_SCAN_INTERVAL_SECONDS": "Seconds between scan ticks (default: 60).",
    "REMINDER_SCAN_BATCH_LIMIT": "Max due reminders handled per tick (default: 100).",
    "REMINDER_MAX_CONCURRENCY": "Max concurrent deliveries per tick (default: 8).",
    # Retry policy
    "REMINDER_MAX_DELIVERY_ATTEMPTS": "Attempts before a notification is marked failed (default: 5).",
    "REMINDER_RETRY_BASE_SECONDS": "First retry delay; doubles per attempt (default: 60).",
    "REMINDER_RETRY_MAX_SECONDS": "Upper bound for the retry delay (default: 3600).",
    # Push
    "REMINDER_PUSH_ENABLED": "Enable the push transport (true/false, default: true).",
    "REMINDER_PUSH_ENDPOINT": "Expo-compatible push URL (default: https://exp.host/--/api/v2/push/send).",
    "REMINDER_PUSH_ACCESS_TOKEN": "Optional bearer token for the push service.",
    "REMINDER_PUSH_TIMEOUT_SECONDS": "HTTP timeout for push requests (default: 10).",
    # Email (SMTP_* without prefix is accepted too)
    "REMINDER_SMTP_HOST": "SMTP host; email delivery is off when empty.",
    "REMINDER_SMTP_PORT": "SMTP port (default: 587).",
    "REMINDER_SMTP_USERNAME": "SMTP username.",
    "REMINDER_SMTP_PASSWORD": "SMTP password.",
    "REMINDER_SMTP_USE_TLS": "Use STARTTLS (true/false, default: true).",
    "REMINDER_FROM_EMAIL": "Sender address (default: no-reply@localhost).",
    "REMINDER_FROM_NAME": "Sender display name (default: Task Reminder).",
}
