"""Pytest configuration shared by all test suites."""

import os


# Settings are read at import time; keep tests offline and scheduler-free.
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("HOUSEHOLD_TIMEZONE", "UTC")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("REDIS_URL", None)
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)
os.environ.pop("LOGFIRE_TOKEN", None)
