"""Time helpers shared by the models and services."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime.

    Timestamps are stored naive-in-UTC so comparisons behave the same on
    SQLite (which drops tzinfo) and Postgres.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)

