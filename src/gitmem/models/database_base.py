"""Base declarative class and utility for gitmem database models."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import declarative_base

Base: Any = declarative_base()


def utcnow_iso() -> str:
    """Return the current UTC time as an ISO-8601 string.

    WHY: Timestamps are stored as TEXT so that lexical order equals
    chronological order and SQLite's strftime() can bucket them directly.

    Returns:
        ISO-8601 timestamp with a ``+00:00`` offset
    """
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
