"""Date helpers for storing and bucketing commit timestamps."""

from datetime import datetime, timezone
from typing import Union


def to_utc_iso(value: Union[datetime, str]) -> str:
    """Normalize a timestamp to an ISO-8601 UTC string.

    WHY: committed_at is stored as TEXT; with a single offset (+00:00) lexical
    order equals chronological order and SQLite's strftime() buckets correctly.

    Args:
        value: Timezone-aware datetime or ISO-8601 string with offset

    Returns:
        ISO-8601 string in UTC, second precision
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")
