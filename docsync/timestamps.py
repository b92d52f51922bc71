"""Canonical timestamp format shared by records and histories.

Timestamps are naive local-clock strings of the form ``YYYY-MM-DD HH:MM:SS``
so they sort lexicographically in the same order as chronologically.
"""

from datetime import datetime

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the canonical format."""
    return value.strftime(TIMESTAMP_FORMAT)
