"""ULID-based ID generation for correlation ids and scheduled tasks.

ULIDs sort lexicographically by creation time across milliseconds, which
keeps execution logs and task listings in submission order.
"""

from datetime import datetime

from ulid import ULID


def generate_id() -> str:
    """Generate a new 26-character ULID string.

    Example:
        >>> len(generate_id())
        26
    """
    return str(ULID())


def extract_timestamp(ulid: str) -> datetime:
    """Extract the UTC creation timestamp from a ULID string.

    Raises:
        ValueError: If the ULID string is invalid
    """
    return ULID.from_str(ulid).datetime
