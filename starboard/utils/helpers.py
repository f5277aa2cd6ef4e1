"""Utility helper functions"""

from datetime import UTC, datetime
from typing import Any, Optional

from dateutil import parser as date_parser


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime

    All timestamps are stored naive-UTC so SQLite and PostgreSQL compare alike.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp from an external payload

    Args:
        raw: String, datetime or None

    Returns:
        Naive UTC datetime, or None when missing/unparseable
    """
    if isinstance(raw, datetime):
        return to_naive_utc(raw)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return to_naive_utc(date_parser.isoparse(raw.strip()))
    except (TypeError, ValueError):
        return None


def isoformat_z(value: Optional[datetime]) -> Optional[str]:
    """Format a naive UTC datetime the way the GitHub API expects (`...Z`)."""
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat() + "Z"


def truncate_string(text: Optional[str], max_length: int) -> str:
    """Truncate text to a maximum length, treating None as empty."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length]


def split_full_name(full_name: str) -> tuple[str, str]:
    owner, repo = full_name.split("/", 1)
    return owner.strip(), repo.strip()
