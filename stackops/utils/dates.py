"""Point-in-time parsing and validation."""

from __future__ import annotations

from datetime import datetime, timezone

from ..errors import InvalidInput


def to_iso_string(value: datetime) -> str:
    """Format a datetime as canonical ISO-8601 UTC with milliseconds (2024-01-15T10:00:00.000Z)."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso_date(date_string: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Raises:
        InvalidInput: If the string is not a valid timestamp
    """
    try:
        parsed = datetime.fromisoformat(date_string.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise InvalidInput(f"expected iso date, got: {date_string}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def validate_iso_date(date_string: str) -> datetime:
    """Require the canonical form so the same instant is passed to every tool.

    Returns:
        The parsed datetime

    Raises:
        InvalidInput: If the string is not in canonical form
    """
    parsed = parse_iso_date(date_string)
    canonical = to_iso_string(parsed)
    if canonical != date_string:
        raise InvalidInput(f"expected iso date. Did you mean {canonical} ?")
    return parsed
