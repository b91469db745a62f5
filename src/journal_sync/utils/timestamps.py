"""
timestamps.py - ISO-8601 logical timestamps.

All timestamps are UTC with millisecond precision and a trailing "Z",
which keeps them comparable as strings and as datetimes.
"""

from datetime import datetime, timedelta, timezone

from journal_sync.errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Format an aware datetime as ISO-8601 UTC (ms precision, 'Z' suffix)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are taken to be UTC.

    Raises:
        ValidationError: If the value is not a valid timestamp
    """
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise ValidationError(
            f"Invalid ISO-8601 timestamp: {e}",
            field="timestamp",
            value=value,
        ) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def now_iso() -> str:
    return to_iso(utc_now())


def next_updated_at(previous: str | None = None) -> str:
    """
    Timestamp for a local mutation.

    Always later than the previously known value for the same record,
    even within one millisecond or when the wall clock steps back.
    """
    current = parse_iso(now_iso())
    if previous:
        prior = parse_iso(previous)
        if prior >= current:
            return to_iso(prior + timedelta(milliseconds=1))
    return to_iso(current)


def is_newer(candidate: str, reference: str) -> bool:
    """True if candidate is strictly later than reference."""
    return parse_iso(candidate) > parse_iso(reference)
