"""Authentication utilities."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    This is the default clock for session expiry, ID token validation and
    impersonation expiry; tests substitute their own callable.
    """
    return datetime.now(timezone.utc)


def epoch_seconds(moment: datetime) -> int:
    return int(moment.timestamp())
