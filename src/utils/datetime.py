# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the mastery engine.

All timestamps are timezone-aware UTC. These helpers normalize naive
values and compute the fractional day spans used by decay and review
scheduling.

Usage:
    from src.utils.datetime import utc_now

    timestamp: datetime = Field(default_factory=utc_now)
"""

from datetime import datetime, timedelta, timezone

SECONDS_PER_DAY = 86400.0


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        - If dt is None, returns None
        - If dt is naive, assumes UTC and adds tzinfo
        - If dt is aware, converts to UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def days_from(start: datetime, days: float) -> datetime:
    """Get the datetime a number of days after start.

    Args:
        start: Reference datetime.
        days: Number of days to add (may be fractional).

    Returns:
        Timezone-aware UTC datetime.
    """
    return ensure_utc(start) + timedelta(days=days)


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days elapsed from start to end.

    Negative when end precedes start.

    Args:
        start: Earlier datetime.
        end: Later datetime.

    Returns:
        Elapsed days as a float.
    """
    delta = ensure_utc(end) - ensure_utc(start)
    return delta.total_seconds() / SECONDS_PER_DAY

