# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for CampusID.

All timestamps are stored and compared as timezone-aware UTC values.
SQLite (used in tests) hands back naive datetimes for TIMESTAMP columns,
so values read from the store go through ensure_utc before comparison.

Usage:
    from campusid.utils.datetime import utc_now

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
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


def is_expired(expiry: datetime | None, now: datetime | None = None) -> bool:
    """Check whether an expiry timestamp has passed.

    Args:
        expiry: Expiry time. None means "never expires".
        now: Reference time, defaults to utc_now().

    Returns:
        True if ``now`` is strictly after ``expiry``.
    """
    if expiry is None:
        return False
    reference = ensure_utc(now) if now is not None else utc_now()
    return reference > ensure_utc(expiry)
