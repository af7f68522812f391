"""
clock.py — UTC time helpers shared by models and ledgers.

SQLite hands back naive datetimes even for DateTime(timezone=True) columns;
PostgreSQL returns aware ones. ensure_utc() normalises both so expiry checks
compare like with like.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attaches UTC to a naive datetime; converts an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
