"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from src.utils.datetime_utils import utc_now

    created_at = Column(DateTime, default=utc_now)
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime for dict output, passing None through."""
    return value.isoformat() if value else None
