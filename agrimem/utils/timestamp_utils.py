"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

# Day-first formats used by Indian government data portals (e.g. Agmarknet arrival dates)
DAY_FIRST_FORMATS = ('%d/%m/%Y', '%d-%m-%Y', '%d %b %Y')


def to_epoch_seconds(value: Any) -> int:
    """Convert a raw timestamp into Unix seconds (UTC).

    Args:
        value: Unix seconds (int, float, Decimal or numeric string), an ISO-8601
            date/datetime string, or a day-first date such as ``01/06/2024``

    Returns:
        Unix timestamp in seconds

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f'Invalid timestamp: {value!r}')

    if isinstance(value, (int, float, Decimal)):
        return int(value)

    if isinstance(value, datetime):
        return _datetime_to_seconds(value)

    text = str(value).strip()
    if not text:
        raise ValueError('Empty timestamp')

    try:
        return int(float(text))
    except ValueError:
        pass

    try:
        return _datetime_to_seconds(datetime.fromisoformat(text.replace('Z', '+00:00')))
    except ValueError:
        pass

    for fmt in DAY_FIRST_FORMATS:
        try:
            return _datetime_to_seconds(datetime.strptime(text, fmt))
        except ValueError:
            continue

    raise ValueError(f'Unrecognized timestamp format: {text!r}')


def _datetime_to_seconds(moment: datetime) -> int:
    # Naive datetimes are taken as UTC
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def to_date_str(timestamp: int) -> str:
    """Convert Unix seconds to a ``YYYY-MM-DD`` date string (UTC)."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime('%Y-%m-%d')


def now_iso(timestamp: Optional[float] = None) -> str:
    """Return the current (or given) time as an ISO-8601 UTC string.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        ISO-8601 string with second precision
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(timespec='seconds')
