"""General utility helpers shared across modules."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LOGGER = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ONE_MS = timedelta(milliseconds=1)
# One day inside datetime's range so display-zone conversion cannot overflow.
MIN_TIMESTAMP_MS = (datetime(1, 1, 2, tzinfo=timezone.utc) - _EPOCH) // _ONE_MS
MAX_TIMESTAMP_MS = (datetime(9999, 12, 30, tzinfo=timezone.utc) - _EPOCH) // _ONE_MS


def timestamp_in_range(timestamp_ms: int) -> bool:
    """Return True when ``timestamp_ms`` maps onto a representable datetime."""

    return MIN_TIMESTAMP_MS <= timestamp_ms <= MAX_TIMESTAMP_MS


@lru_cache(maxsize=32)
def resolve_timezone(name: str | None) -> tzinfo:
    """Return a tzinfo for an IANA name, defaulting to UTC.

    Unknown or malformed names log a warning and fall back to UTC.
    """

    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        LOGGER.warning("Unknown timezone %r (%s); using UTC", name, exc)
        return timezone.utc


def ms_to_datetime(timestamp_ms: int) -> datetime:
    """Convert epoch milliseconds into an aware UTC datetime."""

    return _EPOCH + timedelta(milliseconds=timestamp_ms)


def datetime_to_ms(value: datetime) -> int:
    """Convert a datetime into epoch milliseconds (naive values are UTC)."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_local(timestamp_ms: int, tz_name: str | None, fmt: str) -> str:
    """Format epoch milliseconds in the display zone."""

    return ms_to_datetime(timestamp_ms).astimezone(resolve_timezone(tz_name)).strftime(fmt)


def format_iso_utc(timestamp_ms: int) -> str:
    """Return an ISO-8601 UTC string with millisecond precision and ``Z`` suffix."""

    dt = ms_to_datetime(timestamp_ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def format_file_size(size_bytes: int) -> str:
    """Format a byte count as a short human-readable string."""

    if size_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    index = min(int(math.log(size_bytes, 1024)), len(units) - 1)
    value = round(size_bytes / (1024**index), 2)
    return f"{value:g} {units[index]}"
