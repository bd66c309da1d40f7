"""
Timestamp helpers.

Internally every timestamp is an ``int`` of nanoseconds since the Unix
epoch, so comparisons are exact and totally ordered. Formatting to the
wire representation happens only at the HTTP boundary.

Wire form: RFC 3339 in UTC with a nine-digit fraction, e.g.
``2026-10-16T09:30:00.123456789Z``.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Optional

NS_PER_SECOND = 1_000_000_000

_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})$"
)


def to_wire(ns: int) -> str:
    """Format epoch nanoseconds as an RFC 3339 UTC string."""
    seconds, frac = divmod(ns, NS_PER_SECOND)
    base = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return f"{base.strftime('%Y-%m-%dT%H:%M:%S')}.{frac:09d}Z"


def from_wire(value: str) -> int:
    """Parse an RFC 3339 string (any fraction length) into epoch nanoseconds.

    Raises:
        ValueError: If the string is not RFC 3339.
    """
    match = _RFC3339_RE.match(value.strip())
    if not match:
        raise ValueError(f"Not an RFC 3339 timestamp: {value!r}")
    base, frac, offset = match.groups()
    if offset == "Z":
        offset = "+00:00"
    dt = datetime.fromisoformat(base + offset)
    frac_ns = int((frac or "0").ljust(9, "0"))
    return int(dt.timestamp()) * NS_PER_SECOND + frac_ns


def to_http_date(ns: int) -> str:
    """Format epoch nanoseconds as an RFC 7231 HTTP-date (seconds precision)."""
    dt = datetime.fromtimestamp(ns // NS_PER_SECOND, tz=timezone.utc)
    return format_datetime(dt, usegmt=True)


def from_http_date(value: str) -> int:
    """Parse an HTTP-date header into epoch nanoseconds."""
    dt = parsedate_to_datetime(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp()) * NS_PER_SECOND


def describe(ns: Optional[int]) -> str:
    """Human-readable rendering for status output."""
    if ns is None:
        return "never"
    return to_wire(ns)
