from __future__ import annotations

import re
from datetime import date, datetime, timezone


_RUN_ID_UNSAFE_RE = re.compile(r"[:.]")
_FILENAME_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_.-]+")
_FRACTION_RE = re.compile(r"([Tt ]\d{2}:\d{2}:\d{2})\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc_ms(dt: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (millisecond precision, UTC)."""

    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_instant(value: str) -> datetime | None:
    """Parse an ISO-8601 instant; returns None when the text is not a valid instant.

    Naive date-times and bare dates are interpreted as UTC. Fractional seconds of
    any length are accepted and truncated to microseconds.
    """

    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    s = _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6]:0<6}", s, count=1)
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        try:
            d = date.fromisoformat(s)
        except ValueError:
            return None
        parsed = datetime(d.year, d.month, d.day)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def run_id_from_timestamp(ts: str) -> str:
    return _RUN_ID_UNSAFE_RE.sub("-", ts)


def sanitize_file_name(value: str) -> str:
    return _FILENAME_UNSAFE_RE.sub("_", value)
