from __future__ import annotations

import re


_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_int_prefix(raw: str | None) -> int | None:
    """Integer value of the leading decimal digits of ``raw`` ("12abc" -> 12), or None."""

    if raw is None:
        return None
    m = _INT_PREFIX_RE.match(raw)
    if m is None:
        return None
    return int(m.group(1))
