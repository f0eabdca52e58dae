from __future__ import annotations

import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Return canonical JSON bytes (UTF-8, sorted keys, compact separators, trailing LF).

    NaN and infinities are rejected so that numeric formatting stays portable.
    """

    text = json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"), allow_nan=False) + "\n"
    return text.encode("utf-8", errors="strict")


def pretty_json_text(obj: Any) -> str:
    """Render a persisted document: two-space indent, key order preserved, trailing LF."""

    return json.dumps(obj, indent=2, ensure_ascii=False) + "\n"
