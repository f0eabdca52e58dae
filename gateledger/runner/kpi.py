"""``KEY=VALUE`` scraping of the diagnostic ("doctor") check's stdout.

This is the only place that knows the diagnostic gate's text format; the rest of
the runner works on the parsed ``DoctorKpi``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from gateledger.core.numbers import parse_int_prefix


def parse_kv_tokens(text: str) -> dict[str, str]:
    """Collect ``KEY=VALUE`` lines; the first occurrence of a key wins."""

    out: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        idx = line.find("=")
        if idx <= 0:
            continue
        key = line[:idx].strip()
        if not key or key in out:
            continue
        out[key] = line[idx + 1 :].strip()
    return out


def _parse_json_list(raw: str) -> list[Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


@dataclass(frozen=True)
class DoctorKpi:
    strict_lie_classes_ok: int = 0
    exit_implemented_p0_count: int = 0
    enforcement_violations_count: int = 0
    warn_target_set_version: str = ""
    baseline_sha: str = ""
    warn_target_set: list[Any] = field(default_factory=list)
    warn_target_baseline_count: int = 0
    warn_target_current_count: int = 0
    warn_delta_target: int | None = None


def harvest_kpis(stdout: str) -> DoctorKpi:
    tokens = parse_kv_tokens(stdout)

    def count(key: str) -> int:
        v = parse_int_prefix(tokens.get(key, "0"))
        return v if v is not None else 0

    return DoctorKpi(
        strict_lie_classes_ok=1 if tokens.get("STRICT_LIE_CLASSES_OK", "0") == "1" else 0,
        exit_implemented_p0_count=count("CONTOUR_C_EXIT_IMPLEMENTED_P0_COUNT"),
        enforcement_violations_count=count("CONTOUR_C_ENFORCEMENT_VIOLATIONS_COUNT"),
        warn_target_set_version=tokens.get("WARN_TARGET_SET_VERSION", ""),
        baseline_sha=tokens.get("WARN_TARGET_BASELINE_SHA", ""),
        warn_target_set=_parse_json_list(tokens.get("WARN_TARGET_SET", "[]")),
        warn_target_baseline_count=count("WARN_TARGET_BASELINE_COUNT"),
        warn_target_current_count=count("WARN_TARGET_CURRENT_COUNT"),
        warn_delta_target=parse_int_prefix(tokens.get("WARN_DELTA_TARGET")),
    )
