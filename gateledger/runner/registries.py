"""Read-only inputs of a run: waiver registry, warn target and the ledger baseline.

Missing files yield defaults. A file that exists but is not a JSON object is a
fatal configuration error, raised before any check executes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from gateledger.core.time import parse_instant
from gateledger.ledger.model import WaiverRecord, is_int
from gateledger.runner.config import ConfigError


@dataclass(frozen=True)
class WaiverRegistry:
    schema_version: int = 1
    waivers: tuple[WaiverRecord, ...] = ()

    def find(self, gate_id: str) -> WaiverRecord | None:
        for w in self.waivers:
            if w.gate_id == gate_id:
                return w
        return None


@dataclass(frozen=True)
class WarnTarget:
    schema_version: int = 1
    warn_target_set_version: str = "v1"
    baseline_sha: str = "-"
    baseline_warn_count: int = 0
    target_warn_ids: tuple[str, ...] = field(default_factory=tuple)


def is_waiver_active(waiver: WaiverRecord, now: datetime) -> bool:
    """Active iff the TTL is a valid instant that is not in the past."""

    ttl = parse_instant(waiver.ttl)
    if ttl is None:
        return False
    return ttl >= now


def _read_json_object(path: Path, reason: str) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        doc = json.loads(path.read_text(encoding="utf-8", errors="strict"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(reason) from e
    if not isinstance(doc, dict):
        raise ConfigError(reason)
    return doc


def load_waiver_registry(path: Path) -> WaiverRegistry:
    doc = _read_json_object(path, "WAIVED_GATES_INVALID_JSON")
    if doc is None:
        return WaiverRegistry()
    items = doc.get("waivers")
    if not isinstance(items, list):
        items = []
    waivers = tuple(
        w
        for w in (WaiverRecord.from_registry_item(item) for item in items if isinstance(item, dict))
        if w.gate_id
    )
    schema_version = doc.get("schemaVersion")
    return WaiverRegistry(
        schema_version=schema_version if is_int(schema_version) else 1,
        waivers=waivers,
    )


def load_warn_target(path: Path) -> WarnTarget:
    doc = _read_json_object(path, "WARN_TARGET_INVALID_JSON")
    if doc is None:
        return WarnTarget()
    ids = doc.get("targetWarnIds")
    version = doc.get("warnTargetSetVersion")
    baseline_sha = doc.get("baselineSha")
    return WarnTarget(
        schema_version=doc["schemaVersion"] if is_int(doc.get("schemaVersion")) else 1,
        warn_target_set_version=version if isinstance(version, str) and version else "v1",
        baseline_sha=baseline_sha if isinstance(baseline_sha, str) and baseline_sha else "-",
        baseline_warn_count=doc["baselineWarnCount"] if is_int(doc.get("baselineWarnCount")) else 0,
        target_warn_ids=tuple(x for x in ids if isinstance(x, str)) if isinstance(ids, list) else (),
    )


def load_ledger_baseline_sha(path: Path) -> str:
    """baselineSha of the ledger's first entry; "" when there is none.

    Only reads the file. Integrity of the chain is the ledger's concern, not the runner's.
    """

    doc = _read_json_object(path, "LEDGER_INVALID_JSON")
    if doc is None:
        return ""
    entries = doc.get("entries")
    if not isinstance(entries, list) or not entries or not isinstance(entries[0], dict):
        return ""
    sha = entries[0].get("baselineSha")
    return sha if isinstance(sha, str) else ""
