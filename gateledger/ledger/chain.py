"""Hash-chain primitives and full-ledger validation.

Everything here is pure: no file access, no process execution. Wall-clock time
enters only through the ``now`` argument used for waiver TTL freshness.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from gateledger.core.hash import sha256_bytes
from gateledger.core.json_canon import canonical_json_bytes
from gateledger.core.time import parse_instant, utc_now
from gateledger.ledger.model import (
    DETAILS_BY_TYPE,
    ENTRY_TYPES,
    GENESIS,
    HO_SIGNOFF_VALUES,
    LEDGER_SCHEMA_VERSION,
    LedgerError,
    is_int,
    non_empty_str,
)


HASHED_FIELDS = (
    "entryId",
    "entryType",
    "timestamp",
    "action",
    "baselineSha",
    "owner",
    "hoSignoff",
    "p0Id",
    "ruleId",
    "refEntryId",
    "kpi",
    "waivers",
    "proof",
    "prevHash",
    "generatedBy",
)
CLOSE_HASHED_FIELDS = ("contour", "p0Count", "productStep", "refReport")

# Legacy entries without a valid entryType are typed from their action label.
LEGACY_ACTION_TYPES = {
    "bootstrap": "baseline",
    "c0-baseline": "signoff",
}


@dataclass(frozen=True)
class LedgerVerdict:
    ok: bool
    reason: str = ""


def empty_ledger() -> dict[str, Any]:
    return {"schemaVersion": LEDGER_SCHEMA_VERSION, "appendOnly": True, "entries": []}


def entry_hash_payload(entry: Mapping[str, Any]) -> dict[str, Any]:
    """Select the hashed subset of an entry. Close fields count only for close entries."""

    fields = HASHED_FIELDS
    if entry.get("entryType") == "close":
        fields = HASHED_FIELDS + CLOSE_HASHED_FIELDS
    return {k: entry[k] for k in fields if k in entry}


def compute_entry_hash(entry: Mapping[str, Any]) -> str:
    return sha256_bytes(canonical_json_bytes(entry_hash_payload(entry)))


def normalize_legacy_entry(entry: Any) -> Any:
    """Return a copy of ``entry`` with a valid entryType/hoSignoff and all optional fields defaulted."""

    if not isinstance(entry, dict):
        return entry
    nxt = dict(entry)

    if nxt.get("entryType") not in ENTRY_TYPES:
        action = nxt.get("action")
        nxt["entryType"] = LEGACY_ACTION_TYPES.get(action, "baseline") if isinstance(action, str) else "baseline"

    if nxt.get("hoSignoff") not in HO_SIGNOFF_VALUES:
        if nxt.get("hoSignoff") is True:
            nxt["hoSignoff"] = "APPROVED"
        elif nxt["entryType"] == "exit":
            nxt["hoSignoff"] = "PENDING"
        else:
            nxt["hoSignoff"] = "N/A"

    for key in ("p0Id", "ruleId", "refEntryId", "contour", "productStep", "refReport"):
        if not isinstance(nxt.get(key), str):
            nxt[key] = ""
    if not is_int(nxt.get("p0Count")):
        nxt["p0Count"] = 0
    return nxt


def normalize_ledger_doc(doc: Any) -> dict[str, Any]:
    """Normalize a parsed ledger document (schema migration, no validation).

    Raises LedgerError with LEDGER_INVALID_TOP / LEDGER_ENTRIES_NOT_ARRAY on a broken top level.
    """

    if not isinstance(doc, dict):
        raise LedgerError("LEDGER_INVALID_TOP")
    entries = doc.get("entries")
    if not isinstance(entries, list):
        raise LedgerError("LEDGER_ENTRIES_NOT_ARRAY")
    return {
        "schemaVersion": LEDGER_SCHEMA_VERSION if doc.get("schemaVersion") == LEDGER_SCHEMA_VERSION else 1,
        "appendOnly": doc.get("appendOnly") is True,
        "entries": [normalize_legacy_entry(e) for e in entries],
    }


def validate_waivers(waivers: Any, *, now: datetime) -> str | None:
    """Return the first waiver snapshot violation, or None.

    A waiver whose TTL lies in the past is a violation: embedded waivers must still be live.
    """

    if not isinstance(waivers, list):
        return "WAIVERS_NOT_ARRAY"
    for w in waivers:
        if not isinstance(w, dict):
            return "WAIVER_ITEM_INVALID"
        if not non_empty_str(w.get("gateId")):
            return "WAIVER_GATE_INVALID"
        if not isinstance(w.get("reason"), str):
            return "WAIVER_REASON_INVALID"
        if not non_empty_str(w.get("owner")):
            return "WAIVER_OWNER_INVALID"
        if not non_empty_str(w.get("ttl")):
            return "WAIVER_TTL_INVALID"
        ttl = parse_instant(w["ttl"])
        if ttl is None:
            return "WAIVER_TTL_PARSE_INVALID"
        if ttl < now:
            return f"WAIVER_TTL_EXPIRED:{w['gateId']}"
    return None


def _validate_entry(entry: Any, index: int, *, prev: str, seen: set[str], now: datetime) -> str | None:
    if not isinstance(entry, dict):
        return f"ENTRY_NOT_OBJECT:{index}"

    entry_id = entry.get("entryId")
    if not non_empty_str(entry_id):
        return f"ENTRY_ID_INVALID:{index}"
    if entry_id in seen:
        return f"ENTRY_ID_DUPLICATE:{index}"
    seen.add(entry_id)

    entry_type = entry.get("entryType")
    if entry_type not in ENTRY_TYPES:
        return f"ENTRY_TYPE_INVALID:{index}"
    if not non_empty_str(entry.get("timestamp")):
        return f"ENTRY_TS_INVALID:{index}"
    if not non_empty_str(entry.get("action")):
        return f"ENTRY_ACTION_INVALID:{index}"
    if not non_empty_str(entry.get("owner")):
        return f"ENTRY_OWNER_INVALID:{index}"
    if entry.get("hoSignoff") not in HO_SIGNOFF_VALUES:
        return f"ENTRY_SIGNOFF_INVALID:{index}"
    if not non_empty_str(entry.get("prevHash")):
        return f"ENTRY_PREV_HASH_INVALID:{index}"
    if not non_empty_str(entry.get("entryHash")):
        return f"ENTRY_HASH_INVALID:{index}"
    if entry["prevHash"] != prev:
        return f"ENTRY_PREV_HASH_MISMATCH:{index}"
    if not isinstance(entry.get("waivers"), list):
        return f"ENTRY_WAIVERS_INVALID:{index}"

    type_reason = DETAILS_BY_TYPE[entry_type].check_persisted(entry, index, seen)
    if type_reason:
        return type_reason

    waiver_reason = validate_waivers(entry["waivers"], now=now)
    if waiver_reason:
        return f"{waiver_reason}:{index}"

    try:
        computed = compute_entry_hash(entry)
    except ValueError:
        # Not canonically encodable (e.g. NaN); cannot match any stored hash.
        return f"ENTRY_HASH_MISMATCH:{index}"
    if computed != entry["entryHash"]:
        return f"ENTRY_HASH_MISMATCH:{index}"
    return None


def validate_ledger(ledger: Any, *, now: datetime | None = None) -> LedgerVerdict:
    """Walk the chain in order and report the first invariant violation.

    Entries are legacy-normalized before checking; ``ledger`` itself is not modified.
    """

    if not isinstance(ledger, dict):
        return LedgerVerdict(False, "LEDGER_INVALID_TOP")
    if ledger.get("appendOnly") is not True:
        return LedgerVerdict(False, "LEDGER_APPEND_ONLY_REQUIRED")
    entries = ledger.get("entries")
    if not isinstance(entries, list):
        return LedgerVerdict(False, "LEDGER_ENTRIES_NOT_ARRAY")

    at = now if now is not None else utc_now()
    seen: set[str] = set()
    prev = GENESIS
    for index, raw in enumerate(entries):
        entry = normalize_legacy_entry(raw)
        reason = _validate_entry(entry, index, prev=prev, seen=seen, now=at)
        if reason:
            return LedgerVerdict(False, reason)
        prev = entry["entryHash"]
    return LedgerVerdict(True, "")
