from __future__ import annotations

import json
import sys
from pathlib import Path

from gateledger.core.atomic import write_json_atomic
from gateledger.ledger.attest import (
    attest_ledger,
    load_ed25519_private_key,
    load_ed25519_public_key,
    verify_ledger_attestation,
)
from gateledger.ledger.model import LedgerError
from gateledger.ledger.store import LedgerStore, RecordRequest


TOKEN_PREFIX = "CONTOUR_C_LEDGER"


def _emit(key: str, value: object) -> None:
    print(f"{TOKEN_PREFIX}_{key}={value}", file=sys.stdout)


def emit_failure(reason: str) -> int:
    """The failure contract relied upon by upstream automation: RESULT=FAIL plus a reason code."""

    _emit("RESULT", "FAIL")
    _emit("FAIL_REASON", reason)
    return 1


def run_check(store: LedgerStore) -> int:
    try:
        verdict, count = store.check()
    except LedgerError as e:
        return emit_failure(e.reason)
    except OSError as e:
        return emit_failure(f"IO_ERROR:{type(e).__name__}")

    if not verdict.ok:
        _emit("CHECK", "FAIL")
        _emit("FAIL_REASON", verdict.reason)
        print(f"[gateledger ledger check] FAIL: {verdict.reason} ({store.path})", file=sys.stderr)
        return 1
    _emit("CHECK", "PASS")
    _emit("ENTRIES", count)
    return 0


def run_bootstrap(store: LedgerStore, *, baseline_sha: str, owner: str) -> int:
    try:
        outcome = store.bootstrap(baseline_sha=baseline_sha, owner=owner)
    except LedgerError as e:
        return emit_failure(e.reason)
    except OSError as e:
        return emit_failure(f"IO_ERROR:{type(e).__name__}")

    if outcome.status == "PASS":
        print(f"[gateledger ledger bootstrap] created: {store.path}", file=sys.stderr)
    _emit("BOOTSTRAP", outcome.status)
    _emit("ENTRIES", outcome.entries)
    return 0


def run_record(store: LedgerStore, request: RecordRequest) -> int:
    try:
        outcome = store.record(request)
    except LedgerError as e:
        return emit_failure(e.reason)
    except OSError as e:
        return emit_failure(f"IO_ERROR:{type(e).__name__}")

    entry = outcome.entry
    print(f"[gateledger ledger record] entryHash: {entry['entryHash']}", file=sys.stderr)
    _emit("RECORD", "PASS")
    _emit("ENTRY_ID", entry["entryId"])
    _emit("ENTRY_TYPE", entry["entryType"])
    _emit("ENTRIES", outcome.entries)
    return 0


def run_attest(store: LedgerStore, *, key_path: Path, out_path: Path) -> int:
    try:
        key = load_ed25519_private_key(key_path.read_bytes())
        doc = attest_ledger(store, key)
        write_json_atomic(out_path, doc)
    except LedgerError as e:
        return emit_failure(e.reason)
    except OSError as e:
        return emit_failure(f"IO_ERROR:{type(e).__name__}")

    print(f"[gateledger ledger attest] wrote: {out_path}", file=sys.stderr)
    _emit("ATTEST", "PASS")
    _emit("HEAD_HASH", doc["payload"]["headHash"])
    _emit("ENTRIES", doc["payload"]["entries"])
    return 0


def run_verify_attestation(store: LedgerStore, *, pub_path: Path, attestation_path: Path) -> int:
    try:
        key = load_ed25519_public_key(pub_path.read_bytes())
        try:
            doc = json.loads(attestation_path.read_text(encoding="utf-8", errors="strict"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LedgerError("ATTESTATION_INVALID") from e
        payload = verify_ledger_attestation(store, doc, key)
    except LedgerError as e:
        return emit_failure(e.reason)
    except OSError as e:
        return emit_failure(f"IO_ERROR:{type(e).__name__}")

    _emit("ATTESTATION", "PASS")
    _emit("HEAD_HASH", payload["headHash"])
    _emit("ENTRIES", payload["entries"])
    return 0
