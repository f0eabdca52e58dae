"""Append-only, SHA-256 hash-chained governance ledger."""

from gateledger.ledger.chain import (
    GENESIS,
    LedgerVerdict,
    compute_entry_hash,
    empty_ledger,
    entry_hash_payload,
    normalize_legacy_entry,
    validate_ledger,
)
from gateledger.ledger.model import ENTRY_TYPES, HO_SIGNOFF_VALUES, LedgerEntry, LedgerError, WaiverRecord
from gateledger.ledger.store import LedgerStore, RecordRequest, parse_ho_signoff

__all__ = [
    "ENTRY_TYPES",
    "GENESIS",
    "HO_SIGNOFF_VALUES",
    "LedgerEntry",
    "LedgerError",
    "LedgerStore",
    "LedgerVerdict",
    "RecordRequest",
    "WaiverRecord",
    "compute_entry_hash",
    "empty_ledger",
    "entry_hash_payload",
    "normalize_legacy_entry",
    "parse_ho_signoff",
    "validate_ledger",
]
