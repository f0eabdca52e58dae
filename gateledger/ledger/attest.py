"""Detached Ed25519 attestations over the ledger head.

An attestation binds the entry count and the last entryHash of a valid ledger.
Because every entryHash covers its predecessor, signing the head signs the
whole history up to that point.
"""

from __future__ import annotations

from typing import Any, Mapping

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from gateledger.core.hash import is_hex_sha256
from gateledger.core.json_canon import canonical_json_bytes
from gateledger.ledger.model import LEDGER_SCHEMA_VERSION, LedgerError
from gateledger.ledger.store import LedgerStore


SIGNATURE_ALG = "ed25519"


class AttestationError(LedgerError):
    pass


def _hex_key_bytes(blob: bytes) -> bytes | None:
    try:
        hex_s = blob.strip().decode("ascii", errors="strict")
    except UnicodeDecodeError:
        return None
    if is_hex_sha256(hex_s.lower()):
        return bytes.fromhex(hex_s)
    return None


def load_ed25519_private_key(blob: bytes) -> Ed25519PrivateKey:
    """Accept a raw 32-byte key as 64 hex chars, or an unencrypted PEM."""

    raw = _hex_key_bytes(blob)
    if raw is not None:
        return Ed25519PrivateKey.from_private_bytes(raw)
    try:
        key = serialization.load_pem_private_key(blob.strip(), password=None)
    except (ValueError, TypeError) as e:
        raise AttestationError("ATTESTATION_KEY_INVALID") from e
    if not isinstance(key, Ed25519PrivateKey):
        raise AttestationError("ATTESTATION_KEY_INVALID")
    return key


def load_ed25519_public_key(blob: bytes) -> Ed25519PublicKey:
    raw = _hex_key_bytes(blob)
    if raw is not None:
        return Ed25519PublicKey.from_public_bytes(raw)
    try:
        key = serialization.load_pem_public_key(blob.strip())
    except (ValueError, TypeError) as e:
        raise AttestationError("ATTESTATION_KEY_INVALID") from e
    if not isinstance(key, Ed25519PublicKey):
        raise AttestationError("ATTESTATION_KEY_INVALID")
    return key


def head_payload(ledger: Mapping[str, Any]) -> dict[str, Any]:
    entries = ledger["entries"]
    if not entries:
        raise AttestationError("LEDGER_EMPTY")
    head = entries[-1]
    return {
        "schemaVersion": LEDGER_SCHEMA_VERSION,
        "entries": len(entries),
        "headEntryId": head["entryId"],
        "headHash": head["entryHash"],
    }


def attest_ledger(store: LedgerStore, private_key: Ed25519PrivateKey) -> dict[str, Any]:
    ledger = store.load_validated()
    payload = head_payload(ledger)
    signature = private_key.sign(canonical_json_bytes(payload))
    return {
        "payload": payload,
        "signatureAlg": SIGNATURE_ALG,
        "signature": signature.hex(),
    }


def verify_ledger_attestation(store: LedgerStore, doc: Any, public_key: Ed25519PublicKey) -> dict[str, Any]:
    """Check the signature and that the attested head is the current valid head.

    Returns the attested payload. Raises AttestationError / LedgerError on failure.
    """

    if not isinstance(doc, dict) or doc.get("signatureAlg") != SIGNATURE_ALG:
        raise AttestationError("ATTESTATION_INVALID")
    payload = doc.get("payload")
    signature = doc.get("signature")
    if not isinstance(payload, dict) or not isinstance(signature, str):
        raise AttestationError("ATTESTATION_INVALID")
    try:
        sig_bytes = bytes.fromhex(signature)
        public_key.verify(sig_bytes, canonical_json_bytes(payload))
    except (ValueError, InvalidSignature):
        raise AttestationError("ATTESTATION_SIGNATURE_INVALID") from None

    ledger = store.load_validated()
    if payload != head_payload(ledger):
        raise AttestationError("ATTESTATION_HEAD_MISMATCH")
    return payload
