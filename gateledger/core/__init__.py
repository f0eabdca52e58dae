"""Lowest-level gateledger utilities.

Dependency direction rules:
- gateledger.core must not import gateledger.ledger, gateledger.runner or gateledger.cli
"""

from gateledger.core.atomic import (
    SymlinkTargetError,
    write_bytes_atomic,
    write_json_atomic,
    write_text_atomic,
)
from gateledger.core.hash import is_hex_sha256, sha256_bytes, sha256_text
from gateledger.core.json_canon import canonical_json_bytes, pretty_json_text
from gateledger.core.numbers import parse_int_prefix
from gateledger.core.time import (
    iso_utc_ms,
    parse_instant,
    run_id_from_timestamp,
    sanitize_file_name,
    utc_now,
)

__all__ = [
    "SymlinkTargetError",
    "canonical_json_bytes",
    "is_hex_sha256",
    "iso_utc_ms",
    "parse_instant",
    "parse_int_prefix",
    "pretty_json_text",
    "run_id_from_timestamp",
    "sanitize_file_name",
    "sha256_bytes",
    "sha256_text",
    "utc_now",
    "write_bytes_atomic",
    "write_json_atomic",
    "write_text_atomic",
]
