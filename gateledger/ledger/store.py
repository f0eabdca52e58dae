from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping

from gateledger.core.atomic import write_json_atomic
from gateledger.core.time import iso_utc_ms, utc_now
from gateledger.ledger.chain import (
    LedgerVerdict,
    compute_entry_hash,
    empty_ledger,
    normalize_ledger_doc,
    validate_ledger,
)
from gateledger.ledger.model import (
    DETAILS_BY_TYPE,
    ENTRY_TYPES,
    GENESIS,
    HO_SIGNOFF_VALUES,
    LEDGER_SCHEMA_VERSION,
    BaselineDetails,
    CloseDetails,
    EntryDetails,
    ExitDetails,
    LedgerEntry,
    LedgerError,
    Proof,
    SignoffDetails,
    kpi_snapshot,
    non_empty_str,
    run_status_of,
    waivers_snapshot,
)


DEFAULT_OWNER = "HO"
DEFAULT_ACTION = "record"
NO_BASELINE = "-"


def parse_ho_signoff(raw: Any) -> str:
    """Map a user-supplied signoff flag onto PENDING / APPROVED / N/A."""

    val = str(raw if raw is not None else "").strip()
    if not val:
        return "N/A"
    upper = val.upper()
    if upper in ("TRUE", "YES", "1"):
        return "APPROVED"
    if upper in ("FALSE", "NO", "0"):
        return "PENDING"
    if upper in HO_SIGNOFF_VALUES:
        return upper
    raise LedgerError("HO_SIGNOFF_INVALID")


@dataclass(frozen=True)
class RecordRequest:
    owner: str = ""
    entry_type: str = ""
    action: str = ""
    ho_signoff: str = "N/A"
    result_path: str = ""
    baseline_sha: str = ""
    p0_id: str = ""
    rule_id: str = ""
    ref_entry_id: str = ""
    contour: str = ""
    p0_count: int | None = None
    product_step: str = ""
    ref_report: str = ""

    def details(self) -> EntryDetails:
        entry_type = self.entry_type or "baseline"
        if entry_type not in ENTRY_TYPES:
            raise LedgerError("ENTRY_TYPE_INVALID")
        if entry_type == "exit":
            return ExitDetails(p0_id=self.p0_id, rule_id=self.rule_id)
        if entry_type == "signoff":
            return SignoffDetails(ref_entry_id=self.ref_entry_id)
        if entry_type == "close":
            return CloseDetails(
                contour=self.contour,
                p0_count=self.p0_count,
                product_step=self.product_step,
                ref_report=self.ref_report,
            )
        return DETAILS_BY_TYPE[entry_type]()


@dataclass(frozen=True)
class BootstrapOutcome:
    status: str  # "PASS" | "SKIP"
    entries: int


@dataclass(frozen=True)
class RecordOutcome:
    entry: dict[str, Any]
    entries: int


class LedgerStore:
    """File-backed ledger.

    Every mutation re-reads and fully validates the on-disk chain, appends in memory,
    validates the result again and only then replaces the file atomically. A single
    writer is assumed; concurrent writers need external serialization.
    """

    def __init__(
        self,
        path: Path,
        *,
        root: Path,
        default_result_path: Path | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path = path
        self.root = root
        self.default_result_path = default_result_path
        self._clock = clock

    # -- reading ------------------------------------------------------------

    def load(self) -> dict[str, Any]:
        """Read and legacy-normalize the ledger; an absent file yields an empty ledger. Never writes."""

        if not self.path.exists():
            return empty_ledger()
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8", errors="strict"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LedgerError("LEDGER_INVALID_JSON") from e
        return normalize_ledger_doc(doc)

    def validate(self, ledger: Mapping[str, Any]) -> LedgerVerdict:
        return validate_ledger(ledger, now=self._clock())

    def load_validated(self) -> dict[str, Any]:
        ledger = self.load()
        verdict = self.validate(ledger)
        if not verdict.ok:
            raise LedgerError(f"LEDGER_INVALID:{verdict.reason}")
        return ledger

    # -- modes ----------------------------------------------------------------

    def check(self) -> tuple[LedgerVerdict, int]:
        """Validate the on-disk ledger; a clean ledger with a stale schemaVersion is upgraded in place."""

        ledger = self.load()
        verdict = self.validate(ledger)
        if verdict.ok and ledger["schemaVersion"] != LEDGER_SCHEMA_VERSION:
            ledger["schemaVersion"] = LEDGER_SCHEMA_VERSION
            self._write(ledger)
        return verdict, len(ledger["entries"])

    def bootstrap(self, *, baseline_sha: str = "", owner: str = "") -> BootstrapOutcome:
        if self.path.exists():
            ledger = self.load_validated()
            if ledger["schemaVersion"] != LEDGER_SCHEMA_VERSION:
                ledger["schemaVersion"] = LEDGER_SCHEMA_VERSION
                self._write(ledger)
            return BootstrapOutcome(status="SKIP", entries=len(ledger["entries"]))

        ledger = empty_ledger()
        entry = self._new_entry(
            ledger,
            details=BaselineDetails(),
            action="bootstrap",
            baseline_sha=baseline_sha or NO_BASELINE,
            owner=owner or DEFAULT_OWNER,
            ho_signoff="N/A",
            report=None,
            result_rel="",
        )
        self._append_and_write(ledger, entry)
        return BootstrapOutcome(status="PASS", entries=1)

    def record(self, request: RecordRequest) -> RecordOutcome:
        ledger = self.load_validated()

        result_path = self._resolve_result_path(request.result_path)
        if not result_path.is_file():
            raise LedgerError("RUN_RESULT_MISSING")
        try:
            report = json.loads(result_path.read_text(encoding="utf-8", errors="strict"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LedgerError("RUN_RESULT_INVALID_JSON") from e

        details = request.details()
        details.require()

        entries = ledger["entries"]
        baseline_sha = request.baseline_sha
        if not baseline_sha and entries and non_empty_str(entries[0].get("baselineSha")):
            baseline_sha = entries[0]["baselineSha"]

        entry = self._new_entry(
            ledger,
            details=details,
            action=request.action or DEFAULT_ACTION,
            baseline_sha=baseline_sha or NO_BASELINE,
            owner=request.owner or DEFAULT_OWNER,
            ho_signoff=request.ho_signoff or "N/A",
            report=report,
            result_rel=self._relative(result_path),
        )
        self._append_and_write(ledger, entry)
        return RecordOutcome(entry=entry, entries=len(ledger["entries"]))

    # -- internals -------------------------------------------------------------

    def _new_entry(
        self,
        ledger: Mapping[str, Any],
        *,
        details: EntryDetails,
        action: str,
        baseline_sha: str,
        owner: str,
        ho_signoff: str,
        report: Any,
        result_rel: str,
    ) -> dict[str, Any]:
        entries = ledger["entries"]
        entry = LedgerEntry(
            entry_id=f"entry-{len(entries) + 1:04d}",
            timestamp=iso_utc_ms(self._clock()),
            action=action,
            baseline_sha=baseline_sha,
            owner=owner,
            ho_signoff=details.resolve_ho_signoff(ho_signoff),
            details=details,
            prev_hash=entries[-1]["entryHash"] if entries else GENESIS,
            kpi=kpi_snapshot(report),
            waivers=waivers_snapshot(report),
            proof=Proof(run_result_path=result_rel, run_status=run_status_of(report)),
        )
        try:
            entry_hash = compute_entry_hash(entry.to_dict())
        except ValueError as e:
            raise LedgerError("RUN_RESULT_NOT_CANONICAL") from e
        return dataclasses.replace(entry, entry_hash=entry_hash).to_dict()

    def _append_and_write(self, ledger: dict[str, Any], entry: dict[str, Any]) -> None:
        ledger["entries"].append(entry)
        verdict = self.validate(ledger)
        if not verdict.ok:
            raise LedgerError(f"LEDGER_INVALID_AFTER_RECORD:{verdict.reason}")
        ledger["schemaVersion"] = LEDGER_SCHEMA_VERSION
        self._write(ledger)

    def _write(self, ledger: Mapping[str, Any]) -> None:
        write_json_atomic(self.path, ledger)

    def _resolve_result_path(self, explicit: str) -> Path:
        if explicit:
            p = Path(explicit)
            return p if p.is_absolute() else self.root / p
        if self.default_result_path is None:
            raise LedgerError("RUN_RESULT_MISSING")
        return self.default_result_path

    def _relative(self, path: Path) -> str:
        return os.path.relpath(path, self.root).replace("\\", "/")
