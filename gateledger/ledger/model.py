from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping


LEDGER_SCHEMA_VERSION = 2
GENESIS = "GENESIS"
GENERATED_BY = "gateledger/ledger"

ENTRY_TYPES = ("baseline", "exit", "rollback", "waiver", "signoff", "close")
HO_SIGNOFF_VALUES = ("PENDING", "APPROVED", "N/A")

# KPI snapshot carried by every entry, in persisted order.
ENTRY_KPI_KEYS = (
    "STRICT_LIE_CLASSES_OK",
    "CONTOUR_C_EXIT_IMPLEMENTED_P0_COUNT",
    "CONTOUR_C_ENFORCEMENT_VIOLATIONS_COUNT",
    "WARN_DELTA_TARGET",
)


class LedgerError(ValueError):
    """A ledger operation failed; ``reason`` is the stable, greppable reason code."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and bool(v)


@dataclass(frozen=True)
class WaiverRecord:
    gate_id: str
    reason: str
    owner: str
    ttl: str

    @classmethod
    def from_registry_item(cls, item: Mapping[str, Any]) -> "WaiverRecord":
        def s(key: str) -> str:
            v = item.get(key)
            return v if isinstance(v, str) else ""

        return cls(gate_id=s("gateId"), reason=s("reason"), owner=s("owner"), ttl=s("ttl"))

    def to_dict(self) -> dict[str, str]:
        return {"gateId": self.gate_id, "reason": self.reason, "owner": self.owner, "ttl": self.ttl}


# ---------------------------------------------------------------------------
# Entry details: one class per entryType
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntryDetails:
    """Type-specific part of a ledger entry.

    Subclasses declare the fields their entry type requires. ``require`` enforces
    them on new input; ``check_persisted`` enforces them on a stored entry.
    """

    entry_type: ClassVar[str] = ""

    def fields(self) -> dict[str, Any]:
        return {}

    def require(self) -> None:
        return None

    def resolve_ho_signoff(self, requested: str) -> str:
        return requested

    @classmethod
    def check_persisted(cls, entry: Mapping[str, Any], index: int, seen_entry_ids: set[str]) -> str | None:
        return None


@dataclass(frozen=True)
class BaselineDetails(EntryDetails):
    entry_type: ClassVar[str] = "baseline"


@dataclass(frozen=True)
class RollbackDetails(EntryDetails):
    entry_type: ClassVar[str] = "rollback"


@dataclass(frozen=True)
class WaiverDetails(EntryDetails):
    entry_type: ClassVar[str] = "waiver"


@dataclass(frozen=True)
class ExitDetails(EntryDetails):
    entry_type: ClassVar[str] = "exit"

    p0_id: str = ""
    rule_id: str = ""

    def fields(self) -> dict[str, Any]:
        return {"p0Id": self.p0_id, "ruleId": self.rule_id}

    def require(self) -> None:
        if not self.p0_id or not self.rule_id:
            raise LedgerError("ENTRY_EXIT_REQUIRES_P0_AND_RULE")

    def resolve_ho_signoff(self, requested: str) -> str:
        return "APPROVED" if requested == "APPROVED" else "PENDING"

    @classmethod
    def check_persisted(cls, entry: Mapping[str, Any], index: int, seen_entry_ids: set[str]) -> str | None:
        if not non_empty_str(entry.get("p0Id")):
            return f"ENTRY_EXIT_P0_ID_INVALID:{index}"
        if not non_empty_str(entry.get("ruleId")):
            return f"ENTRY_EXIT_RULE_ID_INVALID:{index}"
        return None


@dataclass(frozen=True)
class SignoffDetails(EntryDetails):
    entry_type: ClassVar[str] = "signoff"

    ref_entry_id: str = ""

    def fields(self) -> dict[str, Any]:
        return {"refEntryId": self.ref_entry_id}

    def require(self) -> None:
        # Whether the reference resolves is decided by chain re-validation.
        if not self.ref_entry_id:
            raise LedgerError("ENTRY_SIGNOFF_REQUIRES_REF")

    def resolve_ho_signoff(self, requested: str) -> str:
        return "APPROVED"

    @classmethod
    def check_persisted(cls, entry: Mapping[str, Any], index: int, seen_entry_ids: set[str]) -> str | None:
        ref = entry.get("refEntryId")
        if not non_empty_str(ref):
            return f"ENTRY_SIGNOFF_REF_INVALID:{index}"
        if ref not in seen_entry_ids:
            return f"ENTRY_SIGNOFF_REF_MISSING:{index}"
        return None


@dataclass(frozen=True)
class CloseDetails(EntryDetails):
    entry_type: ClassVar[str] = "close"

    contour: str = ""
    p0_count: int | None = None
    product_step: str = ""
    ref_report: str = ""

    def fields(self) -> dict[str, Any]:
        return {
            "contour": self.contour,
            "p0Count": self.p0_count if is_int(self.p0_count) else 0,
            "productStep": self.product_step,
            "refReport": self.ref_report,
        }

    def require(self) -> None:
        if not self.contour:
            raise LedgerError("ENTRY_CLOSE_REQUIRES_CONTOUR")
        if not is_int(self.p0_count) or self.p0_count < 0:
            raise LedgerError("ENTRY_CLOSE_REQUIRES_P0_COUNT")
        if not self.product_step:
            raise LedgerError("ENTRY_CLOSE_REQUIRES_PRODUCT_STEP")
        if not self.ref_report:
            raise LedgerError("ENTRY_CLOSE_REQUIRES_REF_REPORT")

    def resolve_ho_signoff(self, requested: str) -> str:
        return "APPROVED" if requested == "APPROVED" else "PENDING"

    @classmethod
    def check_persisted(cls, entry: Mapping[str, Any], index: int, seen_entry_ids: set[str]) -> str | None:
        if not non_empty_str(entry.get("contour")):
            return f"ENTRY_CLOSE_CONTOUR_INVALID:{index}"
        p0_count = entry.get("p0Count")
        if not is_int(p0_count) or p0_count < 0:
            return f"ENTRY_CLOSE_P0_COUNT_INVALID:{index}"
        if not non_empty_str(entry.get("productStep")):
            return f"ENTRY_CLOSE_PRODUCT_STEP_INVALID:{index}"
        if not non_empty_str(entry.get("refReport")):
            return f"ENTRY_CLOSE_REF_REPORT_INVALID:{index}"
        return None


DETAILS_BY_TYPE: dict[str, type[EntryDetails]] = {
    cls.entry_type: cls
    for cls in (BaselineDetails, ExitDetails, RollbackDetails, WaiverDetails, SignoffDetails, CloseDetails)
}


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Proof:
    run_result_path: str = ""
    run_status: str = "UNKNOWN"

    def to_dict(self) -> dict[str, str]:
        return {"runResultPath": self.run_result_path, "runStatus": self.run_status}


@dataclass(frozen=True)
class LedgerEntry:
    entry_id: str
    timestamp: str
    action: str
    baseline_sha: str
    owner: str
    ho_signoff: str
    details: EntryDetails
    prev_hash: str
    kpi: dict[str, Any] = field(default_factory=dict)
    waivers: list[Any] = field(default_factory=list)
    proof: Proof = field(default_factory=Proof)
    generated_by: str = GENERATED_BY
    entry_hash: str = ""

    @property
    def entry_type(self) -> str:
        return self.details.entry_type

    def to_dict(self) -> dict[str, Any]:
        """Persisted form. Every type-specific key is present; unused ones hold defaults."""

        out: dict[str, Any] = {
            "entryId": self.entry_id,
            "entryType": self.entry_type,
            "timestamp": self.timestamp,
            "action": self.action,
            "baselineSha": self.baseline_sha,
            "owner": self.owner,
            "hoSignoff": self.ho_signoff,
            "p0Id": "",
            "ruleId": "",
            "refEntryId": "",
            "contour": "",
            "p0Count": 0,
            "productStep": "",
            "refReport": "",
        }
        out.update(self.details.fields())
        out["kpi"] = dict(self.kpi)
        out["waivers"] = copy.deepcopy(self.waivers)
        out["proof"] = self.proof.to_dict()
        out["prevHash"] = self.prev_hash
        out["generatedBy"] = self.generated_by
        if self.entry_hash:
            out["entryHash"] = self.entry_hash
        return out


def kpi_snapshot(report: Mapping[str, Any] | None) -> dict[str, Any]:
    kpi = report.get("kpi") if isinstance(report, Mapping) else None
    if not isinstance(kpi, Mapping):
        kpi = {}
    out: dict[str, Any] = {}
    for key in ENTRY_KPI_KEYS:
        v = kpi.get(key)
        out[key] = 0 if v is None else v
    return out


def waivers_snapshot(report: Mapping[str, Any] | None) -> list[Any]:
    waivers = report.get("waivers") if isinstance(report, Mapping) else None
    active = waivers.get("active") if isinstance(waivers, Mapping) else None
    if not isinstance(active, list):
        return []
    return copy.deepcopy(active)


def run_status_of(report: Mapping[str, Any] | None) -> str:
    summary = report.get("summary") if isinstance(report, Mapping) else None
    status = summary.get("result") if isinstance(summary, Mapping) else None
    return status if status is not None else "UNKNOWN"
