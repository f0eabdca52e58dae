from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from gateledger.ledger.model import WaiverRecord
from gateledger.runner.kpi import DoctorKpi
from gateledger.runner.registries import WarnTarget


REPORT_SCHEMA_VERSION = 1

Status = str  # "PASS" | "FAIL" | "WAIVED"


@dataclass(frozen=True)
class CheckOutcome:
    id: str
    command: str
    exit_code: int
    status: Status
    duration_ms: int
    timed_out: bool
    stdout_path: str
    stderr_path: str
    waiver: WaiverRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "exitCode": self.exit_code,
            "status": self.status,
            "durationMs": self.duration_ms,
            "timedOut": self.timed_out,
            "stdoutPath": self.stdout_path,
            "stderrPath": self.stderr_path,
            "waiver": self.waiver.to_dict() if self.waiver is not None else None,
        }


@dataclass(frozen=True)
class GateSummary:
    result: str
    failed_checks: list[str]
    strict_lie_classes_ok: int
    warn_delta_target: int | None
    warn_target_set_valid: bool
    baseline_sha_matches_ledger: bool
    reasons: list[str] = field(default_factory=list)

    @property
    def is_pass(self) -> bool:
        return self.result == "PASS"

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result,
            "failedChecks": list(self.failed_checks),
            "strictLieClassesOk": self.strict_lie_classes_ok,
            "warnDeltaTarget": self.warn_delta_target,
            "warnTargetSetValid": 1 if self.warn_target_set_valid else 0,
            "baselineShaMatchesLedger": 1 if self.baseline_sha_matches_ledger else 0,
        }


def evaluate_release_gate(
    *,
    outcomes: Sequence[CheckOutcome],
    kpi: DoctorKpi,
    warn_target: WarnTarget,
    ledger_baseline_sha: str,
) -> GateSummary:
    """PASS iff no un-waived failure and every KPI condition holds.

    ``reasons`` lists each failed condition; it is diagnostic only and not persisted.
    """

    failed = [o.id for o in outcomes if o.status == "FAIL"]
    warn_target_set_valid = len(kpi.warn_target_set) > 0 and len(warn_target.target_warn_ids) > 0
    baseline_valid = bool(kpi.baseline_sha) and kpi.baseline_sha != "-"
    baseline_matches = baseline_valid and bool(ledger_baseline_sha) and kpi.baseline_sha == ledger_baseline_sha
    delta = kpi.warn_delta_target

    reasons: list[str] = []
    if failed:
        reasons.append("CHECKS_FAILED:" + ",".join(failed))
    if kpi.strict_lie_classes_ok != 1:
        reasons.append("STRICT_LIE_CLASSES_NOT_OK")
    if not warn_target_set_valid:
        reasons.append("WARN_TARGET_SET_INVALID")
    if not baseline_matches:
        reasons.append("BASELINE_SHA_MISMATCH")
    if not kpi.warn_target_set_version:
        reasons.append("WARN_TARGET_SET_VERSION_MISSING")
    if delta is None:
        reasons.append("WARN_DELTA_TARGET_INVALID")
    elif delta > 0:
        reasons.append("WARN_DELTA_TARGET_POSITIVE")

    return GateSummary(
        result="FAIL" if reasons else "PASS",
        failed_checks=failed,
        strict_lie_classes_ok=kpi.strict_lie_classes_ok,
        warn_delta_target=delta,
        warn_target_set_valid=warn_target_set_valid,
        baseline_sha_matches_ledger=baseline_matches,
        reasons=reasons,
    )


def kpi_to_dict(kpi: DoctorKpi, *, baseline_matches: bool) -> dict[str, Any]:
    return {
        "STRICT_LIE_CLASSES_OK": kpi.strict_lie_classes_ok,
        "CONTOUR_C_EXIT_IMPLEMENTED_P0_COUNT": kpi.exit_implemented_p0_count,
        "CONTOUR_C_ENFORCEMENT_VIOLATIONS_COUNT": kpi.enforcement_violations_count,
        "warnTargetSetVersion": kpi.warn_target_set_version,
        "baselineSha": kpi.baseline_sha,
        "warnDeltaTarget": kpi.warn_delta_target,
        "WARN_DELTA_TARGET": kpi.warn_delta_target,
        "WARN_TARGET_BASELINE_COUNT": kpi.warn_target_baseline_count,
        "WARN_TARGET_CURRENT_COUNT": kpi.warn_target_current_count,
        "WARN_TARGET_SET": list(kpi.warn_target_set),
        "WARN_TARGET_BASELINE_SHA": kpi.baseline_sha,
        "WARN_TARGET_BASELINE_SHA_MATCHES_LEDGER": 1 if baseline_matches else 0,
    }


def build_run_report(
    *,
    started_at: str,
    finished_at: str,
    run_id: str,
    outcomes: Sequence[CheckOutcome],
    kpi: DoctorKpi,
    active_waivers: Sequence[WaiverRecord],
    inactive_waivers: Sequence[WaiverRecord],
    summary: GateSummary,
) -> dict[str, Any]:
    return {
        "schemaVersion": REPORT_SCHEMA_VERSION,
        "startedAt": started_at,
        "finishedAt": finished_at,
        "runId": run_id,
        "checks": [o.to_dict() for o in outcomes],
        "kpi": kpi_to_dict(kpi, baseline_matches=summary.baseline_sha_matches_ledger),
        "waivers": {
            "active": [w.to_dict() for w in active_waivers],
            "expiredOrInvalid": [{"gateId": w.gate_id, "ttl": w.ttl, "owner": w.owner} for w in inactive_waivers],
        },
        "summary": summary.to_dict(),
    }
