from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from gateledger.core.atomic import write_json_atomic, write_text_atomic
from gateledger.core.time import iso_utc_ms, run_id_from_timestamp, sanitize_file_name, utc_now
from gateledger.ledger.model import WaiverRecord
from gateledger.runner.command import CommandRunner, SubprocessCommandRunner
from gateledger.runner.config import PipelineConfig
from gateledger.runner.kpi import DoctorKpi, harvest_kpis
from gateledger.runner.registries import (
    is_waiver_active,
    load_ledger_baseline_sha,
    load_waiver_registry,
    load_warn_target,
)
from gateledger.runner.report import CheckOutcome, GateSummary, build_run_report, evaluate_release_gate


@dataclass(frozen=True)
class RunResult:
    report: dict[str, Any]
    summary: GateSummary
    result_path: Path
    latest_path: Path


class CheckRunner:
    """Execute the configured checks in order and persist one run report.

    Checks run sequentially and never short-circuit. The ledger is only read
    (first entry's baselineSha), never written.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        command_runner: CommandRunner | None = None,
        clock: Callable[[], datetime] = utc_now,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.command_runner = command_runner or SubprocessCommandRunner(cwd=config.root, timeout_ms=config.timeout_ms)
        self._clock = clock
        self._log = log or (lambda _msg: None)

    def run(self) -> RunResult:
        cfg = self.config
        started_at = iso_utc_ms(self._clock())
        run_id = run_id_from_timestamp(started_at)

        # Configuration first: a malformed input aborts before any side effect.
        registry = load_waiver_registry(cfg.waiver_registry_path)
        warn_target = load_warn_target(cfg.warn_target_path)
        ledger_baseline_sha = load_ledger_baseline_sha(cfg.ledger_path)

        run_dir = self._allocate_run_dir(run_id)
        raw_dir = run_dir / "raw"
        raw_dir.mkdir(parents=True, exist_ok=True)
        now = self._clock()

        outcomes: list[CheckOutcome] = []
        active_waivers: list[WaiverRecord] = []
        kpi_stdout = ""
        for spec in cfg.checks:
            result = self.command_runner.run(spec)
            base = sanitize_file_name(spec.id.lower())
            stdout_path = raw_dir / f"{base}.stdout.log"
            stderr_path = raw_dir / f"{base}.stderr.log"
            write_text_atomic(stdout_path, result.stdout)
            write_text_atomic(stderr_path, result.stderr)

            status = "PASS" if result.exit_code == 0 and not result.timed_out else "FAIL"
            waiver_used: WaiverRecord | None = None
            if status == "FAIL":
                waiver = registry.find(spec.id)
                if waiver is not None and is_waiver_active(waiver, now):
                    status = "WAIVED"
                    waiver_used = waiver
                    active_waivers.append(waiver)

            outcomes.append(
                CheckOutcome(
                    id=spec.id,
                    command=spec.command_string(),
                    exit_code=result.exit_code,
                    status=status,
                    duration_ms=result.duration_ms,
                    timed_out=result.timed_out,
                    stdout_path=self._relative(stdout_path),
                    stderr_path=self._relative(stderr_path),
                    waiver=waiver_used,
                )
            )
            suffix = " (timed out)" if result.timed_out else ""
            self._log(f"{spec.id}: {status} exit={result.exit_code} {result.duration_ms}ms{suffix}")
            if spec.id == cfg.kpi_source_check_id:
                kpi_stdout = result.stdout

        kpi: DoctorKpi = harvest_kpis(kpi_stdout)
        summary = evaluate_release_gate(
            outcomes=outcomes,
            kpi=kpi,
            warn_target=warn_target,
            ledger_baseline_sha=ledger_baseline_sha,
        )
        for reason in summary.reasons:
            self._log(f"gate condition failed: {reason}")

        report = build_run_report(
            started_at=started_at,
            finished_at=iso_utc_ms(self._clock()),
            run_id=run_dir.name,
            outcomes=outcomes,
            kpi=kpi,
            active_waivers=active_waivers,
            inactive_waivers=[w for w in registry.waivers if not is_waiver_active(w, now)],
            summary=summary,
        )

        result_path = run_dir / "result.json"
        write_json_atomic(result_path, report)
        latest_path = cfg.latest_result_path
        write_json_atomic(latest_path, report)
        self._log(f"wrote: {self._relative(result_path)}")
        return RunResult(report=report, summary=summary, result_path=result_path, latest_path=latest_path)

    def _allocate_run_dir(self, run_id: str) -> Path:
        """Create a fresh run directory; an existing one is never reused."""

        self.config.artifacts_root.mkdir(parents=True, exist_ok=True)
        candidate = self.config.artifacts_root / run_id
        n = 0
        while True:
            try:
                candidate.mkdir()
                return candidate
            except FileExistsError:
                n += 1
                candidate = self.config.artifacts_root / f"{run_id}-{n}"

    def _relative(self, path: Path) -> str:
        return os.path.relpath(path, self.config.root).replace("\\", "/")


def summary_lines(result: RunResult, *, root: Path) -> list[str]:
    """Flat KEY=VALUE lines for downstream automation."""

    report = result.report
    kpi = report["kpi"]
    delta = kpi["WARN_DELTA_TARGET"]
    lines = [
        f"CONTOUR_C_RUN_RESULT_PATH={os.path.relpath(result.result_path, root).replace(os.sep, '/')}",
        f"CONTOUR_C_RUN_STATUS={report['summary']['result']}",
        f"STRICT_LIE_CLASSES_OK={kpi['STRICT_LIE_CLASSES_OK']}",
        f"CONTOUR_C_EXIT_IMPLEMENTED_P0_COUNT={kpi['CONTOUR_C_EXIT_IMPLEMENTED_P0_COUNT']}",
        f"CONTOUR_C_ENFORCEMENT_VIOLATIONS_COUNT={kpi['CONTOUR_C_ENFORCEMENT_VIOLATIONS_COUNT']}",
        f"WARN_TARGET_SET_VERSION={kpi['warnTargetSetVersion']}",
        f"WARN_TARGET_BASELINE_SHA={kpi['baselineSha']}",
        f"WARN_DELTA_TARGET={'NaN' if delta is None else delta}",
    ]
    expired = report["waivers"]["expiredOrInvalid"]
    if expired:
        lines.append(f"WAIVER_TTL_EXPIRED_COUNT={len(expired)}")
    return lines
