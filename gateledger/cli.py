#!/usr/bin/env python3
"""gateledger CLI: release-gate check runner and exit ledger.

This is the installable CLI entrypoint (console_scripts).

Subcommands:
- gateledger run                           → Execute the gate checks and write a run report
- gateledger ledger check                  → Validate the ledger hash chain (read-only, schema upgrade only)
- gateledger ledger bootstrap              → Create the ledger with its baseline entry (no-op if present)
- gateledger ledger record                 → Append one entry derived from a run report
- gateledger ledger attest                 → Sign the ledger head with an Ed25519 key
- gateledger ledger verify-attestation     → Verify a head attestation against the current ledger

Exit codes:
- 0: success / gate PASS
- 1: failure (gate FAIL, invalid ledger, configuration or usage error)

Failures always print a stable reason code on stdout, for example
``CONTOUR_C_LEDGER_RESULT=FAIL`` / ``CONTOUR_C_LEDGER_FAIL_REASON=<code>``.
"""

from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path


class UsageError(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


_INVALID_CHOICE_RE = re.compile(r"invalid choice: '([^']*)'")
_MISSING_VALUE_RE = re.compile(r"argument (\S+?)(?:/\S+)?: expected one argument")
_ARGUMENT_RE = re.compile(r"argument (\S+?)(?:/\S+)?:")
_REQUIRED_RE = re.compile(r"the following arguments are required: (\S+?),?(?:\s|$)")


def _usage_reason(message: str) -> str:
    m = _INVALID_CHOICE_RE.search(message)
    if m:
        return f"UNKNOWN_ARG:{m.group(1)}"
    m = _MISSING_VALUE_RE.search(message)
    if m:
        return f"ARG_VALUE_MISSING:{m.group(1)}"
    m = _REQUIRED_RE.search(message)
    if m:
        return f"ARG_REQUIRED:{m.group(1)}"
    m = _ARGUMENT_RE.search(message)
    if m:
        return f"ARG_INVALID:{m.group(1)}"
    return "ARG_INVALID"


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that reports usage problems as stable reason codes instead of exiting 2."""

    def error(self, message: str):  # type: ignore[override]
        raise UsageError(_usage_reason(message))


# ---------------------------------------------------------------------------
# run subcommand
# ---------------------------------------------------------------------------

def _pipeline_config(args: argparse.Namespace):
    from gateledger.runner.config import PipelineConfig, load_check_specs

    root = Path(str(args.repo)).resolve()
    overrides: dict[str, object] = {}
    if getattr(args, "checks", None):
        overrides["checks"] = load_check_specs(_repo_path(root, str(args.checks)))
    if getattr(args, "timeout_ms", None) is not None:
        overrides["timeout_ms"] = int(args.timeout_ms)
    if getattr(args, "ledger", None):
        overrides["ledger_path"] = _repo_path(root, str(args.ledger))
    return PipelineConfig.for_repo(root, **overrides)


def _repo_path(root: Path, raw: str) -> Path:
    p = Path(raw)
    return p if p.is_absolute() else root / p


def cmd_run(args: argparse.Namespace) -> int:
    from gateledger.commands.contour_run import emit_run_failure, run_contour_checks
    from gateledger.runner.config import ConfigError

    if args.timeout_ms is not None and args.timeout_ms <= 0:
        return emit_run_failure("TIMEOUT_INVALID")
    try:
        config = _pipeline_config(args)
    except ConfigError as e:
        return emit_run_failure(e.reason)
    return run_contour_checks(config)


# ---------------------------------------------------------------------------
# ledger subcommands
# ---------------------------------------------------------------------------

def _ledger_store(args: argparse.Namespace):
    from gateledger.ledger.store import LedgerStore

    config = _pipeline_config(args)
    return LedgerStore(
        config.ledger_path,
        root=config.root,
        default_result_path=config.latest_result_path,
    )


def cmd_ledger_check(args: argparse.Namespace) -> int:
    from gateledger.commands.ledger_modes import run_check

    return run_check(_ledger_store(args))


def cmd_ledger_bootstrap(args: argparse.Namespace) -> int:
    from gateledger.commands.ledger_modes import run_bootstrap

    return run_bootstrap(_ledger_store(args), baseline_sha=str(args.baseline_sha or ""), owner=str(args.owner or ""))


def cmd_ledger_record(args: argparse.Namespace) -> int:
    from gateledger.commands.ledger_modes import emit_failure, run_record
    from gateledger.ledger.model import LedgerError
    from gateledger.ledger.store import RecordRequest, parse_ho_signoff
    from gateledger.core import parse_int_prefix

    try:
        ho_signoff = parse_ho_signoff(args.ho_signoff)
    except LedgerError as e:
        return emit_failure(e.reason)

    request = RecordRequest(
        owner=str(args.owner or ""),
        entry_type=str(args.entry_type or ""),
        action=str(args.action or ""),
        ho_signoff=ho_signoff,
        result_path=str(args.result or ""),
        baseline_sha=str(args.baseline_sha or ""),
        p0_id=str(args.p0_id or ""),
        rule_id=str(args.rule_id or ""),
        ref_entry_id=str(args.ref_entry_id or ""),
        contour=str(args.contour or ""),
        p0_count=parse_int_prefix(args.p0_count) if args.p0_count is not None else None,
        product_step=str(args.product_step or ""),
        ref_report=str(args.ref_report or ""),
    )
    return run_record(_ledger_store(args), request)


def cmd_ledger_attest(args: argparse.Namespace) -> int:
    from gateledger.commands.ledger_modes import run_attest

    root = Path(str(args.repo)).resolve()
    return run_attest(
        _ledger_store(args),
        key_path=_repo_path(root, str(args.key)),
        out_path=_repo_path(root, str(args.out)),
    )


def cmd_ledger_verify_attestation(args: argparse.Namespace) -> int:
    from gateledger.commands.ledger_modes import run_verify_attestation

    root = Path(str(args.repo)).resolve()
    return run_verify_attestation(
        _ledger_store(args),
        pub_path=_repo_path(root, str(args.pub)),
        attestation_path=_repo_path(root, str(args.attestation)),
    )


# ---------------------------------------------------------------------------
# Main CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="gateledger",
        description="gateledger CLI: release-gate check runner and hash-chained exit ledger",
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommand")

    # run
    p_run = subparsers.add_parser("run", help="Execute gate checks and write a run report", allow_abbrev=False)
    p_run.add_argument("--repo", default=".", help="Repo root (default: .)")
    p_run.add_argument("--checks", help="JSON file overriding the check list")
    p_run.add_argument("--timeout-ms", type=int, default=None, help="Per-check timeout in ms (default: 300000)")
    p_run.add_argument("--ledger", help="Ledger path (default: docs/OPS/CONTOUR_C/EXIT_LEDGER.json)")
    p_run.set_defaults(func=cmd_run)

    # ledger (subparser group)
    p_ledger = subparsers.add_parser("ledger", help="Exit ledger commands", allow_abbrev=False)
    ledger_subs = p_ledger.add_subparsers(dest="ledger_command", help="Ledger mode")

    def ledger_mode(name: str, help_text: str) -> argparse.ArgumentParser:
        p = ledger_subs.add_parser(name, help=help_text, allow_abbrev=False)
        p.add_argument("--repo", default=".", help="Repo root (default: .)")
        p.add_argument("--ledger", help="Ledger path (default: docs/OPS/CONTOUR_C/EXIT_LEDGER.json)")
        return p

    # ledger check
    p_check = ledger_mode("check", "Validate the ledger hash chain")
    p_check.set_defaults(func=cmd_ledger_check)

    # ledger bootstrap
    p_boot = ledger_mode("bootstrap", "Create the ledger with its baseline entry")
    p_boot.add_argument("--baseline-sha", default="", help="Baseline commit identifier")
    p_boot.add_argument("--owner", default="", help="Owner of the baseline entry (default: HO)")
    p_boot.set_defaults(func=cmd_ledger_bootstrap)

    # ledger record
    p_rec = ledger_mode("record", "Append one entry derived from a run report")
    p_rec.add_argument("--result", default="", help="Run report path (default: latest run report)")
    p_rec.add_argument("--owner", default="", help="Entry owner (default: HO)")
    p_rec.add_argument("--entry-type", default="", help="baseline|exit|rollback|waiver|signoff|close")
    p_rec.add_argument("--action", default="", help="Free-form action label (default: record)")
    p_rec.add_argument("--ho-signoff", default="N/A", help="PENDING|APPROVED|N/A")
    p_rec.add_argument("--baseline-sha", default="", help="Baseline override (default: first entry's)")
    p_rec.add_argument("--p0-id", default="", help="P0 identifier (exit)")
    p_rec.add_argument("--rule-id", default="", help="Rule identifier (exit)")
    p_rec.add_argument("--ref-entry-id", default="", help="Referenced entryId (signoff)")
    p_rec.add_argument("--contour", default="", help="Contour identifier (close)")
    p_rec.add_argument("--p0-count", default=None, help="Non-negative P0 count (close)")
    p_rec.add_argument("--product-step", default="", help="Product step (close)")
    p_rec.add_argument("--ref-report", default="", help="Closing report reference (close)")
    p_rec.set_defaults(func=cmd_ledger_record)

    # ledger attest
    p_att = ledger_mode("attest", "Sign the ledger head with an Ed25519 private key")
    p_att.add_argument("--key", required=True, help="Ed25519 private key (PEM or 64 hex chars)")
    p_att.add_argument("--out", required=True, help="Attestation output path")
    p_att.set_defaults(func=cmd_ledger_attest)

    # ledger verify-attestation
    p_ver = ledger_mode("verify-attestation", "Verify a ledger head attestation")
    p_ver.add_argument("--pub", required=True, help="Ed25519 public key (PEM or 64 hex chars)")
    p_ver.add_argument("--attestation", required=True, help="Attestation path")
    p_ver.set_defaults(func=cmd_ledger_verify_attestation)

    return parser


def _usage_failure(command: str | None, reason: str) -> int:
    if command == "run":
        from gateledger.commands.contour_run import emit_run_failure

        return emit_run_failure(reason)
    from gateledger.commands.ledger_modes import emit_failure

    return emit_failure(reason)


def main(argv: list[str] | None = None) -> int:
    raw = list(sys.argv[1:] if argv is None else argv)
    command = raw[0] if raw and raw[0] in ("run", "ledger") else None
    parser = build_parser()
    try:
        args, extras = parser.parse_known_args(raw)
        if extras:
            raise UsageError(f"UNKNOWN_ARG:{extras[0]}")
    except UsageError as e:
        return _usage_failure(command, e.reason)

    if args.command is None:
        return _usage_failure(None, "MODE_REQUIRED")
    if args.command == "ledger" and args.ledger_command is None:
        return _usage_failure("ledger", "MODE_REQUIRED")
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
