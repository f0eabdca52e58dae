from __future__ import annotations

import sys

from gateledger.runner.command import CommandRunner
from gateledger.runner.config import ConfigError, PipelineConfig
from gateledger.runner.run import CheckRunner, summary_lines


def _log(msg: str) -> None:
    print(f"[gateledger run] {msg}", file=sys.stderr)


def emit_run_failure(reason: str) -> int:
    print("CONTOUR_C_RUN_RESULT=FAIL", file=sys.stdout)
    print(f"CONTOUR_C_RUN_FAIL_REASON={reason}", file=sys.stdout)
    print(f"CONTOUR_C_RUN_FATAL={reason}", file=sys.stderr)
    return 1


def run_contour_checks(config: PipelineConfig, *, command_runner: CommandRunner | None = None) -> int:
    """Run every configured check, write the report, print the summary. Exit 0 iff the gate passes."""

    runner = CheckRunner(config, command_runner=command_runner, log=_log)
    try:
        result = runner.run()
    except ConfigError as e:
        return emit_run_failure(e.reason)
    except OSError as e:
        return emit_run_failure(f"IO_ERROR:{type(e).__name__}")

    for line in summary_lines(result, root=config.root):
        print(line, file=sys.stdout)
    return 0 if result.summary.is_pass else 1
