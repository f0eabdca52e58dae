from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from gateledger.runner.config import DEFAULT_TIMEOUT_MS, CheckSpec


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command invocation, independent of how it was executed."""

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False


class CommandRunner(Protocol):
    def run(self, spec: CheckSpec) -> CommandResult: ...


def _as_text(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return str(data)


class SubprocessCommandRunner:
    """Run a check command without a shell, capturing stdout/stderr as text.

    A command that exceeds ``timeout_ms`` is killed and reported with ``timed_out=True``
    and exit code 1. A command that cannot be started reports exit code 1 with the
    OS error on stderr. Termination by signal is reported as exit code 1.
    """

    def __init__(self, *, cwd: Path, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self.cwd = cwd
        self.timeout_ms = timeout_ms

    def run(self, spec: CheckSpec) -> CommandResult:
        started = time.monotonic()
        try:
            p = subprocess.run(
                list(spec.command),
                cwd=str(self.cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_ms / 1000.0,
                shell=False,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                exit_code=1,
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
                duration_ms=_elapsed_ms(started),
                timed_out=True,
            )
        except OSError as e:
            return CommandResult(
                exit_code=1,
                stdout="",
                stderr=f"{type(e).__name__}: {e}",
                duration_ms=_elapsed_ms(started),
            )

        exit_code = p.returncode if p.returncode >= 0 else 1
        return CommandResult(
            exit_code=exit_code,
            stdout=p.stdout or "",
            stderr=p.stderr or "",
            duration_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))
