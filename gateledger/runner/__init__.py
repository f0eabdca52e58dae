"""Release-gate check runner."""

from gateledger.runner.command import CommandResult, CommandRunner, SubprocessCommandRunner
from gateledger.runner.config import DEFAULT_CHECKS, CheckSpec, ConfigError, PipelineConfig, load_check_specs
from gateledger.runner.run import CheckRunner, RunResult, summary_lines

__all__ = [
    "DEFAULT_CHECKS",
    "CheckRunner",
    "CheckSpec",
    "CommandResult",
    "CommandRunner",
    "ConfigError",
    "PipelineConfig",
    "RunResult",
    "SubprocessCommandRunner",
    "load_check_specs",
    "summary_lines",
]
