from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any


DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_KPI_SOURCE_CHECK_ID = "CHECK_02_DOCTOR"

OPS_CONTOUR_REL = Path("docs") / "OPS" / "CONTOUR_C"
ARTIFACTS_REL = Path("artifacts") / "contour-c-run"


class ConfigError(ValueError):
    """Pipeline configuration is unusable; ``reason`` is the stable reason code."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class CheckSpec:
    id: str
    command: tuple[str, ...]

    def command_string(self) -> str:
        return " ".join(self.command)


DEFAULT_CHECKS: tuple[CheckSpec, ...] = (
    CheckSpec("CHECK_01_NPM_TEST", ("npm", "test")),
    CheckSpec("CHECK_02_DOCTOR", ("node", "scripts/doctor.mjs")),
    CheckSpec("CHECK_03_CONTOUR_C_P0_03", ("node", "scripts/guards/contour-c-p0-03.mjs")),
    CheckSpec("CHECK_04_OPS_CURRENT_WAVE", ("node", "scripts/guards/ops-current-wave-stop.mjs")),
    CheckSpec("CHECK_05_OPS_MVP_BOUNDARY", ("node", "scripts/guards/ops-mvp-boundary.mjs")),
)


@dataclass(frozen=True)
class PipelineConfig:
    root: Path
    artifacts_root: Path
    ledger_path: Path
    waiver_registry_path: Path
    warn_target_path: Path
    checks: tuple[CheckSpec, ...] = DEFAULT_CHECKS
    kpi_source_check_id: str = DEFAULT_KPI_SOURCE_CHECK_ID
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @classmethod
    def for_repo(cls, root: Path, **overrides: Any) -> "PipelineConfig":
        root = root.resolve()
        ops = root / OPS_CONTOUR_REL
        cfg = cls(
            root=root,
            artifacts_root=root / ARTIFACTS_REL,
            ledger_path=ops / "EXIT_LEDGER.json",
            waiver_registry_path=ops / "WAIVED_GATES.json",
            warn_target_path=ops / "WARN_TARGET.v1.json",
        )
        return replace(cfg, **overrides) if overrides else cfg

    @property
    def latest_result_path(self) -> Path:
        return self.artifacts_root / "latest" / "result.json"


def parse_check_specs(doc: Any) -> tuple[CheckSpec, ...]:
    """Parse ``{"checks": [{"id": ..., "command": [...]}, ...]}`` into an ordered check list."""

    if not isinstance(doc, dict) or not isinstance(doc.get("checks"), list) or not doc["checks"]:
        raise ConfigError("CHECKS_CONFIG_INVALID")
    out: list[CheckSpec] = []
    seen: set[str] = set()
    for item in doc["checks"]:
        if not isinstance(item, dict):
            raise ConfigError("CHECKS_CONFIG_INVALID")
        cid = item.get("id")
        cmd = item.get("command")
        if not isinstance(cid, str) or not cid.strip() or cid in seen:
            raise ConfigError("CHECKS_CONFIG_INVALID")
        if not isinstance(cmd, list) or not cmd or not all(isinstance(x, str) and x for x in cmd):
            raise ConfigError("CHECKS_CONFIG_INVALID")
        seen.add(cid)
        out.append(CheckSpec(cid, tuple(cmd)))
    return tuple(out)


def load_check_specs(path: Path) -> tuple[CheckSpec, ...]:
    try:
        doc = json.loads(path.read_text(encoding="utf-8", errors="strict"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigError("CHECKS_CONFIG_INVALID") from e
    return parse_check_specs(doc)
