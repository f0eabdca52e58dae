"""Tests for LedgerStore: bootstrap, record, check and their failure modes."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

pytestmark = pytest.mark.repo_local


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from gateledger.ledger.chain import compute_entry_hash, normalize_legacy_entry
from gateledger.ledger.model import GENERATED_BY, GENESIS, LedgerError
from gateledger.ledger.store import LedgerStore, RecordRequest, parse_ho_signoff


NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False) + "\n", encoding="utf-8", errors="strict")


def _report(*, result: str = "PASS", waivers: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "schemaVersion": 1,
        "kpi": {
            "STRICT_LIE_CLASSES_OK": 1,
            "CONTOUR_C_EXIT_IMPLEMENTED_P0_COUNT": 2,
            "CONTOUR_C_ENFORCEMENT_VIOLATIONS_COUNT": 0,
            "WARN_DELTA_TARGET": None,
        },
        "waivers": {"active": waivers or [], "expiredOrInvalid": []},
        "summary": {"result": result},
    }


def _store(root: Path, **kwargs: Any) -> LedgerStore:
    return LedgerStore(root / "docs" / "EXIT_LEDGER.json", root=root, clock=lambda: NOW, **kwargs)


def _read(store: LedgerStore) -> dict[str, Any]:
    return json.loads(store.path.read_text(encoding="utf-8"))


def _reason(excinfo: pytest.ExceptionInfo[LedgerError]) -> str:
    return excinfo.value.reason


@pytest.fixture()
def bootstrapped(tmp_path: Path) -> LedgerStore:
    store = _store(tmp_path)
    store.bootstrap(baseline_sha="abc123", owner="HO")
    _write_json(tmp_path / "runs" / "result.json", _report())
    return store


class TestBootstrap:
    def test_creates_single_baseline_entry(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        outcome = store.bootstrap(baseline_sha="abc123", owner="alice")
        assert (outcome.status, outcome.entries) == ("PASS", 1)

        doc = _read(store)
        assert doc["schemaVersion"] == 2
        assert doc["appendOnly"] is True
        (entry,) = doc["entries"]
        assert entry["entryId"] == "entry-0001"
        assert entry["entryType"] == "baseline"
        assert entry["action"] == "bootstrap"
        assert entry["hoSignoff"] == "N/A"
        assert entry["baselineSha"] == "abc123"
        assert entry["owner"] == "alice"
        assert entry["timestamp"] == "2026-03-01T12:00:00.000Z"
        assert entry["prevHash"] == GENESIS
        assert entry["generatedBy"] == GENERATED_BY
        assert entry["proof"] == {"runResultPath": "", "runStatus": "UNKNOWN"}
        assert entry["waivers"] == []
        assert entry["entryHash"] == compute_entry_hash(entry)

    def test_defaults(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.bootstrap()
        (entry,) = _read(store)["entries"]
        assert entry["baselineSha"] == "-"
        assert entry["owner"] == "HO"

    def test_second_bootstrap_is_skip(self, bootstrapped: LedgerStore) -> None:
        before = bootstrapped.path.read_bytes()
        outcome = bootstrapped.bootstrap(baseline_sha="other", owner="bob")
        assert (outcome.status, outcome.entries) == ("SKIP", 1)
        assert bootstrapped.path.read_bytes() == before

    def test_existing_invalid_ledger_fails(self, bootstrapped: LedgerStore) -> None:
        doc = _read(bootstrapped)
        doc["entries"][0]["owner"] = "mallory"
        _write_json(bootstrapped.path, doc)
        with pytest.raises(LedgerError) as e:
            bootstrapped.bootstrap(baseline_sha="abc123", owner="HO")
        assert _reason(e) == "LEDGER_INVALID:ENTRY_HASH_MISMATCH:0"


class TestRecord:
    def test_exit_entry_links_to_baseline(self, bootstrapped: LedgerStore) -> None:
        outcome = bootstrapped.record(
            RecordRequest(entry_type="exit", p0_id="P0-1", rule_id="R1", ho_signoff="PENDING", result_path="runs/result.json")
        )
        assert outcome.entries == 2
        entry = outcome.entry
        first = _read(bootstrapped)["entries"][0]
        assert entry["entryId"] == "entry-0002"
        assert entry["entryType"] == "exit"
        assert entry["prevHash"] == first["entryHash"]
        assert entry["hoSignoff"] == "PENDING"
        assert entry["baselineSha"] == "abc123"
        assert entry["owner"] == "HO"
        assert entry["action"] == "record"
        assert entry["p0Id"] == "P0-1"
        assert entry["ruleId"] == "R1"
        assert entry["proof"] == {"runResultPath": "runs/result.json", "runStatus": "PASS"}
        assert entry["kpi"]["WARN_DELTA_TARGET"] == 0
        assert entry["kpi"]["CONTOUR_C_EXIT_IMPLEMENTED_P0_COUNT"] == 2
        assert bootstrapped.validate(_read(bootstrapped)).ok

    def test_append_only_leaves_prefix_unchanged(self, bootstrapped: LedgerStore) -> None:
        before = _read(bootstrapped)["entries"]
        bootstrapped.record(RecordRequest(entry_type="rollback", result_path="runs/result.json"))
        mid = _read(bootstrapped)["entries"]
        bootstrapped.record(RecordRequest(entry_type="waiver", result_path="runs/result.json"))
        after = _read(bootstrapped)["entries"]
        assert len(mid) == len(before) + 1
        assert len(after) == len(mid) + 1
        assert after[: len(mid)] == mid
        assert mid[: len(before)] == before

    def test_default_type_is_baseline(self, bootstrapped: LedgerStore) -> None:
        entry = bootstrapped.record(RecordRequest(result_path="runs/result.json")).entry
        assert entry["entryType"] == "baseline"
        assert entry["hoSignoff"] == "N/A"

    def test_exit_approved_only_when_requested(self, bootstrapped: LedgerStore) -> None:
        approved = bootstrapped.record(
            RecordRequest(entry_type="exit", p0_id="P0-1", rule_id="R1", ho_signoff="APPROVED", result_path="runs/result.json")
        ).entry
        pending = bootstrapped.record(
            RecordRequest(entry_type="exit", p0_id="P0-2", rule_id="R2", ho_signoff="N/A", result_path="runs/result.json")
        ).entry
        assert approved["hoSignoff"] == "APPROVED"
        assert pending["hoSignoff"] == "PENDING"

    def test_signoff_forced_approved(self, bootstrapped: LedgerStore) -> None:
        entry = bootstrapped.record(
            RecordRequest(entry_type="signoff", ref_entry_id="entry-0001", ho_signoff="PENDING", result_path="runs/result.json")
        ).entry
        assert entry["hoSignoff"] == "APPROVED"
        assert entry["refEntryId"] == "entry-0001"

    def test_close_entry(self, bootstrapped: LedgerStore) -> None:
        entry = bootstrapped.record(
            RecordRequest(
                entry_type="close",
                contour="C",
                p0_count=0,
                product_step="step-1",
                ref_report="docs/CLOSE.md",
                result_path="runs/result.json",
            )
        ).entry
        assert (entry["contour"], entry["p0Count"], entry["productStep"], entry["refReport"]) == (
            "C",
            0,
            "step-1",
            "docs/CLOSE.md",
        )
        assert entry["hoSignoff"] == "PENDING"

    def test_stray_fields_not_carried_on_other_types(self, bootstrapped: LedgerStore) -> None:
        entry = bootstrapped.record(
            RecordRequest(entry_type="rollback", p0_id="P0-1", contour="C", result_path="runs/result.json")
        ).entry
        assert entry["p0Id"] == ""
        assert entry["contour"] == ""

    def test_waivers_snapshot_from_report(self, tmp_path: Path, bootstrapped: LedgerStore) -> None:
        waiver = {"gateId": "CHECK_01", "reason": "known", "owner": "HO", "ttl": "2026-03-02T00:00:00Z"}
        _write_json(tmp_path / "runs" / "waived.json", _report(waivers=[waiver]))
        entry = bootstrapped.record(RecordRequest(entry_type="waiver", result_path="runs/waived.json")).entry
        assert entry["waivers"] == [waiver]

    def test_explicit_baseline_wins(self, bootstrapped: LedgerStore) -> None:
        entry = bootstrapped.record(RecordRequest(baseline_sha="def456", result_path="runs/result.json")).entry
        assert entry["baselineSha"] == "def456"

    def test_default_result_path(self, tmp_path: Path) -> None:
        latest = tmp_path / "artifacts" / "latest" / "result.json"
        store = _store(tmp_path, default_result_path=latest)
        store.bootstrap(baseline_sha="abc123", owner="HO")
        _write_json(latest, _report(result="FAIL"))
        entry = store.record(RecordRequest()).entry
        assert entry["proof"] == {"runResultPath": "artifacts/latest/result.json", "runStatus": "FAIL"}

    def test_record_without_existing_ledger_starts_chain(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        _write_json(tmp_path / "r.json", _report())
        outcome = store.record(RecordRequest(result_path="r.json"))
        assert outcome.entry["entryId"] == "entry-0001"
        assert outcome.entry["prevHash"] == GENESIS
        assert outcome.entry["baselineSha"] == "-"


class TestRecordFailures:
    def _assert_fails(self, store: LedgerStore, request: RecordRequest, reason: str) -> None:
        before = store.path.read_bytes()
        with pytest.raises(LedgerError) as e:
            store.record(request)
        assert _reason(e) == reason
        assert store.path.read_bytes() == before

    def test_exit_without_rule(self, bootstrapped: LedgerStore) -> None:
        self._assert_fails(
            bootstrapped,
            RecordRequest(entry_type="exit", p0_id="P0-1", result_path="runs/result.json"),
            "ENTRY_EXIT_REQUIRES_P0_AND_RULE",
        )

    def test_signoff_without_ref(self, bootstrapped: LedgerStore) -> None:
        self._assert_fails(
            bootstrapped,
            RecordRequest(entry_type="signoff", result_path="runs/result.json"),
            "ENTRY_SIGNOFF_REQUIRES_REF",
        )

    def test_signoff_dangling_ref(self, bootstrapped: LedgerStore) -> None:
        self._assert_fails(
            bootstrapped,
            RecordRequest(entry_type="signoff", ref_entry_id="entry-9999", result_path="runs/result.json"),
            "LEDGER_INVALID_AFTER_RECORD:ENTRY_SIGNOFF_REF_MISSING:1",
        )

    @pytest.mark.parametrize(
        "overrides,reason",
        [
            ({"contour": ""}, "ENTRY_CLOSE_REQUIRES_CONTOUR"),
            ({"p0_count": None}, "ENTRY_CLOSE_REQUIRES_P0_COUNT"),
            ({"p0_count": -1}, "ENTRY_CLOSE_REQUIRES_P0_COUNT"),
            ({"product_step": ""}, "ENTRY_CLOSE_REQUIRES_PRODUCT_STEP"),
            ({"ref_report": ""}, "ENTRY_CLOSE_REQUIRES_REF_REPORT"),
        ],
    )
    def test_close_requirements(self, bootstrapped: LedgerStore, overrides: dict[str, Any], reason: str) -> None:
        fields: dict[str, Any] = {
            "entry_type": "close",
            "contour": "C",
            "p0_count": 1,
            "product_step": "s",
            "ref_report": "r",
            "result_path": "runs/result.json",
        }
        fields.update(overrides)
        self._assert_fails(bootstrapped, RecordRequest(**fields), reason)

    def test_unknown_entry_type(self, bootstrapped: LedgerStore) -> None:
        self._assert_fails(
            bootstrapped,
            RecordRequest(entry_type="promotion", result_path="runs/result.json"),
            "ENTRY_TYPE_INVALID",
        )

    def test_missing_result(self, bootstrapped: LedgerStore) -> None:
        self._assert_fails(bootstrapped, RecordRequest(result_path="runs/nope.json"), "RUN_RESULT_MISSING")

    def test_no_result_and_no_default(self, bootstrapped: LedgerStore) -> None:
        self._assert_fails(bootstrapped, RecordRequest(), "RUN_RESULT_MISSING")

    def test_unparseable_result(self, tmp_path: Path, bootstrapped: LedgerStore) -> None:
        (tmp_path / "runs" / "bad.json").write_text("{not json", encoding="utf-8")
        self._assert_fails(bootstrapped, RecordRequest(result_path="runs/bad.json"), "RUN_RESULT_INVALID_JSON")

    def test_tampered_ledger_refuses_append(self, bootstrapped: LedgerStore) -> None:
        doc = _read(bootstrapped)
        doc["entries"][0]["baselineSha"] = "evil"
        _write_json(bootstrapped.path, doc)
        self._assert_fails(
            bootstrapped,
            RecordRequest(result_path="runs/result.json"),
            "LEDGER_INVALID:ENTRY_HASH_MISMATCH:0",
        )

    def test_ledger_not_json(self, bootstrapped: LedgerStore) -> None:
        bootstrapped.path.write_text("[[[", encoding="utf-8")
        self._assert_fails(bootstrapped, RecordRequest(result_path="runs/result.json"), "LEDGER_INVALID_JSON")

    def test_ledger_top_level_broken(self, bootstrapped: LedgerStore) -> None:
        _write_json(bootstrapped.path, {"schemaVersion": 2, "entries": "nope"})
        self._assert_fails(bootstrapped, RecordRequest(result_path="runs/result.json"), "LEDGER_ENTRIES_NOT_ARRAY")


class TestCheck:
    def test_missing_ledger_is_empty_and_valid(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        verdict, count = store.check()
        assert verdict.ok
        assert count == 0
        assert not store.path.exists()

    def test_valid_ledger(self, bootstrapped: LedgerStore) -> None:
        verdict, count = bootstrapped.check()
        assert verdict.ok
        assert count == 1

    def test_invalid_ledger_reports_reason(self, bootstrapped: LedgerStore) -> None:
        doc = _read(bootstrapped)
        doc["appendOnly"] = False
        _write_json(bootstrapped.path, doc)
        verdict, _ = bootstrapped.check()
        assert not verdict.ok
        assert verdict.reason == "LEDGER_APPEND_ONLY_REQUIRED"

    def test_legacy_ledger_upgraded_in_place(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        legacy = {
            "entryId": "entry-0001",
            "timestamp": "2025-01-01T00:00:00.000Z",
            "action": "bootstrap",
            "baselineSha": "abc123",
            "owner": "HO",
            "kpi": {},
            "waivers": [],
            "proof": {"runResultPath": "", "runStatus": "UNKNOWN"},
            "prevHash": GENESIS,
        }
        legacy["entryHash"] = compute_entry_hash(normalize_legacy_entry(legacy))
        _write_json(store.path, {"schemaVersion": 1, "appendOnly": True, "entries": [legacy]})

        verdict, count = store.check()
        assert verdict.ok
        assert count == 1
        doc = _read(store)
        assert doc["schemaVersion"] == 2
        assert doc["entries"][0]["entryType"] == "baseline"
        assert doc["entries"][0]["baselineSha"] == "abc123"


class TestDeterminism:
    def test_same_sequence_same_bytes(self, tmp_path: Path) -> None:
        ledgers = []
        for name in ("a", "b"):
            root = tmp_path / name
            store = _store(root)
            _write_json(root / "r.json", _report())
            store.bootstrap(baseline_sha="abc123", owner="HO")
            store.record(RecordRequest(entry_type="exit", p0_id="P0-1", rule_id="R1", result_path="r.json"))
            store.record(RecordRequest(entry_type="signoff", ref_entry_id="entry-0002", result_path="r.json"))
            ledgers.append(store.path.read_bytes())
        assert ledgers[0] == ledgers[1]


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, "N/A"),
        ("", "N/A"),
        ("true", "APPROVED"),
        ("YES", "APPROVED"),
        ("1", "APPROVED"),
        ("false", "PENDING"),
        ("no", "PENDING"),
        ("0", "PENDING"),
        ("pending", "PENDING"),
        ("Approved", "APPROVED"),
        ("n/a", "N/A"),
    ],
)
def test_parse_ho_signoff(raw: Any, expected: str) -> None:
    assert parse_ho_signoff(raw) == expected


def test_parse_ho_signoff_rejects_unknown() -> None:
    with pytest.raises(LedgerError) as e:
        parse_ho_signoff("maybe")
    assert e.value.reason == "HO_SIGNOFF_INVALID"
