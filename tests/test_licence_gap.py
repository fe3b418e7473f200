"""End-to-end tests for the licence gap module over a fake directory."""

from __future__ import annotations

import argparse
import csv
import json

import pytest

from core.config import fncDefaultConfig
from core.models import RiskSignal
from handlers.graph.directory import SnapshotError
from modules.entra import licence_gap

from fakes import E3, P2, FakeDirectory, policy, principal


def _args(tmp_path, **kw) -> argparse.Namespace:
    base = {"output": str(tmp_path / "out"), "risky_users": False, "export": None}
    base.update(kw)
    return argparse.Namespace(**base)


def _ids(path) -> set:
    with open(path, newline="", encoding="utf-8") as f:
        return {r["Id"] for r in csv.DictReader(f)}


@pytest.fixture
def tenant() -> FakeDirectory:
    return FakeDirectory(
        principals=[principal("A", P2), principal("B", E3), principal("C")],
        policies=[
            policy("p1", everyone=True, exclude_groups=["G"]),
            policy("mfa", everyone=True, sign_in=(), user_risk=()),
        ],
        groups={"G": ["C"]},
        signals=[RiskSignal("B", level="high", state="atRisk"), RiskSignal("C", level="low", state="atRisk")],
    )


def test_policy_driven_reports(tmp_path, tenant) -> None:
    data = licence_gap.run(None, _args(tmp_path), fncDefaultConfig(), directory=tenant)
    out = tmp_path / "out"

    assert _ids(out / "entitled_principals.csv") == {"A"}
    assert _ids(out / "scoped_principals.csv") == {"A", "B"}
    assert _ids(out / "unlicensed_in_scope.csv") == {"B"}
    assert _ids(out / "risk_policies.csv") == {"p1"}
    assert not (out / "unlicensed_risky.csv").exists()
    assert tenant.signal_calls == 0

    row = data["unlicensed_in_scope"][0]
    assert row["Policies"] == ["Policy p1"]
    assert row["Reason"] == "in_scope_via_policy"
    assert row["Entitled"] is False
    assert data["entitled_principals"][0]["AssignedLicenses"] == ["AAD_PREMIUM_P2"]

    summary = json.loads((out / "summary.json").read_text(encoding="utf-8"))["summary"]
    assert summary["Principals (total)"] == 3
    assert summary["Unlicensed in scope"] == 1


def test_risky_users_report_is_separate(tmp_path, tenant) -> None:
    data = licence_gap.run(None, _args(tmp_path, risky_users=True), fncDefaultConfig(), directory=tenant)
    out = tmp_path / "out"

    assert _ids(out / "unlicensed_risky.csv") == {"B", "C"}
    assert _ids(out / "unlicensed_in_scope.csv") == {"B"}
    levels = {r["Id"]: r["RiskLevel"] for r in data["unlicensed_risky"]}
    assert levels == {"B": "high", "C": "low"}


def test_no_risk_policies(tmp_path) -> None:
    tenant = FakeDirectory(principals=[principal("A", P2), principal("B")],
                           policies=[policy("mfa", everyone=True, sign_in=())])
    data = licence_gap.run(None, _args(tmp_path), fncDefaultConfig(), directory=tenant)
    assert data["summary"]["Risk policies evaluated"] == 0
    assert data["scoped_principals"] == []
    assert data["unlicensed_in_scope"] == []
    assert [r["Id"] for r in data["entitled_principals"]] == ["A"]


def test_risk_feed_failure_degrades(tmp_path, tenant) -> None:
    tenant.fail_signals = True
    data = licence_gap.run(None, _args(tmp_path, risky_users=True), fncDefaultConfig(), directory=tenant)
    assert data["summary"]["Risky users"] == "unavailable"
    assert "unlicensed_risky" not in data
    assert data["unlicensed_in_scope"][0]["Id"] == "B"


def test_group_failure_is_counted_not_fatal(tmp_path, tenant) -> None:
    tenant.groups.broken.add("G")
    data = licence_gap.run(None, _args(tmp_path), fncDefaultConfig(), directory=tenant)
    assert data["failed_lookups"] == ["G"]
    assert {r["Id"] for r in data["unlicensed_in_scope"]} == {"B", "C"}


def test_qualifying_part_numbers_extend_the_set(tmp_path, tenant) -> None:
    cfg = fncDefaultConfig()
    cfg["audit"]["qualifying_sku_parts"] = ["ENTERPRISEPACK"]
    tenant.skus.append({"skuId": E3, "skuPartNumber": "ENTERPRISEPACK"})
    data = licence_gap.run(None, _args(tmp_path), cfg, directory=tenant)
    assert {r["Id"] for r in data["entitled_principals"]} == {"A", "B"}
    assert data["unlicensed_in_scope"] == []


def test_snapshot_failure_propagates_before_any_report(tmp_path) -> None:
    with pytest.raises(SnapshotError):
        licence_gap.run(None, _args(tmp_path), fncDefaultConfig(), directory=FakeDirectory(fail_snapshot=True))
    assert not (tmp_path / "out").exists()


def test_unusable_output_path_still_returns_results(tmp_path, tenant, capsys) -> None:
    (tmp_path / "out").write_text("not a directory", encoding="utf-8")
    data = licence_gap.run(None, _args(tmp_path), fncDefaultConfig(), directory=tenant)

    assert data["output_dir"] is None
    assert set(data["reports_written"]) == {
        "entitled_principals", "scoped_principals", "unlicensed_in_scope", "risk_policies",
    }
    assert not any(data["reports_written"].values())
    assert [r["Id"] for r in data["unlicensed_in_scope"]] == ["B"]
    assert "Cannot create output directory" in capsys.readouterr().out


def test_missing_policy_workers_uses_default_pool(tmp_path, tenant, monkeypatch) -> None:
    seen = {}
    real = licence_gap.fncAggregate

    def spy(*a, **kw):
        seen["workers"] = kw["workers"]
        return real(*a, **kw)

    monkeypatch.setattr(licence_gap, "fncAggregate", spy)
    cfg = fncDefaultConfig()
    cfg["audit"]["policy_workers"] = None
    licence_gap.run(None, _args(tmp_path), cfg, directory=tenant)
    assert seen["workers"] == 4
