"""Tests for the discrepancy aggregator."""

from __future__ import annotations

import pytest

from core.aggregate import fncAggregate, fncRiskConditioned, fncRiskDiscrepancies
from core.models import REASON_POLICY, REASON_RISK, DirectoryIndex, RiskSignal

from fakes import E3, P2, QUALIFYING, FakeGroups, policy, principal


@pytest.fixture
def directory() -> DirectoryIndex:
    return DirectoryIndex([principal("A", P2), principal("B", E3), principal("C")])


# ── Scenarios ────────────────────────────────────────────────────────────────

def test_all_users_minus_group_yields_single_discrepancy(directory) -> None:
    groups = FakeGroups({"G": ["C"]})
    result = fncAggregate([policy(everyone=True, exclude_groups=["G"])], directory, QUALIFYING, groups)
    assert result.scoped_union == {"A", "B"}
    assert result.discrepancies == {"B"}
    assert result.entitled == {"A"}


def test_zero_risk_policies_is_empty_but_entitled_still_known(directory) -> None:
    plain = policy(everyone=True, sign_in=(), user_risk=())
    result = fncAggregate([plain], directory, QUALIFYING, FakeGroups())
    assert result.policies == []
    assert result.scoped_union == frozenset()
    assert result.discrepancies == frozenset()
    assert result.entitled == {"A"}
    assert result.principals_total == 3


def test_zero_policies_distinguishable_from_empty_directory() -> None:
    empty = fncAggregate([policy(everyone=True)], DirectoryIndex([]), QUALIFYING, FakeGroups())
    no_pol = fncAggregate([], DirectoryIndex([principal("A")]), QUALIFYING, FakeGroups())
    assert empty.summary()["Principals (total)"] == 0
    assert empty.summary()["Risk policies evaluated"] == 1
    assert no_pol.summary()["Principals (total)"] == 1
    assert no_pol.summary()["Risk policies evaluated"] == 0


def test_risk_feed_reported_separately(directory) -> None:
    groups = FakeGroups({"G": ["C"]})
    signals = [RiskSignal("B", level="high"), RiskSignal("C", level="medium")]
    result = fncAggregate(
        [policy(everyone=True, exclude_groups=["G"])], directory, QUALIFYING, groups, signals=signals,
    )
    assert result.discrepancies == {"B"}
    assert result.risk_discrepancies == {"B", "C"}
    reasons = {(r.principal_id, r.reason) for r in result.records()}
    assert reasons == {("B", REASON_POLICY), ("B", REASON_RISK), ("C", REASON_RISK)}
    assert all(r.entitled is False for r in result.records())


def test_risk_feed_not_requested_leaves_none(directory) -> None:
    result = fncAggregate([policy(everyone=True)], directory, QUALIFYING, FakeGroups())
    assert result.risk_discrepancies is None
    assert "Unlicensed risky" not in result.summary()


# ── Invariants ───────────────────────────────────────────────────────────────

@pytest.mark.parametrize("workers", [1, 4])
def test_discrepancies_are_in_scope_and_never_entitled(directory, workers) -> None:
    groups = FakeGroups({"g1": ["A", "C"], "g2": ["B"]})
    policies = [
        policy("p1", include_groups=["g1"]),
        policy("p2", include=["B"], user_risk=("high",), sign_in=()),
        policy("p3", everyone=True, exclude=["A", "B", "C"]),
    ]
    result = fncAggregate(policies, directory, QUALIFYING, groups, workers=workers)
    assert result.discrepancies <= result.scoped_union
    assert not (result.discrepancies & result.entitled)
    assert result.scoped_union == {"A", "B", "C"}
    assert result.discrepancies == {"B", "C"}


def test_union_is_idempotent_across_overlapping_policies(directory) -> None:
    policies = [policy("p1", include=["B"]), policy("p2", include=["B", "C"])]
    result = fncAggregate(policies, directory, QUALIFYING, FakeGroups())
    assert result.scoped_union == {"B", "C"}
    assert result.policies_for("B") == ["Policy p1", "Policy p2"]
    assert result.policies_for("C") == ["Policy p2"]


def test_failed_lookups_are_collected_once(directory) -> None:
    groups = FakeGroups(broken=["bad"])
    policies = [policy("p1", include_groups=["bad"]), policy("p2", exclude_groups=["bad"], everyone=True)]
    result = fncAggregate(policies, directory, QUALIFYING, groups)
    assert result.failed_lookups == ["bad"]
    assert result.scoped_union == directory.ids


# ── Filtering ────────────────────────────────────────────────────────────────

def test_risk_predicate_and_disabled_filter() -> None:
    keep = policy("sign-in", sign_in=("medium",))
    user = policy("user", sign_in=(), user_risk=("high",))
    none = policy("none", sign_in=(), user_risk=())
    off = policy("off", state="disabled")
    assert [p.id for p in fncRiskConditioned([keep, user, none, off])] == ["sign-in", "user", "off"]
    assert [p.id for p in fncRiskConditioned([keep, user, none, off], skip_disabled=True)] == ["sign-in", "user"]


def test_risky_users_missing_from_snapshot_are_skipped(directory, capsys) -> None:
    signals = [RiskSignal("A"), RiskSignal("C"), RiskSignal("deleted-user")]
    assert fncRiskDiscrepancies(signals, directory, frozenset({"A"})) == {"C"}
    assert "not found in the directory snapshot" in capsys.readouterr().out
