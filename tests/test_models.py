"""Tests for parsing Graph payloads into snapshot models."""

from __future__ import annotations

import pytest

from core.entitlements import fncEntitledSet, fncIsEntitled, fncNormaliseSkus, fncResolveSkuParts
from core.models import AllPrincipals, DirectoryIndex, ExplicitPrincipals, Policy, Principal, RiskSignal

from fakes import E3, P2, QUALIFYING, principal


def _ca_policy(**users) -> dict:
    return {
        "id": "c0ffee",
        "displayName": "Block high sign-in risk",
        "state": "enabledForReportingButNotEnforced",
        "conditions": {
            "signInRiskLevels": ["high", "medium"],
            "userRiskLevels": [],
            "users": users,
        },
    }


# ── Principal ────────────────────────────────────────────────────────────────

def test_principal_from_graph_lowercases_skus() -> None:
    p = Principal.from_graph({
        "id": "u1",
        "displayName": "Alice",
        "userPrincipalName": "alice@contoso.test",
        "mail": None,
        "accountEnabled": False,
        "assignedLicenses": [{"skuId": P2.upper(), "disabledPlans": []}, {"disabledPlans": []}],
    })
    assert p.entitlements == {P2}
    assert p.mail == ""
    assert p.account_enabled is False


def test_principal_without_licences() -> None:
    assert Principal.from_graph({"id": "u2", "assignedLicenses": None}).entitlements == frozenset()


# ── Policy / RuleSet ─────────────────────────────────────────────────────────

def test_all_sentinel_becomes_all_principals() -> None:
    pol = Policy.from_graph(_ca_policy(includeUsers=["All", "u1"], excludeUsers=["u2"], excludeGroups=["g9"]))
    assert isinstance(pol.rules.include_principals, AllPrincipals)
    assert pol.rules.exclude_principals == {"u2"}
    assert pol.rules.exclude_groups == {"g9"}
    assert pol.risk.present
    assert pol.risk.sign_in_levels == ("high", "medium")


def test_explicit_users_and_roles() -> None:
    pol = Policy.from_graph(_ca_policy(includeUsers=["u1"], includeGroups=["g1"], includeRoles=["r1"]))
    assert pol.rules.include_principals == ExplicitPrincipals(frozenset({"u1"}))
    assert pol.rules.include_groups == {"g1"}
    assert pol.rules.has_roles


def test_policy_without_risk_conditions() -> None:
    pol = Policy.from_graph({"id": "p", "conditions": {"users": {"includeUsers": ["All"]},
                                                       "signInRiskLevels": None}})
    assert not pol.risk.present


def test_risk_signal_from_graph() -> None:
    sig = RiskSignal.from_graph({"id": "u1", "riskLevel": "high", "riskState": "atRisk",
                                 "riskDetail": "none", "riskLastUpdatedDateTime": "2026-10-01T10:00:00Z"})
    assert (sig.principal_id, sig.level, sig.state) == ("u1", "high", "atRisk")
    assert sig.last_updated == "2026-10-01T10:00:00Z"


# ── DirectoryIndex ───────────────────────────────────────────────────────────

def test_directory_index_is_read_only_and_keeps_first_duplicate() -> None:
    idx = DirectoryIndex([principal("A", P2), principal("A"), principal("B")])
    assert len(idx) == 2
    assert idx["A"].entitlements == {P2}
    assert idx.known(["A", "zzz"]) == {"A"}
    with pytest.raises(TypeError):
        idx._table["C"] = principal("C")


# ── Entitlements ─────────────────────────────────────────────────────────────

def test_is_entitled_requires_intersection() -> None:
    assert fncIsEntitled(principal("A", E3, P2), QUALIFYING)
    assert not fncIsEntitled(principal("B", E3), QUALIFYING)
    assert not fncIsEntitled(principal("C"), QUALIFYING)
    assert not fncIsEntitled(principal("D", P2), frozenset())


def test_entitled_set() -> None:
    idx = DirectoryIndex([principal("A", P2), principal("B", E3)])
    assert fncEntitledSet(idx, QUALIFYING) == {"A"}


def test_normalise_and_resolve_parts(capsys) -> None:
    assert fncNormaliseSkus([P2.upper(), " ", P2]) == {P2}
    subscribed = [{"skuId": E3.upper(), "skuPartNumber": "ENTERPRISEPACK"}]
    found, missing = fncResolveSkuParts(["enterprisepack", "NOPE"], subscribed)
    assert found == {E3}
    assert missing == ["NOPE"]
    assert "NOPE" in capsys.readouterr().out
