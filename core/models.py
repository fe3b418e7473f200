# ================================================================
# File     : models.py
# Purpose  : Snapshot data structures for the licence/scope audit
#            - Principal, RuleSet (with tagged Inclusion), Policy
#            - DirectoryIndex: immutable id -> Principal lookup
#            - RiskSignal, DiscrepancyRecord, AuditResult
# Notes    : Built once per run during Snapshot; never mutated after.
# ================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from collections.abc import Mapping
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from core.utils import fncPrintMessage, fncSafeGet

ALL_SENTINEL = "All"

REASON_POLICY = "in_scope_via_policy"
REASON_RISK = "risky_per_signal_feed"


def _ids(values: Optional[Iterable[Any]]) -> FrozenSet[str]:
    return frozenset(str(v) for v in (values or []) if v)


@dataclass(frozen=True)
class Principal:
    id: str
    display_name: str = ""
    user_principal_name: str = ""
    mail: str = ""
    user_type: str = ""
    account_enabled: Optional[bool] = None
    entitlements: FrozenSet[str] = frozenset()

    @classmethod
    def from_graph(cls, row: Dict[str, Any]) -> "Principal":
        """Build from a Graph `users` row; skuIds are lower-cased."""
        skus = frozenset(
            str(lic.get("skuId")).lower()
            for lic in (row.get("assignedLicenses") or [])
            if isinstance(lic, dict) and lic.get("skuId")
        )
        return cls(
            id=str(row.get("id")),
            display_name=row.get("displayName") or "",
            user_principal_name=row.get("userPrincipalName") or "",
            mail=row.get("mail") or "",
            user_type=row.get("userType") or "",
            account_enabled=row.get("accountEnabled"),
            entitlements=skus,
        )


# ---------------- Inclusion: All | Explicit(ids) ----------------

@dataclass(frozen=True)
class AllPrincipals:
    pass


@dataclass(frozen=True)
class ExplicitPrincipals:
    ids: FrozenSet[str] = frozenset()


Inclusion = Union[AllPrincipals, ExplicitPrincipals]


@dataclass(frozen=True)
class RuleSet:
    include_principals: Inclusion = ExplicitPrincipals()
    include_groups: FrozenSet[str] = frozenset()
    exclude_principals: FrozenSet[str] = frozenset()
    exclude_groups: FrozenSet[str] = frozenset()
    # Role targeting is carried but not evaluated by the resolver
    include_roles: FrozenSet[str] = frozenset()
    exclude_roles: FrozenSet[str] = frozenset()

    @classmethod
    def from_graph(cls, users: Dict[str, Any]) -> "RuleSet":
        users = users if isinstance(users, dict) else {}
        include_users = _ids(users.get("includeUsers"))
        if ALL_SENTINEL in include_users:
            inclusion: Inclusion = AllPrincipals()
        else:
            inclusion = ExplicitPrincipals(include_users)
        return cls(
            include_principals=inclusion,
            include_groups=_ids(users.get("includeGroups")),
            exclude_principals=_ids(users.get("excludeUsers")),
            exclude_groups=_ids(users.get("excludeGroups")),
            include_roles=_ids(users.get("includeRoles")),
            exclude_roles=_ids(users.get("excludeRoles")),
        )

    @property
    def has_roles(self) -> bool:
        return bool(self.include_roles or self.exclude_roles)


@dataclass(frozen=True)
class RiskConditions:
    sign_in_levels: Tuple[str, ...] = ()
    user_levels: Tuple[str, ...] = ()

    @property
    def present(self) -> bool:
        return bool(self.sign_in_levels or self.user_levels)


@dataclass(frozen=True)
class Policy:
    id: str
    display_name: str = ""
    state: str = ""
    rules: RuleSet = RuleSet()
    risk: RiskConditions = RiskConditions()

    @classmethod
    def from_graph(cls, row: Dict[str, Any]) -> "Policy":
        cond = row.get("conditions") or {}
        return cls(
            id=str(row.get("id") or ""),
            display_name=row.get("displayName") or "",
            state=row.get("state") or "",
            rules=RuleSet.from_graph(cond.get("users") or {}),
            risk=RiskConditions(
                sign_in_levels=tuple(fncSafeGet(cond, "signInRiskLevels", [])),
                user_levels=tuple(fncSafeGet(cond, "userRiskLevels", [])),
            ),
        )

    @property
    def label(self) -> str:
        return self.display_name or self.id


@dataclass(frozen=True)
class RiskSignal:
    principal_id: str
    level: str = ""
    state: str = ""
    detail: str = ""
    last_updated: str = ""

    @classmethod
    def from_graph(cls, row: Dict[str, Any]) -> "RiskSignal":
        return cls(
            principal_id=str(row.get("id")),
            level=row.get("riskLevel") or "",
            state=row.get("riskState") or "",
            detail=row.get("riskDetail") or "",
            last_updated=row.get("riskLastUpdatedDateTime") or "",
        )


class DirectoryIndex(Mapping):
    """
    Read-only principal lookup keyed by id, built once from the snapshot.
    Safe to share between resolver threads.
    """

    def __init__(self, principals: Iterable[Principal]):
        table: Dict[str, Principal] = {}
        for p in principals:
            if p.id in table:
                fncPrintMessage(f"Duplicate principal id in snapshot ignored: {p.id}", "warn")
                continue
            table[p.id] = p
        self._table = MappingProxyType(table)
        self._ids = frozenset(table)

    @property
    def ids(self) -> FrozenSet[str]:
        return self._ids

    def __getitem__(self, key: str) -> Principal:
        return self._table[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, key: object) -> bool:
        return key in self._ids

    def known(self, ids: Iterable[str]) -> FrozenSet[str]:
        """Subset of `ids` present in the directory."""
        return self._ids.intersection(ids)


@dataclass(frozen=True)
class DiscrepancyRecord:
    principal_id: str
    reason: str
    entitled: bool = False


@dataclass
class AuditResult:
    principals_total: int
    entitled: FrozenSet[str]
    policies: List[Policy]
    scopes: Dict[str, FrozenSet[str]]
    scoped_union: FrozenSet[str]
    discrepancies: FrozenSet[str]
    risk_discrepancies: Optional[FrozenSet[str]] = None
    risk_signals: Dict[str, RiskSignal] = field(default_factory=dict)
    failed_lookups: List[str] = field(default_factory=list)

    def records(self) -> List[DiscrepancyRecord]:
        """Discrepancy records for both feeds, policy-driven first."""
        out = [DiscrepancyRecord(pid, REASON_POLICY) for pid in sorted(self.discrepancies)]
        for pid in sorted(self.risk_discrepancies or ()):
            out.append(DiscrepancyRecord(pid, REASON_RISK))
        return out

    def policies_for(self, principal_id: str) -> List[str]:
        return [p.label for p in self.policies if principal_id in self.scopes.get(p.id, frozenset())]

    def summary(self) -> Dict[str, Any]:
        out = {
            "Principals (total)": self.principals_total,
            "Entitled": len(self.entitled),
            "Risk policies evaluated": len(self.policies),
            "In scope": len(self.scoped_union),
            "Unlicensed in scope": len(self.discrepancies),
            "Degraded lookups": len(self.failed_lookups),
        }
        if self.risk_discrepancies is not None:
            out["Risky users"] = len(self.risk_signals)
            out["Unlicensed risky"] = len(self.risk_discrepancies)
        return out
