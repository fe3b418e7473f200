# ================================================================
# File     : aggregate.py
# Purpose  : Union policy scopes, classify entitlement, and derive
#            the "benefiting without a licence" sets
#            - policy-driven: scoped union minus entitled
#            - signal-driven (optional): risky users minus entitled
# Notes    : Per-policy resolution may run on a thread pool; results
#            are merged here by a single writer, in policy order.
# ================================================================

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, FrozenSet, Iterable, List, Optional

from core.entitlements import fncEntitledSet
from core.models import AuditResult, DirectoryIndex, Policy, RiskSignal
from core.scope import MemberLookup, fncResolveScopeDetailed
from core.utils import fncPrintMessage


# ================================================================
# Function: fncRiskConditioned
# Purpose : Keep only policies that condition on sign-in/user risk
# Notes   : skip_disabled drops policies in the 'disabled' state
# ================================================================
def fncRiskConditioned(policies: Iterable[Policy], skip_disabled: bool = False) -> List[Policy]:
    out = []
    for p in policies or []:
        if not p.risk.present:
            continue
        if skip_disabled and (p.state or "").lower() == "disabled":
            fncPrintMessage(f"Skipping disabled risk policy: {p.label}", "debug")
            continue
        out.append(p)
    return out


def _resolve_all(policies: List[Policy], directory: DirectoryIndex, lookup: MemberLookup,
                 workers: int) -> List:
    if workers <= 1 or len(policies) <= 1:
        return [fncResolveScopeDetailed(p, directory, lookup) for p in policies]
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pol") as pool:
        return list(pool.map(lambda p: fncResolveScopeDetailed(p, directory, lookup), policies))


# ================================================================
# Function: fncRiskDiscrepancies
# Purpose : Risk-flagged principals that hold no qualifying licence
# Notes   : Ids missing from the snapshot cannot be classified and
#           are skipped with a warning.
# ================================================================
def fncRiskDiscrepancies(signals: Iterable[RiskSignal], directory: DirectoryIndex,
                         entitled: FrozenSet[str]) -> FrozenSet[str]:
    flagged = {s.principal_id for s in signals}
    unknown = flagged - directory.ids
    if unknown:
        fncPrintMessage(f"{len(unknown)} risky user(s) not found in the directory snapshot; skipped.", "warn")
    return frozenset((flagged & directory.ids) - entitled)


# ================================================================
# Function: fncAggregate
# Purpose : Core audit: resolve every risk policy, union the scopes,
#           cross-reference against the entitled set
# Notes   : signals=None means the risk feed was not requested; an
#           empty list means it was requested and returned nothing.
# ================================================================
def fncAggregate(policies: Iterable[Policy], directory: DirectoryIndex, qualifying: FrozenSet[str],
                 lookup: MemberLookup, signals: Optional[Iterable[RiskSignal]] = None,
                 workers: int = 1, skip_disabled: bool = False) -> AuditResult:
    considered = fncRiskConditioned(policies, skip_disabled=skip_disabled)
    if not considered:
        fncPrintMessage("No risk-conditioned Conditional Access policies found.", "info")

    entitled = fncEntitledSet(directory, qualifying)

    scopes: Dict[str, FrozenSet[str]] = {}
    failed: List[str] = []
    union = set()
    for policy, (scope, bad_groups) in zip(considered, _resolve_all(considered, directory, lookup, workers)):
        scopes[policy.id] = scope
        union |= scope
        failed.extend(g for g in bad_groups if g not in failed)

    scoped_union = frozenset(union)
    discrepancies = scoped_union - entitled

    result = AuditResult(
        principals_total=len(directory),
        entitled=entitled,
        policies=considered,
        scopes=scopes,
        scoped_union=scoped_union,
        discrepancies=discrepancies,
        failed_lookups=failed,
    )

    if signals is not None:
        signal_map = {s.principal_id: s for s in signals}
        result.risk_signals = signal_map
        result.risk_discrepancies = fncRiskDiscrepancies(signal_map.values(), directory, entitled)

    return result
