# ================================================================
# File     : modules/entra/licence_gap.py
# Purpose  : Reconcile Entra ID P2 licences against risk-based
#            Conditional Access scope (and, optionally, risky users)
#            - Snapshot: users + licences, risk CA policies, SKUs
#            - Resolve : per-policy scope, union, classify
#            - Emit    : CSV/JSON reports + summary
# Output   : data["entitled_principals"], data["scoped_principals"],
#            data["unlicensed_in_scope"], data["unlicensed_risky"],
#            data["risk_policies"], data["summary"]
# ================================================================

from typing import Any, Dict, List, Optional

from core.aggregate import fncAggregate
from core.config import DEFAULT_QUALIFYING_SKUS, fncGetAuditConfig, fncQualifyingSkuIds
from core.entitlements import fncNormaliseSkus, fncResolveSkuParts
from core.exports import fncEmitReports, fncExportList, fncGetExportPath
from core.models import REASON_POLICY, REASON_RISK, AuditResult, DirectoryIndex, Principal
from core.utils import fncBlurb, fncNewRunId, fncPrintMessage, fncTimestamp, fncToTable, fncWriteJSON
from handlers.graph.directory import GraphDirectory

PRINCIPAL_HEADERS = [
    "Id", "DisplayName", "UserPrincipalName", "Mail", "UserType", "AccountEnabled", "AssignedLicenses",
]
SCOPED_HEADERS = PRINCIPAL_HEADERS + ["Policies"]
UNLICENSED_HEADERS = SCOPED_HEADERS + ["Reason", "Entitled"]
RISKY_HEADERS = PRINCIPAL_HEADERS + [
    "RiskLevel", "RiskState", "RiskDetail", "RiskLastUpdated", "Reason", "Entitled",
]
POLICY_HEADERS = ["Id", "Name", "State", "SignInRisk", "UserRisk", "InScope", "RolesNotEvaluated"]


# ----------------------- row builders -----------------------

def _sku_names(skus: List[Dict[str, Any]]) -> Dict[str, str]:
    names = dict(DEFAULT_QUALIFYING_SKUS)
    for s in skus or []:
        if s.get("skuId"):
            names[str(s["skuId"]).lower()] = s.get("skuPartNumber") or s["skuId"]
    return names

def _principal_row(p: Principal, sku_names: Dict[str, str]) -> Dict[str, Any]:
    return {
        "Id": p.id,
        "DisplayName": p.display_name,
        "UserPrincipalName": p.user_principal_name,
        "Mail": p.mail,
        "UserType": p.user_type,
        "AccountEnabled": p.account_enabled,
        "AssignedLicenses": sorted(sku_names.get(s, s) for s in p.entitlements),
    }

def _ordered(directory: DirectoryIndex, ids) -> List[Principal]:
    return sorted((directory[i] for i in ids), key=lambda p: (p.user_principal_name.lower(), p.id))

def _build_reports(result: AuditResult, directory: DirectoryIndex,
                   sku_names: Dict[str, str], include_risky: bool) -> Dict[str, Any]:
    entitled = [_principal_row(p, sku_names) for p in _ordered(directory, result.entitled)]

    scoped = []
    for p in _ordered(directory, result.scoped_union):
        row = _principal_row(p, sku_names)
        row["Policies"] = result.policies_for(p.id)
        scoped.append(row)

    unlicensed = [
        dict(r, Reason=REASON_POLICY, Entitled=False)
        for r in scoped if r["Id"] in result.discrepancies
    ]

    policies = [{
        "Id": pol.id,
        "Name": pol.display_name,
        "State": pol.state,
        "SignInRisk": list(pol.risk.sign_in_levels),
        "UserRisk": list(pol.risk.user_levels),
        "InScope": len(result.scopes.get(pol.id, ())),
        "RolesNotEvaluated": len(pol.rules.include_roles) + len(pol.rules.exclude_roles),
    } for pol in result.policies]

    reports = {
        "entitled_principals": (entitled, PRINCIPAL_HEADERS),
        "scoped_principals": (scoped, SCOPED_HEADERS),
        "unlicensed_in_scope": (unlicensed, UNLICENSED_HEADERS),
        "risk_policies": (policies, POLICY_HEADERS),
    }

    if include_risky and result.risk_discrepancies is not None:
        risky = []
        for p in _ordered(directory, result.risk_discrepancies):
            sig = result.risk_signals[p.id]
            row = _principal_row(p, sku_names)
            row.update({
                "RiskLevel": sig.level,
                "RiskState": sig.state,
                "RiskDetail": sig.detail,
                "RiskLastUpdated": sig.last_updated,
                "Reason": REASON_RISK,
                "Entitled": False,
            })
            risky.append(row)
        reports["unlicensed_risky"] = (risky, RISKY_HEADERS)

    return reports


# --------------------- Module entry point -----------------------

def run(client, args, cfg: Optional[dict] = None, directory=None):
    """
    Runs the three audit phases. `directory` defaults to a GraphDirectory
    over `client`. SnapshotError propagates; everything after Snapshot
    degrades instead of failing.
    """
    cfg = cfg or {}
    audit = fncGetAuditConfig(cfg)
    directory = directory or GraphDirectory(client)
    include_risky = bool(getattr(args, "risky_users", False))
    run_id = fncNewRunId("p2")
    ts = fncTimestamp()

    # ---------- Snapshot (fatal on failure) ----------
    fncBlurb("snapshot")
    principals = directory.fetch_all_principals()
    policies = directory.fetch_risk_conditioned_policies()
    skus = directory.fetch_subscribed_skus()

    qualifying = fncNormaliseSkus(fncQualifyingSkuIds(cfg))
    if audit.get("qualifying_sku_parts"):
        from_parts, _ = fncResolveSkuParts(audit["qualifying_sku_parts"], skus)
        qualifying |= from_parts
    if not qualifying:
        fncPrintMessage("No qualifying SKUs configured; every user will count as unlicensed.", "warn")

    index = DirectoryIndex(principals)
    fncPrintMessage(
        f"Snapshot: {len(index)} user(s), {len(policies)} risk-conditioned policy(ies), "
        f"{len(qualifying)} qualifying SKU(s)",
        "info",
    )

    # ---------- Resolve (degrades, never fatal) ----------
    fncBlurb("resolve")
    signals = None
    risk_feed_failed = False
    if include_risky:
        try:
            signals = directory.fetch_risk_signaled_principals()
        except Exception as ex:
            risk_feed_failed = True
            fncPrintMessage(f"Risky users feed unavailable ({ex}); risky-user report skipped.", "warn")

    with directory.group_member_lookup(
        workers=int(audit.get("lookup_workers") or 4),
        timeout=float(audit.get("lookup_timeout") or 60),
    ) as lookup:
        result = fncAggregate(
            policies,
            index,
            qualifying,
            lookup,
            signals=signals,
            workers=int(audit.get("policy_workers") or 4),
            skip_disabled=bool(audit.get("skip_disabled_policies")),
        )

    summary = result.summary()
    if risk_feed_failed:
        summary["Risky users"] = "unavailable"
    fncPrintMessage("[•] Licence gap summary", "info")
    print(fncToTable([[k, v] for k, v in summary.items()], headers=["Metric", "Count"]))

    # ---------- Emit (per-report isolation) ----------
    fncBlurb("emit")
    reports = _build_reports(result, index, _sku_names(skus), include_risky)

    if reports["unlicensed_in_scope"][0]:
        fncPrintMessage("[•] Unlicensed users in risk policy scope", "info")
        print(fncToTable(
            reports["unlicensed_in_scope"][0],
            headers=["DisplayName", "UserPrincipalName", "Policies"],
            max_rows=25,
        ))
    else:
        fncPrintMessage("No unlicensed users found in risk policy scope.", "success")

    formats = fncExportList(getattr(args, "export", None))
    try:
        out_dir = fncGetExportPath(getattr(args, "output", None))
    except OSError as ex:
        out_dir = None
        fncPrintMessage(f"Cannot create output directory ({ex}); no reports written.", "error")

    if out_dir is None:
        written = {name: False for name in reports}
    else:
        written = fncEmitReports(reports, out_dir, formats)

    data = {
        "provider": "entra",
        "run_id": run_id,
        "timestamp": ts,
        "summary": summary,
        "failed_lookups": result.failed_lookups,
        "reports_written": written,
        "output_dir": str(out_dir) if out_dir else None,
    }
    for name, (rows, _) in reports.items():
        data[name] = rows

    if out_dir is not None:
        try:
            fncWriteJSON(str(out_dir / "summary.json"), {
                k: data[k] for k in ("run_id", "timestamp", "summary", "failed_lookups", "reports_written")
            })
        except OSError as ex:
            fncPrintMessage(f"Failed to write summary.json: {ex}", "error")

    fncPrintMessage("Licence gap module complete.", "success")
    return data
