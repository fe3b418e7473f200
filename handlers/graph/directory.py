# ================================================================
# File     : handlers/graph/directory.py
# Purpose  : Graph-backed collaborators for the licence/scope audit
#            - users + assigned licences (full snapshot)
#            - Conditional Access policies (v1.0, fallback to beta)
#            - transitive group members (users only)
#            - risky users (Identity Protection)
#            - subscribed SKUs (part number lookup)
# ================================================================

from typing import Any, Dict, List

from core.models import Policy, Principal, RiskSignal
from core.scope import GroupMemberLookup
from core.utils import fncPrintMessage
from handlers.graph.graph_helpers import safe_select_get_all

USER_FIELDS = [
    "id",
    "displayName",
    "userPrincipalName",
    "mail",
    "userType",
    "accountEnabled",
    "assignedLicenses",
]

RISKY_USER_FIELDS = "id,userPrincipalName,riskLevel,riskState,riskDetail,riskLastUpdatedDateTime"

REQUIRED_PERMS = [
    "User.Read.All",
    "GroupMember.Read.All",
    "Policy.Read.All",
    "IdentityRiskyUser.Read.All",     # only with --risky-users
]


class SnapshotError(Exception):
    """Directory data could not be acquired; nothing to audit."""


class GraphDirectory:
    def __init__(self, client):
        self.client = client

    # ---------- Snapshot ----------

    def fetch_all_principals(self) -> List[Principal]:
        try:
            rows, missing = safe_select_get_all(self.client, "users?$top=999", USER_FIELDS)
        except Exception as ex:
            raise SnapshotError(f"Unable to list users: {ex}") from ex
        if missing:
            fncPrintMessage(f"User fields unavailable in this tenant: {', '.join(missing)}", "warn")
        return [Principal.from_graph(r) for r in rows if r.get("id")]

    def fetch_policies(self) -> List[Policy]:
        try:
            rows = self.client.get_all("identity/conditionalAccess/policies")
        except Exception as ex:
            fncPrintMessage(f"CA policies v1.0 failed: {ex}", "warn")
            fncPrintMessage("Falling back to /beta for CA policies.", "warn")
            try:
                rows = self.client.get_all("identity/conditionalAccess/policies", beta=True)
            except Exception as ex2:
                raise SnapshotError(f"Unable to list Conditional Access policies: {ex2}") from ex2
        return [Policy.from_graph(r) for r in rows if isinstance(r, dict)]

    def fetch_risk_conditioned_policies(self) -> List[Policy]:
        return [p for p in self.fetch_policies() if p.risk.present]

    def fetch_subscribed_skus(self) -> List[Dict[str, Any]]:
        try:
            return self.client.get_all("subscribedSkus?$select=skuId,skuPartNumber")
        except Exception as ex:
            fncPrintMessage(f"Subscribed SKUs unavailable ({ex}); licences shown as skuIds.", "warn")
            return []

    # ---------- Resolve ----------

    def fetch_group_members(self, group_id: str) -> List[str]:
        """Transitive user members of a group. Raises on lookup error."""
        rows = self.client.get_all(f"groups/{group_id}/transitiveMembers/microsoft.graph.user?$select=id")
        return [r["id"] for r in rows if isinstance(r, dict) and r.get("id")]

    def group_member_lookup(self, workers: int = 4, timeout: float = 60) -> GroupMemberLookup:
        return GroupMemberLookup(self.fetch_group_members, max_workers=workers, timeout=timeout)

    def fetch_risk_signaled_principals(self) -> List[RiskSignal]:
        rows = self.client.get_all(f"identityProtection/riskyUsers?$select={RISKY_USER_FIELDS}")
        return [RiskSignal.from_graph(r) for r in rows if isinstance(r, dict) and r.get("id")]
