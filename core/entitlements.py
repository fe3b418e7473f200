# ================================================================
# File     : entitlements.py
# Purpose  : Decide whether a principal holds a qualifying licence
# Notes    : Pure functions; skuIds compared lower-cased
# ================================================================

from typing import Dict, FrozenSet, Iterable, List, Tuple

from core.models import DirectoryIndex, Principal
from core.utils import fncPrintMessage


# ================================================================
# Function: fncNormaliseSkus
# Purpose : Lower-case and de-duplicate a collection of skuIds
# ================================================================
def fncNormaliseSkus(skus: Iterable[str]) -> FrozenSet[str]:
    return frozenset(str(s).strip().lower() for s in (skus or []) if str(s).strip())


# ================================================================
# Function: fncIsEntitled
# Purpose : True iff the principal holds any qualifying skuId
# Notes   : Empty or absent assignments simply yield False
# ================================================================
def fncIsEntitled(principal: Principal, qualifying: FrozenSet[str]) -> bool:
    return any(sku in qualifying for sku in (principal.entitlements or ()))


# ================================================================
# Function: fncEntitledSet
# Purpose : Ids of every entitled principal in the directory
# ================================================================
def fncEntitledSet(directory: DirectoryIndex, qualifying: FrozenSet[str]) -> FrozenSet[str]:
    return frozenset(pid for pid, p in directory.items() if fncIsEntitled(p, qualifying))


# ================================================================
# Function: fncResolveSkuParts
# Purpose : Map skuPartNumbers (e.g. AAD_PREMIUM_P2) to skuIds
# Notes   : subscribed = rows from `subscribedSkus`. Unknown part
#           numbers are reported and returned as the second item.
# ================================================================
def fncResolveSkuParts(parts: Iterable[str], subscribed: List[Dict]) -> Tuple[FrozenSet[str], List[str]]:
    by_part = {
        str(s.get("skuPartNumber") or "").upper(): str(s.get("skuId") or "").lower()
        for s in subscribed or []
        if s.get("skuId")
    }
    found, missing = set(), []
    for part in parts or []:
        sku = by_part.get(str(part).upper())
        if sku:
            found.add(sku)
        else:
            missing.append(part)
            fncPrintMessage(f"Qualifying SKU part number not subscribed in tenant: {part}", "warn")
    return frozenset(found), missing
