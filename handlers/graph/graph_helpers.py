# ================================================================
# File     : handlers/graph/graph_helpers.py
# Purpose  : Safer Graph helpers (handle missing $select fields)
# Notes    : Warn instead of fail; missing fields come back as None.
# ================================================================

import re
from typing import List, Dict, Any, Tuple

from core.utils import fncPrintMessage
from handlers.graph.client import GraphError

_MISSING_PROP = re.compile(r"Could not find a property named '([^']+)'")


def safe_select_get_all(client, base_endpoint: str, fields: List[str],
                        required: Tuple[str, ...] = ("id",)) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Calls client.get_all with a $select list. If Graph returns 400 with
    "Could not find a property named 'X'" and X is optional, we warn,
    drop X and retry. Every returned row carries every requested key.
    Returns: (items, missing_fields)
    """
    sep = "&" if "?" in base_endpoint else "?"
    endpoint = f"{base_endpoint}{sep}$select={','.join(fields)}" if fields else base_endpoint
    try:
        items = client.get_all(endpoint)
    except GraphError as ex:
        m = _MISSING_PROP.search(str(ex))
        if ex.status != 400 or not m or m.group(1) not in fields or m.group(1) in required:
            raise
        missing = m.group(1)
        fncPrintMessage(f"Property not found: '{missing}' — retrying without it.", "warn")
        items, more_missing = safe_select_get_all(
            client, base_endpoint, [f for f in fields if f != missing], required
        )
        for it in items:
            it[missing] = None
        return items, [missing] + more_missing

    for it in items:
        for f in fields:
            it.setdefault(f, None)
    return items, []
