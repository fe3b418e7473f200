# ================================================================
# File     : exports.py
# Purpose  : Write RiskPoodle result sets to disk (CSV, JSON)
# Notes    : Each report is written independently; one failing
#            report never stops the others.
# ================================================================

import pathlib
import traceback
from typing import Any, Dict, List, Optional, Tuple

from core.utils import fncPrintMessage, fncEnsureFolder, fncExportCSV, fncWriteJSON, fncTimestamp

SUPPORTED_FORMATS = ("csv", "json")

Report = Tuple[List[Dict[str, Any]], Optional[List[str]]]


# ================================================================
# Function: fncExportList
# Purpose  : Flatten --export list-of-lists from argparse
# Notes    : Defaults to csv; unknown formats are dropped with a warning
# ================================================================
def fncExportList(args_export) -> set:
    if not args_export:
        return {"csv"}
    out = set()
    for chunk in args_export:
        items = chunk if isinstance(chunk, (list, tuple)) else [chunk]
        for item in items:
            if not isinstance(item, str):
                continue
            for part in item.replace(",", " ").split():
                fmt = part.strip().lower()
                if fmt in SUPPORTED_FORMATS:
                    out.add(fmt)
                else:
                    fncPrintMessage(f"Unsupported export format ignored: {fmt}", "warn")
    return out or {"csv"}


# ================================================================
# Function: fncGetExportPath
# Purpose  : Resolve (and create) the report output directory
# Notes    : Default is ~/.riskpoodle/reports/<UTC timestamp>
# ================================================================
def fncGetExportPath(output: Optional[str] = None) -> pathlib.Path:
    if output:
        return fncEnsureFolder(output)
    root = pathlib.Path.home() / ".riskpoodle" / "reports"
    return fncEnsureFolder(root / fncTimestamp(compact=True))


# ================================================================
# Function: fncEmitReport
# Purpose  : Write one named result set in every requested format
# Notes    : Returns False (and logs) instead of raising on failure
# ================================================================
def fncEmitReport(name: str, rows: List[Dict[str, Any]], out_dir: pathlib.Path,
                  formats: set, headers: Optional[List[str]] = None) -> bool:
    try:
        if "csv" in formats:
            fncExportCSV(str(pathlib.Path(out_dir) / f"{name}.csv"), rows, headers=headers)
        if "json" in formats:
            fncWriteJSON(str(pathlib.Path(out_dir) / f"{name}.json"), rows)
        return True
    except Exception as ex:
        fncPrintMessage(f"Failed to write report '{name}': {ex}", "error")
        fncPrintMessage(traceback.format_exc(), "debug")
        return False


# ================================================================
# Function: fncEmitReports
# Purpose  : Emit every report; returns {name: written_ok}
# ================================================================
def fncEmitReports(reports: Dict[str, Report], out_dir: pathlib.Path, formats: set) -> Dict[str, bool]:
    status = {}
    for name, (rows, headers) in reports.items():
        status[name] = fncEmitReport(name, rows, out_dir, formats, headers)
    ok = sum(1 for v in status.values() if v)
    level = "success" if ok == len(status) else "warn"
    fncPrintMessage(f"Reports written: {ok}/{len(status)} → {out_dir}", level)
    return status
