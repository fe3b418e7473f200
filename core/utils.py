# ================================================================
# File     : utils.py
# Purpose  : Common helpers for RiskPoodle (console, files, time, data)
# Notes    : British English; witty output; colorama + tabulate
# ================================================================

import os
import json
import csv
import time
import uuid
import pathlib
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from colorama import Fore, Style, init as _colorama_init
from tabulate import tabulate

_colorama_init(autoreset=True)

DEBUG_ENABLED = False

# ================================================================
# Function: fncSetDebug
# Purpose : Globally enable/disable debug output
# Notes   : Called from main after parsing --debug
# ================================================================
def fncSetDebug(enabled: bool) -> None:
    global DEBUG_ENABLED
    DEBUG_ENABLED = bool(enabled)


# ================================================================
# Function: fncPrintMessage
# Purpose : Standardised console output with levels and colours
# Notes   : Levels: info, warn, error, success, debug
# ================================================================
def fncPrintMessage(message: str, level: str = "info") -> None:
    if level == "debug" and not DEBUG_ENABLED:
        return
    colours = {
        "info": Fore.CYAN,
        "warn": Fore.YELLOW,
        "error": Fore.RED,
        "success": Fore.GREEN,
        "debug": Fore.MAGENTA
    }
    prefix = {
        "info": "[•]",
        "warn": "[!]",
        "error": "[✗]",
        "success": "[✓]",
        "debug": "[∆]"
    }
    colour = colours.get(level, "")
    mark = prefix.get(level, "[ ]")
    print(f"{colour}{mark} {message}{Style.RESET_ALL}")


# ================================================================
# Function: fncDisplayBanner
# Purpose : Display RiskPoodle ASCII banner in rainbow colours
# Notes   : Poodle mascot sits to the right of the banner 🐩
# ================================================================
def fncDisplayBanner(version: str = "v1.0"):
    banner_lines = [
        "__________.__       __    __________                  .___.__          ",
        "\\______   \\__| _____|  | __\\______   \\____   ____   __| _/|  |   ____  ",
        " |       _/  |/  ___/  |/ / |     ___/  _ \\ /  _ \\ / __ | |  | _/ __ \\ ",
        " |    |   \\  |\\___ \\|    <  |    |  (  <_> |  <_> ) /_/ | |  |_\\  ___/ ",
        " |____|_  /__/____  >__|_ \\ |____|   \\____/ \\____/\\____ | |____/\\___  >",
        "        \\/        \\/     \\/                            \\/           \\/ ",
    ]

    poodle_lines = [
        "   _     /)---(\\   ",
        "   \\   (/ . . \\)  ",
        "    \\__)-\\(*)/    ",
        "     \\_       (_   ",
        "     (___/-(____)   "
    ]

    colours = [Fore.RED, Fore.YELLOW, Fore.GREEN, Fore.BLUE]

    def rainbow(text: str) -> str:
        """Cycle through colours for a rainbow effect"""
        out = ""
        for i, ch in enumerate(text):
            out += colours[i % len(colours)] + ch
        return out + Style.RESET_ALL

    print("\n")

    max_banner_len = max(len(line) for line in banner_lines)
    for i, banner_part in enumerate(banner_lines):
        line = banner_part.ljust(max_banner_len + 5)
        if i < len(poodle_lines):
            line += poodle_lines[i]
        print(rainbow(line))

    print(f"{Fore.CYAN}\nRiskPoodle {version} — 'Who is wearing the P2 collar without a licence?'{Style.RESET_ALL}\n")


# ================================================================
# Function: fncBlurb
# Purpose : Display a witty blurb describing current action
# Notes   : Ideal for transitions like phase changes
# ================================================================
def fncBlurb(action: str, flavour: str = None):
    blurbs = {
        "snapshot": [
            "Sniffing the directory for licence tags…",
            "Fetching every user and their collar…",
        ],
        "resolve": [
            "Following the Conditional Access scent trail…",
            "Herding groups into scope…",
        ],
        "emit": [
            "Burying the findings in CSV…",
            "Dropping the reports at the door…",
        ],
        "generic": [
            "Preparing the harness…",
            "Warming up the sniffer…",
        ]
    }

    import random
    flavour_text = flavour or random.choice(blurbs.get(action, blurbs["generic"]))
    fncPrintMessage(flavour_text, "info")


# ================================================================
# Function: fncEnsureFolder
# Purpose : Create a folder if it does not exist
# Notes   : Returns pathlib.Path object
# ================================================================
def fncEnsureFolder(path: str) -> pathlib.Path:
    p = pathlib.Path(path).expanduser().resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


# ================================================================
# Function: fncLoadEnv
# Purpose : Read environment variable with default
# Notes   : Strips quotes; returns default if unset
# ================================================================
def fncLoadEnv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name, default)
    if isinstance(val, str):
        return val.strip().strip('"').strip("'")
    return val


# ================================================================
# Function: fncReadJSON
# Purpose : Load JSON from file safely
# Notes   : Returns {} on failure when safe=True
# ================================================================
def fncReadJSON(path: str, safe: bool = True) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as ex:
        if safe:
            fncPrintMessage(f"Could not read JSON '{path}': {ex}", "warn")
            return {}
        raise


# ================================================================
# Function: fncWriteJSON
# Purpose : Write data to JSON with nice formatting
# Notes   : Ensures parent folder exists; UTF-8; 2-space indent
# ================================================================
def fncWriteJSON(path: str, data: Any) -> None:
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    fncPrintMessage(f"Saved JSON → {p}", "success")


def _csv_cell(val: Any) -> Any:
    if isinstance(val, (list, tuple, set, frozenset)):
        return "; ".join(str(v) for v in val)
    return "" if val is None else val


# ================================================================
# Function: fncExportCSV
# Purpose : Save list[dict] or list[list] to CSV
# Notes   : Dict rows use the given headers, or the sorted union
#           of keys. List cells are joined with '; '.
# ================================================================
def fncExportCSV(path: str, rows: Iterable[Any], headers: Optional[List[str]] = None) -> None:
    rows = list(rows)
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if not rows:
        with open(p, "w", newline="", encoding="utf-8") as f:
            if headers:
                csv.writer(f).writerow(headers)
        fncPrintMessage(f"Created empty CSV → {p}", "warn")
        return

    if isinstance(rows[0], dict):
        hdrs = headers or sorted({k for r in rows for k in r.keys()})
        with open(p, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=hdrs, extrasaction="ignore")
            w.writeheader()
            for r in rows:
                w.writerow({k: _csv_cell(r.get(k, "")) for k in hdrs})
    else:
        with open(p, "w", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            if headers:
                w.writerow(headers)
            for r in rows:
                w.writerow([_csv_cell(c) for c in r])

    fncPrintMessage(f"Saved CSV → {p}", "success")


# ================================================================
# Function: fncTimestamp
# Purpose : Return a UTC timestamp string
# Notes   : compact=True gives a folder-friendly form
# ================================================================
def fncTimestamp(compact: bool = False) -> str:
    now = datetime.now(timezone.utc)
    if compact:
        return now.strftime("%Y%m%d-%H%M%S")
    return now.isoformat()


# ================================================================
# Function: fncRetry
# Purpose : Simple retry wrapper with backoff
# Notes   : backoff in seconds; returns fn result or raises
# ================================================================
def fncRetry(fn, attempts: int = 3, backoff: float = 1.5, exceptions: Tuple = (Exception,), *args, **kwargs):
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except exceptions as ex:
            if attempt < attempts:
                sleep_for = backoff ** (attempt - 1)
                fncPrintMessage(f"Attempt {attempt}/{attempts} failed: {ex}. Retrying in {sleep_for:.1f}s…", "warn")
                time.sleep(sleep_for)
            else:
                fncPrintMessage(f"All {attempts} attempts failed: {ex}", "error")
                raise


# ================================================================
# Function: fncSafeGet
# Purpose : Safe nested dictionary access
# Notes   : path like 'a.b.c'; returns default when missing
# ================================================================
def fncSafeGet(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    cur = data
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return default
    return default if cur is None else cur


# ================================================================
# Function: fncToTable
# Purpose : Render rows as a table string
# Notes   : Supports list[dict] (keys become headers) or list[list]
# ================================================================
def fncToTable(rows: Iterable[Any], headers: Optional[List[str]] = None, max_rows: Optional[int] = None) -> str:
    rows = list(rows)
    truncated = 0
    if max_rows and len(rows) > max_rows:
        truncated = len(rows) - max_rows
        rows = rows[:max_rows]

    if not rows:
        return "(no data)"

    if isinstance(rows[0], dict):
        hdrs = headers or sorted({k for r in rows for k in r.keys()})
        table_rows = [[_csv_cell(r.get(h, "")) for h in hdrs] for r in rows]
        out = tabulate(table_rows, headers=hdrs, tablefmt="github")
    else:
        out = tabulate(rows, headers=(headers or "firstrow"), tablefmt="github")

    if truncated:
        out += f"\n… +{truncated} more row(s)"
    return out


# ================================================================
# Function: fncMask
# Purpose : Mask sensitive strings (client secrets, tokens)
# Notes   : Keeps start/end visible; handles short strings
# ================================================================
def fncMask(value: Optional[str], show: int = 4) -> str:
    if not value:
        return ""
    if len(value) <= show * 2:
        return "*" * len(value)
    return f"{value[:show]}{'*' * (len(value) - (show*2))}{value[-show:]}"


# ================================================================
# Function: fncNewRunId
# Purpose : Generate a short unique run identifier
# Notes   : Useful for correlating logs and outputs
# ================================================================
def fncNewRunId(prefix: str = "run") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"
