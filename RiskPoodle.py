#!/usr/bin/env python3
# ================================================================
# Tool     : RiskPoodle
# Purpose  : Find Entra ID users covered by risk-based Conditional
#            Access (or flagged by Identity Protection) without an
#            Entra ID P2 bearing licence
# Notes    : "Every poodle in the show ring needs its papers." 🐩
# ================================================================

import sys
import argparse

from core.config import fncInitConfig, fncApplyCliOverrides, fncIsDebug, fncGetProviderConfig, fncGetAuditConfig
from core.utils import fncPrintMessage, fncSetDebug, fncDisplayBanner, fncBlurb
from handlers.graph.directory import SnapshotError
from modules.entra import licence_gap

VERSION = "v1.0"


# ================================================================
# Function: _positive_int / _positive_float
# Purpose  : argparse types for --workers / --timeout
# Notes    : 0 or less is a usage error, never silently ignored
# ================================================================
def _positive_int(value: str) -> int:
    try:
        num = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a whole number, got '{value}'")
    if num < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {num}")
    return num


def _positive_float(value: str) -> float:
    try:
        num = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number of seconds, got '{value}'")
    if num <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return num


# ================================================================
# Function: fncParseArguments
# Purpose  : Define and parse command-line arguments for RiskPoodle
# ================================================================
def fncParseArguments(argv=None):
    parser = argparse.ArgumentParser(
        prog="RiskPoodle",
        description="RiskPoodle 🐩 — P2 licence vs risk-based Conditional Access sniffer"
    )

    parser.add_argument(
        "-o", "--output",
        help="Directory for reports (created if absent). Default: ~/.riskpoodle/reports/<timestamp>",
        default=None
    )

    parser.add_argument(
        "--risky-users",
        action="store_true",
        help="Also report Identity Protection risky users without a qualifying licence"
    )

    parser.add_argument(
        "--export",
        nargs="*",
        metavar="FMT[,FMT...]",
        help="Export formats: csv, json (default: csv). Example: --export csv,json",
        default=None
    )

    parser.add_argument(
        "--workers",
        type=_positive_int,
        default=None,
        help="Concurrent group lookups / policy resolutions (default from config: 4)"
    )

    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="Seconds to wait for a single group membership lookup (default from config: 60)"
    )

    parser.add_argument(
        "--config",
        help="Path to config.json (default: ~/.riskpoodle/config.json)",
        default=None
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug output"
    )

    return parser.parse_args(argv)


# ================================================================
# Function: fncInitClient
# Purpose  : Build the read-only Graph client from config/env
# Notes    : GraphClient prompts for anything still missing
# ================================================================
def fncInitClient(cfg: dict):
    from handlers.graph.client import GraphClient

    entra_cfg = fncGetProviderConfig(cfg, "entra")
    if not all([entra_cfg.get("tenant_id"), entra_cfg.get("client_id"), entra_cfg.get("client_secret")]):
        fncPrintMessage("Missing Entra credentials in config — checking environment / prompting…", "warn")

    try:
        return GraphClient(
            tenant_id=entra_cfg.get("tenant_id"),
            client_id=entra_cfg.get("client_id"),
            client_secret=entra_cfg.get("client_secret"),
            timeout=float(fncGetAuditConfig(cfg).get("http_timeout") or 30),
            authority_host=entra_cfg.get("authority") or "https://login.microsoftonline.com",
        )
    except Exception as ex:
        fncPrintMessage(f"Unable to initialise Graph client: {ex}", "error")
        return None


# ================================================================
# Function: main
# Purpose  : Main entry point; returns the process exit status
# Notes    : 1 when Snapshot fails (or no client), else 0
# ================================================================
def main(argv=None) -> int:
    args = fncParseArguments(argv)

    cfg = fncInitConfig(args.config)
    cfg = fncApplyCliOverrides(cfg, args)
    fncSetDebug(fncIsDebug(cfg))

    fncDisplayBanner(VERSION)
    fncBlurb("generic")
    if fncIsDebug(cfg):
        fncPrintMessage("Debug output enabled.", "debug")

    client = fncInitClient(cfg)
    if not client:
        fncPrintMessage("Unable to continue without valid provider client.", "error")
        return 1

    try:
        licence_gap.run(client, args, cfg)
    except SnapshotError as ex:
        fncPrintMessage(f"Snapshot failed, no reports written: {ex}", "error")
        return 1

    fncPrintMessage("Audit complete. Tail wag achieved.", "success")
    return 0


if __name__ == "__main__":
    sys.exit(main())
