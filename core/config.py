# ================================================================
# File     : config.py
# Purpose  : Configuration management for RiskPoodle
# Notes    : Handles initial creation, loading, and saving of config
# ================================================================

import pathlib
from typing import Any, Dict, List

from core.utils import fncPrintMessage, fncEnsureFolder, fncReadJSON, fncWriteJSON, fncLoadEnv

CONFIG_HOME = pathlib.Path.home() / ".riskpoodle"

# Entra ID P2 bearing SKUs (skuId -> skuPartNumber)
DEFAULT_QUALIFYING_SKUS = {
    "84a661c4-e949-4bd2-a560-ed7766fcaf2b": "AAD_PREMIUM_P2",
    "b05e124f-c7cc-45a0-a6aa-8cf78c946968": "EMSPREMIUM",
    "06ebc4ee-1bb5-47dd-8120-11324bc54e06": "SPE_E5",
}


# ================================================================
# Function: fncDefaultConfig
# Purpose : Return a default configuration dictionary
# Notes   : Called when config file does not exist
# ================================================================
def fncDefaultConfig() -> dict:
    return {
        "version": "1.0",
        "riskpoodle_home": str(CONFIG_HOME),
        "debug": False,
        "providers": {
            "entra": {
                "tenant_id": "",
                "client_id": "",
                "client_secret": "",
                "authority": "https://login.microsoftonline.com"
            }
        },
        "audit": {
            "qualifying_sku_ids": sorted(DEFAULT_QUALIFYING_SKUS),
            "qualifying_sku_parts": [],
            "lookup_workers": 4,
            "lookup_timeout": 60,
            "policy_workers": 4,
            "http_timeout": 30,
            "skip_disabled_policies": False
        }
    }


# ================================================================
# Function: fncInitConfig
# Purpose : Create or load configuration file
# Notes   : Ensures base folder exists; returns full config dict
# ================================================================
def fncInitConfig(config_path: str = None) -> dict:
    path = pathlib.Path(config_path or (CONFIG_HOME / "config.json"))

    fncEnsureFolder(path.parent)

    if not path.exists():
        fncPrintMessage(f"No config found at {path}. Creating default...", "warn")
        cfg = fncDefaultConfig()
        fncWriteJSON(str(path), cfg)
        return cfg
    return fncLoadConfig(str(path))


# ================================================================
# Function: fncLoadConfig
# Purpose : Load configuration file and apply environment overrides
# Notes   : Uses ENV vars: ENTRA_TENANT_ID, ENTRA_CLIENT_ID, etc.
#           Missing blocks fall back to defaults key by key.
# ================================================================
def fncLoadConfig(config_path: str) -> dict:
    cfg = fncDefaultConfig()
    loaded = fncReadJSON(config_path)

    for key, val in loaded.items():
        if isinstance(val, dict) and isinstance(cfg.get(key), dict):
            for sub, sub_val in val.items():
                if isinstance(sub_val, dict) and isinstance(cfg[key].get(sub), dict):
                    cfg[key][sub].update(sub_val)
                else:
                    cfg[key][sub] = sub_val
        else:
            cfg[key] = val

    entra = cfg["providers"]["entra"]
    entra.update({
        "tenant_id": fncLoadEnv("ENTRA_TENANT_ID", entra.get("tenant_id")),
        "client_id": fncLoadEnv("ENTRA_CLIENT_ID", entra.get("client_id")),
        "client_secret": fncLoadEnv("ENTRA_CLIENT_SECRET", entra.get("client_secret")),
    })

    fncPrintMessage(f"Loaded configuration from {config_path}", "debug")
    return cfg


# ================================================================
# Function: fncGetProviderConfig
# Purpose : Return config block for a specific provider
# ================================================================
def fncGetProviderConfig(cfg: dict, provider: str) -> dict:
    providers = cfg.get("providers", {})
    if provider not in providers:
        fncPrintMessage(f"Provider not found in config: {provider}", "warn")
        return {}
    return providers[provider]


# ================================================================
# Function: fncGetAuditConfig
# Purpose : Return the audit block, defaults filled in
# ================================================================
def fncGetAuditConfig(cfg: dict) -> Dict[str, Any]:
    audit = dict(fncDefaultConfig()["audit"])
    audit.update(cfg.get("audit") or {})
    return audit


# ================================================================
# Function: fncQualifyingSkuIds
# Purpose : Configured qualifying SKU ids, lower-cased
# Notes   : Part numbers are resolved later against subscribedSkus
# ================================================================
def fncQualifyingSkuIds(cfg: dict) -> List[str]:
    ids = fncGetAuditConfig(cfg).get("qualifying_sku_ids") or []
    return sorted({str(i).strip().lower() for i in ids if str(i).strip()})


# ================================================================
# Function: fncApplyCliOverrides
# Purpose : Apply command-line flags to the loaded config
# Notes   : --debug, --workers, --timeout
# ================================================================
def fncApplyCliOverrides(cfg: dict, args) -> dict:
    if getattr(args, "debug", None):
        cfg["debug"] = True
    audit = cfg.setdefault("audit", {})
    workers = getattr(args, "workers", None)
    if workers is not None:
        audit["lookup_workers"] = int(workers)
        audit["policy_workers"] = int(workers)
    timeout = getattr(args, "timeout", None)
    if timeout is not None:
        audit["lookup_timeout"] = float(timeout)
    return cfg


# ================================================================
# Function: fncIsDebug
# Purpose : Return whether debug mode is enabled in config
# ================================================================
def fncIsDebug(cfg: dict) -> bool:
    return bool(cfg.get("debug", False))
