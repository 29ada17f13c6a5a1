import os

def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    v = str(v).strip().lower()
    return v in ("1", "true", "yes", "y", "on")

def is_send_enabled() -> bool:
    # Sending requires all three switches to agree
    return resolved_run_flags()["send_tx"]

def prefer_optimized_default(cfg: dict) -> bool:
    # Hard env kill-switch wins
    if _env_bool("FORCE_DISABLE_ULTRA", False):
        return False
    env_ok = _env_bool("JUPITER_ULTRA_ENABLE", False)
    cfg_toggle = bool((cfg or {}).get("swap", {}).get("prefer_optimized", False))
    return env_ok or cfg_toggle

def resolved_run_flags() -> dict:
    # unify & truthify what gets printed in logs
    def b(name, default=False):
        return _env_bool(name, default)
    DRY_RUN = b("DRY_RUN", True)
    DISABLE_SEND_TX = b("DISABLE_SEND_TX", True)
    JUPITER_EXECUTE = b("JUPITER_EXECUTE", False)
    SEND_TX = (not DRY_RUN) and (not DISABLE_SEND_TX) and JUPITER_EXECUTE
    return {
        "dry_run": not SEND_TX,
        "send_tx": SEND_TX,
        "env": {
            "DRY_RUN": DRY_RUN,
            "DISABLE_SEND_TX": DISABLE_SEND_TX,
            "JUPITER_EXECUTE": JUPITER_EXECUTE,
        }
    }
