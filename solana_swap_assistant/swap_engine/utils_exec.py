# solana_swap_assistant/swap_engine/utils_exec.py
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import time
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from solana_swap_assistant.common.constants import (
    appdata_dir,
    config_path,
    ensure_app_dirs,
    logs_dir,
)

# Single canonical logger used across modules
logger = logging.getLogger("SwapAssistant")
trade_logger = logging.getLogger("SwapAssistant.trades")

# -----------------------------------------------------------------------------
# Config & logging helpers
# -----------------------------------------------------------------------------
_missing_cfg_last_log_ts: float = 0.0

DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "log_level": "INFO",
        "log_rotation_size_mb": 10,
        "log_max_files": 5,
    },
    "swap": {
        "slippage_limit_pct": 0.5,
        "priority_fee_micro_lamports": 5000,
        "auto_priority_fee": True,
        "enable_custom_rpc": False,
        "custom_rpc_endpoint": "https://api.mainnet-beta.solana.com",
        "rpc_endpoints": ["https://api.mainnet-beta.solana.com"],
        "quote_timeout_s": 5.0,
        "max_retries": 3,
        "retry_base_delay_s": 1.0,
        "rate_limit_cooldown_s": 5.0,
        "priority_level": "high",
        "prefer_optimized": False,
    },
}


def _resolve_config_path(path: Optional[str] = None) -> Path:
    candidates: List[Path] = []
    if path:
        candidates.append(Path(path))
    candidates.append(config_path())
    candidates.append(Path.cwd() / "config.yaml")
    for c in candidates:
        if c.exists():
            return c
    p = Path(path) if path else config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


def _create_default_config(cfg_path: Path) -> None:
    try:
        if not cfg_path.exists() or (cfg_path.stat().st_size == 0):
            cfg_path.write_text("# Auto-generated default config\n" + yaml.safe_dump(DEFAULT_CONFIG), encoding="utf-8")
    except OSError as e:
        logger.debug("Could not create default config at %s: %s", cfg_path, e)


def load_config(path: str | None = None) -> Dict:
    global _missing_cfg_last_log_ts
    cfg_path = _resolve_config_path(path)
    _create_default_config(cfg_path)
    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded configuration from %s", cfg_path)
        return config
    except (OSError, yaml.YAMLError) as e:
        now = time.time()
        if now - _missing_cfg_last_log_ts > 30:
            logger.error("Failed to load config from %s: %s", cfg_path, e)
            _missing_cfg_last_log_ts = now
        return {}


_LOG_SENTINEL_ATTR = "_swap_assistant_logging_file"
_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_OWNED_ATTR = "_swap_assistant_handler"


def _own(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED_ATTR, True)
    return handler


def _drop_owned_handlers(target: logging.Logger) -> None:
    """Detach and close the file handlers an earlier setup_logging call installed."""
    for h in list(target.handlers):
        if getattr(h, _OWNED_ATTR, False):
            target.removeHandler(h)
            h.close()


def setup_logging(config: dict[str, Any] | None) -> logging.Logger:
    log_cfg = (config or {}).get("logging", {}) if isinstance(config, dict) else {}
    ensure_app_dirs()

    raw_file = log_cfg.get("file") or (logs_dir() / "swap.log")
    log_file = Path(raw_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level_name = str(log_cfg.get("log_level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    max_size_mb = int(log_cfg.get("log_rotation_size_mb", 10))
    max_files = int(log_cfg.get("log_max_files", 5))

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, _LOG_SENTINEL_ATTR, None) == str(log_file):
        for h in root.handlers:
            h.setLevel(level)
        return logger

    _drop_owned_handlers(root)
    file_handler = _own(RotatingFileHandler(
        str(log_file),
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=max_files,
        encoding="utf-8",
    ))
    file_handler.setFormatter(logging.Formatter(_FORMAT))
    file_handler.setLevel(level)
    root.addHandler(file_handler)

    has_console = any(isinstance(h, logging.StreamHandler) and not hasattr(h, "baseFilename") for h in root.handlers)
    if not has_console:
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter(_FORMAT))
        sh.setLevel(level)
        root.addHandler(sh)

    # Append-only trade journal next to the main log
    trades_file = log_file.parent / "trades.log"
    th = _own(RotatingFileHandler(str(trades_file), maxBytes=max_size_mb * 1024 * 1024, backupCount=max_files, encoding="utf-8"))
    th.setFormatter(logging.Formatter(_FORMAT))
    _drop_owned_handlers(trade_logger)
    trade_logger.addHandler(th)
    trade_logger.setLevel(logging.INFO)

    logger.propagate = True
    logger.setLevel(level)

    setattr(root, _LOG_SENTINEL_ATTR, str(log_file))
    logger.info("Logging configured: level=%s, file=%s, appdata=%s", level_name, str(log_file), str(appdata_dir()))
    return logger


def log_error_with_stacktrace(message: str, error: BaseException) -> None:
    logger.error("%s: %s", message, error)
    logger.debug("".join(traceback.format_exception(type(error), error, error.__traceback__)))


# --- Uniform trade-event logger (single definition) ---
def log_trade_event(event: str, **kw: Any) -> None:
    msg = " | ".join([event] + [f"{k}={kw[k]}" for k in sorted(kw.keys())])
    trade_logger.info(msg)


def dry_run_txid(kind: str = "OP") -> str:
    """Generate a synthetic txid for paper trades (e.g., DRYRUN-BUY / DRYRUN-SELL)."""
    return f"DRYRUN-{str(kind or 'OP').upper()}"


def remove_none_keys(d: Dict) -> Dict:
    return {k: v for k, v in d.items() if v is not None}


def short_addr(addr: str, head: int = 8, tail: int = 8) -> str:
    addr = str(addr or "")
    if len(addr) <= head + tail:
        return addr
    return f"{addr[:head]}...{addr[-tail:]}"


__all__ = [
    "logger",
    "trade_logger",
    "DEFAULT_CONFIG",
    "load_config",
    "setup_logging",
    "log_error_with_stacktrace",
    "log_trade_event",
    "dry_run_txid",
    "remove_none_keys",
    "short_addr",
]
