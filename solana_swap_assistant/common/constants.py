from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Optional, Final

# Public API re-exported by the package root
__all__ = [
    "APP_NAME",
    "local_appdata_dir",
    "appdata_dir",
    "logs_dir",
    "config_path",
    "env_path",
    "ensure_app_dirs",
    "SOL_MINT",
    "LAMPORTS_PER_SOL",
    "JUPITER_PROGRAM_ID",
    "JUPITER_QUOTE_API",
    "JUPITER_SWAP_API",
    "JUPITER_SWAP_API_V5",
    "JUPITER_LITE_SWAP_API",
    "JUPITER_TOKEN_LIST_API",
    "DEFAULT_RPC_ENDPOINT",
]

# -----------------------------------------------------------------------------
# App naming
# -----------------------------------------------------------------------------
APP_NAME: Final[str] = "SolanaSwapAssistant"  # used as the directory name across platforms

# -----------------------------------------------------------------------------
# Chain / aggregator constants
# -----------------------------------------------------------------------------
SOL_MINT: Final[str] = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL: Final[int] = 1_000_000_000
JUPITER_PROGRAM_ID: Final[str] = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

JUPITER_QUOTE_API: Final[str] = "https://quote-api.jup.ag/v6/quote"
JUPITER_SWAP_API: Final[str] = "https://quote-api.jup.ag/v6/swap"
# Older API generation, only used by the last rung of the submission ladder
JUPITER_SWAP_API_V5: Final[str] = "https://quote-api.jup.ag/v5/swap"
JUPITER_LITE_SWAP_API: Final[str] = "https://lite-api.jup.ag/swap/v1/swap"
JUPITER_TOKEN_LIST_API: Final[str] = "https://token.jup.ag/all"

DEFAULT_RPC_ENDPOINT: Final[str] = "https://api.mainnet-beta.solana.com"

# -----------------------------------------------------------------------------
# Platform-aware base dirs
# -----------------------------------------------------------------------------
def _windows_local_appdata() -> Optional[Path]:
    """Return Windows LocalAppData (LOCALAPPDATA), or None."""
    val = os.getenv("LOCALAPPDATA") or os.getenv("LOCAL_APPDATA")
    if not val:
        return None
    try:
        p = Path(val).expanduser()
        if p.exists() or p.parent.exists():
            return p
    except OSError:
        pass
    return None


def _darwin_app_support() -> Path:
    """macOS application support root."""
    return Path.home() / "Library" / "Application Support"


def _xdg_data_home() -> Path:
    """Linux/Unix XDG data home root."""
    val = os.getenv("XDG_DATA_HOME")
    return Path(val).expanduser() if val else (Path.home() / ".local" / "share")


def local_appdata_dir() -> Path:
    r"""
    Cross-platform "local app data" root for this user.

    - Windows:  %LOCALAPPDATA%
    - macOS:    ~/Library/Application Support
    - Linux:    ~/.local/share
    """
    system = platform.system().lower()
    if system.startswith("win"):
        return _windows_local_appdata() or Path(os.getenv("APPDATA") or Path.home())
    if system == "darwin":
        return _darwin_app_support()
    return _xdg_data_home()


def appdata_dir() -> Path:
    """Full application data directory (``<local appdata>/SolanaSwapAssistant``)."""
    override = os.getenv("SWAP_APPDATA_DIR")
    if override:
        return Path(override).expanduser()
    return local_appdata_dir() / APP_NAME


def logs_dir() -> Path:
    """Directory where rotating logs are stored."""
    return appdata_dir() / "logs"


def config_path() -> Path:
    """Default location for YAML config."""
    return appdata_dir() / "config.yaml"


def env_path() -> Path:
    """Default location for a .env file (optional)."""
    return appdata_dir() / ".env"

# -----------------------------------------------------------------------------
# Utilities
# -----------------------------------------------------------------------------
def ensure_app_dirs() -> None:
    """
    Create the app data hierarchy if missing. Safe to call multiple times.
    Never raises on filesystem errors.
    """
    try:
        appdata_dir().mkdir(parents=True, exist_ok=True)
        logs_dir().mkdir(parents=True, exist_ok=True)
    except OSError:
        # never crash import for FS reasons
        pass
