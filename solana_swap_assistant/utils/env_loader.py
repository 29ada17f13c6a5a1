# solana_swap_assistant/utils/env_loader.py
from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from solders.keypair import Keypair

from solana_swap_assistant.common.constants import appdata_dir, env_path

logger = logging.getLogger(__name__)


def _candidate_env_paths() -> list[Path]:
    return [
        env_path(),            # user appdata
        Path.cwd() / ".env",   # project CWD (dev)
    ]


def load_env_first_found(override: bool = False) -> Optional[Path]:
    """
    Priority:
      1) DOTENV_PATH env var (if set and exists)
      2) Per-user appdata path: <appdata>/SolanaSwapAssistant/.env
      3) CWD .env
    Returns the Path loaded or None.
    """
    dotenv_override = os.environ.get("DOTENV_PATH")
    if dotenv_override:
        p = Path(dotenv_override)
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=override)
            logger.info("Loaded .env from DOTENV_PATH: %s", str(p))
            return p
        logger.warning("DOTENV_PATH set but file not found: %s", str(p))

    for p in _candidate_env_paths():
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=override)
            logger.info("Loaded .env from candidate path: %s", str(p))
            return p

    logger.warning("No .env file found by loader.")
    return None


def ensure_appdata_env_bootstrap(template_name: str = ".env") -> Path:
    dst = env_path()
    dst.parent.mkdir(parents=True, exist_ok=True)

    if dst.exists():
        return dst

    src = Path.cwd() / template_name
    if src.exists():
        shutil.copy2(src, dst)
        logger.info("Bootstrapped appdata .env from %s to %s", str(src), str(dst))
        return dst

    dst.write_text(
        "SOLANA_PRIVATE_KEY=\n"
        "DRY_RUN=true\n"
        "DISABLE_SEND_TX=true\n"
        "JUPITER_EXECUTE=false\n",
        encoding="utf-8",
    )
    logger.info("Created skeleton appdata .env at %s (appdata=%s)", str(dst), str(appdata_dir()))
    return dst


def get_active_private_key() -> Optional[str]:
    v = os.environ.get("SOLANA_PRIVATE_KEY") or os.environ.get("WALLET_PRIVATE_KEY")
    if not v:
        return None
    v = v.strip().strip('"').strip("'")
    return v or None


def load_signer_keypair() -> Keypair:
    """Signer from env: base58 64-byte secret or a JSON array of 64 ints."""
    pk = get_active_private_key()
    if not pk:
        raise ValueError("Set SOLANA_PRIVATE_KEY or WALLET_PRIVATE_KEY in your .env to sign swaps.")
    if pk.startswith("["):
        try:
            arr = json.loads(pk)
        except json.JSONDecodeError as e:
            raise ValueError(f"Private key JSON could not be parsed: {e}") from e
        if isinstance(arr, list) and len(arr) == 64 and all(isinstance(x, int) for x in arr):
            return Keypair.from_bytes(bytes(arr))
        raise ValueError("Private key JSON must be an array of 64 ints.")
    try:
        return Keypair.from_base58_string(pk)
    except ValueError as e:
        raise ValueError("Private key format not recognized (expect base58 64-byte secret or JSON array of 64 ints).") from e


__all__ = [
    "load_env_first_found",
    "ensure_appdata_env_bootstrap",
    "get_active_private_key",
    "load_signer_keypair",
]
