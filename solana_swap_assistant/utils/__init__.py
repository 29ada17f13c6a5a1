# -*- coding: utf-8 -*-
from __future__ import annotations

from .env_loader import (
    load_env_first_found,
    ensure_appdata_env_bootstrap,
    get_active_private_key,
    load_signer_keypair,
)

__all__ = [
    "load_env_first_found",
    "ensure_appdata_env_bootstrap",
    "get_active_private_key",
    "load_signer_keypair",
]
