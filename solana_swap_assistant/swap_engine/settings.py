# solana_swap_assistant/swap_engine/settings.py
"""
Read-only swap settings.

Reads cfg["swap"] (all keys optional) with a few env overrides. Nothing in the
swap engine mutates these values; the CLI/settings layer owns persistence.
"""
from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from solana_swap_assistant.common.constants import DEFAULT_RPC_ENDPOINT

PRIORITY_LEVEL_LAMPORTS = {
    "veryHigh": 10_000_000,
    "high": 5_000_000,
    "medium": 2_000_000,
    "low": 1_000_000,
}


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or str(v).strip() == "":
        return float(default)
    try:
        return float(v)
    except ValueError:
        return float(default)


def slippage_pct_to_bps(percent: float) -> int:
    """0.5 (%) -> 50 bps, floored."""
    return int(math.floor(float(percent) * 100))


@dataclass(frozen=True)
class SwapSettings:
    slippage_limit_pct: float = 0.5
    priority_fee_micro_lamports: int = 5000
    auto_priority_fee: bool = True
    min_priority_fee_micro_lamports: int = 500
    enable_custom_rpc: bool = False
    custom_rpc_endpoint: str = DEFAULT_RPC_ENDPOINT
    rpc_endpoints: List[str] = field(default_factory=lambda: [DEFAULT_RPC_ENDPOINT])
    quote_timeout_s: float = 5.0
    http_timeout_s: float = 15.0
    max_retries: int = 3
    retry_base_delay_s: float = 1.0
    rate_limit_cooldown_s: float = 5.0
    balance_cache_ttl_s: float = 5.0
    token_cache_ttl_s: float = 600.0
    max_sell_price_impact_pct: float = 10.0
    priority_level: str = "high"
    prefer_optimized: bool = False

    @property
    def slippage_bps(self) -> int:
        return slippage_pct_to_bps(self.slippage_limit_pct)

    @property
    def prioritization_fee_lamports(self) -> int:
        return PRIORITY_LEVEL_LAMPORTS.get(self.priority_level, PRIORITY_LEVEL_LAMPORTS["low"])

    def endpoints(self) -> List[str]:
        """Ordered RPC fallback list; the custom endpoint goes first when enabled."""
        out: List[str] = []
        env_url = os.getenv("SWAP_RPC_URL")
        if env_url:
            out.append(env_url.strip())
        if self.enable_custom_rpc and self.custom_rpc_endpoint:
            out.append(self.custom_rpc_endpoint)
        out.extend(self.rpc_endpoints or [])
        if not out:
            out.append(DEFAULT_RPC_ENDPOINT)
        # de-dup, keep order
        return list(dict.fromkeys(out))

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "SwapSettings":
        sw = dict((cfg or {}).get("swap") or {})
        defaults = cls()
        kwargs: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            if name in sw and sw[name] is not None:
                kwargs[name] = sw[name]
        kwargs["slippage_limit_pct"] = _env_float(
            "SWAP_SLIPPAGE_PCT", float(kwargs.get("slippage_limit_pct", defaults.slippage_limit_pct))
        )
        kwargs["priority_fee_micro_lamports"] = int(_env_float(
            "SWAP_PRIORITY_FEE", float(kwargs.get("priority_fee_micro_lamports", defaults.priority_fee_micro_lamports))
        ))
        if "rpc_endpoints" in kwargs and isinstance(kwargs["rpc_endpoints"], str):
            kwargs["rpc_endpoints"] = [kwargs["rpc_endpoints"]]
        return cls(**kwargs)
