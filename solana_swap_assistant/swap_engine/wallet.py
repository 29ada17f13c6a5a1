# solana_swap_assistant/swap_engine/wallet.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from solana_swap_assistant.common.constants import LAMPORTS_PER_SOL, SOL_MINT

from .cache import ExpiringCache, make_balance_cache
from .errors import InsufficientBalance, InvalidParameter
from .models import SwapRequest

logger = logging.getLogger("SwapAssistant")


class WalletReader:
    """
    Balance reads for one chain client. Results are kept in the injected cache
    for its TTL (5s by default), keyed by owner and mint.
    """

    def __init__(self, chain: Any, cache: Optional[ExpiringCache] = None):
        self.chain = chain
        self.cache = cache if cache is not None else make_balance_cache()

    async def get_sol_balance(self, owner: str) -> float:
        lamports = await self.get_token_balance(SOL_MINT, owner)
        return lamports / LAMPORTS_PER_SOL

    async def get_token_balance(self, mint: str, owner: str, *, force_refresh: bool = False) -> int:
        """Raw smallest-unit balance. The native SOL mint reads lamports."""
        key = ("balance", str(owner), str(mint))
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        if str(mint) == SOL_MINT:
            amount = await self.chain.get_lamports(owner)
        else:
            accounts = await self.chain.get_token_accounts(owner, mint=mint)
            amount = sum(int(a.get("amount", 0)) for a in accounts)

        self.cache.set(key, int(amount))
        return int(amount)

    async def get_all_token_balances(self, owner: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        key = ("all", str(owner))
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Using cached token balances for %s", owner)
                return cached

        accounts = await self.chain.get_token_accounts(owner)
        balances = [a for a in accounts if int(a.get("amount", 0)) > 0]
        balances.sort(key=lambda a: a.get("ui_amount", 0.0), reverse=True)
        self.cache.set(key, balances)
        return balances

    def clear_cache(self) -> None:
        self.cache.clear()


async def validate_swap(request: SwapRequest, wallet: WalletReader) -> int:
    """
    Reject unusable requests before any quote is fetched.

    Returns the input-token balance the request was validated against; the
    amount later sent to the chain must never exceed it.
    """
    if request.input_mint == request.output_mint:
        raise InvalidParameter("Cannot swap same token")
    if int(request.amount) <= 0:
        raise InvalidParameter("Amount must be greater than 0")
    if request.signer is None or not hasattr(request.signer, "pubkey"):
        raise InvalidParameter("Invalid wallet")

    owner = request.signer_address
    balance = await wallet.get_token_balance(request.input_mint, owner, force_refresh=True)
    if balance < int(request.amount):
        raise InsufficientBalance(f"Insufficient balance. Available: {balance}, Required: {request.amount}")
    return balance


__all__ = ["WalletReader", "validate_swap"]
