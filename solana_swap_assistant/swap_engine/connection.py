# solana_swap_assistant/swap_engine/connection.py
"""
RPC endpoint fallback list and the chain client the swap engine talks to.

ChainClient is a narrow wrapper over solana-py's AsyncClient: only the calls
the swap path needs, returning plain Python values so callers (and tests)
never touch solders response objects.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Commitment
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature

from solana_swap_assistant.common.constants import DEFAULT_RPC_ENDPOINT, JUPITER_PROGRAM_ID

from .errors import OnChainFailure

logger = logging.getLogger("SwapAssistant")

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")


def _as_pubkey(x: Any) -> Pubkey:
    if isinstance(x, Pubkey):
        return x
    if hasattr(x, "pubkey"):
        return x.pubkey()
    return Pubkey.from_string(str(x))


class RpcEndpointPool:
    """Ordered endpoint list; failover() advances and wraps around."""

    def __init__(self, endpoints: Sequence[str]):
        eps = [e for e in (endpoints or []) if e]
        self._endpoints: List[str] = list(dict.fromkeys(eps)) or [DEFAULT_RPC_ENDPOINT]
        self._idx = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "RpcEndpointPool":
        return cls(settings.endpoints())

    @property
    def current(self) -> str:
        return self._endpoints[self._idx]

    @property
    def endpoints(self) -> List[str]:
        return list(self._endpoints)

    def failover(self) -> str:
        prev = self.current
        self._idx = (self._idx + 1) % len(self._endpoints)
        if len(self._endpoints) > 1:
            logger.warning("RPC failover: %s -> %s", prev, self.current)
        else:
            logger.warning("RPC failover requested but only one endpoint is configured (%s)", prev)
        return self.current

    def __len__(self) -> int:
        return len(self._endpoints)


class ChainClient:
    def __init__(
        self,
        pool: RpcEndpointPool,
        *,
        commitment: Commitment = Confirmed,
        client_factory: Callable[[str], Any] = AsyncClient,
    ):
        self.pool = pool
        self.commitment = commitment
        self._factory = client_factory
        self._client: Any = client_factory(pool.current)

    @property
    def client(self) -> Any:
        return self._client

    @property
    def endpoint(self) -> str:
        return self.pool.current

    async def failover(self) -> str:
        await self.close()
        url = self.pool.failover()
        self._client = self._factory(url)
        return url

    async def close(self) -> None:
        try:
            await self._client.close()
        except Exception as e:  # best-effort close
            logger.debug("Closing RPC client failed: %s", e)

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    async def send_raw_transaction(self, raw: bytes) -> str:
        opts = TxOpts(skip_preflight=False, preflight_commitment=self.commitment)
        resp = await self._client.send_raw_transaction(bytes(raw), opts=opts)
        sig = getattr(resp, "value", None)
        if sig is None:
            raise RuntimeError(f"RPC returned no signature: {resp}")
        return str(sig)

    async def confirm_transaction(self, signature: str, last_valid_block_height: Optional[int] = None) -> str:
        """Wait for `confirmed`; raises OnChainFailure if the chain reports the tx failed."""
        sig = Signature.from_string(signature) if isinstance(signature, str) else signature
        kwargs: Dict[str, Any] = {"commitment": self.commitment}
        if last_valid_block_height is not None:
            kwargs["last_valid_block_height"] = last_valid_block_height
        resp = await self._client.confirm_transaction(sig, **kwargs)
        statuses = getattr(resp, "value", None) or []
        status = statuses[0] if statuses else None
        if status is not None and getattr(status, "err", None) is not None:
            raise OnChainFailure(str(signature), status.err)
        conf = getattr(status, "confirmation_status", None) if status is not None else None
        return _status_name(conf) or "confirmed"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_lamports(self, owner: Any) -> int:
        resp = await self._client.get_balance(_as_pubkey(owner), commitment=self.commitment)
        return int(getattr(resp, "value", 0) or 0)

    async def get_token_accounts(self, owner: Any, mint: Optional[str] = None) -> List[Dict[str, Any]]:
        """Parsed SPL token accounts for `owner`; both token programs when no mint is given."""
        owner_pk = _as_pubkey(owner)
        if mint:
            opts_list = [TokenAccountOpts(mint=Pubkey.from_string(str(mint)))]
        else:
            opts_list = [TokenAccountOpts(program_id=TOKEN_PROGRAM_ID), TokenAccountOpts(program_id=TOKEN_2022_PROGRAM_ID)]

        out: List[Dict[str, Any]] = []
        for opts in opts_list:
            resp = await self._client.get_token_accounts_by_owner_json_parsed(owner_pk, opts, commitment=self.commitment)
            for acc in getattr(resp, "value", None) or []:
                parsed = _parsed_info(acc)
                if parsed is not None:
                    out.append(parsed)
        return out

    async def get_token_supply(self, mint: str) -> Dict[str, Any]:
        resp = await self._client.get_token_supply(Pubkey.from_string(str(mint)))
        val = getattr(resp, "value", None)
        if val is None:
            raise RuntimeError(f"No token supply for {mint}")
        return {"amount": int(val.amount), "decimals": int(val.decimals)}

    async def estimate_priority_fee(self, default: int, floor: int = 500) -> int:
        """Average recent prioritization fee touching the aggregator program, never below `floor`."""
        getter = getattr(self._client, "get_recent_prioritization_fees", None)
        if getter is None:
            return max(int(default), int(floor))
        try:
            resp = await getter([Pubkey.from_string(JUPITER_PROGRAM_ID)])
            fees = [int(getattr(f, "prioritization_fee", 0) or 0) for f in (getattr(resp, "value", None) or [])]
        except Exception as e:
            logger.debug("Priority fee lookup failed, using configured %s: %s", default, e)
            return max(int(default), int(floor))
        if not fees:
            return max(int(default), int(floor))
        avg = sum(fees) // len(fees)
        return max(avg, int(floor))


def _status_name(conf: Any) -> Optional[str]:
    if conf is None:
        return None
    s = str(conf)
    # solders enum prints as "TransactionConfirmationStatus.Confirmed"
    return s.rsplit(".", 1)[-1].lower()


def _parsed_info(acc: Any) -> Optional[Dict[str, Any]]:
    try:
        data = acc.account.data
        parsed = data.parsed if hasattr(data, "parsed") else data["parsed"]
        info = parsed["info"]
        ta = info["tokenAmount"]
        return {
            "pubkey": str(acc.pubkey),
            "mint": str(info["mint"]),
            "amount": int(ta.get("amount") or 0),
            "decimals": int(ta.get("decimals") or 0),
            "ui_amount": float(ta.get("uiAmount") or 0.0),
        }
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.debug("Skipping unparseable token account: %s", e)
        return None


__all__ = ["RpcEndpointPool", "ChainClient", "TOKEN_PROGRAM_ID", "TOKEN_2022_PROGRAM_ID"]
