"""
Aggregator access for the swap engine: quotes, swap-transaction builds and
token metadata.

HTTP goes through _fetch_text_with_ipv4_fallback (dual-stack first, then one
IPv4-only retry on connection-level failures). Quote and build calls are
additionally wrapped by ErrorHandler.retry_operation when a handler is given,
so 429s, timeouts and connection resets are retried with the usual backoff.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
import socket
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import TCPConnector
from aiohttp.client_exceptions import (
    ClientConnectorError,
    ClientOSError,
    ServerDisconnectedError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from solana_swap_assistant.common.constants import (
    JUPITER_LITE_SWAP_API,
    JUPITER_QUOTE_API,
    JUPITER_SWAP_API,
    JUPITER_SWAP_API_V5,
    JUPITER_TOKEN_LIST_API,
)

from .cache import ExpiringCache, make_token_cache
from .errors import BuildFailed, InvalidParameter, QuoteUnavailable, RequestTimeout
from .models import ApiGeneration, ErrorContext, Quote, TransactionFormat, UnsignedTransactionPayload
from .settings import PRIORITY_LEVEL_LAMPORTS, SwapSettings, slippage_pct_to_bps
from .utils_exec import remove_none_keys

logger = logging.getLogger("SwapAssistant")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HTTP_HEADERS = {"Accept": "application/json", "User-Agent": "SwapAssistant/1.0"}
SHORT_TIMEOUT = aiohttp.ClientTimeout(total=15, sock_connect=5, sock_read=10)

SWAP_URLS = {
    ApiGeneration.CURRENT: JUPITER_SWAP_API,
    ApiGeneration.OLDER: JUPITER_SWAP_API_V5,
    ApiGeneration.LITE: JUPITER_LITE_SWAP_API,
}

# ---------------------------------------------------------------------------
# Networking helpers (dual-stack with IPv4 fallback)
# ---------------------------------------------------------------------------

def _env_truthy(name: str, default: str = "0") -> bool:
    return str(os.getenv(name, default)).strip().lower() in ("1", "true", "yes", "y", "on")


def _make_connector(ipv4: bool = False) -> TCPConnector:
    """
    Dual-stack by default. If ipv4=True, force IPv4 (useful when IPv6 path is flaky).
    """
    family = socket.AF_INET if ipv4 else socket.AF_UNSPEC
    return TCPConnector(limit=100, ttl_dns_cache=15, family=family)


_NETWORKY_EXC = (
    ClientConnectorError,
    ClientOSError,
    ServerDisconnectedError,
    asyncio.TimeoutError,
    socket.gaierror,
    ConnectionResetError,
    BrokenPipeError,
)


async def _fetch_text_with_ipv4_fallback(
    method: str,
    url: str,
    *,
    params: dict | None = None,
    data: str | bytes | None = None,
    headers: dict | None = None,
    timeout: aiohttp.ClientTimeout = SHORT_TIMEOUT,
    session: aiohttp.ClientSession | None = None,
) -> tuple[int, str]:
    """
    Try on the provided session (dual-stack). If a networky error occurs,
    retry once with a temporary IPv4-only session. Returns (status, text).
    If JUP_FORCE_IPV4=1 is set, use IPv4-only immediately.
    """
    if _env_truthy("JUP_FORCE_IPV4", "0"):
        async with aiohttp.ClientSession(connector=_make_connector(ipv4=True), timeout=timeout) as s4:
            async with s4.request(method, url, params=params, data=data, headers=headers) as r4:
                return r4.status, await r4.text()

    try:
        if session is None:
            async with aiohttp.ClientSession(connector=_make_connector(), timeout=timeout) as s:
                async with s.request(method, url, params=params, data=data, headers=headers) as r:
                    return r.status, await r.text()
        else:
            async with session.request(method, url, params=params, data=data, headers=headers, timeout=timeout) as r:
                return r.status, await r.text()
    except _NETWORKY_EXC as e:
        logger.debug("%s %s failed on dual-stack (%s); retrying IPv4-only", method, url, e)
        async with aiohttp.ClientSession(connector=_make_connector(ipv4=True), timeout=timeout) as s4:
            async with s4.request(method, url, params=params, data=data, headers=headers) as r4:
                return r4.status, await r4.text()


def _http_error_text(status: int, text: str) -> str:
    return f"HTTP {status}: {(text or '').strip()[:300]}"


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

class QuoteProvider:
    def __init__(
        self,
        settings: SwapSettings,
        *,
        session: aiohttp.ClientSession | None = None,
        error_handler: Any = None,
        quote_url: str = JUPITER_QUOTE_API,
    ):
        self.settings = settings
        self.session = session
        self.error_handler = error_handler
        self.quote_url = quote_url

    def slippage_bps(self, slippage_pct: Optional[float] = None) -> int:
        pct = self.settings.slippage_limit_pct if slippage_pct is None else slippage_pct
        return slippage_pct_to_bps(pct)

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        *,
        slippage_pct: Optional[float] = None,
        prefer_optimized: bool = False,
    ) -> Quote:
        if int(amount) <= 0:
            raise InvalidParameter("Amount must be greater than 0")
        if not input_mint or not output_mint:
            raise InvalidParameter("Missing required parameters: input_mint, output_mint")

        slippage_bps = self.slippage_bps(slippage_pct)

        async def _once() -> Quote:
            return await self._get_quote_once(input_mint, output_mint, int(amount), slippage_bps, prefer_optimized)

        if self.error_handler is None:
            return await _once()
        ctx = ErrorContext(operation="get_quote", input_mint=input_mint, output_mint=output_mint)
        return await self.error_handler.retry_operation(_once, ctx)

    async def _get_quote_once(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        prefer_optimized: bool,
    ) -> Quote:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "onlyDirectRoutes": "false",
            "asLegacyTransaction": "false",
        }
        if prefer_optimized:
            params["enableUltraV2"] = "true"
            params["enableRTSE"] = "true"
            params["enableGasless"] = "true"

        timeout_s = float(self.settings.quote_timeout_s)
        try:
            status, text = await asyncio.wait_for(
                _fetch_text_with_ipv4_fallback(
                    "GET", self.quote_url, params=params, headers=HTTP_HEADERS,
                    timeout=aiohttp.ClientTimeout(total=timeout_s), session=self.session,
                ),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeout(f"Quote request timed out after {timeout_s:g}s") from e

        if status != 200:
            logger.error("Quote failed for %s -> %s: %s", input_mint, output_mint, _http_error_text(status, text))
            raise QuoteUnavailable(_http_error_text(status, text), status=status)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise QuoteUnavailable(f"Quote response was not JSON: {e}", status=status) from e
        if not isinstance(data, dict) or not data:
            raise QuoteUnavailable("No quote data received", status=status)
        if data.get("error"):
            raise QuoteUnavailable(str(data.get("error")), status=status)

        quote = Quote.from_response(data, input_mint=input_mint, output_mint=output_mint, slippage_bps=slippage_bps)
        if quote.out_amount <= 0:
            raise QuoteUnavailable("No route found: quote has no output amount", status=status)

        logger.info(
            "Quote %s -> %s: in=%s out=%s impact=%s%% hops=%d",
            input_mint, output_mint, quote.in_amount, quote.out_amount, quote.price_impact_pct, quote.hops,
        )
        return quote


# ---------------------------------------------------------------------------
# Swap transaction builds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuildOptions:
    prefer_optimized: bool = False
    compute_unit_price_micro_lamports: Optional[int] = None
    wrap_unwrap_sol: bool = True
    priority_level: Optional[str] = None


class TransactionBuilder:
    def __init__(
        self,
        settings: SwapSettings,
        *,
        session: aiohttp.ClientSession | None = None,
        error_handler: Any = None,
        urls: Optional[Dict[ApiGeneration, str]] = None,
    ):
        self.settings = settings
        self.session = session
        self.error_handler = error_handler
        self.urls = dict(SWAP_URLS)
        if urls:
            self.urls.update(urls)

    def request_body(
        self,
        quote: Quote,
        signer_address: str,
        options: BuildOptions,
        generation: ApiGeneration,
    ) -> Dict[str, Any]:
        """Body for the given API generation; every shape pins the minimum output to the quote."""
        min_out = str(quote.out_amount)

        if generation is ApiGeneration.OLDER:
            return {
                "quoteResponse": quote.raw,
                "userPublicKey": signer_address,
                "wrapUnwrapSOL": options.wrap_unwrap_sol,
                "otherAmountThreshold": min_out,
            }

        if generation is ApiGeneration.LITE:
            level = options.priority_level or self.settings.priority_level
            quote_response = dict(quote.raw)
            quote_response.update({
                "inputMint": quote.input_mint,
                "inAmount": str(quote.in_amount),
                "outputMint": quote.output_mint,
                "outAmount": str(quote.out_amount),
                "otherAmountThreshold": min_out,
                "swapMode": "ExactIn",
                "slippageBps": quote.slippage_bps,
                "platformFee": None,
            })
            return {
                "userPublicKey": signer_address,
                "quoteResponse": quote_response,
                "prioritizationFeeLamports": PRIORITY_LEVEL_LAMPORTS.get(level, PRIORITY_LEVEL_LAMPORTS["low"]),
                "dynamicComputeUnitLimit": True,
            }

        body: Dict[str, Any] = {
            "quoteResponse": quote.raw,
            "userPublicKey": signer_address,
            "wrapUnwrapSOL": options.wrap_unwrap_sol,
            "otherAmountThreshold": min_out,
            "asLegacyTransaction": False,
        }
        if options.prefer_optimized:
            body["ultraV2Settings"] = {
                "enableRTSE": True,
                "enableGasless": True,
                "enableMEVMitigation": True,
                "optimizeForSuccess": True,
            }
        else:
            cu_price = options.compute_unit_price_micro_lamports
            body["computeUnitPriceMicroLamports"] = int(
                cu_price if cu_price is not None else self.settings.priority_fee_micro_lamports
            )
            body["useSharedAccounts"] = True
            body["useTokenLedger"] = True
        return body

    async def build_swap_transaction(
        self,
        quote: Quote,
        signer_address: str,
        options: Optional[BuildOptions] = None,
        generation: ApiGeneration = ApiGeneration.CURRENT,
    ) -> UnsignedTransactionPayload:
        if not signer_address:
            raise InvalidParameter("Missing required parameters: signer_address")
        options = options or BuildOptions()

        async def _once() -> UnsignedTransactionPayload:
            return await self._build_once(quote, signer_address, options, generation)

        if self.error_handler is None:
            return await _once()
        ctx = ErrorContext(
            operation="build_swap_transaction",
            input_mint=quote.input_mint,
            output_mint=quote.output_mint,
            wallet_address=signer_address,
            extra={"generation": generation.value},
        )
        return await self.error_handler.retry_operation(_once, ctx)

    async def _build_once(
        self,
        quote: Quote,
        signer_address: str,
        options: BuildOptions,
        generation: ApiGeneration,
    ) -> UnsignedTransactionPayload:
        url = self.urls[generation]
        body = self.request_body(quote, signer_address, options, generation)
        status, text = await _fetch_text_with_ipv4_fallback(
            "POST", url,
            data=json.dumps(body),
            headers={**HTTP_HEADERS, "Content-Type": "application/json"},
            timeout=aiohttp.ClientTimeout(total=float(self.settings.http_timeout_s)),
            session=self.session,
        )
        if status != 200:
            logger.error("Swap build failed (%s, HTTP %s): %s", generation.value, status, (text or "")[:300])
            raise BuildFailed(_http_error_text(status, text), status=status)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise BuildFailed(f"Swap build response was not JSON: {e}", status=status) from e
        tx_b64 = data.get("swapTransaction") if isinstance(data, dict) else None
        if not tx_b64:
            raise BuildFailed(f"No swap transaction received from {generation.value} API", status=status)
        try:
            raw = base64.b64decode(tx_b64)
        except (binascii.Error, ValueError) as e:
            raise BuildFailed(f"swapTransaction is not valid base64: {e}", status=status) from e

        logger.debug("Swap built via %s (lastValidBlockHeight=%s)", generation.value, data.get("lastValidBlockHeight"))
        return UnsignedTransactionPayload(
            raw=raw,
            generation=generation,
            format_hint=TransactionFormat.LEGACY if generation is ApiGeneration.OLDER else TransactionFormat.VERSIONED,
            last_valid_block_height=data.get("lastValidBlockHeight"),
        )


# ---------------------------------------------------------------------------
# Token metadata
# ---------------------------------------------------------------------------

def _fallback_symbol(mint: str) -> str:
    mint = str(mint or "")
    return f"{mint[:4]}...{mint[-4:]}" if len(mint) > 8 else mint


@retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_random_exponential(multiplier=1, max=10),
    retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
)
async def _fetch_token_list(session: aiohttp.ClientSession | None, url: str = JUPITER_TOKEN_LIST_API) -> List[Dict[str, Any]]:
    status, text = await _fetch_text_with_ipv4_fallback("GET", url, headers=HTTP_HEADERS, timeout=SHORT_TIMEOUT, session=session)
    if status != 200:
        raise RuntimeError(f"Token list {_http_error_text(status, text)}")
    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("tokens") or []
    return [t for t in data if isinstance(t, dict)]


class TokenDirectory:
    """Symbol/name lookups from the aggregator token list, decimals from the chain."""

    _INDEX_KEY = "__token_index__"

    def __init__(
        self,
        *,
        session: aiohttp.ClientSession | None = None,
        chain: Any = None,
        cache: Optional[ExpiringCache] = None,
    ):
        self.session = session
        self.chain = chain
        self.cache = cache if cache is not None else make_token_cache()

    async def _index(self) -> Dict[str, Dict[str, Any]]:
        idx = self.cache.get(self._INDEX_KEY)
        if idx is not None:
            return idx
        tokens = await _fetch_token_list(self.session)
        idx = {str(t.get("address")): t for t in tokens if t.get("address")}
        self.cache.set(self._INDEX_KEY, idx)
        logger.debug("Token list cached (%d tokens)", len(idx))
        return idx

    async def get_token_info(self, mint: str) -> Dict[str, Any]:
        try:
            idx = await self._index()
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError, ValueError) as e:
            logger.warning("Token list unavailable for %s: %s", mint, e)
            idx = {}
        token = idx.get(str(mint))
        if token:
            return {"symbol": token.get("symbol"), "name": token.get("name"), "logoURI": token.get("logoURI")}
        return {"symbol": _fallback_symbol(mint), "name": "Unknown Token", "logoURI": None}

    async def get_token_metadata(self, mint: str) -> Dict[str, Any]:
        key = f"meta:{mint}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        if self.chain is None:
            return {"decimals": 9, "supply": 0}
        try:
            supply = await self.chain.get_token_supply(mint)
        except Exception as e:
            logger.warning("Token metadata lookup failed for %s, assuming 9 decimals: %s", mint, e)
            return {"decimals": 9, "supply": 0}
        meta = remove_none_keys({"decimals": supply.get("decimals", 9), "supply": supply.get("amount", 0)})
        self.cache.set(key, meta)
        return meta


__all__ = [
    "HTTP_HEADERS",
    "SHORT_TIMEOUT",
    "QuoteProvider",
    "BuildOptions",
    "TransactionBuilder",
    "TokenDirectory",
]
