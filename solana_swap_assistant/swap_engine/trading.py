# solana_swap_assistant/swap_engine/trading.py
"""
Swap execution: quote -> build -> sign/submit -> confirm, with amount
reduction when the market cannot absorb the requested size.

AdaptiveRetryCoordinator runs one pass per entry of a fixed schedule of
fractions of the ORIGINAL amount (100%, 50%, 25%). Only liquidity-class
failures move it to the next entry; everything else is reported at once.
Network, rate-limit and RPC hiccups have already been retried by
ErrorHandler.retry_operation inside the quote and build calls.

SwapExecutor is the public entry point. It validates the request against the
signer's balance, honours the dry-run switches and hands live swaps to the
coordinator.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

import aiohttp

from solana_swap_assistant.common.constants import SOL_MINT
from solana_swap_assistant.common.feature_flags import is_send_enabled, prefer_optimized_default

from .cache import make_balance_cache, make_token_cache
from .connection import ChainClient, RpcEndpointPool
from .error_handler import ErrorHandler
from .errors import ErrorKind, InvalidParameter, classify_error
from .market_data import BuildOptions, QuoteProvider, TokenDirectory, TransactionBuilder
from .models import (
    ApiGeneration,
    Err,
    ErrorContext,
    Ok,
    Outcome,
    Quote,
    SwapRequest,
    SwapResult,
)
from .settings import SwapSettings
from .submitter import TransactionSubmitter
from .utils_exec import dry_run_txid, log_trade_event, short_addr
from .wallet import WalletReader, validate_swap

logger = logging.getLogger("SwapAssistant")

REDUCTION_SCHEDULE = (1.0, 0.5, 0.25)
REDUCTION_HINT = "retry with a smaller percentage, or abandon position"

SELL_TEST_AMOUNT = 1000


def _context(request: SwapRequest, attempt: int = 0, **extra: Any) -> ErrorContext:
    return ErrorContext(
        operation=request.operation,
        input_mint=request.input_mint,
        output_mint=request.output_mint,
        wallet_address=request.signer_address if request.signer is not None else None,
        attempt=attempt,
        extra={k: v for k, v in extra.items() if v is not None},
    )


# ---------------------------------------------------------------------------
# Adaptive amount reduction
# ---------------------------------------------------------------------------

class AdaptiveRetryCoordinator:
    def __init__(
        self,
        quotes: QuoteProvider,
        builder: TransactionBuilder,
        submitter: TransactionSubmitter,
        error_handler: ErrorHandler,
        *,
        schedule: Sequence[float] = REDUCTION_SCHEDULE,
    ):
        self.quotes = quotes
        self.builder = builder
        self.submitter = submitter
        self.error_handler = error_handler
        self.schedule = tuple(schedule)

    async def execute_swap(
        self,
        request: SwapRequest,
        *,
        validated_amount: Optional[int] = None,
        build_options: Optional[BuildOptions] = None,
    ) -> Outcome:
        original = int(request.amount)
        ceiling = original if validated_amount is None else min(original, int(validated_amount))
        options = build_options or BuildOptions(prefer_optimized=request.prefer_optimized)
        # Lite builds do not take the optimized quote flags
        prefer_optimized = request.prefer_optimized and request.generation is not ApiGeneration.LITE

        last_error: Optional[BaseException] = None
        last_ctx = _context(request)

        for attempt, fraction in enumerate(self.schedule):
            amount = min(int(math.floor(original * fraction)), ceiling)
            if amount <= 0:
                logger.warning("Reduced amount for %.0f%% of %d rounds to zero; giving up", fraction * 100, original)
                break

            ctx = _context(request, attempt, amount=amount, fraction=fraction)
            if attempt:
                logger.info("Retrying swap with %.0f%% of original amount (%d)", fraction * 100, amount)

            quote: Optional[Quote] = None
            try:
                quote = await self.quotes.get_quote(
                    request.input_mint,
                    request.output_mint,
                    amount,
                    slippage_pct=request.slippage_pct,
                    prefer_optimized=prefer_optimized,
                )
                payload = await self.builder.build_swap_transaction(
                    quote, request.signer_address, options, generation=request.generation
                )
                submission = await self.submitter.submit(quote, request.signer, payload, build_options=options)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if classify_error(e) is not ErrorKind.LIQUIDITY:
                    return Err(self.error_handler.handle_error(e, ctx))
                self.error_handler.record_failure(e)
                logger.warning("Liquidity failure at %.0f%% (%d): %s", fraction * 100, amount, e)
                last_error, last_ctx = e, ctx
                continue

            result = SwapResult(
                success=True,
                quote=quote,
                signature=submission.signature,
                confirmation_status=submission.confirmation_status,
                amount=amount,
                amount_fraction=fraction,
                transaction_format=submission.transaction_format,
                generation=submission.generation,
            )
            log_trade_event(
                f"{request.side.upper()}_OK",
                signature=submission.signature,
                input_mint=request.input_mint,
                output_mint=request.output_mint,
                in_amount=quote.in_amount,
                out_amount=quote.out_amount,
                fraction=fraction,
                fmt=submission.transaction_format.value,
                api=submission.generation.value,
            )
            return Ok(result)

        counted = last_error is not None
        if last_error is None:
            last_error = InvalidParameter("Amount must be greater than 0")
        report = self.error_handler.handle_error(
            last_error, last_ctx, hint=REDUCTION_HINT, already_counted=counted
        )
        log_trade_event(
            f"{request.side.upper()}_ABANDONED",
            input_mint=request.input_mint,
            output_mint=request.output_mint,
            amount=original,
            reason=report.kind.value,
        )
        return Err(report)


# ---------------------------------------------------------------------------
# Sellability probe
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SellabilityReport:
    can_sell: bool
    max_amount: int = 0
    reason: Optional[str] = None
    price_impact: Optional[float] = None
    estimated_output: Optional[int] = None


async def can_token_be_sold(
    mint: str,
    quotes: QuoteProvider,
    *,
    test_amount: int = SELL_TEST_AMOUNT,
    max_price_impact_pct: float = 10.0,
) -> SellabilityReport:
    """Quote a small sell into SOL and decide whether the token has a usable exit."""
    try:
        quote = await quotes.get_quote(mint, SOL_MINT, test_amount)
    except Exception as e:  # any failure means "not sellable", with the reason
        low = str(e).lower()
        if "could not find any route" in low or "no route found" in low or "insufficient liquidity" in low:
            reason = "No trading pairs available"
        elif "price impact too high" in low or "slippage exceeded" in low:
            reason = "Price impact too high"
        else:
            reason = str(e)
        logger.info("Token %s is not sellable: %s", short_addr(mint), reason)
        return SellabilityReport(can_sell=False, reason=reason)

    if quote.out_amount <= 0:
        return SellabilityReport(can_sell=False, reason="No liquidity found")
    if quote.price_impact_pct > Decimal(str(max_price_impact_pct)):
        return SellabilityReport(
            can_sell=False,
            reason=f"Price impact too high (>{max_price_impact_pct:g}%)",
            price_impact=float(quote.price_impact_pct),
        )
    return SellabilityReport(
        can_sell=True,
        max_amount=quote.in_amount,
        price_impact=float(quote.price_impact_pct),
        estimated_output=quote.out_amount,
    )


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class SwapExecutor:
    def __init__(
        self,
        settings: SwapSettings,
        chain: Any,
        *,
        session: aiohttp.ClientSession | None = None,
        error_handler: Optional[ErrorHandler] = None,
        wallet: Optional[WalletReader] = None,
        quotes: Optional[QuoteProvider] = None,
        builder: Optional[TransactionBuilder] = None,
        submitter: Optional[TransactionSubmitter] = None,
        tokens: Optional[TokenDirectory] = None,
        send_enabled: Optional[bool] = None,
        prefer_optimized: bool = False,
    ):
        self.settings = settings
        self.chain = chain
        self.error_handler = error_handler or ErrorHandler.from_settings(
            settings, failover=getattr(chain, "failover", None)
        )
        self.wallet = wallet or WalletReader(chain, make_balance_cache(settings.balance_cache_ttl_s))
        self.quotes = quotes or QuoteProvider(settings, session=session, error_handler=self.error_handler)
        self.builder = builder or TransactionBuilder(settings, session=session, error_handler=self.error_handler)
        self.submitter = submitter or TransactionSubmitter(chain, self.builder)
        self.tokens = tokens or TokenDirectory(
            session=session, chain=chain, cache=make_token_cache(settings.token_cache_ttl_s)
        )
        self.coordinator = AdaptiveRetryCoordinator(self.quotes, self.builder, self.submitter, self.error_handler)
        self._send_enabled = send_enabled
        self.prefer_optimized = bool(prefer_optimized or settings.prefer_optimized)

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]], *, session: aiohttp.ClientSession | None = None, **kw: Any) -> "SwapExecutor":
        settings = SwapSettings.from_config(cfg)
        chain = ChainClient(RpcEndpointPool.from_settings(settings))
        kw.setdefault("prefer_optimized", prefer_optimized_default(cfg or {}))
        return cls(settings, chain, session=session, **kw)

    @property
    def send_enabled(self) -> bool:
        return is_send_enabled() if self._send_enabled is None else bool(self._send_enabled)

    async def close(self) -> None:
        close = getattr(self.chain, "close", None)
        if close is not None:
            await close()

    async def _build_options(self, request: SwapRequest) -> BuildOptions:
        fee = int(self.settings.priority_fee_micro_lamports)
        if self.settings.auto_priority_fee and hasattr(self.chain, "estimate_priority_fee"):
            fee = await self.chain.estimate_priority_fee(fee, self.settings.min_priority_fee_micro_lamports)
            logger.debug("Using priority fee %s micro-lamports/CU", fee)
        return BuildOptions(
            prefer_optimized=request.prefer_optimized,
            compute_unit_price_micro_lamports=fee,
            priority_level=self.settings.priority_level,
        )

    async def execute_swap(self, request: SwapRequest) -> Outcome:
        ctx = _context(request)
        try:
            validated = await self.error_handler.retry_operation(lambda: validate_swap(request, self.wallet), ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return Err(self.error_handler.handle_error(e, ctx))

        if not self.send_enabled:
            return await self._simulate(request, ctx)

        options = await self._build_options(request)
        return await self.coordinator.execute_swap(request, validated_amount=validated, build_options=options)

    async def _simulate(self, request: SwapRequest, ctx: ErrorContext) -> Outcome:
        try:
            quote = await self.quotes.get_quote(
                request.input_mint,
                request.output_mint,
                int(request.amount),
                slippage_pct=request.slippage_pct,
                prefer_optimized=request.prefer_optimized and request.generation is not ApiGeneration.LITE,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return Err(self.error_handler.handle_error(e, ctx))

        txid = dry_run_txid(request.side)
        logger.info("DRY-RUN %s %s -> %s amount=%d (no transaction sent)",
                    request.side, request.input_mint, request.output_mint, request.amount)
        log_trade_event(
            f"{request.side.upper()}_DRYRUN",
            signature=txid,
            input_mint=request.input_mint,
            output_mint=request.output_mint,
            in_amount=quote.in_amount,
            out_amount=quote.out_amount,
        )
        return Ok(SwapResult(
            success=True,
            quote=quote,
            signature=txid,
            confirmation_status="simulated",
            amount=int(request.amount),
            simulated=True,
        ))

    async def execute(self, request: SwapRequest) -> SwapResult:
        """Run a swap and flatten the outcome into a SwapResult."""
        outcome = await self.execute_swap(request)
        if isinstance(outcome, Ok):
            return outcome.value
        return SwapResult.failure(outcome.error, amount=int(request.amount))

    async def buy(self, signer: Any, mint: str, sol_amount_lamports: int, **kw: Any) -> SwapResult:
        kw.setdefault("prefer_optimized", self.prefer_optimized)
        return await self.execute(SwapRequest(SOL_MINT, mint, int(sol_amount_lamports), signer, side="buy", **kw))

    async def sell(self, signer: Any, mint: str, amount: int, **kw: Any) -> SwapResult:
        kw.setdefault("prefer_optimized", self.prefer_optimized)
        return await self.execute(SwapRequest(mint, SOL_MINT, int(amount), signer, side="sell", **kw))

    async def can_token_be_sold(self, mint: str) -> SellabilityReport:
        return await can_token_be_sold(
            mint, self.quotes, max_price_impact_pct=self.settings.max_sell_price_impact_pct
        )


__all__ = [
    "REDUCTION_SCHEDULE",
    "REDUCTION_HINT",
    "AdaptiveRetryCoordinator",
    "SellabilityReport",
    "can_token_be_sold",
    "SwapExecutor",
]
