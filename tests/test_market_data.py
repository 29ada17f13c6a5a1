"""
Quote, build and token-metadata tests. HTTP is served by FakeHttp.
"""

import asyncio
import base64
from decimal import Decimal

import pytest

from conftest import INPUT_MINT, OUTPUT_MINT, FakeChain, quote_json
from solana_swap_assistant.common.constants import (
    JUPITER_LITE_SWAP_API,
    JUPITER_QUOTE_API,
    JUPITER_SWAP_API,
    JUPITER_SWAP_API_V5,
)
from solana_swap_assistant.swap_engine import market_data
from solana_swap_assistant.swap_engine.errors import BuildFailed, InvalidParameter, QuoteUnavailable, RequestTimeout
from solana_swap_assistant.swap_engine.market_data import BuildOptions, QuoteProvider, TokenDirectory, TransactionBuilder
from solana_swap_assistant.swap_engine.models import ApiGeneration, Quote, TransactionFormat
from solana_swap_assistant.swap_engine.settings import SwapSettings

SIGNER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def _quote(**kw) -> Quote:
    data = quote_json(**kw)
    return Quote.from_response(data, input_mint=INPUT_MINT, output_mint=OUTPUT_MINT, slippage_bps=50)


def _swap_reply(raw: bytes = b"unsigned-tx") -> dict:
    return {"swapTransaction": base64.b64encode(raw).decode(), "lastValidBlockHeight": 123}


class TestQuoteProvider:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount_rejected_before_network(self, settings, fake_http, amount):
        with pytest.raises(InvalidParameter):
            await QuoteProvider(settings).get_quote(INPUT_MINT, OUTPUT_MINT, amount)
        assert fake_http.calls == []

    @pytest.mark.asyncio
    async def test_query_parameters(self, fake_http):
        fake_http.reply(200, quote_json())
        provider = QuoteProvider(SwapSettings(slippage_limit_pct=0.75))
        quote = await provider.get_quote(INPUT_MINT, OUTPUT_MINT, 1_000_000)

        call = fake_http.calls[0]
        assert call["method"] == "GET"
        assert call["url"] == JUPITER_QUOTE_API
        assert call["params"]["amount"] == "1000000"
        assert call["params"]["slippageBps"] == "75"
        assert call["params"]["onlyDirectRoutes"] == "false"
        assert "enableUltraV2" not in call["params"]

        assert quote.in_amount == 1_000_000
        assert quote.out_amount == 2_000_000
        assert quote.price_impact_pct == Decimal("0.12")
        assert quote.hops == 1

    @pytest.mark.asyncio
    async def test_explicit_slippage_and_optimized_flags(self, settings, fake_http):
        fake_http.reply(200, quote_json())
        await QuoteProvider(settings).get_quote(INPUT_MINT, OUTPUT_MINT, 10, slippage_pct=3, prefer_optimized=True)
        params = fake_http.calls[0]["params"]
        assert params["slippageBps"] == "300"
        assert params["enableUltraV2"] == params["enableRTSE"] == params["enableGasless"] == "true"

    @pytest.mark.asyncio
    async def test_http_error_is_quote_unavailable(self, settings, fake_http):
        fake_http.reply(400, "Could not find any route")
        with pytest.raises(QuoteUnavailable) as ei:
            await QuoteProvider(settings).get_quote(INPUT_MINT, OUTPUT_MINT, 10)
        assert ei.value.status == 400
        assert "Could not find any route" in str(ei.value)

    @pytest.mark.asyncio
    async def test_zero_output_is_no_route(self, settings, fake_http):
        fake_http.reply(200, quote_json(out_amount=0))
        with pytest.raises(QuoteUnavailable, match="No route found"):
            await QuoteProvider(settings).get_quote(INPUT_MINT, OUTPUT_MINT, 10)

    @pytest.mark.asyncio
    async def test_slow_quote_times_out(self, monkeypatch):
        async def slow(*a, **kw):
            await asyncio.sleep(1)
            return 200, "{}"

        monkeypatch.setattr(market_data, "_fetch_text_with_ipv4_fallback", slow)
        with pytest.raises(RequestTimeout):
            await QuoteProvider(SwapSettings(quote_timeout_s=0.01)).get_quote(INPUT_MINT, OUTPUT_MINT, 10)

    @pytest.mark.asyncio
    async def test_rate_limit_retried_through_handler(self, settings, fake_http, handler, sleeps):
        fake_http.reply(429, "Too Many Requests").reply(200, quote_json())
        quote = await QuoteProvider(settings, error_handler=handler).get_quote(INPUT_MINT, OUTPUT_MINT, 10)
        assert quote.out_amount == 2_000_000
        assert len(fake_http.calls) == 2
        assert sleeps == [5.0]


class TestTransactionBuilder:

    @pytest.mark.asyncio
    async def test_current_shape_pins_min_output(self, settings, fake_http):
        fake_http.reply(200, _swap_reply(b"abc"))
        quote = _quote(out_amount=4242)
        options = BuildOptions(compute_unit_price_micro_lamports=9000)
        payload = await TransactionBuilder(settings).build_swap_transaction(quote, SIGNER, options)

        call = fake_http.calls[0]
        body = call["json"]
        assert call["method"] == "POST"
        assert call["url"] == JUPITER_SWAP_API
        assert body["otherAmountThreshold"] == "4242"
        assert body["quoteResponse"] == quote.raw
        assert body["userPublicKey"] == SIGNER
        assert body["wrapUnwrapSOL"] is True
        assert body["asLegacyTransaction"] is False
        assert body["computeUnitPriceMicroLamports"] == 9000
        assert body["useSharedAccounts"] is True and body["useTokenLedger"] is True
        assert "ultraV2Settings" not in body

        assert payload.raw == b"abc"
        assert payload.generation is ApiGeneration.CURRENT
        assert payload.format_hint is TransactionFormat.VERSIONED
        assert payload.last_valid_block_height == 123

    @pytest.mark.asyncio
    async def test_optimized_shape(self, settings, fake_http):
        fake_http.reply(200, _swap_reply())
        await TransactionBuilder(settings).build_swap_transaction(_quote(), SIGNER, BuildOptions(prefer_optimized=True))
        body = fake_http.calls[0]["json"]
        assert body["ultraV2Settings"] == {
            "enableRTSE": True,
            "enableGasless": True,
            "enableMEVMitigation": True,
            "optimizeForSuccess": True,
        }
        assert "computeUnitPriceMicroLamports" not in body

    @pytest.mark.asyncio
    async def test_compute_price_defaults_to_settings(self, fake_http):
        fake_http.reply(200, _swap_reply())
        await TransactionBuilder(SwapSettings(priority_fee_micro_lamports=1234)).build_swap_transaction(_quote(), SIGNER)
        assert fake_http.calls[0]["json"]["computeUnitPriceMicroLamports"] == 1234

    @pytest.mark.asyncio
    async def test_older_generation_shape(self, settings, fake_http):
        fake_http.reply(200, _swap_reply())
        quote = _quote(out_amount=777)
        payload = await TransactionBuilder(settings).build_swap_transaction(
            quote, SIGNER, generation=ApiGeneration.OLDER
        )
        call = fake_http.calls[0]
        assert call["url"] == JUPITER_SWAP_API_V5
        assert set(call["json"]) == {"quoteResponse", "userPublicKey", "wrapUnwrapSOL", "otherAmountThreshold"}
        assert call["json"]["otherAmountThreshold"] == "777"
        assert payload.generation is ApiGeneration.OLDER
        assert payload.format_hint is TransactionFormat.LEGACY

    @pytest.mark.asyncio
    async def test_lite_shape(self, fake_http):
        fake_http.reply(200, _swap_reply())
        settings = SwapSettings(priority_level="veryHigh")
        await TransactionBuilder(settings).build_swap_transaction(_quote(out_amount=55), SIGNER, generation=ApiGeneration.LITE)
        call = fake_http.calls[0]
        assert call["url"] == JUPITER_LITE_SWAP_API
        body = call["json"]
        assert body["prioritizationFeeLamports"] == 10_000_000
        assert body["dynamicComputeUnitLimit"] is True
        assert body["quoteResponse"]["otherAmountThreshold"] == "55"
        assert body["quoteResponse"]["swapMode"] == "ExactIn"

    @pytest.mark.asyncio
    async def test_http_error_is_build_failed(self, settings, fake_http):
        fake_http.reply(422, "quote expired")
        with pytest.raises(BuildFailed) as ei:
            await TransactionBuilder(settings).build_swap_transaction(_quote(), SIGNER)
        assert ei.value.status == 422
        assert "quote expired" in str(ei.value)

    @pytest.mark.asyncio
    async def test_missing_transaction_is_build_failed(self, settings, fake_http):
        fake_http.reply(200, {"error": "nope"})
        with pytest.raises(BuildFailed, match="No swap transaction"):
            await TransactionBuilder(settings).build_swap_transaction(_quote(), SIGNER)

    @pytest.mark.asyncio
    async def test_missing_signer_rejected(self, settings, fake_http):
        with pytest.raises(InvalidParameter):
            await TransactionBuilder(settings).build_swap_transaction(_quote(), "")
        assert fake_http.calls == []


class TestTokenDirectory:

    @pytest.mark.asyncio
    async def test_lookup_is_cached(self, fake_http):
        fake_http.reply(200, [{"address": OUTPUT_MINT, "symbol": "USDC", "name": "USD Coin", "logoURI": "x"}])
        tokens = TokenDirectory()
        first = await tokens.get_token_info(OUTPUT_MINT)
        second = await tokens.get_token_info(OUTPUT_MINT)
        assert first == second == {"symbol": "USDC", "name": "USD Coin", "logoURI": "x"}
        assert len(fake_http.calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_and_failed_lookups_fall_back(self, fake_http):
        fake_http.reply(500, "down")
        info = await TokenDirectory().get_token_info("ABCDxxxxxxxxxxxxWXYZ")
        assert info == {"symbol": "ABCD...WXYZ", "name": "Unknown Token", "logoURI": None}

    @pytest.mark.asyncio
    async def test_metadata_from_chain(self):
        chain = FakeChain()
        tokens = TokenDirectory(chain=chain)
        assert (await tokens.get_token_metadata(OUTPUT_MINT))["decimals"] == 6
        await tokens.get_token_metadata(OUTPUT_MINT)
        chain.get_token_supply.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_metadata_defaults_to_nine_decimals(self):
        chain = FakeChain()
        chain.get_token_supply.side_effect = RuntimeError("account not found")
        assert (await TokenDirectory(chain=chain).get_token_metadata(OUTPUT_MINT))["decimals"] == 9
