import pytest

from conftest import INPUT_MINT, OUTPUT_MINT, FakeChain
from solana_swap_assistant.swap_engine.errors import InsufficientBalance, InvalidParameter
from solana_swap_assistant.swap_engine.models import SwapRequest
from solana_swap_assistant.swap_engine.wallet import WalletReader, validate_swap

OWNER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


class TestWalletReader:

    @pytest.mark.asyncio
    async def test_sol_balance_from_lamports(self):
        wallet = WalletReader(FakeChain(lamports=2_500_000_000))
        assert await wallet.get_sol_balance(OWNER) == 2.5
        assert await wallet.get_token_balance(INPUT_MINT, OWNER) == 2_500_000_000

    @pytest.mark.asyncio
    async def test_token_balance_sums_accounts(self):
        chain = FakeChain(token_accounts=[
            {"mint": OUTPUT_MINT, "amount": 700},
            {"mint": OUTPUT_MINT, "amount": 300},
        ])
        wallet = WalletReader(chain)
        assert await wallet.get_token_balance(OUTPUT_MINT, OWNER) == 1000
        chain.get_token_accounts.assert_awaited_once_with(OWNER, mint=OUTPUT_MINT)

    @pytest.mark.asyncio
    async def test_cached_until_forced(self):
        chain = FakeChain(lamports=10)
        wallet = WalletReader(chain)
        await wallet.get_token_balance(INPUT_MINT, OWNER)
        chain.get_lamports.return_value = 20

        assert await wallet.get_token_balance(INPUT_MINT, OWNER) == 10
        assert await wallet.get_token_balance(INPUT_MINT, OWNER, force_refresh=True) == 20
        assert chain.get_lamports.await_count == 2

        wallet.clear_cache()
        chain.get_lamports.return_value = 30
        assert await wallet.get_token_balance(INPUT_MINT, OWNER) == 30

    @pytest.mark.asyncio
    async def test_all_balances_drop_empty_accounts(self):
        chain = FakeChain(token_accounts=[
            {"mint": "A", "amount": 0, "ui_amount": 0.0},
            {"mint": "B", "amount": 5, "ui_amount": 0.5},
            {"mint": "C", "amount": 90, "ui_amount": 9.0},
        ])
        wallet = WalletReader(chain)
        balances = await wallet.get_all_token_balances(OWNER)
        assert [b["mint"] for b in balances] == ["C", "B"]

        await wallet.get_all_token_balances(OWNER)
        chain.get_token_accounts.assert_awaited_once_with(OWNER)


class TestValidateSwap:

    @pytest.mark.asyncio
    async def test_returns_balance(self, signer):
        wallet = WalletReader(FakeChain(lamports=5000))
        assert await validate_swap(SwapRequest(INPUT_MINT, OUTPUT_MINT, 4000, signer), wallet) == 5000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs,message", [
        ({"output_mint": INPUT_MINT}, "Cannot swap same token"),
        ({"amount": 0}, "Amount must be greater than 0"),
        ({"signer": None}, "Invalid wallet"),
    ])
    async def test_rejects_bad_requests(self, signer, kwargs, message):
        fields = {"input_mint": INPUT_MINT, "output_mint": OUTPUT_MINT, "amount": 10, "signer": signer}
        fields.update(kwargs)
        chain = FakeChain()
        with pytest.raises(InvalidParameter, match=message):
            await validate_swap(SwapRequest(**fields), WalletReader(chain))
        chain.get_lamports.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, signer):
        wallet = WalletReader(FakeChain(lamports=99))
        with pytest.raises(InsufficientBalance, match="Available: 99, Required: 100"):
            await validate_swap(SwapRequest(INPUT_MINT, OUTPUT_MINT, 100, signer), wallet)

    @pytest.mark.asyncio
    async def test_ignores_stale_cache(self, signer):
        chain = FakeChain(lamports=1_000)
        wallet = WalletReader(chain)
        await wallet.get_token_balance(INPUT_MINT, str(signer.pubkey()))
        chain.get_lamports.return_value = 10
        with pytest.raises(InsufficientBalance):
            await validate_swap(SwapRequest(INPUT_MINT, OUTPUT_MINT, 500, signer), wallet)
