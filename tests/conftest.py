"""
Shared fixtures for the swap engine tests.

No test touches the network: HTTP goes through FakeHttp (patched over the
module-level fetch helper) and the chain is a FakeChain with AsyncMocks.
"""

import json
from typing import Any, List
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair

from solana_swap_assistant.swap_engine import market_data
from solana_swap_assistant.swap_engine.error_handler import ErrorHandler
from solana_swap_assistant.swap_engine.models import TransactionFormat
from solana_swap_assistant.swap_engine.settings import SwapSettings

INPUT_MINT = "So11111111111111111111111111111111111111112"
OUTPUT_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

_ENV_KEYS = (
    "SWAP_SLIPPAGE_PCT",
    "SWAP_PRIORITY_FEE",
    "SWAP_RPC_URL",
    "DRY_RUN",
    "DISABLE_SEND_TX",
    "JUPITER_EXECUTE",
    "JUP_FORCE_IPV4",
    "FORCE_DISABLE_ULTRA",
    "JUPITER_ULTRA_ENABLE",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep user env and appdata out of every test."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SWAP_APPDATA_DIR", str(tmp_path / "appdata"))
    yield


# ============================================================================
# Fakes
# ============================================================================

def quote_json(in_amount: int = 1_000_000, out_amount: int = 2_000_000, impact: str = "0.12", hops: int = 1) -> dict:
    return {
        "inputMint": INPUT_MINT,
        "outputMint": OUTPUT_MINT,
        "inAmount": str(in_amount),
        "outAmount": str(out_amount),
        "priceImpactPct": impact,
        "routePlan": [{"swapInfo": {"label": f"hop{i}"}} for i in range(hops)],
        "slippageBps": 50,
    }


class FakeHttp:
    """Stands in for _fetch_text_with_ipv4_fallback; replies are queued in order."""

    def __init__(self):
        self.calls: List[dict] = []
        self._replies: List[Any] = []

    def reply(self, status: int, body: Any) -> "FakeHttp":
        self._replies.append((status, body if isinstance(body, str) else json.dumps(body)))
        return self

    def fail(self, exc: BaseException) -> "FakeHttp":
        self._replies.append(exc)
        return self

    async def __call__(self, method, url, *, params=None, data=None, headers=None, timeout=None, session=None):
        self.calls.append({
            "method": method,
            "url": url,
            "params": dict(params or {}),
            "json": json.loads(data) if data else None,
        })
        item = self._replies.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakeCodec:
    def __init__(self, fmt: TransactionFormat, *, decode_error: str = None, sign_error: str = None):
        self.format = fmt
        self.decode_error = decode_error
        self.sign_error = sign_error
        self.decoded: List[bytes] = []

    def decode(self, raw: bytes):
        self.decoded.append(raw)
        if self.decode_error:
            raise ValueError(self.decode_error)
        return {"raw": raw}

    def sign(self, tx, signer) -> bytes:
        if self.sign_error:
            raise ValueError(self.sign_error)
        return b"signed:" + self.format.value.encode() + b":" + tx["raw"]


class FakeChain:
    def __init__(self, *, lamports: int = 5_000_000_000, token_accounts=None):
        self.send_raw_transaction = AsyncMock(side_effect=lambda raw: f"SIG-{raw.decode(errors='ignore')}")
        self.confirm_transaction = AsyncMock(return_value="confirmed")
        self.get_lamports = AsyncMock(return_value=lamports)
        self.get_token_accounts = AsyncMock(return_value=list(token_accounts or []))
        self.get_token_supply = AsyncMock(return_value={"amount": 10**15, "decimals": 6})
        self.estimate_priority_fee = AsyncMock(return_value=7_500)
        self.failover = AsyncMock(return_value="https://backup.example")
        self.close = AsyncMock()


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings() -> SwapSettings:
    return SwapSettings()


@pytest.fixture
def signer() -> Keypair:
    return Keypair()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def handler(sleeps) -> ErrorHandler:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return ErrorHandler(sleep=_sleep)


@pytest.fixture
def fake_http(monkeypatch) -> FakeHttp:
    fake = FakeHttp()
    monkeypatch.setattr(market_data, "_fetch_text_with_ipv4_fallback", fake)
    return fake


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()
