# solana_swap_assistant/swap_engine/errors.py
"""
Typed exceptions for the swap engine and the error classifier.

classify_error() maps an exception (or a bare message) onto one ErrorKind.
Exception type wins when it is unambiguous; otherwise an ordered,
case-insensitive substring table decides. Liquidity is checked before
on_chain so a confirmed failure carrying the aggregator slippage code is
treated as a liquidity problem.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple, Union

import aiohttp
from solana.rpc.core import RPCException as SolanaRPCException


class ErrorKind(str, Enum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    RPC = "rpc"
    LIQUIDITY = "liquidity"
    VALIDATION = "validation"
    ON_CHAIN = "on_chain"
    UNKNOWN = "unknown"


# ============================================================================
# Exceptions
# ============================================================================

class SwapError(Exception):
    """Base exception for the swap engine."""


class InvalidParameter(SwapError):
    """Caller passed something unusable (amount <= 0, same mint, no signer)."""


class InsufficientBalance(InvalidParameter):
    """Signer does not hold the requested input amount."""


class QuoteUnavailable(SwapError):
    """Aggregator returned no route or a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RequestTimeout(SwapError):
    """A bounded wait elapsed (quote fetch, build call)."""


class BuildFailed(SwapError):
    """Aggregator could not produce a transaction for the quote."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SubmissionFailed(SwapError):
    """Every rung of the format/generation ladder failed before a signature was obtained."""

    def __init__(self, stage_errors: Sequence[Tuple[str, str]]):
        self.stage_errors = list(stage_errors)
        joined = " | ".join(f"{stage}: {msg}" for stage, msg in self.stage_errors)
        super().__init__(f"Failed to process transaction: {joined}")


class OnChainFailure(SwapError):
    """The chain accepted the transaction and then reported it failed."""

    def __init__(self, signature: str, chain_error: object):
        self.signature = signature
        self.chain_error = chain_error
        super().__init__(f"Transaction failed: {chain_error} (signature={signature})")


# ============================================================================
# Classification
# ============================================================================

# Order matters: first match wins.
ERROR_PATTERNS: Tuple[Tuple[ErrorKind, Tuple[str, ...]], ...] = (
    (ErrorKind.LIQUIDITY, (
        "insufficient liquidity",
        "price impact too high",
        "slippage exceeded",
        "slippagetoleranceexceeded",
        "0x1788",   # aggregator: slippage tolerance exceeded
        "0x1771",   # aggregator: exact-out amount not matched
    )),
    (ErrorKind.RATE_LIMIT, ("429", "rate limit", "too many requests")),
    (ErrorKind.NETWORK, (
        "timeout",
        "timed out",
        "network",
        "enotfound",
        "econnrefused",
        "econnreset",
        "etimedout",
        "temporary",
    )),
    (ErrorKind.RPC, ("rpc", "connection", "blockhash not found", "node is behind")),
    (ErrorKind.ON_CHAIN, ("transaction failed", "instructionerror", "custom program error")),
    (ErrorKind.VALIDATION, (
        "invalid",
        "insufficient balance",
        "cannot swap same token",
        "must be greater than 0",
        "missing required",
    )),
)

_NETWORK_EXC = (
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
    ConnectionResetError,
)


def _match_patterns(message: str, patterns: Iterable[Tuple[ErrorKind, Tuple[str, ...]]] = ERROR_PATTERNS) -> Optional[ErrorKind]:
    m = (message or "").lower()
    for kind, needles in patterns:
        if any(n in m for n in needles):
            return kind
    return None


def classify_error(error: Union[BaseException, str, None]) -> ErrorKind:
    if error is None:
        return ErrorKind.UNKNOWN
    if isinstance(error, str):
        return _match_patterns(error) or ErrorKind.UNKNOWN

    message = str(error)
    by_text = _match_patterns(message)

    if isinstance(error, InvalidParameter):
        return ErrorKind.VALIDATION
    # Liquidity text beats the structural kinds below
    if by_text is ErrorKind.LIQUIDITY:
        return ErrorKind.LIQUIDITY
    if isinstance(error, OnChainFailure):
        return ErrorKind.ON_CHAIN
    if isinstance(error, aiohttp.ClientResponseError) and error.status == 429:
        return ErrorKind.RATE_LIMIT
    if isinstance(error, (RequestTimeout,) + _NETWORK_EXC):
        return ErrorKind.NETWORK
    if isinstance(error, SolanaRPCException):
        return by_text if by_text in (ErrorKind.RATE_LIMIT, ErrorKind.NETWORK) else ErrorKind.RPC
    return by_text or ErrorKind.UNKNOWN


def is_liquidity_error(error: Union[BaseException, str, None]) -> bool:
    return classify_error(error) is ErrorKind.LIQUIDITY
