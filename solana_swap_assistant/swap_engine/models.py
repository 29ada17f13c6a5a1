# solana_swap_assistant/swap_engine/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar, Union

from .errors import ErrorKind

T = TypeVar("T")
E = TypeVar("E")


class TransactionFormat(str, Enum):
    VERSIONED = "versioned"
    LEGACY = "legacy"


class ApiGeneration(str, Enum):
    CURRENT = "v6"
    OLDER = "v5"
    LITE = "lite"


def _to_decimal(x: Any) -> Decimal:
    try:
        return Decimal(str(x)) if x not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


@dataclass(frozen=True)
class Quote:
    """Aggregator quote. `raw` is the untouched response, echoed back when building."""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: Decimal
    route_plan: Tuple[Any, ...]
    slippage_bps: int
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def hops(self) -> int:
        return len(self.route_plan)

    @classmethod
    def from_response(cls, data: Dict[str, Any], *, input_mint: str, output_mint: str, slippage_bps: int) -> "Quote":
        return cls(
            input_mint=str(data.get("inputMint") or input_mint),
            output_mint=str(data.get("outputMint") or output_mint),
            in_amount=int(data.get("inAmount") or 0),
            out_amount=int(data.get("outAmount") or 0),
            price_impact_pct=_to_decimal(data.get("priceImpactPct")),
            route_plan=tuple(data.get("routePlan") or ()),
            slippage_bps=int(data.get("slippageBps") or slippage_bps),
            raw=dict(data),
        )


@dataclass(frozen=True)
class SwapRequest:
    input_mint: str
    output_mint: str
    amount: int
    signer: Any  # solders Keypair or anything exposing .pubkey()
    slippage_pct: Optional[float] = None
    prefer_optimized: bool = False
    operation: str = "perform_swap"
    side: str = "swap"  # swap | buy | sell, only used for trade journal / dry-run ids
    generation: ApiGeneration = ApiGeneration.CURRENT

    @property
    def signer_address(self) -> str:
        return str(self.signer.pubkey()) if self.signer is not None else ""


@dataclass(frozen=True)
class UnsignedTransactionPayload:
    raw: bytes
    generation: ApiGeneration
    format_hint: TransactionFormat = TransactionFormat.VERSIONED
    last_valid_block_height: Optional[int] = None


@dataclass(frozen=True)
class ErrorContext:
    operation: str
    input_mint: Optional[str] = None
    output_mint: Optional[str] = None
    wallet_address: Optional[str] = None
    attempt: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d = {
            "operation": self.operation,
            "input_mint": self.input_mint,
            "output_mint": self.output_mint,
            "wallet_address": self.wallet_address,
            "attempt": self.attempt,
        }
        d.update(self.extra)
        return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class ErrorReport:
    kind: ErrorKind
    message: str
    user_message: str
    retryable: bool
    context: ErrorContext
    error_name: str = "Exception"
    hint: Optional[str] = None
    count: int = 1


@dataclass(frozen=True)
class SwapResult:
    success: bool
    quote: Optional[Quote] = None
    signature: Optional[str] = None
    confirmation_status: Optional[str] = None
    error: Optional[ErrorReport] = None
    amount: Optional[int] = None
    amount_fraction: float = 1.0
    transaction_format: Optional[TransactionFormat] = None
    generation: Optional[ApiGeneration] = None
    simulated: bool = False

    @classmethod
    def failure(cls, report: ErrorReport, *, quote: Optional[Quote] = None, amount: Optional[int] = None,
                amount_fraction: float = 1.0) -> "SwapResult":
        return cls(success=False, quote=quote, error=report, amount=amount, amount_fraction=amount_fraction)


@dataclass(frozen=True)
class Submission:
    """What the submitter hands back on success."""
    signature: str
    confirmation_status: str
    transaction_format: TransactionFormat
    generation: ApiGeneration


# ----------------------------------------------------------------------
# Tagged outcome
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    is_ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E
    is_ok: bool = field(default=False, init=False)


Outcome = Union[Ok[SwapResult], Err[ErrorReport]]


class RetryState:
    """Process-lifetime failure counters keyed by (error type name, message)."""

    def __init__(self) -> None:
        self._counts: Dict[Tuple[str, str], int] = {}

    @staticmethod
    def key_for(error: BaseException) -> Tuple[str, str]:
        return type(error).__name__, str(error)

    def increment(self, error: BaseException) -> int:
        key = self.key_for(error)
        self._counts[key] = self._counts.get(key, 0) + 1
        return self._counts[key]

    def count(self, error: BaseException) -> int:
        return self._counts.get(self.key_for(error), 0)

    def snapshot(self) -> Dict[str, int]:
        return {f"{name}_{msg}": n for (name, msg), n in self._counts.items()}

    def clear(self) -> None:
        self._counts.clear()

    def __len__(self) -> int:
        return len(self._counts)
