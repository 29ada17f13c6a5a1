# solana_swap_assistant/swap_engine/error_handler.py
"""
Error recovery for network-bound swap operations.

ErrorHandler plays the recovery-engine role: it counts failures for the life
of the process, decides what to do with a classified error, and wraps
operations in a bounded retry loop. Liquidity problems are not handled here;
the swap coordinator deals with those by shrinking the amount.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from .errors import ErrorKind, classify_error
from .models import Err, ErrorContext, ErrorReport, Ok, RetryState
from .utils_exec import log_error_with_stacktrace

logger = logging.getLogger("SwapAssistant")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]
FailoverFn = Callable[[], Awaitable[Any]]


class RecoveryAction(str, Enum):
    RETRY = "retry"
    FAILOVER = "failover"
    SURFACE = "surface"


RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.RATE_LIMIT, ErrorKind.RPC})

_RECOVERABLE_PATTERNS = ("timeout", "network", "rate limit", "429", "rpc", "connection", "temporary")

# Set on an exception re-raised by retry_operation, whose failure is already counted.
_COUNTED_ATTR = "_swap_failure_counted"


def _mark_counted(error: BaseException) -> None:
    setattr(error, _COUNTED_ATTR, True)


def _take_counted(error: BaseException) -> bool:
    return bool(vars(error).pop(_COUNTED_ATTR, False))


class ErrorHandler:
    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay_s: float = 1.0,
        rate_limit_cooldown_s: float = 5.0,
        sleep: SleepFn = asyncio.sleep,
        failover: Optional[FailoverFn] = None,
        retry_state: Optional[RetryState] = None,
    ):
        self.max_retries = int(max_retries)
        self.base_delay_s = float(base_delay_s)
        self.rate_limit_cooldown_s = float(rate_limit_cooldown_s)
        self._sleep = sleep
        self._failover = failover
        self.retry_state = retry_state if retry_state is not None else RetryState()

    @classmethod
    def from_settings(cls, settings: Any, **kw: Any) -> "ErrorHandler":
        return cls(
            max_retries=settings.max_retries,
            base_delay_s=settings.retry_base_delay_s,
            rate_limit_cooldown_s=settings.rate_limit_cooldown_s,
            **kw,
        )

    def set_failover(self, failover: Optional[FailoverFn]) -> None:
        self._failover = failover

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def record_failure(self, error: BaseException) -> int:
        """
        Count one failure of `error` and return the running total.

        An error re-raised by retry_operation was counted there and is not
        counted a second time.
        """
        if _take_counted(error):
            return self.retry_state.count(error)
        return self.retry_state.increment(error)

    def handle_error(
        self,
        error: BaseException,
        context: ErrorContext,
        *,
        hint: Optional[str] = None,
        already_counted: bool = False,
    ) -> ErrorReport:
        """
        Count, log and describe a failure that is about to be surfaced.

        Pass already_counted=True when the caller recorded this failure itself
        through record_failure().
        """
        if already_counted:
            _take_counted(error)
            count = self.retry_state.count(error)
        else:
            count = self.record_failure(error)
        kind = classify_error(error)
        info = {
            "name": type(error).__name__,
            "message": str(error),
            "kind": kind.value,
            "context": context.as_dict(),
            "count": count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        logger.error(json.dumps(info, default=str))
        logger.debug("Traceback for %s", type(error).__name__, exc_info=(type(error), error, error.__traceback__))
        return ErrorReport(
            kind=kind,
            message=str(error),
            user_message=self.get_user_friendly_message(error, context),
            retryable=kind in RETRYABLE_KINDS,
            context=context,
            error_name=type(error).__name__,
            hint=hint or self.get_suggested_action(error),
            count=count,
        )

    def get_user_friendly_message(self, error: BaseException, context: Optional[ErrorContext] = None) -> str:
        msg = str(error)
        low = msg.lower()
        op = context.operation if context else None

        if "timeout" in low or "timed out" in low:
            return "Request timed out. Please check your internet connection and try again."
        if "network" in low:
            return "Network error. Please check your internet connection."
        if "insufficient balance" in low:
            return "Insufficient balance for this operation."
        if "slippage" in low:
            return "Slippage tolerance exceeded. Try increasing slippage or reducing amount."
        if "429" in low or "rate limit" in low:
            return "Rate limited by the remote service. Please wait a moment and try again."

        if op == "get_token_info" and context and context.input_mint:
            return f"Failed to get token info for {context.input_mint[:8]}..."
        if op == "get_quote" and context and context.input_mint:
            return f"Failed to get price for {context.input_mint[:8]}..."
        if op == "get_all_token_balances" and context and context.wallet_address:
            return f"Failed to get wallet balances for {context.wallet_address[:8]}..."
        if op == "get_all_token_balances":
            return "Failed to get wallet balances."
        if op == "perform_swap":
            return "Swap transaction failed. Please check your balance and try again."

        return msg or "An unexpected error occurred."

    def get_suggested_action(self, error: BaseException) -> str:
        low = str(error).lower()
        if "insufficient balance" in low:
            return "Add more SOL to your wallet"
        if "slippage" in low:
            return "Increase slippage tolerance or reduce amount"
        if "timeout" in low or "timed out" in low:
            return "Check your internet connection"
        if "rate limit" in low or "429" in low:
            return "Wait a moment and try again"
        return "Try again or contact support"

    def is_recoverable(self, error: BaseException) -> bool:
        if classify_error(error) in RETRYABLE_KINDS:
            return True
        low = str(error).lower()
        return any(p in low for p in _RECOVERABLE_PATTERNS)

    def get_error_stats(self) -> Dict[str, int]:
        return self.retry_state.snapshot()

    def clear_error_stats(self) -> None:
        self.retry_state.clear()

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def backoff_delay(self, attempt: int) -> float:
        """base * 2^attempt, attempt is 0-indexed."""
        return self.base_delay_s * (2 ** max(0, int(attempt)))

    async def recover(self, error: BaseException, attempt: int, kind: Optional[ErrorKind] = None) -> RecoveryAction:
        kind = kind or classify_error(error)
        if kind is ErrorKind.NETWORK:
            delay = self.backoff_delay(attempt)
            logger.warning("Network error (%s); retrying in %.2fs (attempt %d)", error, delay, attempt + 1)
            await self._sleep(delay)
            return RecoveryAction.RETRY
        if kind is ErrorKind.RATE_LIMIT:
            logger.warning("Rate limited (%s); waiting %.2fs", error, self.rate_limit_cooldown_s)
            await self._sleep(self.rate_limit_cooldown_s)
            return RecoveryAction.RETRY
        if kind is ErrorKind.RPC:
            logger.warning("RPC error (%s); switching endpoint", error)
            if self._failover is not None:
                await self._failover()
            return RecoveryAction.FAILOVER
        return RecoveryAction.SURFACE

    async def retry_operation(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[ErrorContext] = None,
        max_retries: Optional[int] = None,
    ) -> T:
        """
        Run `operation` up to `max_retries` times.

        Errors the recovery step cannot fix are re-raised at once. Once the
        ceiling is reached the last error is re-raised whatever its kind.
        """
        ceiling = max(1, int(max_retries if max_retries is not None else self.max_retries))
        op_name = context.operation if context else getattr(operation, "__name__", "operation")
        attempt = 0
        while True:
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.retry_state.increment(e)
                if attempt + 1 >= ceiling:
                    logger.warning("%s failed after %d attempt(s): %s", op_name, attempt + 1, e)
                    _mark_counted(e)
                    raise
                action = await self.recover(e, attempt)
                if action is RecoveryAction.SURFACE:
                    _mark_counted(e)
                    raise
                attempt += 1

    async def safe_execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext,
    ) -> Union[Ok[T], Err[ErrorReport]]:
        try:
            return Ok(await operation())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_error_with_stacktrace(f"{context.operation} failed", e)
            return Err(self.handle_error(e, context))


__all__ = ["ErrorHandler", "RecoveryAction", "RETRYABLE_KINDS"]
