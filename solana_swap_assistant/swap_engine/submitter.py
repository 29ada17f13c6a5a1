# solana_swap_assistant/swap_engine/submitter.py
"""
Sign, send and confirm an aggregator-built swap transaction.

The submitter walks a fixed ladder of attempt strategies:

    1. versioned  - decode the payload as a v0 transaction and sign it
    2. legacy     - decode the same payload as a legacy transaction
    3. older-api  - rebuild on the older API generation, decode as legacy

A strategy fails over to the next one on any decode, sign, rebuild or send
error. Once the chain has handed back a signature the ladder is finished:
confirmation either succeeds or raises OnChainFailure, which is never retried
here. If all strategies fail, SubmissionFailed carries every message.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from solders.transaction import Transaction, VersionedTransaction

from .errors import SubmissionFailed
from .models import ApiGeneration, Quote, Submission, TransactionFormat, UnsignedTransactionPayload
from .utils_exec import short_addr

logger = logging.getLogger("SwapAssistant")


# ---------------------------------------------------------------------------
# Codecs
# ---------------------------------------------------------------------------

class VersionedCodec:
    format = TransactionFormat.VERSIONED

    def decode(self, raw: bytes) -> Any:
        return VersionedTransaction.from_bytes(bytes(raw))

    def sign(self, tx: Any, signer: Any) -> bytes:
        signed = VersionedTransaction(tx.message, [signer])
        return bytes(signed)


class LegacyCodec:
    format = TransactionFormat.LEGACY

    def decode(self, raw: bytes) -> Any:
        return Transaction.from_bytes(bytes(raw))

    def sign(self, tx: Any, signer: Any) -> bytes:
        tx.sign([signer], tx.message.recent_blockhash)
        return bytes(tx)


@dataclass(frozen=True)
class AttemptStrategy:
    name: str
    codec: Any
    rebuild_generation: Optional[ApiGeneration] = None

    @property
    def format(self) -> TransactionFormat:
        return self.codec.format


def default_strategies(versioned: Any = None, legacy: Any = None) -> Tuple[AttemptStrategy, ...]:
    versioned = versioned or VersionedCodec()
    legacy = legacy or LegacyCodec()
    return (
        AttemptStrategy("versioned", versioned),
        AttemptStrategy("legacy", legacy),
        AttemptStrategy("older-api legacy", legacy, rebuild_generation=ApiGeneration.OLDER),
    )


# ---------------------------------------------------------------------------
# Submitter
# ---------------------------------------------------------------------------

class TransactionSubmitter:
    def __init__(
        self,
        chain: Any,
        builder: Any,
        *,
        strategies: Optional[Sequence[AttemptStrategy]] = None,
    ):
        self.chain = chain
        self.builder = builder
        self.strategies: Tuple[AttemptStrategy, ...] = tuple(strategies or default_strategies())

    async def submit(
        self,
        quote: Quote,
        signer: Any,
        payload: UnsignedTransactionPayload,
        *,
        build_options: Any = None,
    ) -> Submission:
        signer_address = str(signer.pubkey())
        stage_errors: List[Tuple[str, str]] = []

        for strategy in self.strategies:
            try:
                current = payload
                if strategy.rebuild_generation is not None:
                    logger.info("Rebuilding swap on %s API", strategy.rebuild_generation.value)
                    current = await self.builder.build_swap_transaction(
                        quote, signer_address, build_options, generation=strategy.rebuild_generation
                    )
                tx = strategy.codec.decode(current.raw)
                signed = strategy.codec.sign(tx, signer)
                signature = await self.chain.send_raw_transaction(signed)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Swap %s attempt failed: %s", strategy.name, e)
                stage_errors.append((strategy.name, str(e)))
                continue

            logger.info("Swap sent (%s): %s", strategy.name, signature)
            status = await self.chain.confirm_transaction(signature, current.last_valid_block_height)
            logger.info("Swap confirmed (%s) for %s: %s", status, short_addr(signer_address), signature)
            return Submission(
                signature=signature,
                confirmation_status=status,
                transaction_format=strategy.format,
                generation=current.generation,
            )

        logger.error("All %d submission strategies failed", len(self.strategies))
        raise SubmissionFailed(stage_errors)


__all__ = [
    "VersionedCodec",
    "LegacyCodec",
    "AttemptStrategy",
    "default_strategies",
    "TransactionSubmitter",
]
