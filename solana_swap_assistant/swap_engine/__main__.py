#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import math
import sys

import aiohttp

from solana_swap_assistant.common.constants import LAMPORTS_PER_SOL, SOL_MINT
from solana_swap_assistant.common.feature_flags import resolved_run_flags
from solana_swap_assistant.utils.env_loader import (
    ensure_appdata_env_bootstrap,
    load_env_first_found,
    load_signer_keypair,
)

from .errors import ErrorKind, SwapError
from .models import ApiGeneration, ErrorContext, ErrorReport, SwapResult
from .trading import SwapExecutor
from .utils_exec import load_config, logger, setup_logging


def _parse_args(argv=None):
    p = argparse.ArgumentParser(description="Solana swap assistant")
    p.add_argument("-c", "--config", dest="config", default=None,
                   help="Path to config.yaml (optional; will use AppData default if omitted)")
    sub = p.add_subparsers(dest="cmd", required=True)

    q = sub.add_parser("quote", help="Fetch a quote without trading")
    q.add_argument("input_mint")
    q.add_argument("output_mint")
    q.add_argument("amount", type=int, help="Amount in smallest units")
    q.add_argument("--slippage", type=float, default=None, help="Slippage in percent")
    q.add_argument("--optimized", action="store_true", help="Ask for gasless/optimized routing")

    for name, help_text in (("buy", "Buy a token with SOL"), ("sell", "Sell a token for SOL")):
        s = sub.add_parser(name, help=help_text)
        s.add_argument("mint")
        if name == "buy":
            s.add_argument("sol", type=float, help="SOL to spend")
        else:
            g = s.add_mutually_exclusive_group(required=True)
            g.add_argument("--amount", type=int, help="Raw token amount to sell")
            g.add_argument("--percent", type=float, help="Percentage of the current balance to sell")
        s.add_argument("--slippage", type=float, default=None, help="Slippage in percent")
        s.add_argument("--optimized", action="store_true", help="Ask for gasless/optimized routing")
        s.add_argument("--lite", action="store_true", help="Build through the Lite swap API")

    cs = sub.add_parser("can-sell", help="Check whether a token has a usable exit")
    cs.add_argument("mint")

    sub.add_parser("balances", help="List the signer's token balances")
    return p.parse_args(argv)


def _print_result(result: SwapResult) -> int:
    if result.success:
        tag = " (simulated)" if result.simulated else ""
        print(f"Swap OK{tag}: {result.signature}")
        if result.quote is not None:
            print(f"  in={result.quote.in_amount} out={result.quote.out_amount} "
                  f"impact={result.quote.price_impact_pct}% hops={result.quote.hops}")
        if result.amount_fraction < 1.0:
            print(f"  executed {result.amount_fraction:.0%} of the requested amount ({result.amount})")
        return 0
    err = result.error
    print(f"Swap failed: {err.user_message if err else 'unknown error'}", file=sys.stderr)
    if err and err.hint:
        print(f"  Suggestion: {err.hint}", file=sys.stderr)
    return 1


_COMMAND_OPERATIONS = {
    "quote": "get_quote",
    "can-sell": "can_token_be_sold",
    "balances": "get_all_token_balances",
    "buy": "perform_swap",
    "sell": "perform_swap",
}


def _command_context(args, owner=None) -> ErrorContext:
    if args.cmd == "quote":
        input_mint, output_mint = args.input_mint, args.output_mint
    elif args.cmd == "buy":
        input_mint, output_mint = SOL_MINT, args.mint
    elif args.cmd in ("sell", "can-sell"):
        input_mint, output_mint = args.mint, SOL_MINT
    else:
        input_mint = output_mint = None
    return ErrorContext(
        operation=_COMMAND_OPERATIONS[args.cmd],
        input_mint=input_mint,
        output_mint=output_mint,
        wallet_address=owner,
    )


def _print_failure(report: ErrorReport) -> int:
    print(f"Error: {report.user_message}", file=sys.stderr)
    if report.kind is ErrorKind.VALIDATION and report.message != report.user_message:
        print(f"  Details: {report.message}", file=sys.stderr)
    if report.hint:
        print(f"  Suggestion: {report.hint}", file=sys.stderr)
    return 1


async def _dispatch(args, executor: SwapExecutor, signer, owner) -> int:
    if args.cmd == "quote":
        quote = await executor.quotes.get_quote(
            args.input_mint, args.output_mint, args.amount,
            slippage_pct=args.slippage, prefer_optimized=args.optimized,
        )
        print(f"in={quote.in_amount} out={quote.out_amount} impact={quote.price_impact_pct}% "
              f"hops={quote.hops} slippageBps={quote.slippage_bps}")
        return 0

    if args.cmd == "can-sell":
        report = await executor.can_token_be_sold(args.mint)
        if report.can_sell:
            print(f"Sellable: impact={report.price_impact}% est_out={report.estimated_output}")
            return 0
        print(f"Not sellable: {report.reason}")
        return 1

    if args.cmd == "balances":
        print(f"SOL: {await executor.wallet.get_sol_balance(owner):.9f}")
        for bal in await executor.wallet.get_all_token_balances(owner):
            info = await executor.tokens.get_token_info(bal["mint"])
            print(f"{info['symbol']:<14} {bal['ui_amount']:>20} {bal['mint']}")
        return 0

    extra = {
        "slippage_pct": args.slippage,
        "prefer_optimized": args.optimized or executor.prefer_optimized,
        "generation": ApiGeneration.LITE if args.lite else ApiGeneration.CURRENT,
    }
    if args.cmd == "buy":
        lamports = int(math.floor(args.sol * LAMPORTS_PER_SOL))
        return _print_result(await executor.buy(signer, args.mint, lamports, **extra))

    amount = args.amount
    if amount is None:
        balance = await executor.wallet.get_token_balance(args.mint, owner, force_refresh=True)
        amount = int(math.floor(balance * args.percent / 100.0))
    return _print_result(await executor.sell(signer, args.mint, amount, **extra))


async def _runner(args) -> int:
    cfg = load_config(args.config)
    setup_logging(cfg)
    ensure_appdata_env_bootstrap()
    load_env_first_found()
    logger.info("Run flags: %s", resolved_run_flags())

    signer = load_signer_keypair() if args.cmd in ("balances", "buy", "sell") else None
    owner = str(signer.pubkey()) if signer is not None else None
    ctx = _command_context(args, owner)

    async with aiohttp.ClientSession() as session:
        executor = SwapExecutor.from_config(cfg, session=session)
        try:
            return await _dispatch(args, executor, signer, owner)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return _print_failure(executor.error_handler.handle_error(e, ctx))
        finally:
            await executor.close()


def main(argv=None) -> int:
    args = _parse_args(argv)
    try:
        return asyncio.run(_runner(args))
    except (ValueError, SwapError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
