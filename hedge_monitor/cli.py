"""Command-line interface for the FX hedge monitor."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Callable

from .chains.evm import EvmLedger, select_signer
from .config import AppConfig, load_config
from .errors import ConfigurationError, UserCancelled
from .logging_setup import configure_logging
from .models import Currency, ProtectionLevel
from .oracles import ExternalRateSource, OracleResync, PricePublisher
from .risk_engine import preview_activation
from .services import Monitor, PositionService, TransactionManager, TxResult, TxStatus

logger = logging.getLogger(__name__)

_WRITE_COMMANDS = ("approve", "activate", "reduce", "close", "settle", "lp-deposit")


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="fx-hedge-monitor",
        description="FX hedge position monitor and transaction client",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    # Shared by every subcommand that acts on one wallet.
    wallet_opts = argparse.ArgumentParser(add_help=False)
    wallet_opts.add_argument(
        "--wallet", default=None, help="Wallet label from config (default: first wallet)"
    )
    wallet_opts.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check", help="Single position check with alerts")
    sub.add_parser("report", help="Generate daily position report")

    monitor_parser = sub.add_parser("monitor", help="Continuous monitoring loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=float,
        default=None,
        help="Position poll interval in seconds (overrides config)",
    )

    sub.add_parser("rates", parents=[wallet_opts], help="Show external and on-chain rates")

    approve = sub.add_parser(
        "approve", parents=[wallet_opts], help="Approve the router to spend stablecoin"
    )
    approve.add_argument("amount", nargs="?", default=None, help="Amount in USDC")
    approve.add_argument(
        "--pool", action="store_true", help="Approve the funding pool instead of the router"
    )

    activate = sub.add_parser("activate", parents=[wallet_opts], help="Open a hedge position")
    activate.add_argument("amount", help="Collateral in USDC")
    activate.add_argument("currency", help="Target currency (BRL, MXN, EUR)")
    activate.add_argument("level", help="Protection level (low, medium, high or 0-2)")

    reduce = sub.add_parser("reduce", parents=[wallet_opts], help="Repay position debt")
    reduce.add_argument("amount", help="Amount to repay in USDC")

    close = sub.add_parser("close", parents=[wallet_opts], help="Close a zero-debt position")
    close.add_argument(
        "--accept-forfeit",
        action="store_true",
        help="Close even if a protection payout would be forfeited",
    )

    sub.add_parser("settle", parents=[wallet_opts], help="Settle and collect the payout")

    lp = sub.add_parser("lp-deposit", parents=[wallet_opts], help="Deposit into the funding pool")
    lp.add_argument("amount", help="Amount in USDC")

    sub.add_parser(
        "publish-rates", parents=[wallet_opts], help="Push external rates to the price oracle"
    )

    return parser


def confirm(prompt: str, assume_yes: bool, ask: Callable[[str], str] = input) -> None:
    """Ask for a yes/no answer; anything but yes raises ``UserCancelled``."""
    if assume_yes:
        return
    answer = ask(f"{prompt} [y/N] ").strip().lower()
    if answer not in ("y", "yes"):
        raise UserCancelled("Cancelled at confirmation prompt")


def _describe(args: argparse.Namespace, config: AppConfig) -> str:
    if args.command == "approve":
        target = "funding pool" if args.pool else "router"
        amount = args.amount or f"{config.transactions.default_approval:,.0f}"
        return f"Approve {target} to spend {amount} USDC?"
    if args.command == "activate":
        level = ProtectionLevel.parse(args.level)
        currency = Currency(args.currency.upper())
        costs = preview_activation(
            float(args.amount),
            level,
            config.costs.borrow_apr_percent,
            config.costs.swap_fee_percent,
        )
        return (
            f"Activate {level.label} protection on {args.amount} USDC against "
            f"{currency.value} ({currency.display_name})? Borrow ${costs.borrow_amount:,.2f}, "
            f"swap fee ${costs.swap_fee:,.2f}, "
            f"interest ≈ ${costs.interest.monthly:,.2f}/month"
        )
    if args.command == "reduce":
        return f"Repay {args.amount} USDC of position debt?"
    if args.command == "close":
        return "Close position?"
    if args.command == "settle":
        return "Settle position and collect any payout?"
    return f"Deposit {args.amount} USDC into the funding pool?"


def _print_result(result: TxResult, explorer_url: str = "") -> int:
    print(f"{result.action}: {result.status.value}")
    if result.message:
        print(result.message)
    if result.tx_hash:
        print(f"Transaction: {result.tx_hash}")
        if explorer_url:
            print(f"Explorer: {explorer_url.rstrip('/')}/tx/{result.tx_hash}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    if result.next_step:
        print(f"Next step: {result.next_step}")
    return 0 if result.status is TxStatus.CONFIRMED else 1


def _signed_ledger(config: AppConfig, wallet_label: str | None) -> tuple[EvmLedger, str]:
    wallet = config.wallet(wallet_label)
    signer = select_signer(config.signers, wallet.signer, wallet.address)
    return EvmLedger(config.chain, signer), wallet.address


async def _write(args: argparse.Namespace, config: AppConfig) -> int:
    confirm(_describe(args, config), args.yes)

    ledger, user = _signed_ledger(config, args.wallet)
    reads = PositionService(ledger, config.contracts, config.costs)
    rate_source = ExternalRateSource(config.rate_source)
    resync = OracleResync(rate_source, ledger, reads.fetch_oracle_quote, config.transactions)
    tx = TransactionManager(ledger, reads, user, config.transactions, resync=resync)

    if args.command == "approve":
        spender = await reads.funding_pool_address() if args.pool else None
        if args.pool and spender is None:
            raise ConfigurationError("Funding pool address not configured")
        result = await tx.approve(args.amount, spender)
    elif args.command == "activate":
        result = await tx.activate(args.amount, args.currency, args.level)
    elif args.command == "reduce":
        result = await tx.reduce(args.amount)
    elif args.command == "close":
        result = await tx.close(acknowledge_forfeit=args.accept_forfeit)
    elif args.command == "settle":
        result = await tx.settle()
    else:
        result = await tx.lp_deposit(args.amount)
    return _print_result(result, config.chain.explorer_url)


async def _rates(args: argparse.Namespace, config: AppConfig) -> int:
    rate_source = ExternalRateSource(config.rate_source)
    reads = PositionService(EvmLedger(config.chain), config.contracts, config.costs)
    rates = await rate_source.fetch_rates()
    for currency in config.rate_source.currencies:
        external = rates.get(currency)
        quote = await reads.fetch_oracle_quote(currency)
        ext = f"${external:.6f}" if external is not None else "unavailable"
        if quote is None:
            chain = "unavailable"
        else:
            chain = f"${quote.rate:.6f}" + (" (stale)" if quote.is_stale else "")
        print(f"{currency}: external {ext} · on-chain {chain}")
    return 0


async def _publish(args: argparse.Namespace, config: AppConfig) -> int:
    confirm("Publish current external rates to the price oracle?", args.yes)
    if not config.contracts.price_oracle:
        raise ConfigurationError("Price oracle contract address not configured")
    ledger, _ = _signed_ledger(config, args.wallet)
    publisher = PricePublisher(
        ExternalRateSource(config.rate_source),
        ledger,
        config.contracts.price_oracle,
        list(config.rate_source.currencies),
        config.transactions.receipt_timeout_seconds,
    )
    result = await publisher.publish()
    print(f"Oracle updated in block {result.block_number}: {result.tx_hash}")
    return 0


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command; returns the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    try:
        if args.command in _WRITE_COMMANDS:
            return await _write(args, config)
        if args.command == "rates":
            return await _rates(args, config)
        if args.command == "publish-rates":
            return await _publish(args, config)
    except UserCancelled:
        print("Cancelled.")
        return 1
    except ConfigurationError:
        raise
    except ValueError as e:
        print(f"Invalid input: {e}")
        return 1

    monitor = Monitor(config)
    if args.command == "check":
        await monitor.check_and_alert()
    elif args.command == "report":
        await monitor.generate_daily_report()
    elif args.command == "monitor":
        await monitor.run_continuous(args.interval)
    else:
        build_parser().print_help()
        return 1
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(args)))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)
