"""Mutating actions: submit, await the receipt, classify the outcome.

Each action returns a ``TxResult`` instead of raising. A receipt that does
not arrive within the bound is reported as submitted-but-unconfirmed, never
as a failure: the transaction may still land.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Sequence

from .. import units
from ..chains.evm import ContractRef
from ..config import TransactionConfig
from ..errors import (
    ActionBlocked,
    ConfigurationError,
    ConfirmationTimeout,
    StaleOrInvalidOracle,
    WriteErrorKind,
    classify_write_error,
    describe_revert,
    revert_reason,
)
from ..interfaces import Ledger
from ..lifecycle import PositionLifecycle, validate_repay_amount
from ..models import Currency, Position, ProtectionLevel
from ..risk_engine import check_oracle
from ..oracles.resync import OracleResync
from .position_service import PositionService
from .scheduler import InFlightGuard

logger = logging.getLogger(__name__)


class TxStatus(str, Enum):
    CONFIRMED = "confirmed"
    SUBMITTED_UNCONFIRMED = "submitted_unconfirmed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REJECTED = "rejected"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class TxResult:
    action: str
    status: TxStatus
    tx_hash: str | None = None
    message: str = ""
    warnings: tuple[str, ...] = ()
    next_step: str = ""

    @property
    def ok(self) -> bool:
        return self.status is TxStatus.CONFIRMED


_STATUS_BY_KIND = {
    WriteErrorKind.USER_CANCELLED: TxStatus.CANCELLED,
    WriteErrorKind.CONFIGURATION: TxStatus.FAILED,
    WriteErrorKind.TIMEOUT: TxStatus.SUBMITTED_UNCONFIRMED,
    WriteErrorKind.CONTRACT_REJECTED: TxStatus.REJECTED,
    WriteErrorKind.BLOCKED: TxStatus.BLOCKED,
    WriteErrorKind.PRECISION: TxStatus.BLOCKED,
    WriteErrorKind.FAILED: TxStatus.FAILED,
}


@dataclass
class _Attempt:
    action: str
    tx_hash: str | None = None
    warnings: list[str] = field(default_factory=list)


class TransactionManager:
    """Write-side operations for one wallet."""

    def __init__(
        self,
        ledger: Ledger,
        reads: PositionService,
        user: str,
        config: TransactionConfig,
        resync: OracleResync | None = None,
        lifecycle: PositionLifecycle | None = None,
        guard: InFlightGuard | None = None,
    ) -> None:
        self._ledger = ledger
        self._reads = reads
        self.user = user
        self._config = config
        self._resync = resync
        self.lifecycle = lifecycle or PositionLifecycle()
        self._guard = guard or InFlightGuard()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _submit(
        self,
        attempt: _Attempt,
        contract: ContractRef,
        method: str,
        args: Sequence[Any] = (),
    ) -> TxResult:
        attempt.tx_hash = await self._ledger.write(contract, method, args)
        receipt = await self._ledger.await_receipt(
            attempt.tx_hash, self._config.receipt_timeout_seconds
        )
        if not receipt.succeeded:
            logger.warning("%s transaction %s reverted", attempt.action, attempt.tx_hash)
            return TxResult(
                attempt.action,
                TxStatus.REJECTED,
                attempt.tx_hash,
                f"Transaction {attempt.tx_hash} reverted on-chain.",
                tuple(attempt.warnings),
            )
        logger.info(
            "%s confirmed in block %d: %s",
            attempt.action,
            receipt.block_number,
            attempt.tx_hash,
        )
        return TxResult(
            attempt.action,
            TxStatus.CONFIRMED,
            attempt.tx_hash,
            f"{attempt.action.capitalize()} confirmed in block {receipt.block_number}.",
            tuple(attempt.warnings),
        )

    def _failure(self, attempt: _Attempt, exc: Exception) -> TxResult:
        if isinstance(exc, ValueError) and not isinstance(exc, ConfigurationError):
            kind = WriteErrorKind.BLOCKED
        else:
            kind = classify_write_error(exc)
        status = _STATUS_BY_KIND[kind]

        if kind is WriteErrorKind.CONTRACT_REJECTED:
            message = describe_revert(getattr(exc, "reason", "") or revert_reason(exc))
        elif kind is WriteErrorKind.USER_CANCELLED:
            message = "Transaction cancelled by user."
        elif kind is WriteErrorKind.TIMEOUT and not isinstance(exc, ConfirmationTimeout):
            message = (
                f"Transaction {attempt.tx_hash} submitted but not confirmed in time."
            )
        else:
            message = str(exc)

        if status is TxStatus.CANCELLED:
            logger.info("%s cancelled by user", attempt.action)
        elif status in (TxStatus.BLOCKED, TxStatus.SUBMITTED_UNCONFIRMED):
            logger.warning("%s: %s", attempt.action, message)
        else:
            logger.error("%s failed (%s): %s", attempt.action, kind.value, exc)

        return TxResult(
            attempt.action,
            status,
            attempt.tx_hash,
            message,
            tuple(attempt.warnings),
            getattr(exc, "next_step", ""),
        )

    async def _active_position(self) -> Position:
        position = self.lifecycle.observe(await self._reads.fetch_position(self.user))
        if position is None:
            raise ActionBlocked("No active position found for this wallet.")
        return position

    async def _note_oracle(self, attempt: _Attempt, position: Position) -> None:
        health = await self._reads.fetch_oracle_health(
            position.address, position.entry_rate_value
        )
        try:
            check_oracle(health)
        except StaleOrInvalidOracle as e:
            logger.warning("%s: %s", attempt.action, e)
            attempt.warnings.append(str(e))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def approve(
        self, amount: str | float | Decimal | None = None, spender: str | None = None
    ) -> TxResult:
        """Approve ``spender`` (the router by default) to pull stablecoin."""
        attempt = _Attempt("approve")
        try:
            spender = spender or self._reads.router.address
            raw = units.encode_amount(
                amount if amount is not None else self._config.default_approval
            )
            if raw <= 0:
                raise ValueError("Please enter a valid amount")
            token = ContractRef("erc20", self._reads.stablecoin_address)
            with self._guard.hold(self.user, "approve"):
                return await self._submit(attempt, token, "approve", [spender, raw])
        except Exception as e:
            return self._failure(attempt, e)

    async def activate(
        self,
        collateral: str | float | Decimal,
        currency: str,
        level: str | int | ProtectionLevel,
    ) -> TxResult:
        """Open a position; resyncs the oracle first on a best-effort basis."""
        attempt = _Attempt("activate")
        try:
            raw = units.encode_amount(collateral)
            if raw <= 0:
                raise ValueError("Please enter a valid amount")
            try:
                target = Currency(currency.upper())
            except ValueError:
                raise ValueError(f"Unsupported currency '{currency}'") from None
            protection_level = ProtectionLevel.parse(level)

            if await self._reads.has_position(self.user):
                raise ActionBlocked(
                    "This wallet already has an active position. "
                    "Close it before activating a new one."
                )

            router = self._reads.router
            allowance = await self._reads.fetch_allowance(self.user, router.address)
            if allowance is not None and allowance < raw:
                raise ActionBlocked(
                    f"Stablecoin allowance ({units.decode_amount(allowance):,.2f} USDC) "
                    f"is below {units.decode_amount(raw):,.2f} USDC. Approve first.",
                    next_step="approve",
                )
            balance = await self._reads.fetch_balance(self.user)
            if balance is not None and balance < raw:
                raise ActionBlocked(
                    f"Insufficient balance: {units.decode_amount(balance):,.2f} USDC available."
                )

            if self._resync is not None:
                resync = await self._resync.ensure_fresh(target.value)
                if resync.warning:
                    attempt.warnings.append(resync.warning)

            with self._guard.hold(self.user, "activate"):
                return await self._submit(
                    attempt,
                    router,
                    "activateProtection",
                    [raw, target.value, int(protection_level)],
                )
        except Exception as e:
            return self._failure(attempt, e)

    async def reduce(self, amount: str | float | Decimal) -> TxResult:
        """Repay debt; amounts within dust of the full debt repay it exactly."""
        attempt = _Attempt("reduce")
        try:
            position = await self._active_position()
            await self._note_oracle(attempt, position)
            repay_raw = validate_repay_amount(
                amount, position.total_debt, self._config.repay_tolerance
            )
            with self._guard.hold(position.address, "reduce"):
                self.lifecycle.begin_reduce()
                try:
                    return await self._submit(
                        attempt, self._reads.router, "reduceProtection", [repay_raw]
                    )
                finally:
                    self.lifecycle.end_reduce()
        except Exception as e:
            return self._failure(attempt, e)

    async def close(self, acknowledge_forfeit: bool = False) -> TxResult:
        """Close a zero-debt position.

        If the position is owed a protection payout, closing forfeits it;
        that requires ``acknowledge_forfeit`` (settling collects it).
        """
        attempt = _Attempt("close")
        try:
            position = await self._active_position()
            await self._note_oracle(attempt, position)
            outcome = await self._reads.fetch_protection_outcome(self.user)
            if outcome is not None and outcome.protection_amount > 0:
                if not acknowledge_forfeit:
                    raise ActionBlocked(
                        f"Closing forfeits a protection payout of "
                        f"{outcome.protection_amount:,.2f} USDC. Settle instead, "
                        f"or acknowledge the forfeit.",
                        next_step="settle",
                    )
                attempt.warnings.append(
                    f"Forfeited protection payout of {outcome.protection_amount:,.2f} USDC"
                )
            return await self._finish(attempt, position, "closeProtection")
        except Exception as e:
            return self._failure(attempt, e)

    async def settle(self) -> TxResult:
        """Settle a zero-debt position, collecting any protection payout."""
        attempt = _Attempt("settle")
        try:
            position = await self._active_position()
            await self._note_oracle(attempt, position)
            return await self._finish(attempt, position, "settleProtection")
        except Exception as e:
            return self._failure(attempt, e)

    async def _finish(self, attempt: _Attempt, position: Position, method: str) -> TxResult:
        with self._guard.hold(position.address, attempt.action):
            if method == "settleProtection":
                self.lifecycle.begin_settle(position)
            else:
                self.lifecycle.begin_close(position)
            try:
                result = await self._submit(attempt, self._reads.router, method)
            except BaseException:
                self.lifecycle.abort()
                raise
            if result.ok:
                self.lifecycle.confirm_closed(position.address)
            else:
                self.lifecycle.abort()
            return result

    async def lp_deposit(self, amount: str | float | Decimal) -> TxResult:
        """Deposit stablecoin into the funding pool as a liquidity provider."""
        attempt = _Attempt("lp_deposit")
        try:
            raw = units.encode_amount(amount)
            if raw <= 0:
                raise ValueError("Please enter a valid amount")
            pool_address = await self._reads.funding_pool_address()
            if pool_address is None:
                raise ConfigurationError("Funding pool address not configured")

            pool = await self._reads.fetch_pool()
            value = units.decode_amount(raw)
            if pool is not None and value < pool.min_deposit:
                raise ActionBlocked(f"Minimum deposit is {pool.min_deposit:,.2f} USDC")
            balance = await self._reads.fetch_balance(self.user)
            if balance is not None and balance < raw:
                raise ActionBlocked(
                    f"Insufficient balance: {units.decode_amount(balance):,.2f} USDC available."
                )
            allowance = await self._reads.fetch_allowance(self.user, pool_address)
            if allowance is not None and allowance < raw:
                raise ActionBlocked(
                    "Funding pool allowance is too low. Approve the pool first.",
                    next_step="approve",
                )

            with self._guard.hold(self.user, "lp_deposit"):
                return await self._submit(
                    attempt, ContractRef("funding_pool", pool_address), "lpDeposit", [raw]
                )
        except Exception as e:
            return self._failure(attempt, e)
