"""Chain reads for positions, thresholds, oracle state and the funding pool.

Every read swallows its own errors: a failed poll yields ``None`` ("data
unavailable") and the next poll tries again.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from .. import units
from ..chains.evm import ContractRef
from ..config import ContractsConfig, CostConfig
from ..interfaces import Ledger
from ..lifecycle import PositionLifecycle
from ..models import (
    FundingPoolSnapshot,
    LPPosition,
    OracleHealth,
    Position,
    PositionView,
    ProtectionLevel,
    ProtectionOutcome,
    RateOrigin,
    RateQuote,
    RiskThresholds,
)
from ..risk_engine import evaluate_position, oracle_health, resolve_exchange_rate

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


class PositionService:
    """Read-side view of the protocol for one chain."""

    def __init__(
        self,
        ledger: Ledger,
        contracts: ContractsConfig,
        costs: CostConfig | None = None,
    ) -> None:
        self._ledger = ledger
        self._contracts = contracts
        self._costs = costs or CostConfig()
        self._router = ContractRef("router", contracts.router)
        self._oracle = ContractRef("price_oracle", contracts.price_oracle)
        self._stablecoin = ContractRef("erc20", contracts.stablecoin)
        self._funding_pool_address = contracts.funding_pool

    @property
    def router(self) -> ContractRef:
        return self._router

    @property
    def stablecoin_address(self) -> str:
        return self._stablecoin.address

    async def _read(
        self, contract: ContractRef, method: str, args: Sequence[Any] = ()
    ) -> Any:
        try:
            return await self._ledger.read(contract, method, args)
        except Exception as e:
            logger.warning("Read %s.%s failed: %s", contract.kind, method, e)
            return None

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def has_position(self, user: str) -> bool | None:
        result = await self._read(self._router, "hasPosition", [user])
        return None if result is None else bool(result)

    async def position_address(self, user: str) -> str | None:
        address = await self._read(self._router, "getPosition", [user])
        if not address or str(address).lower() == ZERO_ADDRESS:
            return None
        return str(address)

    async def fetch_position(self, user: str) -> Position | None:
        """Read the user's position, or None if there is none (or reads failed)."""
        if not await self.has_position(user):
            return None
        address = await self.position_address(user)
        if address is None:
            return None

        ref = ContractRef("position", address)
        details, debt_details, currency, entry_rate, created_at = await asyncio.gather(
            self._read(ref, "getPositionDetails"),
            self._read(ref, "getDebtDetails"),
            self._read(ref, "targetCurrency"),
            self._read(ref, "entryRate"),
            self._read(ref, "createdAt"),
        )
        if details is None:
            return None

        owner, collateral, debt, health_factor, safety_buffer, level, is_active = details
        if debt_details is not None:
            principal, interest = int(debt_details[0]), int(debt_details[1])
        else:
            # Without the breakdown all debt is treated as principal.
            principal, interest = int(debt), 0

        try:
            protection_level = ProtectionLevel(int(level))
        except ValueError:
            logger.warning("Position %s reports unknown level %s", address, level)
            return None

        return Position(
            owner=str(owner),
            address=address,
            collateral=int(collateral),
            principal_debt=principal,
            accrued_interest=interest,
            health_factor_raw=int(health_factor),
            safety_buffer_raw=int(safety_buffer),
            protection_level=protection_level,
            is_active=bool(is_active),
            target_currency=str(currency or ""),
            entry_rate=int(entry_rate or 0),
            created_at=int(created_at or 0),
        )

    async def fetch_thresholds(self, position_address: str) -> RiskThresholds | None:
        ref = ContractRef("position", position_address)
        raw = await asyncio.gather(
            self._read(ref, "LIQUIDATION_THRESHOLD"),
            self._read(ref, "WARNING_THRESHOLD"),
            self._read(ref, "STRONG_WARNING_THRESHOLD"),
        )
        if any(value is None for value in raw):
            return None
        try:
            return RiskThresholds.from_raw(*(int(v) for v in raw))
        except ValueError as e:
            logger.warning("Position %s reports inconsistent thresholds: %s", position_address, e)
            return None

    async def fetch_protection_outcome(self, user: str) -> ProtectionOutcome | None:
        result = await self._read(self._router, "calculateProtectionOutcome", [user])
        if result is None:
            return None
        amount, depreciation = result
        return ProtectionOutcome(
            protection_amount=units.decode_amount(int(amount)),
            depreciation_percent=units.decode_depreciation(int(depreciation)),
            is_estimate=False,
        )

    # ------------------------------------------------------------------
    # Oracle
    # ------------------------------------------------------------------

    async def fetch_oracle_quote(self, currency: str) -> RateQuote | None:
        if not self._contracts.price_oracle or not currency:
            return None
        result = await self._read(self._oracle, "getPrice", [currency])
        if result is None:
            return None
        rate, is_stale = result
        if int(rate) <= 0:
            return None
        return RateQuote(
            rate=units.decode_rate(int(rate)),
            is_stale=bool(is_stale),
            source=RateOrigin.ON_CHAIN,
        )

    async def fetch_oracle_health(
        self, position_address: str, entry_rate: float
    ) -> OracleHealth | None:
        ref = ContractRef("position", position_address)
        is_valid, safe_rate = await asyncio.gather(
            self._read(ref, "validateOracle"),
            self._read(ref, "getSafeExchangeRate"),
        )
        if is_valid is None and safe_rate is None:
            return None
        return oracle_health(
            is_valid=bool(is_valid) if is_valid is not None else True,
            entry_rate=entry_rate,
            safe_rate=units.decode_rate(int(safe_rate)) if safe_rate else None,
        )

    # ------------------------------------------------------------------
    # Stablecoin
    # ------------------------------------------------------------------

    async def fetch_balance(self, user: str) -> int | None:
        result = await self._read(self._stablecoin, "balanceOf", [user])
        return None if result is None else int(result)

    async def fetch_allowance(self, user: str, spender: str) -> int | None:
        result = await self._read(self._stablecoin, "allowance", [user, spender])
        return None if result is None else int(result)

    # ------------------------------------------------------------------
    # Funding pool
    # ------------------------------------------------------------------

    async def funding_pool_address(self) -> str | None:
        if not self._funding_pool_address:
            address = await self._read(self._router, "fundingPool")
            if address and str(address).lower() != ZERO_ADDRESS:
                self._funding_pool_address = str(address)
        return self._funding_pool_address or None

    async def fetch_pool(self) -> FundingPoolSnapshot | None:
        address = await self.funding_pool_address()
        if address is None:
            return None
        ref = ContractRef("funding_pool", address)
        names = (
            "totalFunds",
            "availableFunds",
            "totalLPCapital",
            "totalLPShares",
            "minLPDeposit",
            "lpLockPeriod",
            "lpFeeShare",
        )
        values = await asyncio.gather(*(self._read(ref, n) for n in names))
        if any(v is None for v in values):
            return None
        funds, available, capital, shares, min_deposit, lock, fee_share = (int(v) for v in values)
        return FundingPoolSnapshot(
            total_funds=units.decode_amount(funds),
            available_funds=units.decode_amount(available),
            total_lp_capital=units.decode_amount(capital),
            total_lp_shares=units.decode_lp_shares(shares),
            min_deposit=units.decode_amount(min_deposit),
            lock_period_days=units.lock_period_days(lock),
            fee_share_percent=units.decode_fee_share(fee_share),
        )

    async def fetch_lp_position(self, user: str) -> LPPosition | None:
        address = await self.funding_pool_address()
        if address is None:
            return None
        ref = ContractRef("funding_pool", address)
        result, lock = await asyncio.gather(
            self._read(ref, "getLPPosition", [user]),
            self._read(ref, "lpLockPeriod"),
        )
        if result is None:
            return None
        shares, deposit_time, current_value, can_withdraw = result
        deposit_time = int(deposit_time)
        unlock = deposit_time + int(lock) if deposit_time > 0 and lock is not None else None
        return LPPosition(
            shares=units.decode_lp_shares(int(shares)),
            deposit_time=deposit_time,
            current_value=units.decode_amount(int(current_value)),
            can_withdraw=bool(can_withdraw),
            unlock_time=unlock,
        )

    # ------------------------------------------------------------------
    # Aggregate
    # ------------------------------------------------------------------

    async def snapshot(
        self,
        user: str,
        external_rates: dict[str, float] | None = None,
        thresholds: RiskThresholds | None = None,
        lifecycle: PositionLifecycle | None = None,
    ) -> PositionView | None:
        """Read everything for ``user`` and evaluate it; None if no position.

        ``external_rates`` maps currency codes to USD per unit; the entry for
        the position's target currency backs up a stale or missing oracle.
        An inactive position, or one ``lifecycle`` has seen closed, is never
        evaluated.
        """
        position = await self.fetch_position(user)
        if lifecycle is not None:
            position = lifecycle.observe(position)
        if position is None or not position.is_active:
            return None

        if thresholds is None:
            thresholds = await self.fetch_thresholds(position.address)

        quote, health, outcome = await asyncio.gather(
            self.fetch_oracle_quote(position.target_currency),
            self.fetch_oracle_health(position.address, position.entry_rate_value),
            self.fetch_protection_outcome(user),
        )

        external_rate = (external_rates or {}).get(position.target_currency)
        external = (
            RateQuote(rate=external_rate, is_stale=False, source=RateOrigin.EXTERNAL)
            if external_rate
            else None
        )
        rate = resolve_exchange_rate(quote, external)
        if not rate.available and health is not None and health.safe_rate:
            rate = RateQuote(
                rate=health.safe_rate,
                is_stale=health.fallback_pricing,
                source=(
                    RateOrigin.ENTRY_FALLBACK if health.fallback_pricing else RateOrigin.ON_CHAIN
                ),
            )

        return evaluate_position(
            position,
            thresholds,
            rate,
            oracle=health,
            contract_outcome=outcome,
            annual_rate_percent=self._costs.borrow_apr_percent,
            swap_fee_percent=self._costs.swap_fee_percent,
        )
