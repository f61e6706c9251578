"""Monitoring orchestration: poll every wallet's position and alert on risk."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from ..chains.evm import EvmLedger
from ..config import AppConfig, WalletConfig
from ..interfaces import Ledger, Notifier, RateSource
from ..lifecycle import PositionLifecycle
from ..models import (
    HealthFactorStatus,
    PositionView,
    RiskThresholds,
    RiskTier,
)
from ..notifications import TelegramNotifier
from ..oracles import ExternalRateSource
from ..risk_engine import format_health_factor, format_rate, format_ratio
from .position_service import PositionService
from .scheduler import Scheduler, SessionContext

logger = logging.getLogger(__name__)

_TIER_ICONS = {
    RiskTier.LIQUIDATION: "🚨",
    RiskTier.STRONG_WARNING: "🔴",
    RiskTier.WARNING: "⚠️",
    RiskTier.SAFE: "✅",
}


class Monitor:
    """Orchestrates position monitoring and alerting across wallets."""

    def __init__(
        self,
        config: AppConfig,
        ledger: Ledger | None = None,
        rate_source: RateSource | None = None,
        notifiers: list[Notifier] | None = None,
    ) -> None:
        self._config = config
        self._ledger = ledger or EvmLedger(config.chain)
        self._rate_source = rate_source or ExternalRateSource(config.rate_source)
        self._reads = PositionService(self._ledger, config.contracts, config.costs)

        if notifiers is None:
            notifiers = []
            if config.notifications.telegram.enabled:
                notifiers.append(TelegramNotifier(config.notifications.telegram))
        self._notifiers = notifiers

        self._rates: dict[str, float] = {}
        self._thresholds: dict[str, RiskThresholds] = {}
        self._sessions = {w.label: SessionContext(w.address) for w in config.wallets}
        self._lifecycles = {w.label: PositionLifecycle() for w in config.wallets}
        self._last_alert_key: dict[str, tuple | None] = {}
        self._stop = asyncio.Event()

    @property
    def reads(self) -> PositionService:
        return self._reads

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _status(view: PositionView) -> str:
        if view.risk_tier is not None:
            return f"{_TIER_ICONS[view.risk_tier]} {view.risk_tier.label}"
        if view.health.status is HealthFactorStatus.NOT_APPLICABLE:
            return "✅ No debt"
        if view.health.status is HealthFactorStatus.INVALID:
            return "❓ Health factor invalid"
        return "❓ Tier unknown"

    def format_view(self, view: PositionView) -> str:
        """Plain-text body describing one position."""
        p = view.position
        lines = [
            self._status(view),
            "",
            f"Collateral: ${p.collateral_amount:,.2f}",
            f"Debt: ${p.total_debt_amount:,.2f} "
            f"(principal ${p.principal_debt_amount:,.2f} + interest ${p.accrued_interest_amount:,.2f})",
            f"Health Factor: {format_health_factor(view.health)}",
            f"Collateralization: {format_ratio(view.collateralization_ratio)}",
            f"Safety Buffer: {view.safety_buffer_percent:.2f}%",
            f"Level: {p.protection_level.label} ({p.protection_level.ltv_percent:.0f}% LTV)",
            f"{p.target_currency or '?'} rate: {format_rate(view.rate)}",
        ]
        opened = p.created_at_datetime
        if opened is not None:
            lines.append(f"Opened: {opened:%Y-%m-%d %H:%M} UTC")
        if view.outcome is not None:
            kind = "estimated" if view.outcome.is_estimate else "contract"
            lines.append(
                f"Protection payout ({kind}): ${view.outcome.protection_amount:,.2f} "
                f"at {view.outcome.depreciation_percent:.2f}% depreciation"
            )
        if view.position.principal_debt > 0:
            interest = view.costs.interest
            lines.append(
                f"Interest ≈ ${interest.daily:,.2f}/day · ${interest.monthly:,.2f}/month "
                f"({interest.annual_rate_percent:.2f}% APR)"
            )
        if view.can_close:
            lines.append("No principal debt: the position can be closed or settled.")
        for warning in view.warnings:
            lines.append(f"⚠️ {warning}")
        return "\n".join(lines)

    def _build_log_message(self, view: PositionView | None, wallet: WalletConfig) -> str:
        body = self.format_view(view) if view is not None else "No active position found."
        return f"📊 {wallet.label}\n\n{body}\n\n{self._now_str()} UTC"

    def _alert_reasons(self, view: PositionView) -> list[str]:
        reasons: list[str] = []
        tier = view.risk_tier
        if tier in (RiskTier.LIQUIDATION, RiskTier.STRONG_WARNING):
            reasons.append(f"{tier.label}: {tier.message}")
        elif tier is RiskTier.WARNING and self._config.monitor.alert_on_warning:
            reasons.append(f"{tier.label}: {tier.message}")
        if view.health.status is HealthFactorStatus.INVALID:
            reasons.append("Contract reports an invalid health factor")
        if view.oracle is not None:
            if not view.oracle.is_valid:
                reasons.append("Oracle price is stale or invalid")
            if view.oracle.fallback_pricing:
                reasons.append("Position is priced at the fallback rate")
        return reasons

    @staticmethod
    def _alert_key(view: PositionView) -> tuple:
        oracle = view.oracle
        return (
            view.position.address.lower(),
            view.risk_tier,
            view.health.status,
            oracle.is_valid if oracle else True,
            oracle.fallback_pricing if oracle else False,
        )

    def _build_alert(self, view: PositionView, wallet: WalletConfig, reasons: list[str]) -> str:
        reason_lines = "\n".join(f"• {r}" for r in reasons)
        return (
            f"{wallet.label}\n"
            f"\n"
            f"{reason_lines}\n"
            f"\n"
            f"{self.format_view(view)}\n"
            f"\n"
            f"Wallet: {self._format_wallet(wallet.address)}\n"
            f"{self._now_str()} UTC"
        )

    @staticmethod
    def _alert_subject(view: PositionView) -> str:
        if view.risk_tier in (RiskTier.LIQUIDATION, RiskTier.STRONG_WARNING):
            return f"🚨 CRITICAL: {view.risk_tier.label}"
        if view.risk_tier is RiskTier.WARNING:
            return "⚠️ WARNING: Position at risk"
        return "⚠️ Position data needs attention"

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    async def _alert_if_needed(
        self, view: PositionView, wallet: WalletConfig, only_on_change: bool
    ) -> bool:
        reasons = self._alert_reasons(view)
        key = self._alert_key(view) if reasons else None
        previous = self._last_alert_key.get(wallet.label)
        self._last_alert_key[wallet.label] = key
        if not reasons:
            return False
        if only_on_change and key == previous:
            return False
        await self._send_alert(
            self._build_alert(view, wallet, reasons), subject=self._alert_subject(view)
        )
        return True

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def refresh_rates(self) -> dict[str, float]:
        rates = await self._rate_source.fetch_rates()
        if rates:
            self._rates.update(rates)
        return dict(self._rates)

    async def refresh_thresholds(self) -> None:
        """Re-read the thresholds of every position seen so far."""
        for address in list(self._thresholds):
            thresholds = await self._reads.fetch_thresholds(address)
            if thresholds is not None:
                self._thresholds[address] = thresholds

    async def check_wallet(self, wallet: WalletConfig) -> PositionView | None:
        """One poll for one wallet; stale responses are dropped."""
        session = self._sessions.setdefault(wallet.label, SessionContext(wallet.address))
        token = session.token()
        cached = (
            self._thresholds.get(session.position_address)
            if session.position_address
            else None
        )

        lifecycle = self._lifecycles.setdefault(wallet.label, PositionLifecycle())
        view = await self._reads.snapshot(
            wallet.address, self._rates, thresholds=cached, lifecycle=lifecycle
        )

        if not session.is_current(token):
            logger.debug("Discarding stale poll result for %s", wallet.label)
            return None

        address = view.position.address if view is not None else None
        session.set_position(address)
        if view is not None and address not in self._thresholds:
            thresholds = await self._reads.fetch_thresholds(address)
            if thresholds is not None:
                self._thresholds[address] = thresholds
        return view

    async def check_and_alert(self) -> None:
        """Check every wallet once and send alerts where needed."""
        await self.refresh_rates()

        for wallet in self._config.wallets:
            view = await self.check_wallet(wallet)
            if view is None:
                logger.info("%s: no active position", wallet.label)
            else:
                logger.info(
                    "Position — %s · Collateral: $%.2f  Debt: $%.2f  HF: %s  Tier: %s",
                    wallet.label,
                    view.position.collateral_amount,
                    view.position.total_debt_amount,
                    format_health_factor(view.health),
                    view.risk_tier.label if view.risk_tier is not None else "-",
                )
            await self._send_log(self._build_log_message(view, wallet), silent=False)
            if view is not None:
                await self._alert_if_needed(view, wallet, only_on_change=False)

    async def generate_daily_report(self) -> None:
        """Send one report covering every wallet and the funding pool."""
        await self.refresh_rates()

        sections: list[str] = []
        for wallet in self._config.wallets:
            view = await self.check_wallet(wallet)
            if view is not None:
                sections.append(f"━━ {wallet.label} ━━\n\n{self.format_view(view)}")
            lp = await self._reads.fetch_lp_position(wallet.address)
            if lp is not None and lp.shares > 0:
                status = "unlocked" if lp.can_withdraw else "locked"
                sections.append(
                    f"━━ {wallet.label} LP ━━\n\n"
                    f"Shares: {lp.shares:,.4f} · value ${lp.current_value:,.2f} ({status})"
                )

        body = "\n\n".join(sections) if sections else "No active positions found."

        pool = await self._reads.fetch_pool()
        if pool is not None:
            body += (
                f"\n\n━━ Funding Pool ━━\n\n"
                f"Available: ${pool.available_funds:,.2f} of ${pool.total_funds:,.2f}\n"
                f"LP capital: ${pool.total_lp_capital:,.2f} · "
                f"fee share {pool.fee_share_percent:.0f}%"
            )

        report = f"📋 Daily FX Hedge Report\n\n{body}\n\n{self._now_str()} UTC"
        await self._send_alert(report)
        logger.info("Daily report sent")

    async def _poll_positions(self) -> None:
        for wallet in self._config.wallets:
            view = await self.check_wallet(wallet)
            if view is not None:
                await self._alert_if_needed(view, wallet, only_on_change=True)

    def stop(self) -> None:
        self._stop.set()

    async def run_continuous(
        self, position_poll_seconds: float | None = None, duration: float | None = None
    ) -> None:
        """Poll until stopped (or for ``duration`` seconds).

        Positions are polled fast, thresholds and rates slowly; alerts fire
        only when a wallet's alert state changes.
        """
        cfg = self._config.monitor
        interval = position_poll_seconds or cfg.position_poll_seconds
        logger.info("Starting continuous monitoring (positions every %ss)", interval)

        await self.refresh_rates()
        scheduler = Scheduler()
        scheduler.every("rates", cfg.rate_poll_seconds, self.refresh_rates)
        scheduler.every("market", cfg.market_poll_seconds, self.refresh_thresholds)
        scheduler.every("positions", interval, self._poll_positions)

        self._stop.clear()
        async with scheduler:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=duration)
            except asyncio.TimeoutError:
                pass
        logger.info("Monitoring stopped")
