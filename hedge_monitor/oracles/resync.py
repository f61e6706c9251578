"""Best-effort oracle resync before activation."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..config import TransactionConfig
from ..errors import ConfirmationTimeout
from ..interfaces import Ledger, RateSource
from ..models import RateQuote

logger = logging.getLogger(__name__)

RESYNC_WARNING = (
    "On-chain oracle did not converge to the market rate; the entry rate "
    "may differ from the displayed rate"
)


@dataclass(frozen=True)
class ResyncResult:
    attempted: bool
    converged: bool
    on_chain_rate: float | None = None
    external_rate: float | None = None
    warning: str = ""


def divergence(on_chain_rate: float, external_rate: float) -> float:
    """Relative difference of the on-chain rate from the market rate."""
    return abs(on_chain_rate - external_rate) / external_rate


class OracleResync:
    """Push the market rate on-chain when the oracle has drifted.

    Triggered before activation: if the oracle is stale or more than
    ``resync_divergence`` away from the external rate, request a publish,
    wait for its receipt, then poll the oracle a bounded number of times.
    Never raises; failure is reported as a warning on the result.
    """

    def __init__(
        self,
        rate_source: RateSource,
        ledger: Ledger,
        read_on_chain: Callable[[str], Awaitable[RateQuote | None]],
        config: TransactionConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._rate_source = rate_source
        self._ledger = ledger
        self._read_on_chain = read_on_chain
        self._config = config
        self._sleep = sleep

    def _in_sync(self, quote: RateQuote | None, external_rate: float) -> bool:
        return (
            quote is not None
            and quote.available
            and not quote.is_stale
            and divergence(quote.rate, external_rate) <= self._config.resync_divergence
        )

    async def ensure_fresh(self, currency: str) -> ResyncResult:
        try:
            return await self._ensure_fresh(currency)
        except Exception as e:
            logger.warning("Oracle resync for %s failed: %s", currency, e)
            return ResyncResult(attempted=True, converged=False, warning=RESYNC_WARNING)

    async def _ensure_fresh(self, currency: str) -> ResyncResult:
        external_rate = (await self._rate_source.fetch_rates([currency])).get(currency)
        quote = await self._read_on_chain(currency)
        on_chain_rate = quote.rate if quote is not None and quote.available else None

        if external_rate is None:
            logger.info("No external %s rate; skipping oracle resync", currency)
            return ResyncResult(
                attempted=False, converged=False, on_chain_rate=on_chain_rate
            )

        if self._in_sync(quote, external_rate):
            return ResyncResult(
                attempted=False,
                converged=True,
                on_chain_rate=on_chain_rate,
                external_rate=external_rate,
            )

        logger.info(
            "Oracle %s rate %s diverges from market %.6f; requesting resync",
            currency,
            on_chain_rate,
            external_rate,
        )
        tx_hash = await self._rate_source.request_resync()
        if tx_hash:
            try:
                await self._ledger.await_receipt(
                    tx_hash, self._config.receipt_timeout_seconds
                )
            except ConfirmationTimeout:
                logger.warning("Oracle resync %s not confirmed in time", tx_hash)

        for attempt in range(1, self._config.resync_poll_attempts + 1):
            await self._sleep(self._config.resync_poll_interval_seconds)
            quote = await self._read_on_chain(currency)
            if self._in_sync(quote, external_rate):
                logger.info("Oracle %s in sync after %d poll(s)", currency, attempt)
                return ResyncResult(
                    attempted=True,
                    converged=True,
                    on_chain_rate=quote.rate,
                    external_rate=external_rate,
                )

        last = quote.rate if quote is not None and quote.available else None
        logger.warning("Oracle %s did not converge after resync", currency)
        return ResyncResult(
            attempted=True,
            converged=False,
            on_chain_rate=last,
            external_rate=external_rate,
            warning=RESYNC_WARNING,
        )
