"""Push external exchange rates to the on-chain price oracle.

This is the privileged job that keeps the oracle fresh; it needs the oracle
updater key and is meant to run from cron, not from a user's wallet.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .. import units
from ..chains.evm import ContractRef
from ..interfaces import Ledger, RateSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishResult:
    tx_hash: str
    block_number: int
    rates: dict[str, float]


class PricePublisher:
    def __init__(
        self,
        rate_source: RateSource,
        ledger: Ledger,
        oracle_address: str,
        currencies: list[str],
        receipt_timeout: float,
    ) -> None:
        self._rate_source = rate_source
        self._ledger = ledger
        self._oracle = ContractRef("price_oracle", oracle_address)
        self._currencies = list(currencies)
        self._receipt_timeout = receipt_timeout

    async def publish(self) -> PublishResult:
        rates = await self._rate_source.fetch_rates(self._currencies)
        missing = [c for c in self._currencies if c not in rates]
        if missing:
            raise RuntimeError(f"Missing exchange rates for {', '.join(missing)}")

        encoded = [units.encode_rate(rates[c]) for c in self._currencies]
        logger.info("Publishing rates on-chain: %s", rates)
        tx_hash = await self._ledger.write(
            self._oracle, "updatePrices", [self._currencies, encoded]
        )
        receipt = await self._ledger.await_receipt(tx_hash, self._receipt_timeout)
        if not receipt.succeeded:
            raise RuntimeError(f"Oracle update {tx_hash} reverted")

        logger.info("Oracle prices updated in block %d", receipt.block_number)
        return PublishResult(tx_hash=tx_hash, block_number=receipt.block_number, rates=rates)
