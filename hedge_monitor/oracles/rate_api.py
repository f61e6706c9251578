"""External FX rate API client."""
import logging
import ssl

import aiohttp
import certifi

from ..config import RateSourceConfig

logger = logging.getLogger(__name__)


class ExternalRateSource:
    """Fetch USD exchange rates from an HTTP API.

    The API is expected to quote units of each currency per USD
    (``{"rates": {"BRL": 5.5}}``); rates are inverted to USD per unit, the
    convention used on-chain.
    """

    def __init__(self, config: RateSourceConfig) -> None:
        self.url = config.url
        self.currencies = list(config.currencies)
        self.resync_url = config.resync_url
        self.resync_api_key = config.resync_api_key

    async def fetch_rates(self, currencies: list[str] | None = None) -> dict[str, float]:
        """Fetch current rates; returns an empty or partial dict on failure.

        Args:
            currencies: Optional list of currencies to return. If None,
                        returns all configured currencies.
        """
        rates: dict[str, float] = {}
        wanted = currencies if currencies is not None else self.currencies
        if not wanted:
            return rates

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self.url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching exchange rates: HTTP %s", response.status
                        )
                        return rates

                    data = await response.json()
                    quoted = data.get("rates", {})

                    for currency in wanted:
                        per_usd = quoted.get(currency)
                        if not per_usd:
                            logger.warning("No rate for %s in API response", currency)
                            continue
                        rates[currency] = 1 / float(per_usd)

                    logger.info("Fetched exchange rates:")
                    for currency, rate in sorted(rates.items()):
                        logger.info("  1 %s = $%.4f", currency, rate)

        except Exception as e:
            logger.error("Error fetching exchange rates: %s", e)

        return rates

    async def request_resync(self) -> str | None:
        """Ask the price publisher endpoint to push fresh rates on-chain.

        Best effort: returns the publisher's transaction hash, or None.
        """
        if not self.resync_url:
            logger.warning("Oracle resync endpoint not configured")
            return None

        headers = {}
        if self.resync_api_key:
            headers["Authorization"] = f"Bearer {self.resync_api_key}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self.resync_url, headers=headers) as response:
                    data = await response.json()
                    if response.status != 200:
                        logger.error(
                            "Oracle resync failed: HTTP %s %s",
                            response.status,
                            data.get("error", ""),
                        )
                        return None
                    tx_hash = data.get("transactionHash")
                    logger.info("Oracle resync submitted: %s", tx_hash)
                    return tx_hash
        except Exception as e:
            logger.error("Oracle resync request failed: %s", e)
            return None
