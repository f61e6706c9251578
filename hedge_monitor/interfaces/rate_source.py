"""Rate source protocol — external FX price feed."""
from typing import Protocol


class RateSource(Protocol):
    """Abstract interface for fetching USD-per-unit exchange rates."""

    async def fetch_rates(self, currencies: list[str] | None = None) -> dict[str, float]: ...

    async def request_resync(self) -> str | None: ...
