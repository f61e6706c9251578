"""Exchange rate sources."""
from .publisher import PricePublisher
from .rate_api import ExternalRateSource
from .resync import OracleResync, ResyncResult

__all__ = ["ExternalRateSource", "OracleResync", "PricePublisher", "ResyncResult"]
