"""Protocol interfaces for the hedge monitor."""
from .ledger import ContractRef, Ledger
from .notifier import Notifier
from .rate_source import RateSource

__all__ = ["ContractRef", "Ledger", "Notifier", "RateSource"]
