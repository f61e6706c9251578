from .client import ContractRef, EvmLedger
from .signers import Signer, available_signers, select_signer

__all__ = ["ContractRef", "EvmLedger", "Signer", "available_signers", "select_signer"]
