"""Ledger protocol — read, write and confirm calls against contracts."""
from typing import Any, Protocol, Sequence

from ..models import Receipt


class ContractRef(Protocol):
    kind: str
    address: str


class Ledger(Protocol):
    """Abstract interface for contract calls on the settlement chain."""

    async def read(
        self, contract: ContractRef, method: str, args: Sequence[Any] = ()
    ) -> Any: ...

    async def write(
        self, contract: ContractRef, method: str, args: Sequence[Any] = ()
    ) -> str: ...

    async def await_receipt(self, tx_hash: str, timeout: float) -> Receipt: ...
