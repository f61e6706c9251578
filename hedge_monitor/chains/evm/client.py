"""EVM ledger client on web3.py with RPC endpoint fallback."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from ...config import ChainConfig
from ...errors import ConfigurationError, ConfirmationTimeout, is_user_rejection
from ...models import Receipt
from .abi import ABIS
from .signers import Signer

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class ContractRef:
    """A contract by ABI kind (``router``, ``position``, ...) and address."""

    kind: str
    address: str


class EvmLedger:
    """EVM RPC client with automatic endpoint fallback.

    Reads and submissions try each configured endpoint in turn, starting from
    the last one that worked. Reverts are deterministic and are not retried.
    """

    def __init__(self, config: ChainConfig, signer: Signer | None = None) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.signer = signer
        self.current_rpc_index = 0
        self._clients: dict[int, AsyncWeb3] = {}

    def _web3(self, index: int) -> AsyncWeb3:
        if index not in self._clients:
            self._clients[index] = AsyncWeb3(
                AsyncHTTPProvider(
                    self.endpoints[index],
                    request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout)},
                )
            )
        return self._clients[index]

    @staticmethod
    def _contract(w3: AsyncWeb3, ref: ContractRef) -> Any:
        abi = ABIS.get(ref.kind)
        if abi is None:
            raise ConfigurationError(f"Unknown contract kind '{ref.kind}'")
        if not ref.address:
            raise ConfigurationError(f"{ref.kind} contract address not configured")
        return w3.eth.contract(address=AsyncWeb3.to_checksum_address(ref.address), abi=abi)

    @staticmethod
    def _normalize_args(args: Sequence[Any]) -> list[Any]:
        return [
            AsyncWeb3.to_checksum_address(a)
            if isinstance(a, str) and _ADDRESS_RE.match(a)
            else a
            for a in args
        ]

    async def _with_fallback(
        self, label: str, op: Callable[[AsyncWeb3], Awaitable[T]]
    ) -> T:
        if not self.endpoints:
            raise ConfigurationError("No RPC endpoints configured")

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                result = await op(self._web3(rpc_index))
            except (ContractLogicError, ConfigurationError):
                raise
            except Exception as e:
                if is_user_rejection(e):
                    raise
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, label, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index
            return result

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def read(
        self, contract: ContractRef, method: str, args: Sequence[Any] = ()
    ) -> Any:
        """Call a view function and return its decoded output."""
        call_args = self._normalize_args(args)

        async def _call(w3: AsyncWeb3) -> Any:
            fn = getattr(self._contract(w3, contract).functions, method)
            return await fn(*call_args).call()

        return await self._with_fallback(f"{contract.kind}.{method}", _call)

    async def write(
        self, contract: ContractRef, method: str, args: Sequence[Any] = ()
    ) -> str:
        """Build, sign and submit a transaction; return its hash immediately."""
        signer = self.signer
        if signer is None:
            raise ConfigurationError("No signer configured for write operations")
        call_args = self._normalize_args(args)

        async def _submit(w3: AsyncWeb3) -> str:
            fn = getattr(self._contract(w3, contract).functions, method)(*call_args)
            params: dict[str, Any] = {"from": AsyncWeb3.to_checksum_address(signer.address)}
            if self.chain_id:
                params["chainId"] = self.chain_id

            if signer.account is not None:
                params["nonce"] = await w3.eth.get_transaction_count(
                    params["from"], "pending"
                )
                tx = await fn.build_transaction(params)
                signed = signer.account.sign_transaction(tx)
                tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx = await fn.build_transaction(params)
                tx_hash = await w3.eth.send_transaction(tx)
            return AsyncWeb3.to_hex(tx_hash)

        tx_hash = await self._with_fallback(f"{contract.kind}.{method}", _submit)
        logger.info("Submitted %s.%s: %s", contract.kind, method, tx_hash)
        return tx_hash

    async def await_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        """Wait for a receipt, raising ``ConfirmationTimeout`` after ``timeout``."""
        w3 = self._web3(self.current_rpc_index)
        try:
            receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeout(tx_hash, timeout) from e

        return Receipt(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            succeeded=int(receipt["status"]) == 1,
        )
