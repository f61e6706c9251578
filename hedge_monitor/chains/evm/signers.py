"""Signer discovery and selection.

Several signers may be configured (a local key from .env, an account managed
by the RPC node). Selection is explicit and deterministic: the wallet's
named signer if it is usable, otherwise the first usable signer in config
order. Nothing here patches global state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ...config import SignerConfig
from ...errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signer:
    """A usable signer. ``account`` is set for local keys only."""

    name: str
    kind: str
    address: str
    account: LocalAccount | None = None


def _load(config: SignerConfig) -> Signer | None:
    if config.kind == "local":
        if not config.private_key:
            return None
        try:
            account = Account.from_key(config.private_key)
        except Exception as e:
            logger.warning("Signer '%s' has an unusable private key: %s", config.name, e)
            return None
        return Signer(config.name, "local", account.address, account)

    if config.kind == "node":
        if not config.address:
            return None
        return Signer(config.name, "node", config.address)

    return None


def available_signers(configs: tuple[SignerConfig, ...]) -> list[Signer]:
    """Signers whose credentials are actually present, in config order."""
    signers = [s for s in (_load(c) for c in configs) if s is not None]
    logger.debug("Available signers: %s", [s.name for s in signers])
    return signers


def select_signer(
    configs: tuple[SignerConfig, ...], preferred: str = "", wallet_address: str = ""
) -> Signer:
    """Pick one signer for a wallet.

    Raises:
        ConfigurationError: no signer is usable, or the preferred signer's
            address does not match the wallet.
    """
    signers = available_signers(configs)
    if not signers:
        raise ConfigurationError(
            "No usable signer configured (set a private key or node account)"
        )

    chosen: Signer | None = None
    if preferred:
        chosen = next((s for s in signers if s.name == preferred), None)
        if chosen is None:
            raise ConfigurationError(f"Signer '{preferred}' is configured but not usable")
    else:
        if wallet_address:
            matching = [s for s in signers if s.address.lower() == wallet_address.lower()]
            if matching:
                signers = matching
        chosen = signers[0]
        if len(signers) > 1:
            logger.warning(
                "Multiple signers available (%s); using '%s'",
                ", ".join(s.name for s in signers),
                chosen.name,
            )

    if wallet_address and chosen.address.lower() != wallet_address.lower():
        raise ConfigurationError(
            f"Signer '{chosen.name}' address {chosen.address} does not match "
            f"wallet {wallet_address}"
        )
    return chosen
