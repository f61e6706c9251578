"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonitorConfig:
    position_poll_seconds: float = 3.0
    market_poll_seconds: float = 15.0
    rate_poll_seconds: float = 30.0
    alert_on_warning: bool = True


@dataclass(frozen=True)
class WalletConfig:
    label: str = ""
    address: str = ""
    signer: str = ""


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    chain_id: int = 0
    explorer_url: str = ""


@dataclass(frozen=True)
class ContractsConfig:
    router: str = ""
    price_oracle: str = ""
    stablecoin: str = ""
    funding_pool: str = ""


@dataclass(frozen=True)
class SignerConfig:
    name: str = ""
    kind: str = "local"
    private_key: str = ""
    address: str = ""


@dataclass(frozen=True)
class RateSourceConfig:
    url: str = "https://open.er-api.com/v6/latest/USD"
    currencies: tuple[str, ...] = ("BRL", "MXN", "EUR")
    resync_url: str = ""
    resync_api_key: str = ""


@dataclass(frozen=True)
class TransactionConfig:
    receipt_timeout_seconds: float = 30.0
    resync_divergence: float = 0.001
    resync_poll_attempts: int = 5
    resync_poll_interval_seconds: float = 2.0
    repay_tolerance: float = 0.000001
    default_approval: float = 1_000_000.0


@dataclass(frozen=True)
class CostConfig:
    borrow_apr_percent: float = 3.5
    swap_fee_percent: float = 0.1


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    wallets: tuple[WalletConfig, ...] = ()
    chain: ChainConfig = field(default_factory=ChainConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)
    signers: tuple[SignerConfig, ...] = ()
    rate_source: RateSourceConfig = field(default_factory=RateSourceConfig)
    transactions: TransactionConfig = field(default_factory=TransactionConfig)
    costs: CostConfig = field(default_factory=CostConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    def wallet(self, label: str | None = None) -> WalletConfig:
        """Return the wallet with ``label``, or the first one."""
        if label is None:
            return self.wallets[0]
        for wallet in self.wallets:
            if wallet.label == label:
                return wallet
        raise ConfigurationError(f"Unknown wallet '{label}'")


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _build_monitor(raw: dict[str, Any]) -> MonitorConfig:
    return MonitorConfig(
        position_poll_seconds=float(raw.get("position_poll_seconds", 3.0)),
        market_poll_seconds=float(raw.get("market_poll_seconds", 15.0)),
        rate_poll_seconds=float(raw.get("rate_poll_seconds", 30.0)),
        alert_on_warning=_as_bool(raw.get("alert_on_warning", True)),
    )


def _build_wallets(raw: list[dict[str, Any]]) -> tuple[WalletConfig, ...]:
    wallets: list[WalletConfig] = []
    for w in raw:
        wallets.append(
            WalletConfig(
                label=w.get("label", ""),
                address=w.get("address", ""),
                signer=w.get("signer", ""),
            )
        )
    return tuple(wallets)


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=tuple(e for e in raw.get("rpc_endpoints", []) if e),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        chain_id=int(raw.get("chain_id") or 0),
        explorer_url=raw.get("explorer_url", ""),
    )


def _build_contracts(raw: dict[str, Any]) -> ContractsConfig:
    return ContractsConfig(
        router=raw.get("router", ""),
        price_oracle=raw.get("price_oracle", ""),
        stablecoin=raw.get("stablecoin", ""),
        funding_pool=raw.get("funding_pool", ""),
    )


def _build_signers(raw: list[dict[str, Any]]) -> tuple[SignerConfig, ...]:
    return tuple(
        SignerConfig(
            name=s.get("name", ""),
            kind=s.get("kind", "local"),
            private_key=s.get("private_key", ""),
            address=s.get("address", ""),
        )
        for s in raw
    )


def _build_rate_source(raw: dict[str, Any]) -> RateSourceConfig:
    return RateSourceConfig(
        url=raw.get("url", RateSourceConfig.url),
        currencies=tuple(
            c.upper() for c in raw.get("currencies", RateSourceConfig.currencies)
        ),
        resync_url=raw.get("resync_url", ""),
        resync_api_key=raw.get("resync_api_key", ""),
    )


def _build_transactions(raw: dict[str, Any]) -> TransactionConfig:
    return TransactionConfig(
        receipt_timeout_seconds=float(raw.get("receipt_timeout_seconds", 30.0)),
        resync_divergence=float(raw.get("resync_divergence", 0.001)),
        resync_poll_attempts=int(raw.get("resync_poll_attempts", 5)),
        resync_poll_interval_seconds=float(raw.get("resync_poll_interval_seconds", 2.0)),
        repay_tolerance=float(raw.get("repay_tolerance", 0.000001)),
        default_approval=float(raw.get("default_approval", 1_000_000.0)),
    )


def _build_costs(raw: dict[str, Any]) -> CostConfig:
    return CostConfig(
        borrow_apr_percent=float(raw.get("borrow_apr_percent", 3.5)),
        swap_fee_percent=float(raw.get("swap_fee_percent", 0.1)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=_as_bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        monitor=_build_monitor(raw.get("monitor") or {}),
        wallets=_build_wallets(raw.get("wallets") or []),
        chain=_build_chain(raw.get("chain") or {}),
        contracts=_build_contracts(raw.get("contracts") or {}),
        signers=_build_signers(raw.get("signers") or []),
        rate_source=_build_rate_source(raw.get("rate_source") or {}),
        transactions=_build_transactions(raw.get("transactions") or {}),
        costs=_build_costs(raw.get("costs") or {}),
        notifications=_build_notifications(raw.get("notifications") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.wallets:
        raise ConfigurationError("At least one wallet must be configured")

    if not cfg.chain.rpc_endpoints:
        raise ConfigurationError("At least one RPC endpoint must be configured")

    if not cfg.contracts.router:
        raise ConfigurationError("Router contract address not configured")

    if not cfg.rate_source.currencies:
        raise ConfigurationError("At least one rate source currency must be configured")

    signer_names = {s.name for s in cfg.signers}
    for wallet in cfg.wallets:
        if not wallet.address:
            raise ConfigurationError(f"Wallet '{wallet.label}' has no address")
        if wallet.signer and wallet.signer not in signer_names:
            raise ConfigurationError(
                f"Wallet '{wallet.label}' references unknown signer '{wallet.signer}'"
            )

    for signer in cfg.signers:
        if signer.kind not in ("local", "node"):
            raise ConfigurationError(
                f"Signer '{signer.name}' has unknown kind '{signer.kind}'"
            )
