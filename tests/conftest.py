"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from hedge_monitor.config import (
    AppConfig,
    ChainConfig,
    ContractsConfig,
    MonitorConfig,
    NotificationsConfig,
    RateSourceConfig,
    SignerConfig,
    TelegramConfig,
    TransactionConfig,
    WalletConfig,
)
from hedge_monitor.models import Position, ProtectionLevel, Receipt, RiskThresholds

WALLET = "0x" + "a" * 40
POSITION_ADDRESS = "0x" + "b" * 40
ROUTER = "0x" + "1" * 40
PRICE_ORACLE = "0x" + "2" * 40
STABLECOIN = "0x" + "3" * 40
FUNDING_POOL = "0x" + "4" * 40

# Hardhat's well-known first test key; never holds real funds.
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_KEY_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        chain_id=84532,
    )


@pytest.fixture()
def sample_contracts() -> ContractsConfig:
    return ContractsConfig(
        router=ROUTER,
        price_oracle=PRICE_ORACLE,
        stablecoin=STABLECOIN,
        funding_pool=FUNDING_POOL,
    )


@pytest.fixture()
def fast_tx_config() -> TransactionConfig:
    return TransactionConfig(
        receipt_timeout_seconds=1.0,
        resync_poll_attempts=3,
        resync_poll_interval_seconds=0.0,
    )


@pytest.fixture()
def sample_app_config(
    sample_chain_config: ChainConfig, sample_contracts: ContractsConfig
) -> AppConfig:
    return AppConfig(
        monitor=MonitorConfig(
            position_poll_seconds=0.01,
            market_poll_seconds=0.05,
            rate_poll_seconds=0.05,
        ),
        wallets=(WalletConfig(label="test-wallet", address=WALLET, signer="local"),),
        chain=sample_chain_config,
        contracts=sample_contracts,
        signers=(SignerConfig(name="local", kind="local", private_key=TEST_PRIVATE_KEY),),
        rate_source=RateSourceConfig(url="https://rates.example.com", currencies=("BRL",)),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_thresholds() -> RiskThresholds:
    return RiskThresholds(liquidation=1.15, warning=1.30, strong_warning=1.50)


@pytest.fixture()
def make_position() -> Callable[..., Position]:
    """Factory for positions; defaults to a healthy MEDIUM BRL hedge."""

    def _make(**overrides: Any) -> Position:
        fields: dict[str, Any] = dict(
            owner=WALLET,
            address=POSITION_ADDRESS,
            collateral=10_000_000_000,  # 10,000 USDC
            principal_debt=3_500_000_000,  # 3,500 USDC
            accrued_interest=12_500_000,  # 12.5 USDC
            health_factor_raw=16_000,  # 1.60
            safety_buffer_raw=1_250,  # 12.5%
            protection_level=ProtectionLevel.MEDIUM,
            is_active=True,
            target_currency="BRL",
            entry_rate=20_000_000,  # 0.20 USD per BRL
            created_at=1_700_000_000,
        )
        fields.update(overrides)
        return Position(**fields)

    return _make


@pytest.fixture()
def sample_position(make_position: Callable[..., Position]) -> Position:
    return make_position()


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


def _position_read_table(position: Position) -> dict[tuple[str, str], Any]:
    return {
        ("router", "hasPosition"): True,
        ("router", "getPosition"): position.address,
        ("router", "calculateProtectionOutcome"): (0, 0),
        ("position", "getPositionDetails"): (
            position.owner,
            position.collateral,
            position.principal_debt + position.accrued_interest,
            position.health_factor_raw,
            position.safety_buffer_raw,
            int(position.protection_level),
            position.is_active,
        ),
        ("position", "getDebtDetails"): (
            position.principal_debt,
            position.accrued_interest,
            position.principal_debt + position.accrued_interest,
        ),
        ("position", "targetCurrency"): position.target_currency,
        ("position", "entryRate"): position.entry_rate,
        ("position", "createdAt"): position.created_at,
        ("position", "LIQUIDATION_THRESHOLD"): 11_500,
        ("position", "WARNING_THRESHOLD"): 13_000,
        ("position", "STRONG_WARNING_THRESHOLD"): 15_000,
        ("position", "validateOracle"): True,
        ("position", "getSafeExchangeRate"): position.entry_rate,
        ("price_oracle", "getPrice"): (19_000_000, False),  # 0.19, fresh
        ("erc20", "balanceOf"): 50_000_000_000,
        ("erc20", "allowance"): 1_000_000_000_000,
        ("funding_pool", "totalFunds"): 1_000_000_000_000,
        ("funding_pool", "availableFunds"): 600_000_000_000,
        ("funding_pool", "totalLPCapital"): 800_000_000_000,
        ("funding_pool", "totalLPShares"): 800_000 * 10**18,
        ("funding_pool", "minLPDeposit"): 100_000_000,  # 100 USDC
        ("funding_pool", "lpLockPeriod"): 7 * 86_400,
        ("funding_pool", "lpFeeShare"): 8_000,
        ("funding_pool", "getLPPosition"): (0, 0, 0, False),
    }


@pytest.fixture()
def read_table() -> Callable[[Position], dict[tuple[str, str], Any]]:
    """Raw contract outputs that decode back to a given position."""
    return _position_read_table


@pytest.fixture()
def make_ledger() -> Callable[..., MagicMock]:
    """Factory for a mocked ledger answering reads from a lookup table.

    A table value that is an exception instance is raised instead.
    """

    def _make(
        table: dict[tuple[str, str], Any],
        tx_hash: str = "0x" + "f" * 64,
        receipt: Receipt | None = None,
    ) -> MagicMock:
        async def _read(contract, method, args=()):
            key = (contract.kind, method)
            if key not in table:
                raise RuntimeError(f"unexpected read {key}")
            value = table[key]
            if isinstance(value, Exception):
                raise value
            return value

        ledger = MagicMock()
        ledger.read = AsyncMock(side_effect=_read)
        ledger.write = AsyncMock(return_value=tx_hash)
        ledger.await_receipt = AsyncMock(
            return_value=receipt or Receipt(tx_hash=tx_hash, block_number=123, succeeded=True)
        )
        return ledger

    return _make


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    monitor:
      position_poll_seconds: 3
      market_poll_seconds: 15
      rate_poll_seconds: 30
    wallets:
      - label: test-wallet
        address: "{WALLET}"
        signer: local
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
      chain_id: 84532
    contracts:
      router: "{ROUTER}"
      price_oracle: "{PRICE_ORACLE}"
      stablecoin: "{STABLECOIN}"
    signers:
      - name: local
        kind: local
        private_key: "${{TEST_PRIVATE_KEY}}"
    rate_source:
      url: "https://rates.example.com"
      currencies: [brl, mxn]
    transactions:
      receipt_timeout_seconds: 45
    costs:
      borrow_apr_percent: 4.0
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
