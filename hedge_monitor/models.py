"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum

from . import units


class ProtectionLevel(IntEnum):
    """Protection level; each level borrows a fixed share of the collateral."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2

    @property
    def ltv_percent(self) -> float:
        return _LEVEL_LTV[self]

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: str | int) -> "ProtectionLevel":
        """Accept ``1``, ``"1"`` or ``"medium"``."""
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown protection level: {value!r}") from None
        return cls(int(value))


_LEVEL_LTV = {
    ProtectionLevel.LOW: 20.0,
    ProtectionLevel.MEDIUM: 35.0,
    ProtectionLevel.HIGH: 50.0,
}


class Currency(str, Enum):
    BRL = "BRL"
    MXN = "MXN"
    EUR = "EUR"

    @property
    def display_name(self) -> str:
        return _CURRENCY_NAMES[self]


_CURRENCY_NAMES = {
    Currency.BRL: "Brazilian Real",
    Currency.MXN: "Mexican Peso",
    Currency.EUR: "Euro",
}


@dataclass(frozen=True)
class Position:
    """A hedge position as read from chain. Amounts are raw base units."""

    owner: str
    address: str
    collateral: int
    principal_debt: int
    accrued_interest: int
    health_factor_raw: int
    safety_buffer_raw: int
    protection_level: ProtectionLevel
    is_active: bool
    target_currency: str = ""
    entry_rate: int = 0
    created_at: int = 0

    @property
    def total_debt(self) -> int:
        return self.principal_debt + self.accrued_interest

    @property
    def collateral_amount(self) -> float:
        return units.decode_amount(self.collateral)

    @property
    def principal_debt_amount(self) -> float:
        return units.decode_amount(self.principal_debt)

    @property
    def accrued_interest_amount(self) -> float:
        return units.decode_amount(self.accrued_interest)

    @property
    def total_debt_amount(self) -> float:
        return units.decode_amount(self.total_debt)

    @property
    def entry_rate_value(self) -> float:
        return units.decode_rate(self.entry_rate)

    @property
    def created_at_datetime(self) -> datetime | None:
        if not self.created_at:
            return None
        return datetime.fromtimestamp(self.created_at, tz=timezone.utc)


@dataclass(frozen=True)
class RiskThresholds:
    """Protocol-wide health-factor thresholds, decoded (1.15 not 11500)."""

    liquidation: float
    warning: float
    strong_warning: float

    def __post_init__(self) -> None:
        if not (self.liquidation < self.warning < self.strong_warning):
            raise ValueError(
                "Thresholds must satisfy liquidation < warning < strong_warning, got "
                f"{self.liquidation} / {self.warning} / {self.strong_warning}"
            )

    @classmethod
    def from_raw(
        cls, liquidation: int, warning: int, strong_warning: int
    ) -> "RiskThresholds":
        return cls(
            liquidation=units.decode_threshold(liquidation),
            warning=units.decode_threshold(warning),
            strong_warning=units.decode_threshold(strong_warning),
        )


class RateOrigin(str, Enum):
    ON_CHAIN = "on_chain"
    EXTERNAL = "external"
    ENTRY_FALLBACK = "entry_fallback"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class RateQuote:
    """An exchange rate (USD per target unit) with its provenance."""

    rate: float | None
    is_stale: bool
    source: RateOrigin

    @property
    def available(self) -> bool:
        return self.rate is not None and self.source is not RateOrigin.UNAVAILABLE

    @classmethod
    def unavailable(cls) -> "RateQuote":
        return cls(rate=None, is_stale=True, source=RateOrigin.UNAVAILABLE)


class HealthFactorStatus(str, Enum):
    VALID = "valid"
    NOT_APPLICABLE = "not_applicable"
    INVALID = "invalid"


@dataclass(frozen=True)
class HealthFactorCheck:
    status: HealthFactorStatus
    value: float | None = None

    @property
    def is_valid(self) -> bool:
        return self.status is HealthFactorStatus.VALID


class RiskTier(IntEnum):
    """Risk tiers ordered worst (0) to best (3)."""

    LIQUIDATION = 0
    STRONG_WARNING = 1
    WARNING = 2
    SAFE = 3

    @property
    def label(self) -> str:
        return _TIER_LABELS[self]

    @property
    def message(self) -> str:
        return _TIER_MESSAGES[self]


_TIER_LABELS = {
    RiskTier.LIQUIDATION: "Liquidation",
    RiskTier.STRONG_WARNING: "Strong Warning",
    RiskTier.WARNING: "Warning",
    RiskTier.SAFE: "Safe",
}

_TIER_MESSAGES = {
    RiskTier.LIQUIDATION: "Immediate action required",
    RiskTier.STRONG_WARNING: "Consider reducing position",
    RiskTier.WARNING: "Monitor your position closely",
    RiskTier.SAFE: "Your position is healthy",
}


@dataclass(frozen=True)
class ProtectionOutcome:
    """Payout a settlement would make, in stablecoin units."""

    protection_amount: float
    depreciation_percent: float
    is_estimate: bool = True


@dataclass(frozen=True)
class InterestProjection:
    """Simple, non-compounding interest projection. Display only."""

    daily: float
    monthly: float
    yearly: float
    annual_rate_percent: float
    approximate: bool = True


@dataclass(frozen=True)
class CostBreakdown:
    borrow_amount: float
    interest: InterestProjection
    swap_fee: float
    swap_fee_percent: float


@dataclass(frozen=True)
class OracleHealth:
    """Oracle state as seen by a position contract."""

    is_valid: bool
    safe_rate: float | None = None
    fallback_pricing: bool = False


@dataclass(frozen=True)
class PositionView:
    """Everything derived for one position in one poll cycle."""

    position: Position
    health: HealthFactorCheck
    risk_tier: RiskTier | None
    safety_buffer_percent: float
    collateralization_ratio: float
    rate: RateQuote
    outcome: ProtectionOutcome | None
    costs: CostBreakdown
    oracle: OracleHealth | None = None
    warnings: tuple[str, ...] = ()

    @property
    def can_close(self) -> bool:
        return self.position.principal_debt == 0


@dataclass(frozen=True)
class FundingPoolSnapshot:
    """Funding pool figures, decoded."""

    total_funds: float
    available_funds: float
    total_lp_capital: float
    total_lp_shares: float
    min_deposit: float
    lock_period_days: float
    fee_share_percent: float


@dataclass(frozen=True)
class LPPosition:
    shares: float
    deposit_time: int
    current_value: float
    can_withdraw: bool
    unlock_time: int | None = None


@dataclass(frozen=True)
class Receipt:
    """Minimal view of a mined transaction."""

    tx_hash: str
    block_number: int
    succeeded: bool
