"""Position risk evaluation — pure functions over on-chain figures, no I/O."""
from __future__ import annotations

import math

from . import units
from .errors import StaleOrInvalidOracle
from .models import (
    CostBreakdown,
    HealthFactorCheck,
    HealthFactorStatus,
    InterestProjection,
    OracleHealth,
    Position,
    PositionView,
    ProtectionLevel,
    ProtectionOutcome,
    RateOrigin,
    RateQuote,
    RiskThresholds,
    RiskTier,
)

# Decoded health factors at or above this are contract-side division artifacts.
HEALTH_FACTOR_CEILING = 1000.0

# The position contract substitutes 90% of the entry rate when its own
# oracle read is rejected.
FALLBACK_RATE_FACTOR = 0.9


def validate_health_factor(
    health_factor_raw: int | float, principal_debt: int | float
) -> HealthFactorCheck:
    """Decode a raw health factor and decide whether it may be shown.

    With no principal debt the health factor is meaningless and reported as
    NOT_APPLICABLE whatever the raw value is.
    """
    if principal_debt == 0:
        return HealthFactorCheck(HealthFactorStatus.NOT_APPLICABLE)

    hf = units.decode_health_factor(health_factor_raw)
    if not math.isfinite(hf) or hf <= 0 or hf >= HEALTH_FACTOR_CEILING:
        return HealthFactorCheck(HealthFactorStatus.INVALID)
    return HealthFactorCheck(HealthFactorStatus.VALID, hf)


def classify_risk(hf: float, thresholds: RiskThresholds) -> RiskTier:
    """Place a valid health factor into its tier.

    Lower bounds are inclusive:
        hf < L       → LIQUIDATION
        L <= hf < W  → STRONG_WARNING
        W <= hf < S  → WARNING
        hf >= S      → SAFE
    """
    if hf < thresholds.liquidation:
        return RiskTier.LIQUIDATION
    if hf < thresholds.warning:
        return RiskTier.STRONG_WARNING
    if hf < thresholds.strong_warning:
        return RiskTier.WARNING
    return RiskTier.SAFE


def safety_buffer_percent(safety_buffer_raw: int) -> float:
    """Adverse rate move, in percent, before the tier would downgrade."""
    return units.decode_safety_buffer(safety_buffer_raw)


def collateralization_ratio(collateral: float, debt: float) -> float:
    """Collateral over debt; ``math.inf`` when there is no debt."""
    if debt == 0:
        return math.inf
    return collateral / debt


def resolve_exchange_rate(
    on_chain: RateQuote | None, external: RateQuote | None
) -> RateQuote:
    """Pick the rate to display.

    Fresh on-chain rate first, then the external snapshot, then the stale
    on-chain rate. The external rate is never authoritative for settlement.
    """
    on_chain_ok = on_chain is not None and on_chain.available and on_chain.rate > 0
    external_ok = external is not None and external.available and external.rate > 0

    if on_chain_ok and not on_chain.is_stale:
        return on_chain
    if external_ok:
        return external
    if on_chain_ok:
        return on_chain
    return RateQuote.unavailable()


def detect_fallback_pricing(entry_rate: float, safe_exchange_rate: float) -> bool:
    """True when the contract's safe rate is its 90%-of-entry fallback."""
    return safe_exchange_rate < entry_rate * FALLBACK_RATE_FACTOR


def estimate_protection_outcome(
    collateral: float,
    principal_debt: float,
    protection_level: ProtectionLevel,
    entry_rate: float,
    current_rate: float,
) -> ProtectionOutcome:
    """Offline estimate of the settlement payout.

    Only depreciation of the target currency pays out:
        depreciation% = max(0, (entry - current) / entry * 100)
        payout        = notional * depreciation% / 100

    The notional is the principal debt; before activation (no debt yet) it is
    the amount the chosen level would borrow against the collateral.
    """
    if entry_rate <= 0:
        raise ValueError(f"Entry rate must be positive, got {entry_rate}")

    depreciation = max(0.0, (entry_rate - current_rate) / entry_rate * 100)
    notional = principal_debt
    if notional <= 0:
        notional = borrow_amount_for(collateral, protection_level)
    return ProtectionOutcome(
        protection_amount=notional * depreciation / 100,
        depreciation_percent=depreciation,
        is_estimate=True,
    )


def authoritative_or_estimate(
    contract_outcome: ProtectionOutcome | None,
    position: Position,
    current_rate: float | None,
) -> ProtectionOutcome | None:
    """Prefer the contract's own figure; fall back to the local estimate."""
    if contract_outcome is not None:
        return contract_outcome
    if current_rate is None or position.entry_rate <= 0:
        return None
    return estimate_protection_outcome(
        position.collateral_amount,
        position.principal_debt_amount,
        position.protection_level,
        position.entry_rate_value,
        current_rate,
    )


def project_interest_cost(
    principal_debt: float, annual_rate_percent: float
) -> InterestProjection:
    """Simple-interest projection; the contract may compound."""
    yearly = principal_debt * annual_rate_percent / 100
    return InterestProjection(
        daily=yearly / 365,
        monthly=yearly / 12,
        yearly=yearly,
        annual_rate_percent=annual_rate_percent,
    )


def estimate_costs(
    borrow_amount: float, annual_rate_percent: float, swap_fee_percent: float
) -> CostBreakdown:
    """Interest projection plus the one-time swap fee on the borrowed amount."""
    return CostBreakdown(
        borrow_amount=borrow_amount,
        interest=project_interest_cost(borrow_amount, annual_rate_percent),
        swap_fee=borrow_amount * swap_fee_percent / 100,
        swap_fee_percent=swap_fee_percent,
    )


def borrow_amount_for(collateral: float, protection_level: ProtectionLevel) -> float:
    return collateral * protection_level.ltv_percent / 100


def preview_activation(
    collateral: float,
    protection_level: ProtectionLevel,
    annual_rate_percent: float,
    swap_fee_percent: float,
) -> CostBreakdown:
    """Costs a new position would carry at the given level."""
    return estimate_costs(
        borrow_amount_for(collateral, protection_level),
        annual_rate_percent,
        swap_fee_percent,
    )


def oracle_health(
    is_valid: bool, entry_rate: float, safe_rate: float | None
) -> OracleHealth:
    fallback = safe_rate is not None and entry_rate > 0 and detect_fallback_pricing(
        entry_rate, safe_rate
    )
    return OracleHealth(is_valid=is_valid, safe_rate=safe_rate, fallback_pricing=fallback)


def check_oracle(health: OracleHealth | None) -> None:
    """Raise ``StaleOrInvalidOracle`` if the position is not priced from a live oracle."""
    if health is None:
        return
    if not health.is_valid:
        raise StaleOrInvalidOracle("Oracle price is stale or invalid; figures may be out of date")
    if health.fallback_pricing:
        raise StaleOrInvalidOracle(
            f"Position is priced at the fallback rate ({health.safe_rate:.6f}), "
            f"not an observed market rate"
        )


def evaluate_position(
    position: Position,
    thresholds: RiskThresholds | None,
    rate: RateQuote,
    *,
    oracle: OracleHealth | None = None,
    contract_outcome: ProtectionOutcome | None = None,
    annual_rate_percent: float = 0.0,
    swap_fee_percent: float = 0.0,
) -> PositionView:
    """Derive the full view for one position.

    Missing optional inputs degrade the view (no tier, no outcome) and add a
    warning; they never raise.
    """
    warnings: list[str] = []

    health = validate_health_factor(position.health_factor_raw, position.principal_debt)
    tier: RiskTier | None = None
    if health.is_valid:
        if thresholds is None:
            warnings.append("Risk thresholds unavailable; tier not computed")
        else:
            tier = classify_risk(health.value, thresholds)
    elif health.status is HealthFactorStatus.INVALID:
        warnings.append("Health factor reported by the contract is invalid")

    if oracle is not None:
        if not oracle.is_valid:
            warnings.append("Oracle price is stale or invalid")
        if oracle.fallback_pricing:
            warnings.append(
                "Health factor is computed against a fallback rate (90% of entry), "
                "not an observed rate"
            )

    if not rate.available:
        warnings.append("Exchange rate unavailable")
    elif rate.is_stale:
        warnings.append("Exchange rate is stale")

    outcome = authoritative_or_estimate(
        contract_outcome, position, rate.rate if rate.available else None
    )

    return PositionView(
        position=position,
        health=health,
        risk_tier=tier,
        safety_buffer_percent=safety_buffer_percent(position.safety_buffer_raw),
        collateralization_ratio=collateralization_ratio(
            position.collateral_amount, position.total_debt_amount
        ),
        rate=rate,
        outcome=outcome,
        costs=estimate_costs(
            position.principal_debt_amount, annual_rate_percent, swap_fee_percent
        ),
        oracle=oracle,
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_ratio(ratio: float) -> str:
    if math.isinf(ratio):
        return "∞"
    return f"{ratio:.2f}x"


def format_health_factor(check: HealthFactorCheck) -> str:
    if check.status is HealthFactorStatus.NOT_APPLICABLE:
        return "N/A"
    if check.status is HealthFactorStatus.INVALID:
        return "Invalid"
    return f"{check.value:.2f}"


def format_rate(quote: RateQuote) -> str:
    if not quote.available:
        return "unavailable"
    label = {
        RateOrigin.ON_CHAIN: "on-chain",
        RateOrigin.EXTERNAL: "external",
        RateOrigin.ENTRY_FALLBACK: "entry fallback",
    }[quote.source]
    stale = ", stale" if quote.is_stale else ""
    return f"${quote.rate:.4f} ({label}{stale})"
