"""Minimal ABIs for the protocol contracts (only the methods we call)."""
from __future__ import annotations

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]] | None = None,
    outputs: list[tuple[str, str]] | None = None,
    mutability: str = "view",
) -> dict[str, Any]:
    return {
        "inputs": [{"name": n, "type": t} for n, t in inputs or []],
        "name": name,
        "outputs": [{"name": n, "type": t} for n, t in outputs or []],
        "stateMutability": mutability,
        "type": "function",
    }


ROUTER_ABI = [
    _fn("hasPosition", [("user", "address")], [("", "bool")]),
    _fn("getPosition", [("user", "address")], [("", "address")]),
    _fn("getHealthFactor", [("user", "address")], [("", "uint256")]),
    _fn(
        "calculateProtectionOutcome",
        [("user", "address")],
        [("protectionAmount", "uint256"), ("depreciationPercent", "uint256")],
    ),
    _fn("fundingPool", [], [("", "address")]),
    _fn(
        "activateProtection",
        [("collateralAmount", "uint256"), ("targetCurrency", "string"), ("level", "uint8")],
        [("positionAddress", "address")],
        "nonpayable",
    ),
    _fn("reduceProtection", [("repayAmount", "uint256")], [], "nonpayable"),
    _fn("closeProtection", [], [], "nonpayable"),
    _fn("settleProtection", [], [], "nonpayable"),
]

POSITION_ABI = [
    _fn(
        "getPositionDetails",
        [],
        [
            ("_owner", "address"),
            ("_collateral", "uint256"),
            ("_debt", "uint256"),
            ("_healthFactor", "uint256"),
            ("_safetyBuffer", "uint256"),
            ("_level", "uint8"),
            ("_isActive", "bool"),
        ],
    ),
    _fn(
        "getDebtDetails",
        [],
        [("principal", "uint256"), ("interest", "uint256"), ("total", "uint256")],
    ),
    _fn("getRiskStatus", [], [("", "uint256")]),
    _fn("getSafetyBuffer", [], [("", "uint256")]),
    _fn("targetCurrency", [], [("", "string")]),
    _fn("entryRate", [], [("", "uint256")]),
    _fn("createdAt", [], [("", "uint256")]),
    _fn("LIQUIDATION_THRESHOLD", [], [("", "uint256")]),
    _fn("WARNING_THRESHOLD", [], [("", "uint256")]),
    _fn("STRONG_WARNING_THRESHOLD", [], [("", "uint256")]),
    _fn("validateOracle", [], [("", "bool")]),
    _fn("getSafeExchangeRate", [], [("", "uint256")]),
]

PRICE_ORACLE_ABI = [
    _fn("getPrice", [("currency", "string")], [("rate", "uint256"), ("isStale", "bool")]),
    _fn(
        "updatePrices",
        [("currencies", "string[]"), ("rates", "uint256[]")],
        [],
        "nonpayable",
    ),
]

ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], [("", "uint256")]),
    _fn("allowance", [("owner", "address"), ("spender", "address")], [("", "uint256")]),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], [("", "bool")], "nonpayable"),
]

FUNDING_POOL_ABI = [
    _fn("minLPDeposit", [], [("", "uint256")]),
    _fn("lpLockPeriod", [], [("", "uint256")]),
    _fn("lpFeeShare", [], [("", "uint256")]),
    _fn("totalLPShares", [], [("", "uint256")]),
    _fn("totalLPCapital", [], [("", "uint256")]),
    _fn("totalFunds", [], [("", "uint256")]),
    _fn("availableFunds", [], [("", "uint256")]),
    _fn(
        "getLPPosition",
        [("lpAddress", "address")],
        [
            ("shares", "uint256"),
            ("depositTime", "uint256"),
            ("currentValue", "uint256"),
            ("canWithdraw", "bool"),
        ],
    ),
    _fn("lpDeposit", [("amount", "uint256")], [("shares", "uint256")], "nonpayable"),
]

ABIS: dict[str, list[dict[str, Any]]] = {
    "router": ROUTER_ABI,
    "position": POSITION_ABI,
    "price_oracle": PRICE_ORACLE_ABI,
    "erc20": ERC20_ABI,
    "funding_pool": FUNDING_POOL_ABI,
}
