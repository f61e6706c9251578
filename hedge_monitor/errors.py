"""Error taxonomy and write-error classification."""
from __future__ import annotations

import asyncio
import re
from enum import Enum
from typing import Any

from web3.exceptions import ContractLogicError, TimeExhausted


class HedgeMonitorError(Exception):
    """Base class for all errors raised by this package."""


class UserCancelled(HedgeMonitorError):
    """The signer (or the operator at a prompt) declined the request."""


class ConfigurationError(HedgeMonitorError, ValueError):
    """A required contract address or environment value is missing."""


class StaleOrInvalidOracle(HedgeMonitorError):
    """The oracle rejected its own price or the safe rate is a fallback."""


class PrecisionMismatch(HedgeMonitorError):
    """A repay amount exceeds the on-chain debt by more than the dust tolerance."""


class ConfirmationTimeout(HedgeMonitorError, TimeoutError):
    """A submitted transaction was not confirmed within the bound."""

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(
            f"Transaction {tx_hash} submitted but not confirmed within {timeout:g}s"
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class ContractRejected(HedgeMonitorError):
    """A write reverted for a domain reason."""

    def __init__(self, message: str, reason: str = "") -> None:
        super().__init__(message)
        self.reason = reason


class ActionBlocked(HedgeMonitorError):
    """A client-side guard refused an action before anything was submitted.

    ``next_step`` names the action the user should take first, if any.
    """

    def __init__(self, message: str, next_step: str = "") -> None:
        super().__init__(message)
        self.next_step = next_step


class WriteErrorKind(str, Enum):
    USER_CANCELLED = "user_cancelled"
    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    CONTRACT_REJECTED = "contract_rejected"
    BLOCKED = "blocked"
    PRECISION = "precision"
    FAILED = "failed"


_REJECTION_MARKERS = ("user rejected", "user denied")

USER_REJECTED_CODE = 4001

# Known revert reasons → actionable messages. Matched case-insensitively.
_REVERT_MESSAGES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"debt|outstanding", re.IGNORECASE),
        "Position still has outstanding debt. Reduce protection to zero debt before closing.",
    ),
    (
        re.compile(r"allowance|insufficient.*approv", re.IGNORECASE),
        "Stablecoin allowance is too low. Approve the router before activating.",
    ),
    (
        re.compile(r"balance", re.IGNORECASE),
        "Insufficient stablecoin balance for this amount.",
    ),
    (
        re.compile(r"already has (a |an )?(active )?position|position exists", re.IGNORECASE),
        "This wallet already has an active position. Close it before activating a new one.",
    ),
    (
        re.compile(r"no (active )?position|not active", re.IGNORECASE),
        "No active position found for this wallet.",
    ),
    (
        re.compile(r"oracle|stale|price", re.IGNORECASE),
        "The price oracle rejected the current rate. Wait for an oracle update and retry.",
    ),
    (
        re.compile(r"liquidity|available funds", re.IGNORECASE),
        "The funding pool does not have enough liquidity for this borrow.",
    ),
    (
        re.compile(r"minimum|too small", re.IGNORECASE),
        "Amount is below the protocol minimum.",
    ),
)


def _error_code(exc: BaseException) -> Any:
    code = getattr(exc, "code", None)
    if code is not None:
        return code
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict):
            if "code" in arg:
                return arg["code"]
            inner = arg.get("error")
            if isinstance(inner, dict) and "code" in inner:
                return inner["code"]
    return None


def is_user_rejection(exc: BaseException) -> bool:
    """True when the exception is a signer rejection rather than a fault."""
    if isinstance(exc, UserCancelled):
        return True
    if _error_code(exc) == USER_REJECTED_CODE:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _REJECTION_MARKERS)


def revert_reason(exc: BaseException) -> str:
    """Extract a bare revert reason from a contract error message."""
    message = getattr(exc, "message", None) or str(exc)
    match = re.search(r"execution reverted:?\s*(.*)", message, re.IGNORECASE)
    reason = match.group(1) if match else message
    return reason.strip().strip("'\"")


def describe_revert(reason: str) -> str:
    """Translate a raw revert string into an actionable message."""
    for pattern, text in _REVERT_MESSAGES:
        if pattern.search(reason):
            return text
    if reason:
        return f"Transaction rejected by the protocol: {reason}"
    return "Transaction rejected by the protocol."


def classify_write_error(exc: BaseException) -> WriteErrorKind:
    """Map any exception raised by a write path onto the taxonomy."""
    if isinstance(exc, ConfigurationError):
        return WriteErrorKind.CONFIGURATION
    if isinstance(exc, ActionBlocked):
        return WriteErrorKind.BLOCKED
    if isinstance(exc, PrecisionMismatch):
        return WriteErrorKind.PRECISION
    if isinstance(exc, (ConfirmationTimeout, TimeExhausted, asyncio.TimeoutError)):
        return WriteErrorKind.TIMEOUT
    # ContractLogicError messages may contain "rejected"; check the signer
    # rejection code first, then the revert type.
    if _error_code(exc) == USER_REJECTED_CODE or isinstance(exc, UserCancelled):
        return WriteErrorKind.USER_CANCELLED
    if isinstance(exc, (ContractRejected, ContractLogicError)):
        return WriteErrorKind.CONTRACT_REJECTED
    if is_user_rejection(exc):
        return WriteErrorKind.USER_CANCELLED
    return WriteErrorKind.FAILED
