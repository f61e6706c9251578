"""Client-side view of a position's lifecycle and the guards on each action."""
from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum

from . import units
from .errors import ActionBlocked, PrecisionMismatch
from .models import Position

logger = logging.getLogger(__name__)

# 0.000001 stablecoin = 1 base unit.
DEFAULT_REPAY_TOLERANCE = 0.000001


class LifecycleState(str, Enum):
    NO_POSITION = "no_position"
    ACTIVE = "active"
    REDUCING = "reducing"
    CLOSING = "closing"
    SETTLING = "settling"
    CLOSED = "closed"


_PENDING_STATES = (LifecycleState.REDUCING, LifecycleState.CLOSING, LifecycleState.SETTLING)


class PositionLifecycle:
    """Tracks one account's position as chain reads and local writes arrive.

    Chain reads drive NO_POSITION ↔ ACTIVE. Local writes drive the pending
    states. Once a close or settle is confirmed the position is CLOSED and
    no read of that position address is displayed again, even if a lagging
    node still reports it as active.
    """

    def __init__(self) -> None:
        self.state = LifecycleState.NO_POSITION
        self._closed_addresses: set[str] = set()

    def observe(self, position: Position | None) -> Position | None:
        """Feed the latest read; return the position to display, if any."""
        if position is not None and not position.is_active:
            # Inactive is terminal for that address.
            self._closed_addresses.add(position.address.lower())
        if position is None or not position.is_active:
            if self.state in (LifecycleState.ACTIVE, LifecycleState.CLOSED):
                self.state = LifecycleState.NO_POSITION
            return None

        if position.address.lower() in self._closed_addresses:
            logger.debug("Ignoring stale read of closed position %s", position.address)
            return None

        if self.state in (LifecycleState.NO_POSITION, LifecycleState.CLOSED):
            self.state = LifecycleState.ACTIVE
        return position

    # ------------------------------------------------------------------
    # Local write events
    # ------------------------------------------------------------------

    def _require(self, *allowed: LifecycleState) -> None:
        if self.state not in allowed:
            if self.state in _PENDING_STATES:
                raise ActionBlocked(
                    f"Another action is still pending ({self.state.value})"
                )
            raise ActionBlocked(f"No active position (state: {self.state.value})")

    def begin_reduce(self) -> None:
        self._require(LifecycleState.ACTIVE)
        self.state = LifecycleState.REDUCING

    def end_reduce(self) -> None:
        if self.state is LifecycleState.REDUCING:
            self.state = LifecycleState.ACTIVE

    def begin_close(self, position: Position) -> None:
        self._require(LifecycleState.ACTIVE)
        require_zero_debt(position, "close")
        self.state = LifecycleState.CLOSING

    def begin_settle(self, position: Position) -> None:
        self._require(LifecycleState.ACTIVE)
        require_zero_debt(position, "settle")
        self.state = LifecycleState.SETTLING

    def confirm_closed(self, position_address: str) -> None:
        self._closed_addresses.add(position_address.lower())
        self.state = LifecycleState.CLOSED

    def abort(self) -> None:
        """A pending action failed or was cancelled; the position is unchanged."""
        if self.state in _PENDING_STATES:
            self.state = LifecycleState.ACTIVE


def require_zero_debt(position: Position, action: str) -> None:
    """Block close/settle while principal debt remains, naming the fix."""
    if position.principal_debt == 0:
        return
    debt = units.decode_amount(position.total_debt)
    raise ActionBlocked(
        f"Cannot {action} while debt is outstanding ({debt:,.6f} USDC). "
        f"Reduce protection by {debt:,.6f} USDC first.",
        next_step="reduce",
    )


def validate_repay_amount(
    amount: str | float | Decimal,
    debt_raw: int,
    tolerance: float = DEFAULT_REPAY_TOLERANCE,
) -> int:
    """Return the raw repay amount to submit.

    Amounts above the debt by no more than ``tolerance`` are rounding dust
    and are clamped to the exact on-chain debt.
    """
    repay_raw = units.encode_amount(amount)
    if repay_raw <= 0:
        raise ValueError("Please enter a valid amount")

    if repay_raw > debt_raw:
        tolerance_raw = units.encode_amount(tolerance)
        if repay_raw - debt_raw <= tolerance_raw:
            logger.debug("Clamping repay %d to on-chain debt %d", repay_raw, debt_raw)
            return debt_raw
        raise PrecisionMismatch(
            f"Cannot repay more than current debt "
            f"({units.decode_amount(debt_raw):,.6f} USDC)"
        )
    return repay_raw
