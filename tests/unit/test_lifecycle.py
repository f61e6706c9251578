"""Unit tests for the client-side position lifecycle."""
from __future__ import annotations

import pytest

from hedge_monitor.errors import ActionBlocked, PrecisionMismatch
from hedge_monitor.lifecycle import (
    LifecycleState,
    PositionLifecycle,
    require_zero_debt,
    validate_repay_amount,
)


@pytest.fixture()
def lifecycle() -> PositionLifecycle:
    return PositionLifecycle()


class TestObserve:
    def test_active_read_moves_to_active(self, lifecycle, sample_position) -> None:
        assert lifecycle.observe(sample_position) is sample_position
        assert lifecycle.state is LifecycleState.ACTIVE

    def test_missing_position(self, lifecycle, sample_position) -> None:
        lifecycle.observe(sample_position)
        assert lifecycle.observe(None) is None
        assert lifecycle.state is LifecycleState.NO_POSITION

    def test_inactive_position_is_hidden(self, lifecycle, make_position) -> None:
        assert lifecycle.observe(make_position(is_active=False)) is None
        assert lifecycle.state is LifecycleState.NO_POSITION

    def test_inactive_read_closes_that_address(self, lifecycle, make_position) -> None:
        lifecycle.observe(make_position(is_active=False))
        assert lifecycle.observe(make_position(is_active=True)) is None
        assert lifecycle.observe(make_position(address="0x" + "c" * 40)) is not None

    def test_closed_position_never_reappears(self, lifecycle, make_position) -> None:
        position = make_position(principal_debt=0, accrued_interest=0)
        lifecycle.observe(position)
        lifecycle.begin_close(position)
        lifecycle.confirm_closed(position.address.upper().replace("0X", "0x"))
        assert lifecycle.state is LifecycleState.CLOSED

        # A lagging node still reports the old position as active.
        assert lifecycle.observe(position) is None
        assert lifecycle.state is LifecycleState.CLOSED

    def test_new_position_after_close(self, lifecycle, make_position) -> None:
        old = make_position(principal_debt=0, accrued_interest=0)
        lifecycle.observe(old)
        lifecycle.begin_settle(old)
        lifecycle.confirm_closed(old.address)

        new = make_position(address="0x" + "c" * 40)
        assert lifecycle.observe(new) is new
        assert lifecycle.state is LifecycleState.ACTIVE


class TestTransitions:
    def test_reduce_round_trip(self, lifecycle, sample_position) -> None:
        lifecycle.observe(sample_position)
        lifecycle.begin_reduce()
        assert lifecycle.state is LifecycleState.REDUCING
        lifecycle.end_reduce()
        assert lifecycle.state is LifecycleState.ACTIVE

    def test_no_concurrent_actions(self, lifecycle, sample_position) -> None:
        lifecycle.observe(sample_position)
        lifecycle.begin_reduce()
        with pytest.raises(ActionBlocked, match="pending"):
            lifecycle.begin_reduce()

    def test_actions_need_a_position(self, lifecycle) -> None:
        with pytest.raises(ActionBlocked, match="No active position"):
            lifecycle.begin_reduce()

    def test_close_requires_zero_debt(self, lifecycle, sample_position) -> None:
        lifecycle.observe(sample_position)
        with pytest.raises(ActionBlocked) as exc_info:
            lifecycle.begin_close(sample_position)
        assert exc_info.value.next_step == "reduce"
        assert "3,512.500000" in str(exc_info.value)
        assert lifecycle.state is LifecycleState.ACTIVE

    def test_settle_requires_zero_debt(self, lifecycle, sample_position) -> None:
        lifecycle.observe(sample_position)
        with pytest.raises(ActionBlocked):
            lifecycle.begin_settle(sample_position)

    def test_abort_restores_active(self, lifecycle, make_position) -> None:
        position = make_position(principal_debt=0, accrued_interest=0)
        lifecycle.observe(position)
        lifecycle.begin_close(position)
        lifecycle.abort()
        assert lifecycle.state is LifecycleState.ACTIVE

    def test_interest_alone_does_not_block(self, make_position) -> None:
        require_zero_debt(make_position(principal_debt=0, accrued_interest=5), "close")


class TestValidateRepayAmount:
    DEBT = 360_000_000  # 360 USDC

    def test_exact_debt(self) -> None:
        assert validate_repay_amount("360", self.DEBT) == self.DEBT

    def test_partial(self) -> None:
        assert validate_repay_amount(100.5, self.DEBT) == 100_500_000

    def test_dust_overshoot_clamps_to_debt(self) -> None:
        assert validate_repay_amount("360.000001", self.DEBT) == self.DEBT

    def test_overshoot_beyond_tolerance(self) -> None:
        with pytest.raises(PrecisionMismatch, match="Cannot repay more than current debt"):
            validate_repay_amount("360.000002", self.DEBT)

    def test_custom_tolerance(self) -> None:
        assert validate_repay_amount("360.01", self.DEBT, tolerance=0.01) == self.DEBT

    @pytest.mark.parametrize("amount", ["0", "-1", 0.0])
    def test_non_positive(self, amount) -> None:
        with pytest.raises(ValueError, match="valid amount"):
            validate_repay_amount(amount, self.DEBT)
