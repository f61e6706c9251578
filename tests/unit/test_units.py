"""Unit tests for per-field fixed-point decoding."""
from __future__ import annotations

from decimal import Decimal

import pytest

from hedge_monitor import units


class TestAmounts:
    def test_stablecoin_has_six_decimals(self) -> None:
        assert units.decode_amount(1_500_000) == 1.5
        assert units.encode_amount("1.5") == 1_500_000

    def test_float_input_is_not_binary_expanded(self) -> None:
        assert units.encode_amount(0.1) == 100_000
        assert units.encode_amount(360.000001) == 360_000_001

    def test_extra_digits_truncate(self) -> None:
        assert units.encode_amount("1.0000009") == 1_000_000

    def test_decimal_input(self) -> None:
        assert units.encode_amount(Decimal("2.25")) == 2_250_000

    @pytest.mark.parametrize("bad", ["abc", "", "nan", "inf"])
    def test_invalid_amount(self, bad: str) -> None:
        with pytest.raises(ValueError):
            units.encode_amount(bad)


class TestScaledFields:
    def test_rate_has_eight_decimals(self) -> None:
        assert units.decode_rate(20_000_000) == pytest.approx(0.2)
        assert units.encode_rate(0.18) == 18_000_000

    def test_health_factor_divides_by_10000(self) -> None:
        assert units.decode_health_factor(11_500) == pytest.approx(1.15)
        assert units.encode_health_factor(1.15) == 11_500

    def test_threshold_divides_by_10000(self) -> None:
        assert units.decode_threshold(15_000) == pytest.approx(1.5)

    def test_safety_buffer_divides_by_100(self) -> None:
        assert units.decode_safety_buffer(1_250) == pytest.approx(12.5)

    def test_fee_share_divides_by_100(self) -> None:
        assert units.decode_fee_share(8_000) == pytest.approx(80.0)

    def test_depreciation_divides_by_100(self) -> None:
        assert units.decode_depreciation(1_000) == pytest.approx(10.0)

    def test_lp_shares_have_eighteen_decimals(self) -> None:
        assert units.decode_lp_shares(3 * 10**18) == pytest.approx(3.0)

    def test_lock_period_in_days(self) -> None:
        assert units.lock_period_days(7 * 86_400) == pytest.approx(7.0)
