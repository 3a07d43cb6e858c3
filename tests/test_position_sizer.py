"""Tests for pinetrade.risk.position_sizer — notional to quantity math."""

import pytest

from pinetrade.risk.position_sizer import (
    FixedNotionalSizer,
    PositionSizer,
    calculate_quantity,
)


class TestCalculateQuantity:
    def test_btc_at_50000(self):
        # 10 USDT / 50 000 = 0.0002
        assert calculate_quantity(10.0, 50_000.0) == "0.000200"

    def test_cheap_asset(self):
        assert calculate_quantity(10.0, 0.25) == "40.000000"

    def test_custom_decimals(self):
        assert calculate_quantity(10.0, 3.0, decimals=2) == "3.33"

    def test_zero_price_raises(self):
        with pytest.raises(ValueError, match="price must be positive"):
            calculate_quantity(10.0, 0.0)

    def test_negative_notional_raises(self):
        with pytest.raises(ValueError, match="notional must be positive"):
            calculate_quantity(-1.0, 100.0)

    def test_rounds_to_zero_raises(self):
        with pytest.raises(ValueError, match="rounds to zero"):
            calculate_quantity(10.0, 1e12)


class TestFixedNotionalSizer:
    def test_satisfies_protocol(self):
        assert isinstance(FixedNotionalSizer(10.0), PositionSizer)

    def test_quantity_uses_notional(self):
        sizer = FixedNotionalSizer(20.0)
        assert sizer.notional == 20.0
        assert sizer.quantity(100.0) == "0.200000"

    def test_rejects_non_positive_notional(self):
        with pytest.raises(ValueError):
            FixedNotionalSizer(0.0)
