"""Tests for base-unit amount parsing and formatting."""

from decimal import Decimal

import pytest

from tollgate.money import WEI_PER_ETHER, format_ether, parse_base_units


class TestParseBaseUnits:
    def test_accepts_int_and_digit_strings(self):
        assert parse_base_units(5) == 5
        assert parse_base_units("  42 ") == 42
        assert parse_base_units(Decimal("7")) == 7

    def test_keeps_large_values_exact(self):
        big = "123456789012345678901234567890"
        assert parse_base_units(big) == int(big)

    def test_rejects_negative(self):
        with pytest.raises(ValueError, match=">= 0"):
            parse_base_units(-1)

    def test_rejects_fractional_and_bool(self):
        with pytest.raises(ValueError):
            parse_base_units(Decimal("1.5"))
        with pytest.raises(ValueError):
            parse_base_units("1.5")
        with pytest.raises(ValueError):
            parse_base_units(True)

    def test_zero_can_be_refused(self):
        assert parse_base_units(0) == 0
        with pytest.raises(ValueError, match="> 0"):
            parse_base_units(0, "value", allow_zero=False)


def test_format_ether():
    assert format_ether(WEI_PER_ETHER) == "1"
    assert format_ether(3 * WEI_PER_ETHER // 2) == "1.5"
    assert format_ether(1) == "0.000000000000000001"
    assert format_ether(0) == "0"
