"""
Tests for the unit converter.

Human-readable amounts become integer smallest-unit strings by truncation;
smallest units convert back exactly.
"""

from decimal import Decimal

import pytest

from lending_engines.units import from_smallest_unit, to_smallest_unit
from lending_kernel.domain.units import (
    ceil_to_int,
    floor_to_int,
    parse_units,
    quantize_ratio,
    to_human,
    to_units,
    truncate_to_int,
)
from lending_kernel.exceptions import InvalidAmountError


class TestToSmallestUnit:
    """Human amount -> smallest units."""

    def test_whole_and_fractional_amounts(self):
        assert to_smallest_unit("1.5", 6) == "1500000"
        assert to_smallest_unit("10", 18) == "10000000000000000000"
        assert to_smallest_unit("0.000001", 6) == "1"

    def test_truncates_excess_precision(self):
        assert to_smallest_unit("0.0000019", 6) == "1"
        assert to_smallest_unit("1.999999999", 2) == "199"

    def test_never_rounds_up(self):
        assert to_smallest_unit("0.0000009", 6) == "0"

    def test_zero_decimals(self):
        assert to_smallest_unit("42.9", 0) == "42"

    def test_accepts_int_and_decimal(self):
        assert to_smallest_unit(3, 2) == "300"
        assert to_smallest_unit(Decimal("0.25"), 2) == "25"

    def test_uint256_scale_is_exact(self):
        huge = "115792089237316195423570985008687907853269984665640564039457"
        assert to_smallest_unit(huge + ".584007913129639935", 18) == (
            huge + "584007913129639935"
        )

    def test_float_rejected(self):
        with pytest.raises(InvalidAmountError):
            to_smallest_unit(1.5, 6)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidAmountError):
            to_smallest_unit("one", 6)

    def test_non_finite_rejected(self):
        with pytest.raises(InvalidAmountError):
            to_smallest_unit("NaN", 6)
        with pytest.raises(InvalidAmountError):
            to_smallest_unit("Infinity", 6)

    def test_negative_decimals_rejected(self):
        with pytest.raises(ValueError):
            to_smallest_unit("1", -1)


class TestFromSmallestUnit:
    """Smallest units -> human amount."""

    def test_carries_all_decimal_places(self):
        assert from_smallest_unit("1500000", 6) == "1.500000"
        assert from_smallest_unit(1, 6) == "0.000001"

    def test_zero_decimals(self):
        assert from_smallest_unit("42", 0) == "42"

    def test_round_trip(self):
        for units, decimals in (("1", 18), ("123456789", 6), ("10000000000000000000", 18)):
            assert to_smallest_unit(from_smallest_unit(units, decimals), decimals) == units

    def test_non_integer_string_rejected(self):
        with pytest.raises(InvalidAmountError):
            from_smallest_unit("1.5", 6)

    @pytest.mark.parametrize("text", ["\u00b2", "1\u00b2", "\u0663", "-\u00b9"])
    def test_non_ascii_digits_rejected(self, text):
        with pytest.raises(InvalidAmountError) as exc_info:
            from_smallest_unit(text, 6)
        assert exc_info.value.code == "INVALID_AMOUNT"


class TestHelpers:
    """Rounding helpers used by the calculators."""

    def test_to_units_and_to_human(self):
        assert to_units("2.5", 1) == 25
        assert to_human(25, 1) == Decimal("2.5")

    def test_parse_units(self):
        assert parse_units("  123 ") == 123
        assert parse_units("-5") == -5
        with pytest.raises(InvalidAmountError):
            parse_units(True)
        with pytest.raises(InvalidAmountError):
            parse_units("12e3")

    def test_rounding_directions(self):
        assert truncate_to_int(Decimal("-1.7")) == -1
        assert floor_to_int(Decimal("-1.2")) == -2
        assert ceil_to_int(Decimal("1.0000001")) == 2

    def test_quantize_ratio_truncates_to_18_places(self):
        ratio = Decimal(10) / Decimal(12)
        assert quantize_ratio(ratio) == Decimal("0.833333333333333333")
