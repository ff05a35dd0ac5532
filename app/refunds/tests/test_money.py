"""
Tests for amount normalization.

Tests cover:
- Major to minor unit conversion per currency exponent
- Round-tripping the boundary amounts
- Rejection of implausible amounts (UnitMismatch)
- Validation of gateway-native minor units
"""

from decimal import Decimal

import pytest
from django.test import override_settings

from refunds.exceptions import UnitMismatchError
from refunds.money import (
    currency_exponent,
    ensure_minor_units,
    format_major,
    from_minor_units,
    normalize_currency,
    to_minor_units,
)


class TestCurrency:
    def test_normalizes_case_and_whitespace(self):
        assert normalize_currency(" usd ") == "USD"

    @pytest.mark.parametrize("value", ["US", "USDT", "12A", None, 840])
    def test_rejects_invalid_codes(self, value):
        with pytest.raises(UnitMismatchError):
            normalize_currency(value)

    def test_exponents(self):
        assert currency_exponent("USD") == 2
        assert currency_exponent("inr") == 2
        assert currency_exponent("JPY") == 0
        assert currency_exponent("KWD") == 3


class TestToMinorUnits:
    def test_decimal_string(self):
        assert to_minor_units("12.50", "USD") == 1250

    def test_integer_major_units(self):
        assert to_minor_units(1500, "INR") == 150000

    def test_float_uses_shortest_repr(self):
        assert to_minor_units(0.1, "USD") == 10
        assert to_minor_units(19.99, "USD") == 1999

    def test_zero_decimal_currency(self):
        assert to_minor_units("1500", "JPY") == 1500

    def test_three_decimal_currency(self):
        assert to_minor_units("1.234", "KWD") == 1234

    @pytest.mark.parametrize("amount", ["0.01", "999999.99"])
    def test_boundary_amounts_round_trip(self, amount):
        minor = to_minor_units(amount, "USD")

        assert format_major(minor, "USD") == amount

    def test_rejects_excess_precision(self):
        with pytest.raises(UnitMismatchError, match="more precision"):
            to_minor_units("12.505", "USD")

    def test_rejects_fraction_for_zero_decimal_currency(self):
        with pytest.raises(UnitMismatchError):
            to_minor_units("10.5", "JPY")

    def test_rejects_negative(self):
        with pytest.raises(UnitMismatchError, match="negative"):
            to_minor_units("-1.00", "USD")

    @pytest.mark.parametrize("amount", ["abc", "", "NaN", "Infinity", True, [1]])
    def test_rejects_non_numeric(self, amount):
        with pytest.raises(UnitMismatchError):
            to_minor_units(amount, "USD")

    @override_settings(REFUND_MAX_AMOUNT_MINOR_UNITS=1_000_000)
    def test_rejects_absurdly_large(self):
        with pytest.raises(UnitMismatchError, match="plausibility"):
            to_minor_units("10000.01", "USD")

        assert to_minor_units("10000.00", "USD") == 1_000_000


class TestFromMinorUnits:
    def test_exact_decimal(self):
        assert from_minor_units(1250, "USD") == Decimal("12.50")
        assert from_minor_units(1, "USD") == Decimal("0.01")

    def test_format_major_pads_to_exponent(self):
        assert format_major(150000, "INR") == "1500.00"
        assert format_major(1500, "JPY") == "1500"
        assert format_major(5, "KWD") == "0.005"


class TestEnsureMinorUnits:
    def test_accepts_integers(self):
        assert ensure_minor_units(150000, "INR") == 150000

    def test_accepts_integral_strings(self):
        assert ensure_minor_units("150000", "INR") == 150000

    def test_rejects_fractional_values(self):
        with pytest.raises(UnitMismatchError, match="whole number"):
            ensure_minor_units("1500.50", "INR")

    def test_rejects_bool(self):
        with pytest.raises(UnitMismatchError):
            ensure_minor_units(True, "INR")

    def test_rejects_negative(self):
        with pytest.raises(UnitMismatchError):
            ensure_minor_units(-5, "INR")
