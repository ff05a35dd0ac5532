"""
Amount normalization between gateway-native units and minor units.

Every amount stored in the ledger or compared by the engine is an integer
count of the currency's smallest unit (cents, paise). Gateways disagree on
representation: PayPal reports decimal major-unit strings ("12.50"),
Razorpay reports integer minor units (1250). All conversions go through
this module, and anything implausible raises UnitMismatchError before a
gateway is ever called.

Usage:
    from refunds.money import to_minor_units, from_minor_units, format_major

    to_minor_units("12.50", "USD")        # 1250
    to_minor_units("1500", "JPY")         # 1500
    from_minor_units(1250, "USD")         # Decimal("12.50")
    format_major(1250, "USD")             # "12.50"
    ensure_minor_units(150000, "INR")     # 150000

Note:
    Floats are accepted only because JSON decoders produce them; they are
    converted through their shortest repr (Decimal(str(value))) so that
    0.1 becomes exactly Decimal("0.1").
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings

from refunds.exceptions import UnitMismatchError

if TYPE_CHECKING:
    from typing import Any


# ISO 4217 minor-unit exponents that differ from the default of 2
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "HUF", "ISK", "JPY", "KMF", "KRW", "PYG",
     "RWF", "TWD", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
)
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})

DEFAULT_MAX_AMOUNT_MINOR_UNITS = 10_000_000_000


def normalize_currency(currency: Any) -> str:
    """Return the upper-case ISO 4217 code, rejecting anything else."""
    if not isinstance(currency, str) or len(currency.strip()) != 3 or not currency.strip().isalpha():
        raise UnitMismatchError(
            f"Invalid currency code: {currency!r}",
            details={"currency": str(currency)},
        )
    return currency.strip().upper()


def currency_exponent(currency: str) -> int:
    """Number of decimal places in the currency's major unit."""
    code = normalize_currency(currency)
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def max_amount_minor_units() -> int:
    """Plausibility ceiling for any single amount."""
    return getattr(
        settings, "REFUND_MAX_AMOUNT_MINOR_UNITS", DEFAULT_MAX_AMOUNT_MINOR_UNITS
    )


def _check_plausible(minor_units: int, currency: str, source: Any) -> int:
    if minor_units < 0:
        raise UnitMismatchError(
            f"Amount must not be negative: {source!r}",
            details={"amount": str(source), "currency": currency},
        )
    ceiling = max_amount_minor_units()
    if minor_units > ceiling:
        raise UnitMismatchError(
            f"Amount {source!r} {currency} exceeds the plausibility limit",
            details={
                "amount": str(source),
                "currency": currency,
                "minor_units": minor_units,
                "max_minor_units": ceiling,
            },
        )
    return minor_units


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise UnitMismatchError(f"Amount must be numeric, got {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise UnitMismatchError(
                f"Amount is not a decimal number: {value!r}",
                details={"amount": value},
            ) from None
    raise UnitMismatchError(
        f"Unsupported amount type {type(value).__name__}",
        details={"amount": repr(value)},
    )


def to_minor_units(amount: Any, currency: str) -> int:
    """
    Convert a major-unit amount (e.g. "12.50" USD) into integer minor units.

    Args:
        amount: Decimal, str, int or float in major units
        currency: ISO 4217 code, decides the exponent

    Returns:
        Integer minor units (1250)

    Raises:
        UnitMismatchError: Non-numeric, non-finite, negative, more precise
            than the currency allows (12.505 USD), or above the ceiling
    """
    code = normalize_currency(currency)
    value = _to_decimal(amount)
    if not value.is_finite():
        raise UnitMismatchError(
            f"Amount must be finite: {amount!r}",
            details={"amount": str(amount), "currency": code},
        )

    exponent = currency_exponent(code)
    scaled = value.scaleb(exponent)
    if scaled != scaled.to_integral_value():
        raise UnitMismatchError(
            f"Amount {amount!r} has more precision than {code} allows",
            details={"amount": str(amount), "currency": code, "exponent": exponent},
        )
    return _check_plausible(int(scaled), code, amount)


def from_minor_units(minor_units: int, currency: str) -> Decimal:
    """Convert integer minor units back into an exact major-unit Decimal."""
    code = normalize_currency(currency)
    minor = ensure_minor_units(minor_units, code)
    exponent = currency_exponent(code)
    quantum = Decimal(1).scaleb(-exponent)
    return Decimal(minor).scaleb(-exponent).quantize(quantum)


def format_major(minor_units: int, currency: str) -> str:
    """Render minor units as the major-unit string gateways expect ("12.50")."""
    return str(from_minor_units(minor_units, currency))


def ensure_minor_units(value: Any, currency: str) -> int:
    """
    Validate an amount that a gateway already reports in minor units.

    Integral strings are accepted (some APIs quote numbers); anything with
    a fractional part means the caller confused major and minor units.
    """
    code = normalize_currency(currency)
    if isinstance(value, bool):
        raise UnitMismatchError(f"Amount must be an integer, got {value!r}")
    if isinstance(value, int):
        return _check_plausible(value, code, value)

    decimal_value = _to_decimal(value)
    if not decimal_value.is_finite() or decimal_value != decimal_value.to_integral_value():
        raise UnitMismatchError(
            f"Minor-unit amount must be a whole number, got {value!r}",
            details={"amount": str(value), "currency": code},
        )
    return _check_plausible(int(decimal_value), code, value)
