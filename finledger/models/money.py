"""
Decimal Parsing and Minor-Unit Conversion

DESIGN DECISION: There is exactly ONE parser for money.
Every amount, balance and credit limit goes through parse_decimal,
whether it arrives as a string, an int, a float or a Decimal.

Malformed input is rejected loudly. It is NEVER coerced to zero.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

# Two fractional digits, fifteen digits total.
MONEY_PLACES = 2
MONEY_MAX_DIGITS = 15
MINOR_UNITS_PER_MAJOR = 10 ** MONEY_PLACES

_QUANTUM = Decimal(1).scaleb(-MONEY_PLACES)
_MAX_MAGNITUDE = Decimal(10) ** (MONEY_MAX_DIGITS - MONEY_PLACES)


def parse_decimal(value: Any) -> Decimal:
    """
    Parse a money value into a Decimal.

    Raises:
        ValueError: For empty strings, booleans, None, NaN/Infinity,
            unparseable text and unsupported types.
    """
    if value is None:
        raise ValueError("A numeric value is required")
    if isinstance(value, bool):
        # bool is an int subclass; True must not become 1
        raise ValueError(f"Invalid decimal: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # Through str to keep what the caller saw, not the binary expansion
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            raise ValueError("A numeric value is required")
        try:
            result = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"Invalid decimal: {value!r}") from e
    else:
        raise ValueError(f"Unsupported decimal type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Invalid decimal: {value!r}")

    if abs(result) >= _MAX_MAGNITUDE:
        raise ValueError(f"Too many digits: {value!r}")

    quantized = result.quantize(_QUANTUM)
    # Trailing zeros beyond two places are harmless ("1.500")
    if quantized != result:
        raise ValueError(
            f"At most {MONEY_PLACES} decimal places are allowed: {value!r}"
        )

    return quantized


def within_money_range(amount: Decimal) -> bool:
    """True if parse_decimal would accept the amount's magnitude."""
    return abs(amount) < _MAX_MAGNITUDE


def to_minor_units(amount: Decimal) -> int:
    """Convert a parsed Decimal to integer minor units (cents)."""
    scaled = amount.scaleb(MONEY_PLACES)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount has more than {MONEY_PLACES} decimal places: {amount}")
    return int(scaled)


def from_minor_units(minor: int) -> Decimal:
    """Convert integer minor units back to a Decimal with two places."""
    return Decimal(minor).scaleb(-MONEY_PLACES).quantize(_QUANTUM)


def format_money(amount: Decimal) -> str:
    """Fixed-point string without scientific notation."""
    return format(amount.quantize(_QUANTUM), "f")
