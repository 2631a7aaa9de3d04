"""
Module: pawn_kernel.db.types
Responsibility: Annotated type aliases and utility functions for money columns.
    Centralizes precision and rounding so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and modules.  MUST NOT import from any of those layers.

Invariants enforced:
    - Money is stored with MONEY_DECIMAL_PLACES (2) places.  round_money() is
      the ONLY sanctioned rounding function for financial values.
    - Rates (percent per period) are stored with RATE_DECIMAL_PLACES (4).
    - No floats.  to_money() rejects float input outright.

Failure modes:
    - TypeError when a float is passed to to_money().
    - decimal.InvalidOperation on a non-numeric string.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import Numeric, String


# Monetary amount: 14 digits, 2 decimal places
Money = Annotated[Decimal, Numeric(14, 2)]

# Percentage rate per period, e.g. 10.0000 for ten percent
Rate = Annotated[Decimal, Numeric(9, 4)]

# Short identifier strings (numbers, codes, statuses)
ShortCode = Annotated[str, String(50)]

# Free text
LongText = Annotated[str, String(2000)]


MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the currency precision.

    This is the ONLY sanctioned rounding function for financial values.
    All other code MUST delegate rounding here.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_money(value: Decimal | int | str | None) -> Decimal:
    """
    Coerce a value read from storage or input into a 2-place Decimal.

    None becomes ZERO.  Floats are refused because their binary
    representation cannot be trusted for currency.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        raise TypeError("Monetary values must not be float")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return round_money(value)


def to_rate(value: Decimal | int | str) -> Decimal:
    """Coerce a percentage rate into a 4-place Decimal."""
    if isinstance(value, float):
        raise TypeError("Rates must not be float")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return round_money(value, RATE_DECIMAL_PLACES)


def percent_of(amount: Decimal, rate_percent: Decimal) -> Decimal:
    """Return rate_percent percent of amount, unrounded."""
    return amount * rate_percent / HUNDRED
