"""
Module: billing_kernel.db.types
Responsibility: Annotated column aliases and the single sanctioned money
    rounding function.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and engines.  MUST NOT import from any of those.

Invariants enforced:
    - MONEY_DECIMAL_PLACES is the canonical precision of every charge,
      accrual, deduction and journal amount.
    - round_money() is the ONLY rounding function applied to money.  Rounding
      is ROUND_HALF_UP (commercial rounding), never banker's rounding.
    - No floats: all amounts are Decimal.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

Money = Annotated[Decimal, Numeric(38, 9)]

Percent = Annotated[Decimal, Numeric(9, 4)]

ShortCode = Annotated[str, String(50)]

Name = Annotated[str, String(255)]

LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str | float) -> Decimal:
    """
    Coerce a numeric value to Decimal.

    Floats go through ``str`` so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def discount_factor(discount_percent: Decimal | None) -> Decimal:
    """Return ``1 - discount/100``; a missing discount is 0%."""
    if not discount_percent:
        return Decimal("1")
    return Decimal("1") - to_decimal(discount_percent) / HUNDRED
