"""
Module: coop_kernel.db.types
Responsibility: Annotated type aliases and rounding utilities for prices,
    amounts, and quantities.  Centralizes precision so that every model and
    service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  Prices and amounts are Decimal with two places.
    - round_money() is the ONLY sanctioned rounding function for amounts.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# Price or amount, two decimal places (matches the catalog's DECIMAL(10,2))
Money = Annotated[Decimal, Numeric(12, 2)]

# Whole units of the product's unit_type (kg, litres, bags, ...)
Quantity = Annotated[int, BigInteger]

# Short status / code strings
ShortCode = Annotated[str, String(20)]

# Free text (addresses, reasons)
LongText = Annotated[str, String(1000)]


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_money(value) -> Decimal:
    """
    Coerce a catalog price into a Decimal.

    Floats are routed through ``str`` so that ``80.1`` becomes
    ``Decimal("80.1")`` and not its binary expansion.

    Raises:
        decimal.InvalidOperation: If value is not numeric.
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
    Round a monetary value to the specified decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized to ``decimal_places``.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def extend_amount(unit_price: Decimal, quantity: int) -> Decimal:
    """Line amount: unit_price x quantity, rounded to money precision."""
    return round_money(unit_price * quantity)
