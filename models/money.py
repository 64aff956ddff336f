"""Exact decimal amounts for expense records"""
from decimal import Decimal, DecimalException, InvalidOperation
from typing import Annotated, Any

from bson.decimal128 import Decimal128
from pydantic import BeforeValidator, PlainSerializer

# Decimal128 holds at most 34 significant digits
MAX_DIGITS = 34


def parse_amount(value: Any) -> Decimal:
    """
    Parses a raw amount into a positive, finite Decimal.

    Strings and ints are taken as-is. Floats go through str() so that 19.99
    becomes Decimal('19.99') and not its binary expansion.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("Amount must be a positive number")
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError("Amount must be a positive number")

    if not amount.is_finite() or amount <= 0:
        raise ValueError("Amount must be a positive number")
    if len(amount.as_tuple().digits) > MAX_DIGITS:
        raise ValueError(f"Amount cannot have more than {MAX_DIGITS} digits")
    try:
        Decimal128(amount)
    except DecimalException:
        raise ValueError("Amount is out of range")
    return amount


def to_decimal128(amount: Decimal) -> Decimal128:
    return Decimal128(amount)


def from_stored(value: Any) -> Decimal:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


# Serialized as a plain decimal string in JSON (no exponent), never as a float
Money = Annotated[
    Decimal,
    BeforeValidator(parse_amount),
    PlainSerializer(lambda v: format(v, "f"), return_type=str, when_used="json"),
]
