"""Formatting and parsing helpers for stock quantities."""
from decimal import Decimal, InvalidOperation
from typing import Union, Optional


QUANTITY_STEP = Decimal('0.001')
QUANTITY_MAX = Decimal('999999.999')


def format_quantity(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format a quantity without trailing zeros.

    Examples:
        format_quantity(Decimal('3.000')) -> "3"
        format_quantity(Decimal('2.500')) -> "2.5"
        format_quantity(None) -> "0"
    """
    if value is None or value == "":
        return "0"

    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return str(value)

    if num == num.to_integral_value():
        return str(num.quantize(Decimal('1')))
    return format(num.normalize(), 'f')


def parse_quantity(value) -> Optional[Decimal]:
    """
    Parse a raw quantity (number or numeric string) into a Decimal.

    Returns None when the value is missing, boolean, non-numeric or not finite.
    Range and precision checks are left to the caller.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, str):
            cleaned = value.strip()
            if not cleaned:
                return None
            num = Decimal(cleaned)
        elif isinstance(value, float):
            num = Decimal(repr(value))
        else:
            num = Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return None

    if not num.is_finite():
        return None
    return num


def to_number(value: Optional[Decimal]):
    """Convert a Decimal quantity to a JSON number."""
    if value is None:
        return None
    return float(value)
