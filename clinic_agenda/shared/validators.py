"""Shared validation utilities"""

import math
from decimal import Decimal, InvalidOperation
from typing import Optional, Union


def clamp(value: int, lower: int, upper: int) -> int:
    """Clamp an integer into the closed range [lower, upper]"""
    return max(lower, min(upper, value))


def to_finite_decimal(value: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """
    Convert a monetary input into a Decimal.

    Args:
        value: Raw value from a form or JSON payload

    Returns:
        Decimal value, or None when the input is empty

    Raises:
        ValueError: If the value is not a finite number
    """
    if value is None or value == "":
        return None

    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("Value must be a finite number")

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError("Value must be a number") from None

    if not amount.is_finite():
        raise ValueError("Value must be a finite number")

    return amount
