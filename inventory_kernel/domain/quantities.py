"""
Quantity and money rounding.

Invariants:
    - Two decimal places, ROUND_HALF_UP, for every quantity and amount.
      round_quantity() is the only sanctioned rounding function; it is
      applied before values are compared or persisted.
    - No floats: a float input is converted through its repr so 0.1 becomes
      Decimal("0.1"), never the binary approximation.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

QUANTITY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """
    Convert a numeric input to an unrounded Decimal.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid numeric value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Invalid numeric value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value!r}")
    return result


def round_quantity(value: Decimal | int | float | str) -> Decimal:
    """Round a quantity or amount to the canonical two decimal places."""
    return to_decimal(value).quantize(_QUANTUM, rounding=DEFAULT_ROUNDING)


def round_optional(value: Decimal | int | float | str | None) -> Decimal | None:
    """round_quantity() that passes None through."""
    if value is None:
        return None
    return round_quantity(value)
