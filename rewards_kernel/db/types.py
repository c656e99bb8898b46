"""
Module: rewards_kernel.db.types
Responsibility: Money helpers shared by models, services and selectors.

Invariants enforced:
    No floats anywhere in the kernel.  All monetary amounts are Decimal;
    columns are Numeric(38, 9) via the declarative type_annotation_map.
"""

from decimal import Decimal, InvalidOperation

ZERO = Decimal("0")


def money_from_str(value: str) -> Decimal:
    """
    Create a Money value from string.

    Raises:
        ValueError: If value is not a finite number.
    """
    try:
        result = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Invalid money value: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Invalid money value: {value!r}")
    return result


def to_money(value: object) -> Decimal:
    """
    Coerce a stored numeric value to Decimal without going through float.

    Some drivers hand back Numeric columns as float or int; str() keeps the
    digits the driver produced.
    """
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    return money_from_str(str(value))
