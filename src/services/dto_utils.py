"""DTO utilities for service layer.

Provides standardized conversion and formatting functions for money and
quantity values crossing the service boundary.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from src.utils.constants import COST_PLACES, MONEY_PLACES, ZERO

Number = Union[Decimal, float, int, str, None]


def to_decimal(value: Number, default: Decimal = ZERO) -> Decimal:
    """
    Convert a numeric value to Decimal without float artefacts.

    Args:
        value: Decimal, float, int, numeric string, or None
        default: Returned when value is None or an empty string

    Returns:
        Decimal value

    Raises:
        ValueError: If value is not numeric

    Examples:
        >>> to_decimal(0.1)
        Decimal('0.1')
        >>> to_decimal(None)
        Decimal('0')
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a numeric value: {value!r}") from e


def cost_to_string(value: Number) -> str:
    """
    Convert a cost value to a 2-decimal string format.

    This is the standard format for money in service DTOs and CLI output.

    Examples:
        >>> cost_to_string(Decimal("4.225"))
        '4.23'
        >>> cost_to_string(None)
        '0.00'
    """
    if value is None:
        return "0.00"

    rounded = Decimal(str(value)).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    return str(rounded)


def margin_percent(price: Number, cost: Number) -> Decimal:
    """
    Gross margin as a percentage of price, rounded to 2 places.

    Returns zero when price is zero.

    Example:
        >>> margin_percent("12.00", "4.225")
        Decimal('64.79')
    """
    price = to_decimal(price)
    if price == ZERO:
        return ZERO
    margin = (price - to_decimal(cost)) / price * Decimal("100")
    return margin.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def round_cost(value: Number) -> Decimal:
    """
    Round a line cost to the 4 places it is cached and recorded at.

    Example:
        >>> round_cost(Decimal("69.99999999999999999999999999"))
        Decimal('70.0000')
    """
    return to_decimal(value).quantize(COST_PLACES, rounding=ROUND_HALF_UP)
