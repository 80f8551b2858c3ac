"""
Price Normalizer

Converts integer base-unit amounts (wei, token smallest units) to
display-precision decimals and back, for any decimal count.

All arithmetic is exact `Decimal` arithmetic under a wide local context:
    to_display(1500, 2)  -> Decimal("15.00")
    to_display(1, 18)    -> Decimal("0.000000000000000001")
    to_base_units(to_display(n, d), d) == n   for every n and d in 0..18

Floats only appear at the JSON boundary (to_float).
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Optional, Union

# uint256 has 78 digits; leave headroom for scaling
_PRECISION = 100

Amount = Union[int, str, Decimal]


def _check_decimals(decimals: int) -> int:
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    return int(decimals)


def _as_decimal(value: Amount) -> Decimal:
    if isinstance(value, float):
        # repr is the shortest string that round-trips
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValueError(f"Not a numeric amount: {value!r}") from e


def to_display(base_units: Amount, decimals: int) -> Decimal:
    """
    Convert an integer base-unit amount to display units.

    The result is quantized to exactly `decimals` fractional digits.
    """
    decimals = _check_decimals(decimals)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        amount = _as_decimal(base_units)
        return amount.scaleb(-decimals).quantize(Decimal(1).scaleb(-decimals))


def to_base_units(display: Amount, decimals: int) -> int:
    """
    Convert a display amount back to integer base units.

    Raises:
        ValueError: if the amount carries more fractional digits than `decimals`
    """
    decimals = _check_decimals(decimals)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = _as_decimal(display).scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{display} has more than {decimals} fractional digits")
        return int(scaled)


def to_float(display: Optional[Decimal]) -> Optional[float]:
    """JSON-boundary conversion. None stays None."""
    if display is None:
        return None
    return float(display)


def format_amount(display: Decimal) -> str:
    """Plain positional notation, never scientific (`1E-18` -> `0.000000000000000001`)."""
    return format(display, "f")
