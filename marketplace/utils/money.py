"""Fixed-point money helpers.

All amounts are ``Decimal`` quantized to two places. Integer minor units are
used at payment/wire boundaries and display strings only at the presentation
boundary.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
HUNDRED = Decimal('100')

Number = Union[int, float, Decimal, str]


def to_decimal(value: Number) -> Decimal:
    """
    Convert to Decimal going through ``str`` so floats do not leak binary noise.

    NaN and infinities are rejected with ``ValueError``.
    """
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f'Invalid monetary value: {value!r}')
    if not d.is_finite():
        raise ValueError(f'Monetary value must be finite: {value!r}')
    return d


def round_half_up(value: Number) -> Decimal:
    """Round to cents, halves away from zero."""
    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f'Monetary value out of range: {value!r}')


def percentage_of(amount: Number, percentage: Number) -> Decimal:
    """``round_half_up(amount * percentage / 100)``."""
    return round_half_up(to_decimal(amount) * to_decimal(percentage) / HUNDRED)


def to_minor_units(value: Number) -> int:
    """1234.56 -> 123456."""
    return int(round_half_up(value) * 100)


def from_minor_units(value: int) -> Decimal:
    """123456 -> Decimal('1234.56')."""
    return (Decimal(int(value)) / 100).quantize(CENT)


def format_money(value: Number, currency: str = '') -> str:
    """
    Format an amount for display.

    Examples:
        format_money(6800) -> "6,800.00"
        format_money(Decimal('5100.5'), 'PKR') -> "PKR 5,100.50"
    """
    if value is None or value == '':
        return '-'
    text = f"{round_half_up(value):,.2f}"
    return f"{currency} {text}" if currency else text
