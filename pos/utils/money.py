"""
pos/utils/money.py
------------------
Rounding and clamping primitives shared by every total computation.

All money is Decimal. Floats are only accepted at the edge and are
converted through str() first so binary representation never leaks in.
A single rounding rule (ROUND_HALF_UP) is used everywhere so that
subtotal - discounts + tax reproduces the same total on every recompute.
"""
from decimal import Decimal, ROUND_HALF_UP


ZERO = Decimal('0')

CURRENCY_SYMBOLS = {
    'PYG': '₲',
    'USD': '$',
    'EUR': '€',
}


def to_decimal(value) -> Decimal:
    """
    Convert an int, str, float or Decimal to Decimal.
    Raises decimal.InvalidOperation for malformed strings and
    ValueError for values that are not finite numbers.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError('Booleans are not money.')
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    else:
        result = Decimal(str(value).strip())

    if not result.is_finite():
        raise ValueError(f'{value!r} is not a finite amount.')
    return result


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def round_money(amount, places: int = 0) -> Decimal:
    """Round to `places` minor-unit digits, half-up. 2.5 → 3, -2.5 → -3."""
    return to_decimal(amount).quantize(_quantum(places), rounding=ROUND_HALF_UP)


def clamp_quantity(requested: int, minimum: int, maximum: int) -> int:
    """Return max(minimum, min(requested, maximum))."""
    return max(minimum, min(requested, maximum))


def percent_of(amount, percent, places: int = 0) -> Decimal:
    """`percent`% of `amount`, rounded like every other total."""
    return round_money(to_decimal(amount) * to_decimal(percent) / Decimal('100'), places)


def format_money(amount, currency: str = 'PYG', places: int = 0) -> str:
    """
    Display helper for receipts and cart views.

    Guaraní uses '.' as the thousands separator: format_money(220000) → '₲ 220.000'.
    Other currencies keep the ',' / '.' convention with `places` decimals.
    """
    value  = round_money(amount, places)
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    text   = f'{value:,.{places}f}'
    if currency == 'PYG':
        text = text.translate(str.maketrans(',.', '.,'))
    return f'{symbol} {text}'
