"""
pos/billing/totals.py
---------------------
Pure order-total computation.

    subtotal            = Σ unit_price × quantity           (no discounts)
    total_line_discount = Σ line_discount
    discounted_subtotal = subtotal − line discounts − cart discount   (≥ 0)
    tax                 = round(discounted_subtotal × tax_rate / 100)
    total               = discounted_subtotal + tax

Nothing here is cached. Cart.totals calls compute_totals() on every read,
which is linear in the number of lines.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from pos.utils.money import ZERO, round_money, to_decimal


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderTotals:
    """Derived totals for one cart state. Never stored."""
    subtotal:            Decimal = ZERO
    total_line_discount: Decimal = ZERO
    cart_discount:       Decimal = ZERO
    discounted_subtotal: Decimal = ZERO
    tax:                 Decimal = ZERO
    total:               Decimal = ZERO

    @property
    def discount(self) -> Decimal:
        """Line discounts + cart discount."""
        return self.total_line_discount + self.cart_discount

    def to_dict(self) -> dict:
        return {
            'subtotal':            str(self.subtotal),
            'total_line_discount': str(self.total_line_discount),
            'cart_discount':       str(self.cart_discount),
            'discount':            str(self.discount),
            'discounted_subtotal': str(self.discounted_subtotal),
            'tax':                 str(self.tax),
            'total':               str(self.total),
        }


def compute_totals(items: Iterable, cart_discount=ZERO, tax_rate=ZERO,
                   places: int = 0) -> OrderTotals:
    """
    Fold line items into OrderTotals.

    `items` is any iterable of objects exposing unit_price, quantity and
    line_discount (CartLineItem or LineSnapshot).

    A cart discount that overshoots is rejected when it is set, so a
    negative discounted subtotal here means the cart state is corrupt.
    It is logged and floored at zero instead of reaching the caller.
    """
    subtotal            = ZERO
    total_line_discount = ZERO

    for item in items:
        subtotal            += round_money(item.unit_price * item.quantity, places)
        total_line_discount += round_money(item.line_discount, places)

    if subtotal == ZERO:
        return OrderTotals()

    cart_discount = round_money(cart_discount, places)
    discounted    = subtotal - total_line_discount - cart_discount

    if discounted < ZERO:
        logger.error(
            "Negative discounted subtotal %s (subtotal=%s, line discounts=%s, "
            "cart discount=%s); flooring at 0",
            discounted, subtotal, total_line_discount, cart_discount,
        )
        discounted = round_money(ZERO, places)

    tax = round_money(discounted * to_decimal(tax_rate) / Decimal('100'), places)

    return OrderTotals(
        subtotal=subtotal,
        total_line_discount=total_line_discount,
        cart_discount=cart_discount,
        discounted_subtotal=discounted,
        tax=tax,
        total=discounted + tax,
    )
