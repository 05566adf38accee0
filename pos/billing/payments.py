"""
pos/billing/payments.py
-----------------------
Split-payment arithmetic on top of an order total.

A sale may be paid with several tenders (cash + card, for instance).
Only cash can exceed what is owed; the excess is returned as change.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from pos.billing.cart import CartError
from pos.utils.money import ZERO, round_money, to_decimal


PAYMENT_METHODS = [
    ('cash',     'Efectivo'),
    ('card',     'Tarjeta'),
    ('transfer', 'Transferencia'),
    ('credit',   'Crédito'),
]
PAYMENT_METHOD_CHOICES = [m[0] for m in PAYMENT_METHODS]


class InvalidPayment(CartError):
    """Unknown tender, non-positive amount, or a non-cash overpayment."""


@dataclass(frozen=True)
class PaymentSplit:
    method:    str
    amount:    Decimal
    reference: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, places: int = 0) -> 'PaymentSplit':
        method = (data.get('method') or '').strip().lower()
        if method not in PAYMENT_METHOD_CHOICES:
            raise InvalidPayment(f'Unknown payment method "{method}".')
        try:
            amount = round_money(data.get('amount'), places)
        except (ArithmeticError, ValueError):
            raise InvalidPayment('Payment amount must be a valid number.')
        if amount <= ZERO:
            raise InvalidPayment('Payment amount must be greater than zero.')
        return cls(method=method, amount=amount, reference=data.get('reference') or None)


@dataclass(frozen=True)
class PaymentSummary:
    total:      Decimal
    total_paid: Decimal
    remaining:  Decimal
    change_due: Decimal

    @property
    def is_settled(self) -> bool:
        return self.remaining == ZERO

    def to_dict(self) -> dict:
        return {
            'total':      str(self.total),
            'total_paid': str(self.total_paid),
            'remaining':  str(self.remaining),
            'change_due': str(self.change_due),
            'is_settled': self.is_settled,
        }


def summarize_payments(total, splits: Iterable[PaymentSplit], places: int = 0) -> PaymentSummary:
    """
    Compare tenders against `total`.

    remaining  = max(0, total − paid)
    change_due = max(0, paid − total), and only if cash covers the excess:
                 card/transfer/credit are never charged beyond what is owed.
    """
    total  = round_money(to_decimal(total), places)
    splits = list(splits)

    paid     = sum((s.amount for s in splits), ZERO)
    non_cash = sum((s.amount for s in splits if s.method != 'cash'), ZERO)

    if non_cash > total:
        raise InvalidPayment(
            f'Non-cash payments ({non_cash}) exceed the total ({total}).'
        )

    return PaymentSummary(
        total=total,
        total_paid=paid,
        remaining=max(ZERO, total - paid),
        change_due=max(ZERO, paid - total),
    )


def payment_method_label(splits) -> str:
    """'multiple' when tenders are mixed, else the single method."""
    methods = {s.method for s in splits}
    if len(methods) > 1:
        return 'multiple'
    return methods.pop() if methods else 'cash'
