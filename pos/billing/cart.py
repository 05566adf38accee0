"""
pos/billing/cart.py
-------------------
The working sale: an ordered set of line items plus a cart-level discount.

A Cart is an explicit state object. Route handlers load it from the
Flask session, call one mutation, and save it back, so mutations on a
single cart are serialised by the request cycle.

Session layout under key 'cart':
{
    "cart_discount": "0",
    "wholesale":     false,
    "customer_id":   null,
    "items": [
        {
            "item_id":         "9f1c…",      ← uuid4 hex, stable for the line's life
            "product_id":      12,
            "name":            "Funda iPhone 13",
            "sku":             "FND-IP13",
            "unit_price":      "100000",    ← strings survive JSON serialisation
            "retail_price":    "100000",
            "wholesale_price": "85000",     ← null when the product has none
            "available_stock": 5,
            "variant":         null,
            "quantity":        2,
            "line_discount":   "0"
        },
        ...
    ]
}

Business conditions (stock limit, unknown item id) come back as a
CartResult. Only discount validation raises, and only with InvalidDiscount.
"""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import List, Optional, Tuple

from flask import current_app, session

from pos.billing.totals import OrderTotals, compute_totals
from pos.utils.money import ZERO, clamp_quantity, percent_of, round_money, to_decimal


logger = logging.getLogger(__name__)

CART_KEY = 'cart'


# ── Errors ────────────────────────────────────────────────────────

class CartError(ValueError):
    """Base class for rejected cart mutations."""


class InvalidDiscount(CartError):
    """A line or cart discount is negative or exceeds what it discounts."""


# ── Results ───────────────────────────────────────────────────────

class Outcome(enum.Enum):
    OK        = 'ok'
    CLAMPED   = 'clamped'      # applied, but at the stock limit
    REMOVED   = 'removed'
    NOT_FOUND = 'not_found'
    REJECTED  = 'rejected'


@dataclass(frozen=True)
class CartResult:
    """What a mutation did. The UI decides whether to show a warning."""
    outcome:  Outcome
    item_id:  Optional[str] = None
    quantity: Optional[int] = None
    message:  Optional[str] = None

    @property
    def stock_limit_reached(self) -> bool:
        return self.outcome is Outcome.CLAMPED

    @property
    def applied(self) -> bool:
        return self.outcome in (Outcome.OK, Outcome.CLAMPED, Outcome.REMOVED)


# ── Line items ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProductSnapshot:
    """The catalog fields a cart line needs, copied when the item is added."""
    product_id:      int
    name:            str
    sku:             str
    unit_price:      Decimal
    available_stock: int
    variant:         Optional[str] = None
    wholesale_price: Optional[Decimal] = None


def _optional_decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


@dataclass
class CartLineItem:
    item_id:         str
    product_id:      int
    name:            str
    sku:             str
    unit_price:      Decimal
    available_stock: int
    quantity:        int
    line_discount:   Decimal = ZERO
    variant:         Optional[str] = None
    retail_price:    Optional[Decimal] = None     # catalog price; unit_price may be wholesale
    wholesale_price: Optional[Decimal] = None

    def __post_init__(self):
        if self.retail_price is None:
            self.retail_price = self.unit_price

    @property
    def gross(self) -> Decimal:
        """unit_price × quantity, before the line discount."""
        return self.unit_price * self.quantity

    @property
    def line_subtotal(self) -> Decimal:
        return self.gross - self.line_discount

    def price_for(self, wholesale: bool) -> Decimal:
        """Wholesale price when the cart is in wholesale mode and the product has one."""
        if wholesale and self.wholesale_price is not None:
            return self.wholesale_price
        return self.retail_price

    def matches(self, snapshot: ProductSnapshot) -> bool:
        """Same product, same variant, same prices and no discount → mergeable."""
        return (
            self.product_id == snapshot.product_id
            and self.variant == snapshot.variant
            and self.retail_price == snapshot.unit_price
            and self.wholesale_price == snapshot.wholesale_price
            and self.line_discount == ZERO
        )

    def to_dict(self) -> dict:
        return {
            'item_id':         self.item_id,
            'product_id':      self.product_id,
            'name':            self.name,
            'sku':             self.sku,
            'unit_price':      str(self.unit_price),
            'retail_price':    str(self.retail_price),
            'wholesale_price': None if self.wholesale_price is None else str(self.wholesale_price),
            'available_stock': self.available_stock,
            'variant':         self.variant,
            'quantity':        self.quantity,
            'line_discount':   str(self.line_discount),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CartLineItem':
        return cls(
            item_id=data['item_id'],
            product_id=data['product_id'],
            name=data['name'],
            sku=data['sku'],
            unit_price=Decimal(data['unit_price']),
            available_stock=int(data['available_stock']),
            quantity=int(data['quantity']),
            line_discount=Decimal(data.get('line_discount', '0')),
            variant=data.get('variant'),
            retail_price=_optional_decimal(data.get('retail_price')),
            wholesale_price=_optional_decimal(data.get('wholesale_price')),
        )


@dataclass(frozen=True)
class LineSnapshot:
    """Immutable copy of a line handed to checkout and receipts."""
    item_id:       str
    product_id:    int
    name:          str
    sku:           str
    variant:       Optional[str]
    unit_price:    Decimal
    quantity:      int
    line_discount: Decimal
    line_subtotal: Decimal


@dataclass(frozen=True)
class CartSnapshot:
    items:  Tuple[LineSnapshot, ...]
    totals: OrderTotals


# ── Cart ──────────────────────────────────────────────────────────

@dataclass
class Cart:
    tax_rate:      Decimal = ZERO
    places:        int = 0
    items:         List[CartLineItem] = field(default_factory=list)
    cart_discount: Decimal = ZERO
    wholesale:     bool = False
    customer_id:   Optional[int] = None

    # ── Read ──────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        """Total units across all lines."""
        return sum(item.quantity for item in self.items)

    def find_item(self, item_id: str) -> Optional[CartLineItem]:
        """Return the line with `item_id`, or None."""
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    @property
    def totals(self) -> OrderTotals:
        """Recomputed on every access."""
        return compute_totals(self.items, self.cart_discount, self.tax_rate, self.places)

    def discountable_amount(self) -> Decimal:
        """subtotal − line discounts: the ceiling for the cart discount."""
        return sum((item.line_subtotal for item in self.items), ZERO)

    def snapshot(self) -> CartSnapshot:
        lines = tuple(
            LineSnapshot(
                item_id=item.item_id,
                product_id=item.product_id,
                name=item.name,
                sku=item.sku,
                variant=item.variant,
                unit_price=item.unit_price,
                quantity=item.quantity,
                line_discount=item.line_discount,
                line_subtotal=item.line_subtotal,
            )
            for item in self.items
        )
        return CartSnapshot(items=lines, totals=self.totals)

    # ── Store ─────────────────────────────────────────────────────

    def add_item(self, product: ProductSnapshot, quantity: int = 1) -> CartResult:
        """
        Add `quantity` units of `product`.

        Merges into an existing undiscounted line of the same product,
        variant and prices; otherwise appends a new line. The stock figure
        of a merged line is refreshed from the newer snapshot.

        The returned item_id is the merged line when a merge happened, so
        removing it afterwards drops the units that were already there too.
        Use decrement or set_quantity to take back only what was added.
        """
        if quantity < 1:
            raise ValueError(f'quantity must be at least 1, got {quantity}')

        wholesale_price = product.wholesale_price
        product = replace(
            product,
            unit_price=round_money(product.unit_price, self.places),
            wholesale_price=(None if wholesale_price is None
                             else round_money(wholesale_price, self.places)),
        )
        stock   = int(product.available_stock)
        if stock <= 0:
            return CartResult(Outcome.REJECTED,
                              message=f'"{product.name}" is out of stock.')

        existing = next((i for i in self.items if i.matches(product)), None)
        if existing is not None:
            requested = existing.quantity + quantity
            existing.available_stock = stock
            existing.quantity = clamp_quantity(requested, 1, stock)
            item = existing
        else:
            requested = quantity
            item = CartLineItem(
                item_id=uuid.uuid4().hex,
                product_id=product.product_id,
                name=product.name,
                sku=product.sku,
                unit_price=product.unit_price,
                available_stock=stock,
                quantity=clamp_quantity(requested, 1, stock),
                variant=product.variant,
                wholesale_price=product.wholesale_price,
            )
            item.unit_price = item.price_for(self.wholesale)
            self.items.append(item)

        self._reconcile_discounts()
        return self._quantity_result(item, requested)

    def remove_item(self, item_id: str) -> CartResult:
        """Delete the line. Removing an absent line is a no-op."""
        item = self.find_item(item_id)
        if item is None:
            return CartResult(Outcome.NOT_FOUND, item_id=item_id)

        self.items.remove(item)
        self._reconcile_discounts()
        return CartResult(Outcome.REMOVED, item_id=item_id, quantity=0)

    def clear(self) -> None:
        """Empty the cart after a completed or abandoned sale."""
        self.items = []
        self.cart_discount = ZERO
        self.customer_id = None

    # ── Quantity ──────────────────────────────────────────────────

    def set_quantity(self, item_id: str, requested: int) -> CartResult:
        """
        Set a line's quantity within [1, available_stock].
        Zero or negative means "take it out of the cart".
        """
        item = self.find_item(item_id)
        if item is None:
            return CartResult(Outcome.NOT_FOUND, item_id=item_id)

        if requested <= 0:
            return self.remove_item(item_id)

        item.quantity = clamp_quantity(requested, 1, item.available_stock)
        self._reconcile_discounts()
        return self._quantity_result(item, requested)

    def increment(self, item_id: str) -> CartResult:
        item = self.find_item(item_id)
        if item is None:
            return CartResult(Outcome.NOT_FOUND, item_id=item_id)
        return self.set_quantity(item_id, item.quantity + 1)

    def decrement(self, item_id: str) -> CartResult:
        item = self.find_item(item_id)
        if item is None:
            return CartResult(Outcome.NOT_FOUND, item_id=item_id)
        return self.set_quantity(item_id, item.quantity - 1)

    # ── Discounts ─────────────────────────────────────────────────

    def set_line_discount(self, item_id: str, amount) -> CartResult:
        """Raises InvalidDiscount unless 0 ≤ amount ≤ unit_price × quantity."""
        item = self.find_item(item_id)
        if item is None:
            return CartResult(Outcome.NOT_FOUND, item_id=item_id)

        raw = to_decimal(amount)
        if raw < ZERO:
            raise InvalidDiscount('Discount cannot be negative.')
        if raw > item.gross:
            raise InvalidDiscount(
                f'Discount {raw} exceeds the line value {item.gross} '
                f'for "{item.name}".'
            )

        # gross sits on the currency grid, so rounding cannot push past it
        item.line_discount = round_money(raw, self.places).copy_abs()
        self._reconcile_discounts()
        return CartResult(Outcome.OK, item_id=item_id, quantity=item.quantity)

    def set_line_discount_percent(self, item_id: str, percent) -> CartResult:
        item = self.find_item(item_id)
        if item is None:
            return CartResult(Outcome.NOT_FOUND, item_id=item_id)
        percent = _checked_percent(percent)
        return self.set_line_discount(item_id, percent_of(item.gross, percent, self.places))

    def set_cart_discount(self, amount) -> CartResult:
        """Raises InvalidDiscount unless 0 ≤ amount ≤ subtotal − line discounts."""
        raw     = to_decimal(amount)
        ceiling = self.discountable_amount()
        if raw < ZERO:
            raise InvalidDiscount('Discount cannot be negative.')
        if raw > ceiling:
            raise InvalidDiscount(
                f'Discount {raw} exceeds the discountable amount {ceiling}.'
            )

        self.cart_discount = round_money(raw, self.places).copy_abs()
        return CartResult(Outcome.OK)

    def set_cart_discount_percent(self, percent) -> CartResult:
        percent = _checked_percent(percent)
        return self.set_cart_discount(
            percent_of(self.discountable_amount(), percent, self.places)
        )

    # ── Pricing mode & customer ───────────────────────────────────

    def set_wholesale(self, enabled: bool) -> CartResult:
        """
        Switch every line between retail and wholesale prices.
        Lines without a wholesale price keep the retail one. Discounts
        a cheaper line can no longer carry are capped afterwards.
        """
        self.wholesale = bool(enabled)
        for item in self.items:
            item.unit_price = item.price_for(self.wholesale)

        self._reconcile_discounts()
        return CartResult(Outcome.OK)

    def set_customer(self, customer_id: Optional[int], discount_percent=None) -> CartResult:
        """
        Attach a customer to the sale (None detaches).
        A customer discount percentage becomes the cart discount.
        """
        result = CartResult(Outcome.OK)
        if customer_id is not None and discount_percent:
            result = self.set_cart_discount_percent(discount_percent)
        self.customer_id = customer_id
        return result

    # ── Internals ─────────────────────────────────────────────────

    def _quantity_result(self, item: CartLineItem, requested: int) -> CartResult:
        if requested > item.available_stock:
            logger.info(
                "Stock limit for %s (%s): requested %s, available %s",
                item.sku, item.item_id, requested, item.available_stock,
            )
            return CartResult(
                Outcome.CLAMPED,
                item_id=item.item_id,
                quantity=item.quantity,
                message=f'Only {item.available_stock} of "{item.name}" in stock.',
            )
        return CartResult(Outcome.OK, item_id=item.item_id, quantity=item.quantity)

    def _reconcile_discounts(self) -> None:
        """Cap discounts that a smaller cart can no longer carry."""
        for item in self.items:
            if item.line_discount > item.gross:
                logger.info("Capping line discount on %s from %s to %s",
                            item.item_id, item.line_discount, item.gross)
                item.line_discount = item.gross

        ceiling = self.discountable_amount()
        if self.cart_discount > ceiling:
            logger.info("Capping cart discount from %s to %s",
                        self.cart_discount, ceiling)
            self.cart_discount = ceiling

    # ── Serialisation ─────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            'cart_discount': str(self.cart_discount),
            'wholesale':     self.wholesale,
            'customer_id':   self.customer_id,
            'items':         [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict], tax_rate=ZERO, places: int = 0) -> 'Cart':
        data = data or {}
        return cls(
            tax_rate=to_decimal(tax_rate),
            places=places,
            items=[CartLineItem.from_dict(d) for d in data.get('items', [])],
            cart_discount=Decimal(data.get('cart_discount', '0')),
            wholesale=bool(data.get('wholesale', False)),
            customer_id=data.get('customer_id'),
        )


def _checked_percent(percent) -> Decimal:
    percent = to_decimal(percent)
    if percent < ZERO or percent > Decimal('100'):
        raise InvalidDiscount('Discount percentage must be between 0 and 100.')
    return percent


# ── Flask session binding ─────────────────────────────────────────

def load_cart() -> Cart:
    """Rebuild the current cashier's cart from the session."""
    return Cart.from_dict(
        session.get(CART_KEY),
        tax_rate=current_app.config['TAX_RATE'],
        places=current_app.config['MONEY_DECIMAL_PLACES'],
    )


def save_cart(cart: Cart) -> None:
    session[CART_KEY] = cart.to_dict()
    session.modified  = True


def discard_cart() -> None:
    """Drop the cart once the sale is recorded or abandoned."""
    session.pop(CART_KEY, None)
    session.modified = True
