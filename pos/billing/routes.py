from decimal import InvalidOperation
from flask import request, session, jsonify, current_app, abort
from sqlalchemy.exc import IntegrityError

from pos.billing import billing
from pos.billing.models import Sale, SaleItem, SalePayment
from pos.billing.cart import (
    load_cart, save_cart, discard_cart, InvalidDiscount
)
from pos.billing.payments import (
    PaymentSplit, InvalidPayment,
    summarize_payments, payment_method_label
)
from pos.billing.invoice import generate_invoice_number
from pos.inventory.models import Product, InventoryLog
from pos.customers.models import Customer
from pos.auth.decorators import login_required
from pos.utils.money import format_money
from pos import db


# ── Helpers ───────────────────────────────────────────────────────

def _payload():
    """JSON object body, or the form. Any other JSON shape is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return request.form
    if not isinstance(data, dict):
        abort(400, description='Expected a JSON object.')
    return data


def _bad_request(message):
    return jsonify({'error': message}), 400


def _money(amount):
    return format_money(
        amount,
        current_app.config['CURRENCY_CODE'],
        current_app.config['MONEY_DECIMAL_PLACES'],
    )


def _cart_view(cart, result=None):
    """The cart as the POS screen renders it."""
    totals = cart.totals
    view = {
        'items': [
            dict(item.to_dict(),
                 gross=str(item.gross),
                 line_subtotal=str(item.line_subtotal))
            for item in cart.items
        ],
        'item_count':      cart.item_count,
        'tax_rate':        str(cart.tax_rate),
        'wholesale':       cart.wholesale,
        'customer_id':     cart.customer_id,
        'totals':          totals.to_dict(),
        'formatted_total': _money(totals.total),
    }
    if result is not None:
        view['outcome'] = result.outcome.value
        view['item_id'] = result.item_id
        if result.stock_limit_reached:
            view['warning'] = result.message
        elif result.message:
            view['message'] = result.message
    return view


def _apply(mutation):
    """Load the cart, run one mutation, persist it and answer with the new state."""
    cart = load_cart()
    try:
        result = mutation(cart)
    except InvalidDiscount as exc:
        return _bad_request(str(exc))
    except (InvalidOperation, ValueError, TypeError):
        return _bad_request('Invalid number.')

    save_cart(cart)
    return jsonify(_cart_view(cart, result))


def _int_field(data, key, default=None):
    """A whole number from the body. 2.7, True or '2.7' raise ValueError."""
    value = data.get(key, default)
    if value is None or isinstance(value, bool):
        raise ValueError(f'{key} must be a whole number')
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f'{key} must be a whole number')
        return int(value)
    return int(value)


# ── CART ──────────────────────────────────────────────────────────

@billing.route('/cart')
@login_required
def view_cart():
    return jsonify(_cart_view(load_cart()))


@billing.route('/cart/items', methods=['POST'])
@login_required
def add_item():
    """
    Add a product by id or SKU. The stock figure is read from the
    catalog now and travels with the line as its snapshot.
    """
    data = _payload()
    try:
        quantity = _int_field(data, 'quantity', 1)
    except (TypeError, ValueError):
        return _bad_request('Quantity must be a whole number.')
    if quantity < 1:
        return _bad_request('Quantity must be at least 1.')

    product = None
    if data.get('product_id'):
        try:
            product = db.session.get(Product, _int_field(data, 'product_id'))
        except (TypeError, ValueError):
            return _bad_request('Invalid product id.')
    elif data.get('sku'):
        product = Product.query.filter_by(sku=str(data['sku']).strip()).first()
    else:
        return _bad_request('Provide a product_id or sku.')

    if product is None or not product.is_active:
        return jsonify({'error': 'Product not found.'}), 404

    snapshot = product.snapshot(variant=data.get('variant') or None)
    return _apply(lambda cart: cart.add_item(snapshot, quantity))


@billing.route('/cart/items/<item_id>', methods=['DELETE'])
@login_required
def remove_item(item_id):
    return _apply(lambda cart: cart.remove_item(item_id))


@billing.route('/cart/items/<item_id>/quantity', methods=['POST'])
@login_required
def set_quantity(item_id):
    try:
        quantity = _int_field(_payload(), 'quantity')
    except (TypeError, ValueError):
        return _bad_request('Quantity must be a whole number.')
    return _apply(lambda cart: cart.set_quantity(item_id, quantity))


@billing.route('/cart/items/<item_id>/increment', methods=['POST'])
@login_required
def increment(item_id):
    return _apply(lambda cart: cart.increment(item_id))


@billing.route('/cart/items/<item_id>/decrement', methods=['POST'])
@login_required
def decrement(item_id):
    return _apply(lambda cart: cart.decrement(item_id))


@billing.route('/cart/items/<item_id>/discount', methods=['POST'])
@login_required
def line_discount(item_id):
    """Body: {"amount": …} or {"percent": …}."""
    data = _payload()
    if data.get('percent') is not None:
        return _apply(lambda cart: cart.set_line_discount_percent(item_id, data['percent']))
    if data.get('amount') is None:
        return _bad_request('Provide an amount or percent.')
    return _apply(lambda cart: cart.set_line_discount(item_id, data['amount']))


@billing.route('/cart/discount', methods=['POST'])
@login_required
def cart_discount():
    """Body: {"amount": …} or {"percent": …}."""
    data = _payload()
    if data.get('percent') is not None:
        return _apply(lambda cart: cart.set_cart_discount_percent(data['percent']))
    if data.get('amount') is None:
        return _bad_request('Provide an amount or percent.')
    return _apply(lambda cart: cart.set_cart_discount(data['amount']))


_TRUTHY = ('1', 'true', 'on', 'yes')
_FALSY  = ('0', 'false', 'off', 'no')


@billing.route('/cart/wholesale', methods=['POST'])
@login_required
def wholesale():
    """Body: {"enabled": true|false}. Without "enabled" the mode is toggled."""
    data    = _payload()
    enabled = data.get('enabled')
    if enabled is None:
        return _apply(lambda cart: cart.set_wholesale(not cart.wholesale))

    if not isinstance(enabled, bool):
        text = str(enabled).strip().lower()
        if text not in _TRUTHY + _FALSY:
            return _bad_request('enabled must be true or false.')
        enabled = text in _TRUTHY
    return _apply(lambda cart: cart.set_wholesale(enabled))


@billing.route('/cart/customer', methods=['POST'])
@login_required
def attach_customer():
    """
    Body: {"customer_id": 7} attaches the customer and applies their
    standing discount to the cart; {"customer_id": null} detaches.
    """
    data = _payload()
    if data.get('customer_id') is None:
        return _apply(lambda cart: cart.set_customer(None))

    try:
        customer = db.session.get(Customer, _int_field(data, 'customer_id'))
    except (TypeError, ValueError):
        return _bad_request('Invalid customer id.')
    if customer is None:
        return jsonify({'error': 'Customer not found.'}), 404

    return _apply(lambda cart: cart.set_customer(customer.id, customer.discount))


@billing.route('/cart/clear', methods=['POST'])
@login_required
def clear():
    cart = load_cart()
    cart.clear()
    save_cart(cart)
    return jsonify(_cart_view(cart))


# ── COMPLETE SALE ─────────────────────────────────────────────────

@billing.route('/complete', methods=['POST'])
@login_required
def complete():
    """
    Record the sale from a snapshot of the cart:
      1. Check tenders cover the total
      2. Lock each product row with SELECT … FOR UPDATE
      3. Verify live stock for every product (all-or-nothing)
      4. Deduct stock, logging each change
      5. Generate invoice number
      6. Persist Sale + SaleItems + SalePayments and commit
      7. Discard the cart
    """
    cart = load_cart()
    if cart.is_empty:
        return _bad_request('Cart is empty. Add products before completing a sale.')

    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return _bad_request('Expected a JSON object.')

    payments = data.get('payments') or []
    if not isinstance(payments, list) or not all(isinstance(p, dict) for p in payments):
        return _bad_request('payments must be a list of objects.')

    snapshot = cart.snapshot()
    totals   = snapshot.totals

    try:
        splits  = [PaymentSplit.from_dict(p, cart.places) for p in payments]
        summary = summarize_payments(totals.total, splits, cart.places)
    except InvalidPayment as exc:
        return _bad_request(str(exc))

    if not summary.is_settled:
        return _bad_request(
            f'Insufficient payment. Remaining: {_money(summary.remaining)}.'
        )

    cashier_id = session.get('user_id')

    # The same product may sit on several lines (e.g. one discounted, one not)
    required = {}
    for line in snapshot.items:
        required[line.product_id] = required.get(line.product_id, 0) + line.quantity

    try:
        # Sorting by id keeps lock order deterministic across transactions
        locked = {}
        for pid in sorted(required):
            product = (
                db.session.query(Product)
                .filter(Product.id == pid)
                .with_for_update()
                .first()
            )
            if product is None:
                raise ValueError(f'Product ID {pid} no longer exists.')
            locked[pid] = product

        if cart.customer_id is not None and db.session.get(Customer, cart.customer_id) is None:
            raise ValueError(f'Customer ID {cart.customer_id} no longer exists.')

        for pid, qty in required.items():
            product = locked[pid]
            if product.stock < qty:
                raise ValueError(
                    f'Insufficient stock for "{product.name}". '
                    f'Available: {product.stock}, requested: {qty}.'
                )

        for pid, qty in required.items():
            product   = locked[pid]
            old_stock = product.stock
            product.stock -= qty
            db.session.add(InventoryLog(
                product_id=pid,
                old_stock=old_stock,
                new_stock=product.stock,
                changed_by=cashier_id,
                reason="Sale Deduction"
            ))

        sale = Sale(
            invoice_number      = generate_invoice_number(db.session),
            cashier_id          = cashier_id,
            customer_id         = cart.customer_id,
            subtotal            = totals.subtotal,
            total_line_discount = totals.total_line_discount,
            cart_discount       = totals.cart_discount,
            tax_rate            = cart.tax_rate,
            tax_amount          = totals.tax,
            total_amount        = totals.total,
            payment_method      = payment_method_label(splits),
            wholesale           = cart.wholesale,
            notes               = (data.get('notes') or None),
        )
        db.session.add(sale)
        db.session.flush()   # assigns sale.id without committing

        for line in snapshot.items:
            db.session.add(SaleItem(
                sale_id       = sale.id,
                product_id    = line.product_id,
                product_name  = line.name,
                variant       = line.variant,
                quantity      = line.quantity,
                unit_price    = line.unit_price,
                line_discount = line.line_discount,
                subtotal      = line.line_subtotal,
            ))

        for split in splits:
            db.session.add(SalePayment(
                sale_id   = sale.id,
                method    = split.method,
                amount    = split.amount,
                reference = split.reference,
            ))

        db.session.commit()

    except ValueError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Sale rollback (ValueError): {str(exc)}")
        return jsonify({'error': str(exc)}), 409

    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.error(f"Sale rollback (IntegrityError): {str(exc)}")
        return jsonify({'error': 'A database error occurred. Please try again.'}), 409

    discard_cart()

    current_app.logger.info(
        f"Sale completed by User ID {cashier_id}: {sale.invoice_number} | Total: {sale.total_amount}"
    )
    return jsonify(_sale_view(sale, summary.change_due)), 201


# ── RECEIPT ───────────────────────────────────────────────────────

def _sale_view(sale, change_due=None):
    change_due = sale.change_due if change_due is None else change_due
    return {
        'id':             sale.id,
        'invoice_number': sale.invoice_number,
        'created_at':     sale.created_at.isoformat(),
        'cashier':        sale.cashier.name if sale.cashier else None,
        'customer':       sale.customer.to_dict() if sale.customer else None,
        'wholesale':      sale.wholesale,
        'items': [{
            'product_id':    si.product_id,
            'name':          si.product_name,
            'variant':       si.variant,
            'quantity':      si.quantity,
            'unit_price':    str(si.unit_price),
            'line_discount': str(si.line_discount),
            'subtotal':      str(si.subtotal),
        } for si in sale.items],
        'totals': {
            'subtotal':      str(sale.subtotal),
            'discount':      str(sale.discount_amount),
            'tax_rate':      str(sale.tax_rate),
            'tax':           str(sale.tax_amount),
            'total':         str(sale.total_amount),
        },
        'formatted_total': _money(sale.total_amount),
        'payment_method':  sale.payment_method,
        'payments': [{
            'method':    p.method,
            'amount':    str(p.amount),
            'reference': p.reference,
        } for p in sale.payments],
        'change_due':      str(change_due),
        'notes':           sale.notes,
    }


@billing.route('/sales/<int:sale_id>')
@login_required
def sale_detail(sale_id):
    """Receipt data for a recorded sale."""
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        return jsonify({'error': 'Sale not found.'}), 404
    return jsonify(_sale_view(sale))
