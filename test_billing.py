"""
test_billing.py — Cart endpoints and checkout through the Flask test client.
Run: pytest test_billing.py -v
"""
import re
import pytest
from decimal import Decimal

from pos import create_app, db
from pos.auth.models import User, RoleEnum
from pos.inventory.models import Product, InventoryLog
from pos.billing.models import Sale, SaleItem, SalePayment
from pos.customers.models import Customer


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def client():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        cashier = User(username='cajero', name='Cajero Test', role=RoleEnum.cashier)
        cashier.set_password('cajero123')
        admin = User(username='admin', name='Admin', role=RoleEnum.admin)
        admin.set_password('admin123')
        db.session.add_all([cashier, admin])
        db.session.commit()

        yield app.test_client()

        db.session.remove()
        db.drop_all()


def login(client, username='cajero', password='cajero123'):
    resp = client.post('/auth/login', json={'username': username, 'password': password})
    assert resp.status_code == 200


def make_customer(name='Taller Benítez', phone='0981123456', discount='5'):
    c = Customer(name=name, phone=phone, discount_percent=Decimal(discount))
    db.session.add(c)
    db.session.commit()
    return c.id


def make_product(name='Funda iPhone 13', sku='FND-IP13', price='100000', stock=5,
                 wholesale=None):
    p = Product(name=name, sku=sku, price=Decimal(price), stock=stock, is_active=True,
                wholesale_price=None if wholesale is None else Decimal(wholesale))
    db.session.add(p)
    db.session.commit()
    return p.id


def fresh(model, pk):
    db.session.expire_all()
    return db.session.get(model, pk)


def add(client, quantity=1, **kwargs):
    return client.post('/billing/cart/items', json=dict(quantity=quantity, **kwargs))


def only_item_id(resp):
    items = resp.get_json()['items']
    assert len(items) == 1
    return items[0]['item_id']


# ── 1. Access ─────────────────────────────────────────────────────

def test_cart_requires_login(client):
    assert client.get('/billing/cart').status_code == 401


def test_bad_login_rejected(client):
    resp = client.post('/auth/login', json={'username': 'cajero', 'password': 'wrong'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Invalid username or password.'


def test_disabled_user_cannot_log_in(client):
    user = User.query.filter_by(username='cajero').one()
    user.is_active = False
    db.session.commit()

    resp = client.post('/auth/login', json={'username': 'cajero', 'password': 'cajero123'})
    assert resp.status_code == 401


def test_login_returns_user_and_stamps_last_login(client):
    resp = client.post('/auth/login', json={'username': 'cajero', 'password': 'cajero123'})
    assert resp.status_code == 200
    assert resp.get_json()['role'] == 'cashier'

    db.session.expire_all()
    assert User.query.filter_by(username='cajero').one().last_login_at is not None


def test_empty_cart_view(client):
    login(client)
    data = client.get('/billing/cart').get_json()
    assert data['items'] == []
    assert data['totals']['total'] == '0'
    assert data['formatted_total'] == '₲ 0'


# ── 2. Cart mutations ─────────────────────────────────────────────

def test_add_by_sku_computes_totals(client):
    make_product()
    login(client)

    resp = add(client, quantity=2, sku='FND-IP13')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['outcome'] == 'ok'
    assert data['item_count'] == 2
    assert data['totals']['subtotal'] == '200000'
    assert data['totals']['tax'] == '20000'
    assert data['totals']['total'] == '220000'
    assert data['formatted_total'] == '₲ 220.000'


def test_add_twice_merges_line(client):
    pid = make_product(stock=10)
    login(client)

    add(client, quantity=1, product_id=pid)
    resp = add(client, quantity=2, product_id=pid)
    data = resp.get_json()
    assert len(data['items']) == 1
    assert data['items'][0]['quantity'] == 3


def test_add_over_stock_warns_and_clamps(client):
    make_product(stock=3)
    login(client)

    data = add(client, quantity=7, sku='FND-IP13').get_json()
    assert data['outcome'] == 'clamped'
    assert 'Only 3' in data['warning']
    assert data['items'][0]['quantity'] == 3


def test_add_out_of_stock_rejected(client):
    make_product(stock=0)
    login(client)

    resp = add(client, sku='FND-IP13')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['outcome'] == 'rejected'
    assert 'out of stock' in data['message']
    assert data['items'] == []


def test_add_unknown_or_inactive_product(client):
    pid = make_product()
    db.session.get(Product, pid).is_active = False
    db.session.commit()
    login(client)

    assert add(client, sku='NOPE').status_code == 404
    assert add(client, product_id=pid).status_code == 404
    assert add(client).status_code == 400


def test_add_with_bad_quantity(client):
    make_product()
    login(client)
    assert add(client, quantity='abc', sku='FND-IP13').status_code == 400
    assert add(client, quantity=0, sku='FND-IP13').status_code == 400


def test_fractional_quantities_are_rejected_not_truncated(client):
    pid = make_product(stock=5)
    login(client)

    assert add(client, quantity=2.7, sku='FND-IP13').status_code == 400
    assert add(client, quantity='2.7', sku='FND-IP13').status_code == 400
    assert add(client, quantity=True, sku='FND-IP13').status_code == 400
    assert add(client, product_id=pid + 0.5).status_code == 400
    assert client.get('/billing/cart').get_json()['items'] == []

    item_id = only_item_id(add(client, quantity=2.0, sku='FND-IP13'))
    resp = client.post(f'/billing/cart/items/{item_id}/quantity', json={'quantity': 3.5})
    assert resp.status_code == 400
    assert client.get('/billing/cart').get_json()['items'][0]['quantity'] == 2


def test_non_object_json_body_is_a_bad_request(client):
    make_product()
    login(client)
    add(client, sku='FND-IP13')

    resp = client.post('/billing/cart/discount', json=[{'amount': 1000}])
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Expected a JSON object.'
    assert client.post('/billing/cart/items', json=['FND-IP13']).status_code == 400


def test_set_quantity_clamps_and_removes(client):
    make_product(stock=5)
    login(client)
    item_id = only_item_id(add(client, quantity=2, sku='FND-IP13'))

    data = client.post(f'/billing/cart/items/{item_id}/quantity', json={'quantity': 10}).get_json()
    assert data['outcome'] == 'clamped'
    assert data['items'][0]['quantity'] == 5

    data = client.post(f'/billing/cart/items/{item_id}/quantity', json={'quantity': 0}).get_json()
    assert data['outcome'] == 'removed'
    assert data['items'] == []


def test_set_quantity_rejects_non_numeric(client):
    make_product()
    login(client)
    item_id = only_item_id(add(client, sku='FND-IP13'))
    resp = client.post(f'/billing/cart/items/{item_id}/quantity', json={'quantity': 'x'})
    assert resp.status_code == 400


def test_increment_decrement_endpoints(client):
    make_product(stock=5)
    login(client)
    item_id = only_item_id(add(client, sku='FND-IP13'))

    data = client.post(f'/billing/cart/items/{item_id}/increment').get_json()
    assert data['items'][0]['quantity'] == 2
    client.post(f'/billing/cart/items/{item_id}/decrement')
    data = client.post(f'/billing/cart/items/{item_id}/decrement').get_json()
    assert data['outcome'] == 'removed'


def test_remove_missing_item_is_noop(client):
    login(client)
    resp = client.delete('/billing/cart/items/does-not-exist')
    assert resp.status_code == 200
    assert resp.get_json()['outcome'] == 'not_found'


def test_line_discount_and_rejection(client):
    make_product()
    login(client)
    item_id = only_item_id(add(client, quantity=2, sku='FND-IP13'))

    data = client.post(f'/billing/cart/items/{item_id}/discount', json={'amount': 20000}).get_json()
    assert data['totals']['discounted_subtotal'] == '180000'
    assert data['totals']['total'] == '198000'

    resp = client.post(f'/billing/cart/items/{item_id}/discount', json={'amount': 200001})
    assert resp.status_code == 400
    assert 'exceeds' in resp.get_json()['error']

    # Rejected mutation left the cart untouched
    data = client.get('/billing/cart').get_json()
    assert data['items'][0]['line_discount'] == '20000'


def test_line_discount_percent(client):
    make_product()
    login(client)
    item_id = only_item_id(add(client, quantity=2, sku='FND-IP13'))

    data = client.post(f'/billing/cart/items/{item_id}/discount', json={'percent': 25}).get_json()
    assert data['items'][0]['line_discount'] == '50000'


def test_cart_discount_endpoint(client):
    make_product()
    login(client)
    add(client, quantity=2, sku='FND-IP13')

    data = client.post('/billing/cart/discount', json={'amount': '50000'}).get_json()
    assert data['totals']['cart_discount'] == '50000'
    assert data['totals']['total'] == '165000'

    resp = client.post('/billing/cart/discount', json={'amount': 200001})
    assert resp.status_code == 400
    resp = client.post('/billing/cart/discount', json={'amount': 'free'})
    assert resp.status_code == 400
    assert client.post('/billing/cart/discount', json={}).status_code == 400

    data = client.post('/billing/cart/discount', json={'percent': 10}).get_json()
    assert data['totals']['cart_discount'] == '20000'


def test_fractional_discount_outside_bounds_rejected(client):
    make_product()
    login(client)
    item_id = only_item_id(add(client, quantity=2, sku='FND-IP13'))

    url = f'/billing/cart/items/{item_id}/discount'
    assert client.post(url, json={'amount': '-0.4'}).status_code == 400
    assert client.post(url, json={'amount': '200000.4'}).status_code == 400
    assert client.post('/billing/cart/discount', json={'amount': '-0.3'}).status_code == 400

    data = client.get('/billing/cart').get_json()
    assert data['items'][0]['line_discount'] == '0'
    assert data['totals']['cart_discount'] == '0'


def test_wholesale_endpoint_reprices_cart(client):
    make_product(wholesale='85000')
    login(client)
    add(client, quantity=2, sku='FND-IP13')

    data = client.post('/billing/cart/wholesale', json={'enabled': True}).get_json()
    assert data['wholesale'] is True
    assert data['items'][0]['unit_price'] == '85000'
    assert data['totals']['total'] == '187000'

    # No body toggles back to retail
    data = client.post('/billing/cart/wholesale', json={}).get_json()
    assert data['wholesale'] is False
    assert data['items'][0]['unit_price'] == '100000'

    assert client.post('/billing/cart/wholesale', json={'enabled': 'maybe'}).status_code == 400


def test_attach_customer_applies_their_discount(client):
    cid = make_customer(discount='5')
    make_product()
    login(client)
    add(client, quantity=2, sku='FND-IP13')

    data = client.post('/billing/cart/customer', json={'customer_id': cid}).get_json()
    assert data['customer_id'] == cid
    assert data['totals']['cart_discount'] == '10000'
    assert data['totals']['total'] == '209000'

    data = client.post('/billing/cart/customer', json={'customer_id': None}).get_json()
    assert data['customer_id'] is None


def test_attach_unknown_customer(client):
    login(client)
    assert client.post('/billing/cart/customer', json={'customer_id': 404}).status_code == 404
    assert client.post('/billing/cart/customer', json={'customer_id': 'x'}).status_code == 400


def test_clear_cart(client):
    make_product()
    login(client)
    add(client, quantity=2, sku='FND-IP13')
    data = client.post('/billing/cart/clear').get_json()
    assert data['items'] == []
    assert data['totals']['total'] == '0'


def test_logout_discards_cart(client):
    make_product()
    login(client)
    add(client, sku='FND-IP13')
    client.post('/auth/logout')
    login(client)
    assert client.get('/billing/cart').get_json()['items'] == []


# ── 3. Checkout ───────────────────────────────────────────────────

def test_complete_sale_records_everything(client):
    pid = make_product(stock=5)
    login(client)
    item_id = only_item_id(add(client, quantity=2, sku='FND-IP13'))
    client.post(f'/billing/cart/items/{item_id}/discount', json={'amount': 20000})

    resp = client.post('/billing/complete', json={
        'payments': [{'method': 'cash', 'amount': 200000}],
        'notes': 'Cliente frecuente',
    })
    assert resp.status_code == 201
    data = resp.get_json()

    assert re.fullmatch(r'\d{4}-\d{6}', data['invoice_number'])
    assert Decimal(data['totals']['total']) == Decimal('198000')
    assert Decimal(data['totals']['discount']) == Decimal('20000')
    assert Decimal(data['change_due']) == Decimal('2000')
    assert data['payment_method'] == 'cash'
    assert len(data['items']) == 1
    assert data['items'][0]['quantity'] == 2

    # Stock deducted and audited
    assert fresh(Product, pid).stock == 3
    log = InventoryLog.query.filter_by(product_id=pid, reason='Sale Deduction').one()
    assert (log.old_stock, log.new_stock) == (5, 3)

    sale = fresh(Sale, data['id'])
    assert sale.notes == 'Cliente frecuente'
    assert Decimal(str(sale.tax_amount)) == Decimal('18000')
    assert SaleItem.query.filter_by(sale_id=sale.id).count() == 1
    assert SalePayment.query.filter_by(sale_id=sale.id).count() == 1

    # Cart discarded
    assert client.get('/billing/cart').get_json()['items'] == []


def test_split_payment_sale(client):
    make_product(stock=5)
    login(client)
    add(client, quantity=1, sku='FND-IP13')

    resp = client.post('/billing/complete', json={'payments': [
        {'method': 'card', 'amount': 100000, 'reference': '4242'},
        {'method': 'cash', 'amount': 10000},
    ]})
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['payment_method'] == 'multiple'
    assert Decimal(data['change_due']) == Decimal('0')
    assert len(data['payments']) == 2


def test_complete_empty_cart(client):
    login(client)
    resp = client.post('/billing/complete', json={'payments': [{'method': 'cash', 'amount': 1}]})
    assert resp.status_code == 400
    assert Sale.query.count() == 0


def test_complete_underpaid_keeps_cart(client):
    pid = make_product(stock=5)
    login(client)
    add(client, quantity=1, sku='FND-IP13')

    resp = client.post('/billing/complete', json={'payments': [{'method': 'cash', 'amount': 50000}]})
    assert resp.status_code == 400
    assert 'Insufficient payment' in resp.get_json()['error']

    assert Sale.query.count() == 0
    assert fresh(Product, pid).stock == 5
    assert len(client.get('/billing/cart').get_json()['items']) == 1


def test_complete_invalid_payment_method(client):
    make_product()
    login(client)
    add(client, sku='FND-IP13')
    resp = client.post('/billing/complete', json={'payments': [{'method': 'gold', 'amount': 110000}]})
    assert resp.status_code == 400


@pytest.mark.parametrize('body', [
    [{'method': 'cash', 'amount': 110000}],
    {'payments': ['cash']},
    {'payments': {'method': 'cash', 'amount': 110000}},
])
def test_complete_rejects_malformed_body(client, body):
    pid = make_product()
    login(client)
    add(client, sku='FND-IP13')

    resp = client.post('/billing/complete', json=body)
    assert resp.status_code == 400
    assert fresh(Product, pid).stock == 5
    assert len(client.get('/billing/cart').get_json()['items']) == 1


def test_complete_records_customer_and_wholesale(client):
    cid = make_customer(discount='10')
    make_product(wholesale='85000')
    login(client)
    add(client, quantity=2, sku='FND-IP13')
    client.post('/billing/cart/wholesale', json={'enabled': True})
    client.post('/billing/cart/customer', json={'customer_id': cid})

    # 170000 − 17000 customer discount = 153000, + 10% tax
    resp = client.post('/billing/complete', json={
        'payments': [{'method': 'cash', 'amount': 170000}],
    })
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['customer']['id'] == cid
    assert data['wholesale'] is True
    assert Decimal(data['totals']['total']) == Decimal('168300')
    assert Decimal(data['items'][0]['unit_price']) == Decimal('85000')

    sale = fresh(Sale, data['id'])
    assert sale.customer_id == cid
    assert Decimal(str(sale.cart_discount)) == Decimal('17000')


def test_complete_rolls_back_when_live_stock_dropped(client):
    pid = make_product(stock=5)
    login(client)
    add(client, quantity=3, sku='FND-IP13')

    # Another till sold units after this cart took its snapshot
    product = db.session.get(Product, pid)
    product.stock = 2
    db.session.commit()

    resp = client.post('/billing/complete', json={'payments': [{'method': 'cash', 'amount': 330000}]})
    assert resp.status_code == 409
    assert 'Insufficient stock' in resp.get_json()['error']

    assert Sale.query.count() == 0
    assert fresh(Product, pid).stock == 2
    assert len(client.get('/billing/cart').get_json()['items']) == 1


def test_same_product_on_two_lines_checks_combined_stock(client):
    pid = make_product(stock=3)
    login(client)
    item_id = only_item_id(add(client, quantity=2, sku='FND-IP13'))
    client.post(f'/billing/cart/items/{item_id}/discount', json={'amount': 1000})
    data = add(client, quantity=2, sku='FND-IP13').get_json()
    assert len(data['items']) == 2

    resp = client.post('/billing/complete', json={'payments': [{'method': 'cash', 'amount': 500000}]})
    assert resp.status_code == 409
    assert fresh(Product, pid).stock == 3


def test_invoice_numbers_are_sequential(client):
    make_product(stock=10)
    login(client)

    numbers = []
    for _ in range(3):
        add(client, sku='FND-IP13')
        resp = client.post('/billing/complete', json={'payments': [{'method': 'cash', 'amount': 110000}]})
        numbers.append(resp.get_json()['invoice_number'])

    seqs = [int(n.split('-')[1]) for n in numbers]
    assert seqs == [1, 2, 3]


def test_sale_detail(client):
    make_product()
    login(client)
    add(client, sku='FND-IP13')
    sale_id = client.post('/billing/complete', json={
        'payments': [{'method': 'cash', 'amount': 120000}],
    }).get_json()['id']

    resp = client.get(f'/billing/sales/{sale_id}')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['cashier'] == 'Cajero Test'
    assert Decimal(data['change_due']) == Decimal('10000')
    assert data['items'][0]['name'] == 'Funda iPhone 13'

    assert client.get('/billing/sales/9999').status_code == 404


# ── 4. Health ─────────────────────────────────────────────────────

def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'ok'
