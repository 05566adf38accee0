from decimal import Decimal, InvalidOperation
from flask import request, jsonify, current_app
from pos import db
from pos.customers import customers
from pos.customers.models import Customer
from pos.auth.decorators import login_required, admin_required


@customers.route('/search')
@login_required
def search():
    """Match by phone or name (?q=). An empty query returns nothing."""
    q = request.args.get('q', '').strip()
    if not q:
        return jsonify([])

    results = Customer.query.filter(
        (Customer.phone.ilike(f'%{q}%')) |
        (Customer.name.ilike(f'%{q}%'))
    ).order_by(Customer.name.asc()).limit(10).all()

    return jsonify([c.to_dict() for c in results])


@customers.route('/create', methods=['POST'])
@login_required
def create():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400

    name  = str(data.get('name') or '').strip()
    phone = str(data.get('phone') or '').strip()
    email = str(data.get('email') or '').strip() or None

    if not name or not phone:
        return jsonify({'error': 'Name and phone are required.'}), 400

    if Customer.query.filter_by(phone=phone).first():
        return jsonify({'error': 'A customer with this phone already exists.'}), 400

    return _save(Customer(name=name, phone=phone, email=email), data)


@customers.route('/<int:customer_id>/discount', methods=['POST'])
@admin_required
def set_discount(customer_id):
    """Standing discount percentage applied when the customer joins a cart."""
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        return jsonify({'error': 'Customer not found.'}), 404

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400
    return _save(customer, data, status=200)


def _save(customer, data, status=201):
    raw = data.get('discount_percent', customer.discount_percent or 0)
    try:
        percent = Decimal(str(raw))
    except InvalidOperation:
        return jsonify({'error': 'Discount percentage must be a number.'}), 400
    if not percent.is_finite() or percent < 0 or percent > 100:
        return jsonify({'error': 'Discount percentage must be between 0 and 100.'}), 400

    customer.discount_percent = percent
    db.session.add(customer)
    db.session.commit()

    current_app.logger.info(f"Customer saved: {customer.name} ({customer.phone}) {percent}%")
    return jsonify(customer.to_dict()), status
