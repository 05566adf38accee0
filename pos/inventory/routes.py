from flask import request, jsonify, current_app, session
from sqlalchemy.exc import IntegrityError
from pos.inventory import inventory
from pos.inventory.models import Product, InventoryLog
from pos.inventory.validators import validate_product_form, parse_product_form
from pos.auth.decorators import login_required, admin_required
from pos import db


# ── LIST / SEARCH ─────────────────────────────────────────────────────────────

@inventory.route('/products')
@login_required
def products():
    """Active products, optionally filtered by name or SKU (?q=)."""
    q = request.args.get('q', '').strip()
    query = Product.query.filter_by(is_active=True)
    if q:
        query = query.filter(
            (Product.name.ilike(f'%{q}%')) |
            (Product.sku.ilike(f'%{q}%'))
        )
    results = query.order_by(Product.name.asc()).limit(50).all()
    return jsonify([p.to_dict() for p in results])


# ── CREATE ────────────────────────────────────────────────────────────────────

@inventory.route('/products', methods=['POST'])
@admin_required
def create_product():
    data = request.get_json(silent=True) or request.form.to_dict()
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400
    errors = validate_product_form(data)

    if not errors and Product.query.filter_by(sku=str(data['sku']).strip()).first():
        errors['sku'] = 'A product with this SKU already exists.'

    if errors:
        return jsonify({'errors': errors}), 400

    product = Product(**parse_product_form(data))
    try:
        db.session.add(product)
        db.session.flush()  # get ID

        if product.stock > 0:
            db.session.add(InventoryLog(
                product_id=product.id,
                old_stock=0,
                new_stock=product.stock,
                changed_by=session.get('user_id'),
                reason="Initial Stock (Product Created)"
            ))

        db.session.commit()
    except IntegrityError:
        # Another request inserted the same SKU between the check and the commit
        db.session.rollback()
        return jsonify({'errors': {'sku': 'A product with this SKU already exists.'}}), 400

    current_app.logger.info(f"Admin created product: {product.name} ({product.sku})")
    return jsonify(product.to_dict()), 201


# ── STOCK ADJUSTMENT ──────────────────────────────────────────────────────────

@inventory.route('/products/<int:product_id>/stock', methods=['POST'])
@admin_required
def adjust_stock(product_id):
    """Set the absolute stock figure for a product, with an audit log entry."""
    product = db.session.get(Product, product_id)
    if product is None:
        return jsonify({'error': 'Product not found.'}), 404

    data = request.get_json(silent=True) or request.form
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400
    reason = (data.get('reason') or 'Manual Adjustment').strip()
    try:
        new_stock = int(data.get('stock'))
    except (TypeError, ValueError):
        return jsonify({'error': 'Stock must be a whole number.'}), 400
    if new_stock < 0:
        return jsonify({'error': 'Stock cannot be negative.'}), 400

    old_stock = product.stock
    product.stock = new_stock
    db.session.add(InventoryLog(
        product_id=product.id,
        old_stock=old_stock,
        new_stock=new_stock,
        changed_by=session.get('user_id'),
        reason=reason,
    ))
    db.session.commit()

    current_app.logger.info(
        f"Stock adjusted for {product.sku}: {old_stock} -> {new_stock} ({reason})"
    )
    return jsonify(product.to_dict())
