"""
pos/inventory/validators.py
---------------------------
Pure-Python validation for product data posted to the catalog.
Returns a dict of field -> error_message.
An empty dict means all fields are valid.
"""
from decimal import Decimal, InvalidOperation


def _text(data: dict, key: str, default: str = '') -> str:
    value = data.get(key, default)
    return default if value is None else str(value).strip()


def validate_product_form(form_data: dict) -> dict:
    """
    Validate raw data for creating a product.

    Accepts either request.form or a JSON body, so every value is
    normalised through str() before it is checked.
    """
    errors = {}

    # ── name ─────────────────────────────────────────────────────
    name = _text(form_data, 'name')
    if not name:
        errors['name'] = 'Product name is required.'
    elif len(name) > 200:
        errors['name'] = 'Product name must be 200 characters or fewer.'

    # ── sku ───────────────────────────────────────────────────────
    sku = _text(form_data, 'sku')
    if not sku:
        errors['sku'] = 'SKU is required.'
    elif len(sku) > 100:
        errors['sku'] = 'SKU must be 100 characters or fewer.'

    # ── price ─────────────────────────────────────────────────────
    price_raw = _text(form_data, 'price')
    if not price_raw:
        errors['price'] = 'Price is required.'
    else:
        try:
            price = Decimal(price_raw)
            if not price.is_finite():
                errors['price'] = 'Price must be a valid number.'
            elif price < 0:
                errors['price'] = 'Price cannot be negative.'
        except InvalidOperation:
            errors['price'] = 'Price must be a valid number.'

    # ── wholesale price (optional) ────────────────────────────────
    wholesale_raw = _text(form_data, 'wholesale_price')
    if wholesale_raw:
        try:
            wholesale = Decimal(wholesale_raw)
            if not wholesale.is_finite():
                errors['wholesale_price'] = 'Wholesale price must be a valid number.'
            elif wholesale < 0:
                errors['wholesale_price'] = 'Wholesale price cannot be negative.'
        except InvalidOperation:
            errors['wholesale_price'] = 'Wholesale price must be a valid number.'

    # ── stock ─────────────────────────────────────────────────────
    stock_raw = _text(form_data, 'stock', '0')
    try:
        stock = int(stock_raw)
        if stock < 0:
            errors['stock'] = 'Stock cannot be negative.'
    except ValueError:
        errors['stock'] = 'Stock must be a whole number.'

    return errors


def parse_product_form(form_data: dict) -> dict:
    """
    Convert validated raw values to correct Python types.
    Call only after validate_product_form returns no errors.
    """
    wholesale = _text(form_data, 'wholesale_price')
    return {
        'name':            _text(form_data, 'name'),
        'sku':             _text(form_data, 'sku'),
        'price':           Decimal(_text(form_data, 'price', '0')),
        'wholesale_price': Decimal(wholesale) if wholesale else None,
        'stock':           int(_text(form_data, 'stock', '0')),
    }
