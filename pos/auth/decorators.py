"""
pos/auth/decorators.py
----------------------
Route-protection decorators for the JSON endpoints.
Usage:
    from pos.auth.decorators import login_required, admin_required

    @billing.route('/cart')
    @login_required
    def view_cart():
        ...
"""
from functools import wraps
from flask import session, jsonify


def _unauthenticated():
    return jsonify({'error': 'Please log in to access this resource.'}), 401


def login_required(f):
    """Answer 401 unless 'user_id' is in the Flask session."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return _unauthenticated()
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Unauthenticated users get 401, authenticated non-admins 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return _unauthenticated()
        if session.get('role') != 'admin':
            return jsonify({'error': 'Admin access required.'}), 403
        return f(*args, **kwargs)
    return decorated
