from datetime import datetime
from flask import request, session, jsonify, current_app
from pos.auth import auth
from pos.auth.models import User
from pos import db


@auth.route('/login', methods=['POST'])
def login():
    """Validate credentials and populate the session."""
    data = request.get_json(silent=True) or request.form
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'error': 'Username and password are required.'}), 400

    user = User.query.filter_by(username=username).first()
    if user is None or not user.authenticate(password):
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'error': 'Invalid username or password.'}), 401

    user.last_login_at = datetime.utcnow()
    db.session.commit()

    # A new login starts with an empty cart
    session.clear()
    session['user_id'] = user.id
    session['role']    = user.role.value
    session.permanent  = True

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify(user.to_dict())


@auth.route('/logout', methods=['POST'])
def logout():
    """Clear the session, discarding any open cart."""
    session.clear()
    return jsonify({'message': 'Logged out.'})
