"""Middleware for customer and seller context."""
from functools import wraps
from flask import session, g, jsonify


def _load_id(key):
    value = session.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        session.pop(key, None)
        return None


def load_customer():
    """
    Load the current customer id into g.

    Authentication is handled upstream; it stores the authenticated
    customer's id in the session under ``customer_id``.
    """
    g.customer_id = _load_id('customer_id')


def load_seller():
    """Load the signed-in seller id into g (``seller_id`` in the session)."""
    g.seller_id = _load_id('seller_id')


def require_customer(f):
    """Decorator: require an authenticated customer (401 JSON otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('customer_id') is None:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_seller(f):
    """Decorator: require a signed-in seller (401 JSON otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('seller_id') is None:
            return jsonify({'status': 'error', 'message': 'Seller authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function
