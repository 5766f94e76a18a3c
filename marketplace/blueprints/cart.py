"""Cart blueprint - JSON API over the persistent customer cart."""
from flask import Blueprint, request, jsonify, current_app, g, Response
from typing import Any, Dict, Optional

from marketplace.database import get_session
from marketplace.exceptions import MarketplaceError, ValidationError
from marketplace.middleware import require_customer
from marketplace.services import cart_service
from marketplace.utils.clock import SystemClock

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')

ITEM_TYPES = ('goods', 'service', 'package')


def get_clock():
    """Clock used for date-bounded offers (overridable through app config)."""
    return current_app.config.get('CLOCK') or SystemClock()


def _payload() -> Dict[str, Any]:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def int_field(payload: Dict[str, Any], key: str, required: bool = True) -> Optional[int]:
    value = payload.get(key)
    if value in (None, ''):
        if required:
            raise ValidationError(f'"{key}" is required')
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'"{key}" must be an integer')


def _summary(db_session) -> Dict[str, Any]:
    return cart_service.get_cart_summary(
        db_session, g.customer_id,
        default_tier_type=current_app.config['DEFAULT_PRICING_TIER'],
        currency=current_app.config['CURRENCY_CODE'],
    )


@cart_bp.route('', methods=['GET'])
@require_customer
def view_cart() -> Response:
    db_session = get_session()
    return jsonify({'status': 'ok', 'cart': _summary(db_session)})


@cart_bp.route('/items', methods=['POST'])
@require_customer
def add_item() -> Response:
    """
    Add an item to the cart.

    Body: ``{"type": "goods", "product_id", "quantity"}``,
    ``{"type": "service", "seller_id", "garment_type", "quantity", "tier_type"?, "charges"?}``
    or ``{"type": "package", "package_id", "quantity"?}``.
    """
    db_session = get_session()
    payload = _payload()
    item_type = (payload.get('type') or 'goods').lower()
    default_tier = current_app.config['DEFAULT_PRICING_TIER']

    try:
        if item_type not in ITEM_TYPES:
            raise ValidationError(f'Unknown item type "{item_type}"')

        if item_type == 'goods':
            line = cart_service.add_goods_item(
                db_session, g.customer_id,
                int_field(payload, 'product_id'),
                payload.get('quantity', 1)
            )
        elif item_type == 'service':
            charges = payload.get('charges') or []
            if not isinstance(charges, (list, tuple)):
                raise ValidationError('"charges" must be a list')
            line = cart_service.add_service_item(
                db_session, g.customer_id,
                int_field(payload, 'seller_id'),
                payload.get('garment_type'),
                payload.get('quantity', 1),
                tier_type=payload.get('tier_type'),
                charges=charges,
                default_tier_type=default_tier,
            )
        else:
            line = cart_service.add_package_item(
                db_session, g.customer_id,
                int_field(payload, 'package_id'),
                payload.get('quantity', 1),
                default_tier_type=default_tier,
                clock=get_clock(),
            )

        db_session.commit()
        current_app.logger.info(f"Customer {g.customer_id} added {item_type} line {line.id}")
        return jsonify({
            'status': 'ok',
            'item': cart_service.line_to_dict(line),
            'cart': _summary(db_session),
        }), 201
    except MarketplaceError:
        db_session.rollback()
        raise


@cart_bp.route('/items/<int:line_id>', methods=['PATCH'])
@require_customer
def update_item(line_id: int) -> Response:
    db_session = get_session()
    payload = _payload()
    try:
        line = cart_service.update_item_quantity(db_session, g.customer_id, line_id, payload.get('quantity'))
        db_session.commit()
        return jsonify({'status': 'ok', 'item': cart_service.line_to_dict(line), 'cart': _summary(db_session)})
    except MarketplaceError:
        db_session.rollback()
        raise


@cart_bp.route('/items/<int:line_id>', methods=['DELETE'])
@require_customer
def remove_item(line_id: int) -> Response:
    db_session = get_session()
    try:
        cart_service.remove_item(db_session, g.customer_id, line_id)
        db_session.commit()
        return jsonify({'status': 'ok', 'cart': _summary(db_session)})
    except MarketplaceError:
        db_session.rollback()
        raise


@cart_bp.route('', methods=['DELETE'])
@require_customer
def clear_cart() -> Response:
    db_session = get_session()
    cart_service.clear_cart(db_session, g.customer_id)
    db_session.commit()
    return jsonify({'status': 'ok', 'cart': _summary(db_session)})


@cart_bp.route('/items/<int:line_id>/confirm-price', methods=['POST'])
@require_customer
def confirm_price(line_id: int) -> Response:
    """Accept the current live price of a line after a price change."""
    db_session = get_session()
    try:
        line = cart_service.reconfirm_price(
            db_session, g.customer_id, line_id,
            default_tier_type=current_app.config['DEFAULT_PRICING_TIER'],
            clock=get_clock(),
        )
        db_session.commit()
        return jsonify({'status': 'ok', 'item': cart_service.line_to_dict(line), 'cart': _summary(db_session)})
    except MarketplaceError:
        db_session.rollback()
        raise
