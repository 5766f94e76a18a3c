"""Pricing blueprint - tailoring quotes and the tailor-managed tiers and packages."""
from decimal import InvalidOperation
from flask import Blueprint, request, jsonify, current_app, g, Response

from marketplace.database import get_session
from marketplace.exceptions import MarketplaceError, NotFoundError, ValidationError
from marketplace.middleware import require_seller
from marketplace.models import SellerType, parse_charge_type, parse_garment_type
from marketplace.services.customer_history_service import CustomerHistory
from marketplace.services import seller_pricing_service
from marketplace.services.pricing_calculator import quote_service_order, quote_to_dict
from marketplace.services.seller_config_service import SellerConfig
from marketplace.blueprints.cart import get_clock, int_field

pricing_bp = Blueprint('pricing', __name__, url_prefix='/pricing')


@pricing_bp.route('/quote', methods=['POST'])
def quote() -> Response:
    """
    Quote a tailoring order.

    Body: ``{"seller_id", "tier_type"?, "garments": [{"garment_type", "quantity"}],
    "charges"?, "package_id"?, "package_quantity"?, "shipping_cost"?}``.
    The corporate discount is only considered for a signed-in customer.
    """
    db_session = get_session()
    payload = request.get_json(silent=True) or {}
    seller_config = SellerConfig(db_session, current_app.config['DEFAULT_PRICING_TIER'])

    seller_id = int_field(payload, 'seller_id')
    seller = seller_config.get_seller(seller_id)
    if seller is None or not seller.active:
        raise NotFoundError('Seller not found')
    if seller.seller_type != SellerType.TAILOR:
        raise ValidationError(f'Seller "{seller.name}" does not offer tailoring services')

    tier = seller_config.get_pricing_tier(seller_id, payload.get('tier_type'))
    if tier is None:
        raise ValidationError('The tailor has no active pricing tier for this service')

    garments = []
    for item in payload.get('garments') or []:
        if not isinstance(item, dict):
            raise ValidationError('Each garment must be an object')
        garments.append((parse_garment_type(item.get('garment_type')), int_field(item, 'quantity')))
    charges = [parse_charge_type(c) for c in payload.get('charges') or []]

    package = None
    package_id = int_field(payload, 'package_id', required=False)
    if package_id is not None:
        package = seller_config.get_package(package_id)
        if package is None or package.seller_id != seller_id or not package.active:
            raise NotFoundError('Package not found')

    customer_id = g.get('customer_id')
    history = CustomerHistory(db_session)

    def completed_orders():
        if customer_id is None:
            return 0
        return history.get_completed_order_count(customer_id, seller_id)

    try:
        shipping_cost = payload.get('shipping_cost') or 0
        result = quote_service_order(
            tier, garments, get_clock().now(),
            charges=charges,
            package=package,
            package_quantity=int_field(payload, 'package_quantity', required=False) or 1,
            completed_orders=completed_orders,
            shipping_cost=shipping_cost,
        )
    except (ValueError, InvalidOperation) as e:
        raise ValidationError(str(e))

    body = quote_to_dict(result)
    body['tier'] = {'id': tier.id, 'tier_type': tier.tier_type, 'name': tier.name}
    return jsonify({'status': 'ok', 'quote': body})


# =====================================================
# SELLER-MANAGED TIERS AND PACKAGES
# =====================================================

def _json_object() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


@pricing_bp.route('/tiers/<int:seller_id>', methods=['GET'])
def list_tiers(seller_id: int) -> Response:
    tiers = seller_pricing_service.list_pricing_tiers(get_session(), seller_id)
    return jsonify({'status': 'ok', 'count': len(tiers), 'tiers': [t.to_dict() for t in tiers]})


@pricing_bp.route('/tiers', methods=['POST'])
@require_seller
def create_tier() -> Response:
    db_session = get_session()
    try:
        tier = seller_pricing_service.create_pricing_tier(db_session, g.seller_id, _json_object())
        db_session.commit()
        return jsonify({'status': 'ok', 'tier': tier.to_dict()}), 201
    except MarketplaceError:
        db_session.rollback()
        raise


@pricing_bp.route('/tiers/<int:tier_id>', methods=['PUT'])
@require_seller
def update_tier(tier_id: int) -> Response:
    db_session = get_session()
    try:
        tier = seller_pricing_service.update_pricing_tier(db_session, g.seller_id, tier_id, _json_object())
        db_session.commit()
        return jsonify({'status': 'ok', 'tier': tier.to_dict()})
    except MarketplaceError:
        db_session.rollback()
        raise


@pricing_bp.route('/packages', methods=['GET'])
@require_seller
def list_own_packages() -> Response:
    """All packages of the signed-in tailor, inactive and expired ones included."""
    return list_packages(g.seller_id)


@pricing_bp.route('/packages/<int:seller_id>', methods=['GET'])
def list_packages(seller_id: int) -> Response:
    """Packages of a tailor, cheapest first; ``?tier_type=`` narrows the list."""
    packages = seller_pricing_service.list_packages(
        get_session(), seller_id, get_clock().now(),
        viewer_seller_id=g.get('seller_id'),
        tier_type=request.args.get('tier_type'),
    )
    return jsonify({'status': 'ok', 'count': len(packages), 'packages': [p.to_dict() for p in packages]})


@pricing_bp.route('/packages/single/<int:package_id>', methods=['GET'])
def get_package(package_id: int) -> Response:
    package = seller_pricing_service.get_package(get_session(), package_id)
    body = package.to_dict()
    body['seller'] = {'id': package.seller.id, 'name': package.seller.name}
    return jsonify({'status': 'ok', 'package': body})


@pricing_bp.route('/packages', methods=['POST'])
@require_seller
def create_package() -> Response:
    db_session = get_session()
    try:
        package = seller_pricing_service.create_package(db_session, g.seller_id, _json_object())
        db_session.commit()
        return jsonify({'status': 'ok', 'package': package.to_dict()}), 201
    except MarketplaceError:
        db_session.rollback()
        raise


@pricing_bp.route('/packages/<int:package_id>', methods=['PUT'])
@require_seller
def update_package(package_id: int) -> Response:
    db_session = get_session()
    try:
        package = seller_pricing_service.update_package(db_session, g.seller_id, package_id, _json_object())
        db_session.commit()
        return jsonify({'status': 'ok', 'package': package.to_dict()})
    except MarketplaceError:
        db_session.rollback()
        raise


@pricing_bp.route('/packages/<int:package_id>', methods=['DELETE'])
@require_seller
def delete_package(package_id: int) -> Response:
    db_session = get_session()
    try:
        outcome = seller_pricing_service.delete_package(db_session, g.seller_id, package_id)
        db_session.commit()
        return jsonify({'status': 'ok', 'result': outcome})
    except MarketplaceError:
        db_session.rollback()
        raise
