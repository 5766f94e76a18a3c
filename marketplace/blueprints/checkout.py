"""Checkout blueprint - multi-seller checkout with a partial-success report."""
from decimal import InvalidOperation
from flask import Blueprint, request, jsonify, current_app, g, Response
from typing import Dict

from marketplace.database import get_session, get_session_factory
from marketplace.exceptions import ValidationError
from marketplace.middleware import require_customer
from marketplace.services.checkout_orchestrator import CheckoutOrchestrator
from marketplace.blueprints.cart import get_clock, int_field
from marketplace.utils.money import round_half_up

checkout_bp = Blueprint('checkout', __name__, url_prefix='/checkout')


def _parse_shipping_costs(raw) -> Dict[int, object]:
    """``{"<seller_id>": "<amount>"}`` -> ``{seller_id: Decimal}``."""
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError('"shipping_costs" must be an object keyed by seller id')
    costs = {}
    for seller_id, amount in raw.items():
        try:
            costs[int(seller_id)] = round_half_up(amount)
        except (TypeError, ValueError, InvalidOperation):
            raise ValidationError(f'Invalid shipping cost for seller {seller_id}')
    return costs


@checkout_bp.route('', methods=['POST'])
@require_customer
def checkout() -> Response:
    """
    Check out the whole cart, or one seller's group with ``seller_id``.

    Returns 200 when every group was confirmed, 207 when only some were and
    409 when none was. Each rejected group carries its reason.
    """
    db_session = get_session()
    payload = request.get_json(silent=True) or {}

    orchestrator = CheckoutOrchestrator(
        db_session,
        clock=get_clock(),
        session_factory=get_session_factory(),
        max_workers=current_app.config['CHECKOUT_MAX_WORKERS'],
        default_tier_type=current_app.config['DEFAULT_PRICING_TIER'],
    )
    report = orchestrator.checkout(
        g.customer_id,
        seller_id=int_field(payload, 'seller_id', required=False),
        shipping_costs=_parse_shipping_costs(payload.get('shipping_costs')),
    )

    if report.all_confirmed:
        status = 200
    elif report.confirmed:
        status = 207
    else:
        status = 409
    body = report.to_dict()
    body['status'] = 'ok' if status == 200 else 'partial' if status == 207 else 'rejected'
    return jsonify(body), status
