"""Cart Service - persistent, server-owned cart operations."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from marketplace.exceptions import NotFoundError, ValidationError, StockConflictError
from marketplace.models import (
    Cart, CartLine, ProductType, SellerType, parse_charge_type, parse_garment_type
)
from marketplace.services import cart_aggregator
from marketplace.services.catalog_service import ProductCatalog
from marketplace.services.pricing_calculator import package_unit_price, resolved_unit_price
from marketplace.services.seller_config_service import SellerConfig
from marketplace.utils.clock import SystemClock
from marketplace.utils.money import format_money

logger = logging.getLogger(__name__)


def get_cart(session: Session, customer_id: int) -> Optional[Cart]:
    return session.query(Cart).filter(Cart.customer_id == customer_id).first()


def get_or_create_cart(session: Session, customer_id: int) -> Cart:
    """
    Get existing cart or create new one for the customer.
    One cart per customer (enforced by UNIQUE constraint).
    """
    cart = get_cart(session, customer_id)
    if not cart:
        cart = Cart(customer_id=customer_id)
        session.add(cart)
        # Only flush to obtain the id; the caller owns the transaction
        session.flush()
    return cart


def _validate_quantity(qty) -> int:
    try:
        qty = int(qty)
    except (TypeError, ValueError):
        raise ValidationError('Quantity must be a whole number')
    if qty < 1:
        raise ValidationError('Quantity must be at least 1')
    return qty


def _get_line(session: Session, cart: Cart, line_id: int) -> CartLine:
    line = session.query(CartLine).filter(
        CartLine.id == line_id,
        CartLine.cart_id == cart.id
    ).first()
    if not line:
        raise NotFoundError('Item not found in cart')
    return line


def add_goods_item(session: Session, customer_id: int, product_id: int, qty) -> CartLine:
    """Add a product or increase the quantity of the line already holding it."""
    qty = _validate_quantity(qty)
    catalog = ProductCatalog(session)
    price = catalog.get_price(product_id)
    if price is None:
        raise NotFoundError('Product not found')
    if not price.is_active:
        raise ValidationError(f'Product "{price.name}" is not available')

    cart = get_or_create_cart(session, customer_id)
    line = session.query(CartLine).filter(
        CartLine.cart_id == cart.id,
        CartLine.product_type == ProductType.GOODS,
        CartLine.product_id == product_id
    ).first()

    new_qty = qty + (line.quantity if line else 0)
    if new_qty > price.stock_quantity:
        raise StockConflictError(product_id, new_qty, price.stock_quantity)

    if line:
        line.quantity = new_qty
    else:
        line = CartLine(
            product_type=ProductType.GOODS,
            seller_id=price.seller_id,
            product_id=product_id,
            unit_price=price.unit_price,
            quantity=qty,
            unit=price.unit,
        )
        cart.lines.append(line)

    cart.updated_at = datetime.now()
    session.flush()
    return line


def _get_tailor(seller_config: SellerConfig, seller_id: int):
    seller = seller_config.get_seller(seller_id)
    if seller is None:
        raise NotFoundError('Seller not found')
    if not seller.active or seller.seller_type != SellerType.TAILOR:
        raise ValidationError(f'Seller "{seller.name}" does not offer tailoring services')
    return seller


def add_service_item(session: Session, customer_id: int, seller_id: int, garment_type, qty,
                     tier_type: Optional[str] = None, charges: Iterable = (),
                     default_tier_type: str = 'basic') -> CartLine:
    """Add a tailoring service line priced from the seller's live pricing tier."""
    qty = _validate_quantity(qty)
    garment = parse_garment_type(garment_type)
    charge_types = [parse_charge_type(c) for c in charges]

    seller_config = SellerConfig(session, default_tier_type)
    _get_tailor(seller_config, seller_id)
    tier = seller_config.get_pricing_tier(seller_id, tier_type)
    if tier is None:
        raise ValidationError('The tailor has no active pricing tier for this service')

    offered = tier.charge_amounts
    for charge in charge_types:
        if charge not in offered:
            raise ValidationError(f'The tailor does not offer "{charge.value}"')

    cart = get_or_create_cart(session, customer_id)
    line = CartLine(
        product_type=ProductType.SERVICE,
        seller_id=seller_id,
        garment_type=garment.value,
        tier_type=tier.tier_type,
        unit_price=tier.price_for(garment),
        quantity=qty,
        unit='garment',
        selected_charges=[c.value for c in charge_types],
    )
    cart.lines.append(line)
    cart.updated_at = datetime.now()
    session.flush()
    return line


def add_package_item(session: Session, customer_id: int, package_id: int, qty=1,
                     default_tier_type: str = 'basic', clock=None) -> CartLine:
    """Add a tailor package; the snapshot is what the package costs today."""
    qty = _validate_quantity(qty)
    clock = clock or SystemClock()
    seller_config = SellerConfig(session, default_tier_type)
    package = seller_config.get_package(package_id)
    if package is None:
        raise NotFoundError('Package not found')
    if not package.active:
        raise ValidationError(f'Package "{package.name}" is not available')
    _get_tailor(seller_config, package.seller_id)

    tier = seller_config.get_pricing_tier(package.seller_id, package.tier_type)
    unit_price = package_unit_price(package, tier, clock.now())

    cart = get_or_create_cart(session, customer_id)
    line = CartLine(
        product_type=ProductType.SERVICE,
        seller_id=package.seller_id,
        package_id=package.id,
        tier_type=package.tier_type,
        unit_price=unit_price,
        quantity=qty,
        unit='package',
    )
    cart.lines.append(line)
    cart.updated_at = datetime.now()
    session.flush()
    return line


def update_item_quantity(session: Session, customer_id: int, line_id: int, qty) -> CartLine:
    qty = _validate_quantity(qty)
    cart = get_cart(session, customer_id)
    if not cart:
        raise NotFoundError('Cart not found')
    line = _get_line(session, cart, line_id)

    if line.is_goods:
        available = ProductCatalog(session).available_stock(line.product_id)
        if qty > available:
            raise StockConflictError(line.product_id, qty, available)

    line.quantity = qty
    cart.updated_at = datetime.now()
    session.flush()
    return line


def remove_item(session: Session, customer_id: int, line_id: int) -> None:
    cart = get_cart(session, customer_id)
    if not cart:
        raise NotFoundError('Cart not found')
    line = _get_line(session, cart, line_id)
    cart.lines.remove(line)
    cart.updated_at = datetime.now()
    session.flush()


def clear_cart(session: Session, customer_id: int) -> None:
    """Clear all lines from the cart."""
    cart = get_cart(session, customer_id)
    if not cart:
        return
    cart.lines.clear()
    cart.updated_at = datetime.now()
    session.flush()


def reconfirm_price(session: Session, customer_id: int, line_id: int,
                    default_tier_type: str = 'basic', clock=None) -> CartLine:
    """
    Explicitly accept the current live price of a line.

    This is the only way a cart snapshot price moves after a
    PriceChangedError; checkout itself never substitutes prices.
    """
    clock = clock or SystemClock()
    cart = get_cart(session, customer_id)
    if not cart:
        raise NotFoundError('Cart not found')
    line = _get_line(session, cart, line_id)
    seller_config = SellerConfig(session, default_tier_type)

    if line.is_goods:
        price = ProductCatalog(session).get_price(line.product_id)
        if price is None or not price.is_active:
            raise ValidationError('Product is no longer available')
        live_price = resolved_unit_price(line, catalog_price=price)
    elif line.is_package:
        package = seller_config.get_package(line.package_id)
        if package is None or not package.active:
            raise ValidationError('Package is no longer available')
        tier = seller_config.get_pricing_tier(package.seller_id, package.tier_type)
        live_price = package_unit_price(package, tier, clock.now())
    else:
        tier = seller_config.get_pricing_tier(line.seller_id, line.tier_type)
        live_price = resolved_unit_price(line, tier=tier)

    if Decimal(str(line.unit_price)) != live_price:
        logger.info(f"Cart line {line.id}: price re-confirmed {line.unit_price} -> {live_price}")
        line.unit_price = live_price
        cart.updated_at = datetime.now()
        session.flush()
    return line


def get_cart_summary(session: Session, customer_id: int, default_tier_type: str = 'basic',
                     currency: str = '') -> Dict[str, Any]:
    """Cart grouped by seller with snapshot subtotals, for display."""
    cart = get_cart(session, customer_id)
    if not cart or not cart.lines:
        return {'groups': [], 'grand_total': '0.00', 'grand_total_display': format_money(0, currency)}

    groups = cart_aggregator.group(
        cart.lines, ProductCatalog(session), SellerConfig(session, default_tier_type)
    )
    grand_total = cart_aggregator.grand_total(groups)
    return {
        'groups': [
            {
                'seller_id': g.seller_id,
                'seller_name': g.seller.name,
                'lines': [line_to_dict(line) for line in g.lines],
                'group_subtotal': str(g.group_subtotal),
                'group_subtotal_display': format_money(g.group_subtotal, currency),
            }
            for g in groups.values()
        ],
        'grand_total': str(grand_total),
        'grand_total_display': format_money(grand_total, currency),
    }


def line_to_dict(line: CartLine) -> Dict[str, Any]:
    return {
        'id': line.id,
        'product_type': line.product_type.value,
        'seller_id': line.seller_id,
        'product_id': line.product_id,
        'garment_type': line.garment_type,
        'tier_type': line.tier_type,
        'package_id': line.package_id,
        'unit_price': str(line.unit_price),
        'quantity': line.quantity,
        'unit': line.unit,
        'selected_charges': list(line.selected_charges or []),
        'line_subtotal': str(line.line_subtotal),
    }
