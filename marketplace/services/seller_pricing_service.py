"""
Seller Pricing Service - tailors manage their pricing tiers and packages.

Every write is validated before it reaches the database, including the
rules the discount resolver would otherwise only report at checkout: an
enabled discount must be complete and in range. The caller owns the
transaction.
"""
import logging
from datetime import date
from typing import Any, List, Mapping, Optional

from sqlalchemy.orm import Session

from marketplace.exceptions import NotFoundError, UnauthorizedError, ValidationError
from marketplace.models import (
    CartLine, Package, PackageGarment, PricingTier, Seller, SellerType, TierType,
    parse_additional_charges, parse_garment_pricing, parse_garment_type, parse_tier_type
)
from marketplace.utils.money import to_decimal, round_half_up

logger = logging.getLogger(__name__)

TIER_FIELDS = (
    'name', 'tier_type', 'base_price', 'garment_pricing', 'additional_charges', 'minimum_order', 'active',
    'multiple_garments_enabled', 'multiple_garments_threshold', 'multiple_garments_percentage',
    'seasonal_enabled', 'seasonal_percentage', 'seasonal_start_date', 'seasonal_end_date',
    'corporate_enabled', 'corporate_percentage', 'corporate_minimum_orders',
)

PACKAGE_FIELDS = (
    'name', 'tier_type', 'garments', 'fabric_included', 'fabric_type', 'fabric_cost',
    'original_price', 'package_price', 'valid_from', 'valid_until', 'active', 'is_limited', 'max_orders',
)


# =====================================================
# FIELD PARSERS
# =====================================================

def _amount(key, value, required=False):
    if value in (None, ''):
        if required:
            raise ValidationError(f'"{key}" is required')
        return None
    try:
        amount = round_half_up(value)
    except ValueError:
        raise ValidationError(f'"{key}" must be a finite amount')
    if amount < 0:
        raise ValidationError(f'"{key}" cannot be negative')
    return amount


def _percentage(key, value):
    if value in (None, ''):
        return None
    try:
        pct = to_decimal(value)
    except ValueError:
        raise ValidationError(f'"{key}" must be a number')
    if pct < 0 or pct > 100:
        raise ValidationError(f'"{key}" must be between 0 and 100')
    return pct


def _count(key, value, minimum):
    if value in (None, ''):
        return None
    if isinstance(value, bool):
        raise ValidationError(f'"{key}" must be a whole number')
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'"{key}" must be a whole number')
    if count < minimum:
        raise ValidationError(f'"{key}" must be at least {minimum}')
    return count


def _flag(key, value):
    if not isinstance(value, bool):
        raise ValidationError(f'"{key}" must be true or false')
    return value


def _day(key, value):
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f'"{key}" must be an ISO date (YYYY-MM-DD)')


def _text(key, value, required=False):
    if value is not None and not isinstance(value, str):
        raise ValidationError(f'"{key}" must be a string')
    text = (value or '').strip()
    if not text:
        if required:
            raise ValidationError(f'"{key}" is required')
        return None
    return text


def _unknown_fields(data: Mapping[str, Any], allowed) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValidationError(f'Unknown fields: {", ".join(unknown)}')


# =====================================================
# OWNERSHIP
# =====================================================

def _get_tailor(session: Session, seller_id: int) -> Seller:
    seller = session.query(Seller).filter(Seller.id == seller_id).first()
    if not seller or not seller.active:
        raise NotFoundError('Seller not found')
    if seller.seller_type != SellerType.TAILOR:
        raise ValidationError(f'Seller "{seller.name}" does not offer tailoring services')
    return seller


def _owned(record, seller_id: int, label: str):
    if record is None:
        raise NotFoundError(f'{label} not found')
    if record.seller_id != seller_id:
        logger.warning(f"Seller {seller_id} tried to modify {label.lower()} {record.id} of seller {record.seller_id}")
        raise UnauthorizedError()
    return record


# =====================================================
# PRICING TIERS
# =====================================================

def list_pricing_tiers(session: Session, seller_id: int) -> List[PricingTier]:
    """Active tiers of a tailor, ordered by tier type."""
    _get_tailor(session, seller_id)
    return (session.query(PricingTier)
            .filter(PricingTier.seller_id == seller_id, PricingTier.active.is_(True))
            .order_by(PricingTier.tier_type, PricingTier.id)
            .all())


def _apply_tier_fields(tier: PricingTier, data: Mapping[str, Any]) -> None:
    _unknown_fields(data, TIER_FIELDS)
    if 'name' in data:
        tier.name = _text('name', data['name'], required=True)
    if 'tier_type' in data:
        tier.tier_type = parse_tier_type(data['tier_type']).value
    if 'base_price' in data:
        tier.base_price = _amount('base_price', data['base_price'], required=True)
    if 'garment_pricing' in data:
        tier.garment_pricing = parse_garment_pricing(data['garment_pricing'])
    if 'additional_charges' in data:
        tier.additional_charges = parse_additional_charges(data['additional_charges'])
    if 'minimum_order' in data:
        tier.minimum_order = _count('minimum_order', data['minimum_order'], 1) or 1
    if 'active' in data:
        tier.active = _flag('active', data['active'])

    for key in ('multiple_garments_enabled', 'seasonal_enabled', 'corporate_enabled'):
        if key in data:
            setattr(tier, key, _flag(key, data[key]))
    for key in ('multiple_garments_percentage', 'seasonal_percentage', 'corporate_percentage'):
        if key in data:
            setattr(tier, key, _percentage(key, data[key]))
    if 'multiple_garments_threshold' in data:
        tier.multiple_garments_threshold = _count('multiple_garments_threshold', data['multiple_garments_threshold'], 1)
    if 'corporate_minimum_orders' in data:
        tier.corporate_minimum_orders = _count('corporate_minimum_orders', data['corporate_minimum_orders'], 0)
    for key in ('seasonal_start_date', 'seasonal_end_date'):
        if key in data:
            setattr(tier, key, _day(key, data[key]))


def _check_tier(tier: PricingTier) -> None:
    """Enabled discounts must be complete; the resolver would skip them otherwise."""
    if tier.multiple_garments_enabled and (
            tier.multiple_garments_threshold is None or tier.multiple_garments_percentage is None):
        raise ValidationError('Multiple-garments discount needs a threshold and a percentage')
    if tier.seasonal_enabled:
        if tier.seasonal_percentage is None or tier.seasonal_start_date is None or tier.seasonal_end_date is None:
            raise ValidationError('Seasonal discount needs a percentage, a start date and an end date')
    if (tier.seasonal_start_date and tier.seasonal_end_date
            and tier.seasonal_start_date > tier.seasonal_end_date):
        raise ValidationError('Seasonal start date must not be after its end date')
    if tier.corporate_enabled and (tier.corporate_percentage is None or tier.corporate_minimum_orders is None):
        raise ValidationError('Corporate discount needs a percentage and a minimum number of orders')


def _check_single_active_tier(session: Session, tier: PricingTier) -> None:
    if not tier.active:
        return
    query = session.query(PricingTier.id).filter(
        PricingTier.seller_id == tier.seller_id,
        PricingTier.tier_type == tier.tier_type,
        PricingTier.active.is_(True)
    )
    if tier.id is not None:
        query = query.filter(PricingTier.id != tier.id)
    if query.first():
        raise ValidationError(f'An active "{tier.tier_type}" tier already exists')


def create_pricing_tier(session: Session, seller_id: int, data: Mapping[str, Any]) -> PricingTier:
    """Create a tier for the signed-in tailor. ``name`` and ``base_price`` are required."""
    _get_tailor(session, seller_id)
    for key in ('name', 'base_price'):
        if data.get(key) in (None, ''):
            raise ValidationError(f'"{key}" is required')

    tier = PricingTier(
        seller_id=seller_id, tier_type=TierType.BASIC.value, garment_pricing={}, additional_charges={},
        minimum_order=1, active=True,
        multiple_garments_enabled=False, seasonal_enabled=False, corporate_enabled=False
    )
    _apply_tier_fields(tier, data)
    _check_tier(tier)
    _check_single_active_tier(session, tier)
    session.add(tier)
    session.flush()
    logger.info(f"Seller {seller_id} created pricing tier {tier.id} ({tier.tier_type})")
    return tier


def update_pricing_tier(session: Session, seller_id: int, tier_id: int, data: Mapping[str, Any]) -> PricingTier:
    tier = _owned(session.query(PricingTier).filter(PricingTier.id == tier_id).first(), seller_id, 'Pricing tier')
    _apply_tier_fields(tier, data)
    _check_tier(tier)
    _check_single_active_tier(session, tier)
    session.flush()
    logger.info(f"Seller {seller_id} updated pricing tier {tier.id}")
    return tier


# =====================================================
# PACKAGES
# =====================================================

def list_packages(session: Session, seller_id: int, today: date, viewer_seller_id: Optional[int] = None,
                  tier_type: Optional[str] = None) -> List[Package]:
    """
    Packages of a tailor, cheapest first.

    The owner sees all of them; everyone else only sees active packages
    that have not expired.
    """
    _get_tailor(session, seller_id)
    query = session.query(Package).filter(Package.seller_id == seller_id)
    if viewer_seller_id != seller_id:
        query = query.filter(
            Package.active.is_(True),
            (Package.valid_until.is_(None)) | (Package.valid_until >= today)
        )
    if tier_type:
        query = query.filter(Package.tier_type == parse_tier_type(tier_type).value)
    return query.order_by(Package.package_price, Package.id).all()


def get_package(session: Session, package_id: int) -> Package:
    package = session.query(Package).filter(Package.id == package_id).first()
    if not package:
        raise NotFoundError('Package not found')
    return package


def _parse_garments(raw) -> List[PackageGarment]:
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ValidationError('"garments" must be a non-empty list')
    garments = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise ValidationError('Each garment must be an object')
        garment = parse_garment_type(item.get('garment_type'))
        quantity = _count('quantity', item.get('quantity', 1), 1)
        garments.append(PackageGarment(garment_type=garment.value, quantity=quantity))
    return garments


def _apply_package_fields(package: Package, data: Mapping[str, Any]) -> None:
    _unknown_fields(data, PACKAGE_FIELDS)
    if 'name' in data:
        package.name = _text('name', data['name'], required=True)
    if 'tier_type' in data:
        package.tier_type = parse_tier_type(data['tier_type']).value
    if 'garments' in data:
        package.garments = _parse_garments(data['garments'])
    for key in ('fabric_included', 'active', 'is_limited'):
        if key in data:
            setattr(package, key, _flag(key, data[key]))
    if 'fabric_type' in data:
        package.fabric_type = _text('fabric_type', data['fabric_type'])
    if 'fabric_cost' in data:
        package.fabric_cost = _amount('fabric_cost', data['fabric_cost'])
    for key in ('original_price', 'package_price'):
        if key in data:
            setattr(package, key, _amount(key, data[key], required=True))
    for key in ('valid_from', 'valid_until'):
        if key in data:
            setattr(package, key, _day(key, data[key]))
    if 'max_orders' in data:
        package.max_orders = _count('max_orders', data['max_orders'], 1)


def _check_package(package: Package) -> None:
    if package.package_price <= 0 or package.original_price <= 0:
        raise ValidationError('Package prices must be greater than zero')
    if package.package_price > package.original_price:
        raise ValidationError('Package price cannot exceed the original price')
    if package.valid_from and package.valid_until and package.valid_from > package.valid_until:
        raise ValidationError('"valid_from" must not be after "valid_until"')
    if package.is_limited and package.max_orders is None:
        raise ValidationError('A limited package needs "max_orders"')
    if not package.garments:
        raise ValidationError('A package needs at least one garment')


def create_package(session: Session, seller_id: int, data: Mapping[str, Any]) -> Package:
    """
    Publish a package for the signed-in tailor.

    The bundle discount is derived from ``original_price - package_price``.
    """
    _get_tailor(session, seller_id)
    for key in ('name', 'original_price', 'package_price', 'garments'):
        if data.get(key) in (None, ''):
            raise ValidationError(f'"{key}" is required')

    package = Package(
        seller_id=seller_id, tier_type=TierType.BASIC.value,
        active=True, fabric_included=False, is_limited=False, current_orders=0
    )
    _apply_package_fields(package, data)
    _check_package(package)
    session.add(package)
    session.flush()
    logger.info(
        f"Seller {seller_id} created package {package.id} at {package.package_price} "
        f"({package.discount_percentage}% off {package.original_price})"
    )
    return package


def update_package(session: Session, seller_id: int, package_id: int, data: Mapping[str, Any]) -> Package:
    package = _owned(session.query(Package).filter(Package.id == package_id).first(), seller_id, 'Package')
    _apply_package_fields(package, data)
    _check_package(package)
    session.flush()
    logger.info(f"Seller {seller_id} updated package {package.id}")
    return package


def delete_package(session: Session, seller_id: int, package_id: int) -> str:
    """
    Delete a package; one still referenced from a cart is deactivated instead.

    Returns ``'deleted'`` or ``'deactivated'``. A deactivated package in a
    cart is priced a la carte from then on.
    """
    package = _owned(session.query(Package).filter(Package.id == package_id).first(), seller_id, 'Package')
    in_carts = session.query(CartLine.id).filter(CartLine.package_id == package.id).first()
    if in_carts:
        package.active = False
        session.flush()
        logger.info(f"Seller {seller_id} deactivated package {package.id} (still in carts)")
        return 'deactivated'
    session.delete(package)
    session.flush()
    logger.info(f"Seller {seller_id} deleted package {package_id}")
    return 'deleted'
