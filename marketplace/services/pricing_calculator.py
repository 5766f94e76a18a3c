"""
Pricing calculator - composes prices, charges and discounts into totals.

Everything in this module is a pure function of its arguments: identical
inputs always produce identical totals, and nothing is read from or written to
storage. Amounts are ``Decimal`` rounded half-up to cents.

    line_total     = resolved_unit_price * quantity
    subtotal       = sum(discountable line totals) + sum(selected charges)
    discount       = round_half_up(subtotal * percentage / 100)   (once, never per line)
    total          = max(0, subtotal - discount) + package lines + shipping
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from marketplace.exceptions import ValidationError
from marketplace.models import (
    CartLine, ChargeType, GarmentType, Package, PricingTier, PricingMode, ProductType
)
from marketplace.services.discount_resolver import DiscountResolution, resolve_service_tier
from marketplace.utils.money import ZERO, percentage_of, round_half_up, to_decimal

logger = logging.getLogger(__name__)


class PricedLine(NamedTuple):
    line_id: Optional[int]
    product_type: ProductType
    description: str
    pricing_mode: PricingMode
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    product_id: Optional[int] = None
    garment_type: Optional[GarmentType] = None
    package_id: Optional[int] = None

    @property
    def discountable(self) -> bool:
        """Package-priced lines already carry their discount."""
        return self.pricing_mode != PricingMode.PACKAGE


def line_total(unit_price, quantity: int) -> Decimal:
    return round_half_up(to_decimal(unit_price) * quantity)


def resolved_unit_price(line: CartLine, tier: Optional[PricingTier] = None,
                        catalog_price=None) -> Decimal:
    """
    Live unit price of a non-package cart line.

    Goods use the catalog price; services use the tier's garment override when
    present, else the tier base price.
    """
    if line.is_goods:
        if catalog_price is None:
            raise ValidationError(f'Product {line.product_id} has no catalog price')
        return round_half_up(catalog_price.unit_price)
    if tier is None:
        raise ValidationError(f'Seller {line.seller_id} has no active pricing tier')
    return tier.price_for(line.garment)


def price_goods_line(line: CartLine, catalog_price) -> PricedLine:
    unit_price = resolved_unit_price(line, catalog_price=catalog_price)
    return PricedLine(
        line_id=line.id,
        product_type=ProductType.GOODS,
        description=catalog_price.name,
        pricing_mode=PricingMode.CATALOG,
        quantity=line.quantity,
        unit_price=unit_price,
        line_total=line_total(unit_price, line.quantity),
        product_id=line.product_id,
    )


def price_service_line(line: CartLine, tier: PricingTier) -> PricedLine:
    unit_price = resolved_unit_price(line, tier=tier)
    garment = line.garment
    return PricedLine(
        line_id=line.id,
        product_type=ProductType.SERVICE,
        description=f"{tier.name}: {garment.value if garment else 'tailoring'}",
        pricing_mode=PricingMode.TIER,
        quantity=line.quantity,
        unit_price=unit_price,
        line_total=line_total(unit_price, line.quantity),
        garment_type=garment,
    )


def price_package(package: Package, quantity: int, tier: Optional[PricingTier], today: date,
                  line_id: Optional[int] = None) -> List[PricedLine]:
    """
    Price ``quantity`` units of a package.

    An eligible package is one line at ``package_price`` that no discount
    stacks on. Otherwise its garments (and fabric, when included) are priced
    a la carte through ``tier`` and take part in the normal discount path.
    """
    if package.is_eligible(today):
        unit_price = round_half_up(package.package_price)
        return [PricedLine(
            line_id=line_id,
            product_type=ProductType.SERVICE,
            description=f"Package: {package.name}",
            pricing_mode=PricingMode.PACKAGE,
            quantity=quantity,
            unit_price=unit_price,
            line_total=line_total(unit_price, quantity),
            package_id=package.id,
        )]

    if tier is None:
        raise ValidationError(
            f'Package "{package.name}" is no longer offered and the seller has no pricing tier to price it'
        )
    logger.info(f"Package {package.id} not eligible on {today}; pricing components a la carte")
    lines = []
    for component in package.garments:
        garment = component.garment
        unit_price = tier.price_for(garment)
        units = component.quantity * quantity
        lines.append(PricedLine(
            line_id=line_id,
            product_type=ProductType.SERVICE,
            description=f"{package.name}: {garment.value}",
            pricing_mode=PricingMode.PACKAGE_FALLBACK,
            quantity=units,
            unit_price=unit_price,
            line_total=line_total(unit_price, units),
            garment_type=garment,
            package_id=package.id,
        ))
    if package.fabric_included and package.fabric_cost:
        unit_price = round_half_up(package.fabric_cost)
        lines.append(PricedLine(
            line_id=line_id,
            product_type=ProductType.SERVICE,
            description=f"{package.name}: fabric ({package.fabric_type or 'included'})",
            pricing_mode=PricingMode.PACKAGE_FALLBACK,
            quantity=quantity,
            unit_price=unit_price,
            line_total=line_total(unit_price, quantity),
            package_id=package.id,
        ))
    return lines


def package_unit_price(package: Package, tier: Optional[PricingTier], today: date) -> Decimal:
    """Price charged today for one unit of ``package`` (bundle or a la carte)."""
    return sum((l.line_total for l in price_package(package, 1, tier, today)), ZERO)


def garment_count(lines: Iterable[PricedLine]) -> int:
    """Garments priced a la carte (package-priced garments do not count)."""
    return sum(l.quantity for l in lines if l.discountable and l.garment_type is not None)


def total_quantity(lines: Iterable[PricedLine]) -> int:
    return sum(l.quantity for l in lines)


def charges_total(selected: Iterable[ChargeType], tier: Optional[PricingTier]) -> Decimal:
    """Each selected charge is billed once per order, at the tier's amount."""
    if tier is None:
        return ZERO
    amounts = tier.charge_amounts
    total = ZERO
    for charge in sorted(set(selected), key=lambda c: c.value):
        amount = amounts.get(charge)
        if amount is None:
            logger.info(f"Tier {tier.id} no longer offers charge '{charge.value}'; not billed")
            continue
        total += amount
    return round_half_up(total)


def _allocate_discount(subtotal: Decimal, discount_amount: Decimal,
                       resolution: DiscountResolution) -> List[Dict]:
    """Split ``discount_amount`` over sources; the last source absorbs rounding residue."""
    entries = []
    allocated = ZERO
    allocations = resolution.allocations
    for index, allocation in enumerate(allocations):
        if index == len(allocations) - 1:
            amount = discount_amount - allocated
        else:
            amount = percentage_of(subtotal, allocation.percentage)
        allocated += amount
        entries.append({
            'source': allocation.source,
            'percentage': allocation.percentage,
            'amount': amount,
        })
    return entries


def calculate_order(lines: Sequence[PricedLine], resolution: DiscountResolution,
                    charges=ZERO, shipping_cost=ZERO) -> Dict:
    """
    Compute order totals for one seller group.

    Returns a dict with the priced lines, the discount audit entries and the
    totals. ``needs_review`` is set when the unclamped discounted subtotal
    would be negative, which only happens with a broken seller configuration.
    """
    try:
        shipping_cost = round_half_up(shipping_cost)
    except ValueError:
        raise ValidationError(f'Invalid shipping cost: {shipping_cost!r}')
    if shipping_cost < 0:
        raise ValidationError('Shipping cost cannot be negative')

    items_subtotal = round_half_up(sum((l.line_total for l in lines if l.discountable), ZERO))
    package_total = round_half_up(sum((l.line_total for l in lines if not l.discountable), ZERO))
    charges = round_half_up(charges)
    subtotal = items_subtotal + charges

    percentage = resolution.percentage
    discount_amount = percentage_of(subtotal, percentage) if subtotal > 0 else ZERO

    needs_review = False
    discounted = subtotal - discount_amount
    if discounted < 0:
        logger.warning(f"Negative discounted subtotal {discounted}; clamping to 0 and flagging for review")
        needs_review = True
        discounted = ZERO
    if package_total < 0:
        logger.warning(f"Negative package total {package_total}; clamping to 0 and flagging for review")
        needs_review = True
        package_total = ZERO

    return {
        'lines': list(lines),
        'items_subtotal': items_subtotal,
        'charges_total': charges,
        'subtotal': subtotal,
        'discount_percentage': percentage,
        'discount_amount': discount_amount,
        'discounts': _allocate_discount(subtotal, discount_amount, resolution) if discount_amount else [],
        'discount_capped': resolution.capped,
        'package_total': package_total,
        'shipping_cost': shipping_cost,
        'total': discounted + package_total + shipping_cost,
        'needs_review': needs_review,
    }


def quote_service_order(tier: PricingTier, garments: Sequence[Tuple[GarmentType, int]], today: date,
                        charges: Iterable[ChargeType] = (), package: Optional[Package] = None,
                        package_quantity: int = 1,
                        completed_orders: Callable[[], int] = lambda: 0,
                        shipping_cost=ZERO) -> Dict:
    """
    Price a tailoring order without touching a cart (price calculator).

    ``garments`` are ``(garment_type, quantity)`` pairs priced through
    ``tier``; ``package`` (optional) is added on top.
    """
    lines = []
    for garment, quantity in garments:
        if quantity < 1:
            raise ValidationError('Quantity must be at least 1')
        unit_price = tier.price_for(garment)
        lines.append(PricedLine(
            line_id=None,
            product_type=ProductType.SERVICE,
            description=f"{tier.name}: {garment.value}",
            pricing_mode=PricingMode.TIER,
            quantity=quantity,
            unit_price=unit_price,
            line_total=line_total(unit_price, quantity),
            garment_type=garment,
        ))
    if package is not None:
        lines.extend(price_package(package, package_quantity, tier, today))
    if not lines:
        raise ValidationError('Nothing to price')

    resolution = resolve_service_tier(tier, garment_count(lines), today, completed_orders)
    quote = calculate_order(lines, resolution, charges_total(charges, tier), shipping_cost)
    quote['config_errors'] = [e.message for e in resolution.config_errors]
    return quote


def quote_to_dict(quote: Dict) -> Dict:
    """JSON-friendly view of a quote (amounts as strings)."""
    return {
        'lines': [
            {
                'description': l.description,
                'product_type': l.product_type.value,
                'pricing_mode': l.pricing_mode.value,
                'garment_type': l.garment_type.value if l.garment_type else None,
                'package_id': l.package_id,
                'product_id': l.product_id,
                'quantity': l.quantity,
                'unit_price': str(l.unit_price),
                'line_total': str(l.line_total),
            }
            for l in quote['lines']
        ],
        'items_subtotal': str(quote['items_subtotal']),
        'charges_total': str(quote['charges_total']),
        'subtotal': str(quote['subtotal']),
        'discount_percentage': str(quote['discount_percentage']),
        'discount_amount': str(quote['discount_amount']),
        'discounts': [
            {
                'source': d['source'].value,
                'percentage': str(d['percentage']),
                'amount': str(d['amount']),
            }
            for d in quote['discounts']
        ],
        'discount_capped': quote['discount_capped'],
        'package_total': str(quote['package_total']),
        'shipping_cost': str(quote['shipping_cost']),
        'total': str(quote['total']),
        'needs_review': quote['needs_review'],
    }
