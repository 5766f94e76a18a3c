"""Cart aggregation - partitions cart lines by seller."""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from marketplace.exceptions import ValidationError
from marketplace.models import CartLine, Seller, SellerType
from marketplace.utils.money import ZERO, round_half_up

logger = logging.getLogger(__name__)


class SupplierCartGroup:
    """Lines of one seller, in cart order. Totals are always derived from the lines."""

    def __init__(self, seller: Seller):
        self.seller = seller
        self.lines: List[CartLine] = []

    @property
    def seller_id(self) -> int:
        return self.seller.id

    @property
    def group_subtotal(self) -> Decimal:
        return round_half_up(sum((line.line_subtotal for line in self.lines), ZERO))

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def tier_type(self) -> Optional[str]:
        """Pricing tier shared by the group's service lines."""
        for line in self.lines:
            if not line.is_goods and line.tier_type:
                return line.tier_type
        return None

    def __repr__(self):
        return f"<SupplierCartGroup(seller_id={self.seller_id}, lines={len(self.lines)})>"


def _validate_goods_line(line: CartLine, seller: Seller, prices) -> None:
    if seller.seller_type != SellerType.SUPPLIER:
        raise ValidationError(f'Seller "{seller.name}" does not sell goods')
    price = prices.get(line.product_id)
    if price is None:
        raise ValidationError(f'Product {line.product_id} no longer exists')
    if not price.is_active:
        raise ValidationError(f'Product "{price.name}" is no longer available')
    if price.seller_id != line.seller_id:
        raise ValidationError(f'Product "{price.name}" is not sold by seller {line.seller_id}')


def _validate_service_line(line: CartLine, seller: Seller, seller_config) -> None:
    if seller.seller_type != SellerType.TAILOR:
        raise ValidationError(f'Seller "{seller.name}" does not offer tailoring services')
    if line.is_package:
        package = seller_config.get_package(line.package_id)
        if package is None or package.seller_id != line.seller_id:
            raise ValidationError(f'Package {line.package_id} no longer exists')
        if not package.active:
            raise ValidationError(f'Package "{package.name}" is no longer available')
        return
    if line.garment_type is None:
        raise ValidationError(f'Cart line {line.id} has no garment type')
    if seller_config.get_pricing_tier(line.seller_id, line.tier_type) is None:
        raise ValidationError(f'Seller "{seller.name}" has no active "{line.tier_type}" pricing tier')


def group(lines: Iterable[CartLine], catalog, seller_config,
          seller_id: Optional[int] = None) -> Dict[int, SupplierCartGroup]:
    """
    Partition ``lines`` by seller, preserving first-seen seller order.

    ``seller_id`` restricts the result to one seller (single-seller checkout).
    Any line referencing a missing or inactive seller, product, tier or
    package raises ValidationError and no partial result is returned.
    """
    selected = [l for l in lines if seller_id is None or l.seller_id == seller_id]
    prices = catalog.get_prices([l.product_id for l in selected if l.is_goods])

    sellers: Dict[int, Seller] = {}
    groups: Dict[int, SupplierCartGroup] = {}
    for line in selected:
        if line.seller_id not in sellers:
            seller = seller_config.get_seller(line.seller_id)
            if seller is None:
                raise ValidationError(f'Seller {line.seller_id} no longer exists')
            if not seller.active:
                raise ValidationError(f'Seller "{seller.name}" is not active')
            sellers[line.seller_id] = seller
        seller = sellers[line.seller_id]

        if line.is_goods:
            _validate_goods_line(line, seller, prices)
        else:
            _validate_service_line(line, seller, seller_config)

        cart_group = groups.get(line.seller_id)
        if cart_group is None:
            cart_group = groups[line.seller_id] = SupplierCartGroup(seller)
        elif (not line.is_goods and not line.is_package and cart_group.tier_type
              and line.tier_type != cart_group.tier_type):
            raise ValidationError(
                f'Seller "{seller.name}": all garments of one order must use the same pricing tier'
            )
        cart_group.lines.append(line)

    logger.debug(f"Grouped {len(selected)} cart lines into {len(groups)} seller groups")
    return groups


def grand_total(groups: Dict[int, SupplierCartGroup]) -> Decimal:
    return round_half_up(sum((g.group_subtotal for g in groups.values()), ZERO))


def flatten(groups: Dict[int, SupplierCartGroup]) -> List[CartLine]:
    """Lines of every group, group by group."""
    return [line for g in groups.values() for line in g.lines]


def seller_order(lines: Iterable[CartLine]) -> List[int]:
    """Seller ids in first-seen order, without any validation."""
    seen = []
    for line in lines:
        if line.seller_id not in seen:
            seen.append(line.seller_id)
    return seen
