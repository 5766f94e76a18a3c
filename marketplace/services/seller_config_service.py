"""Seller configuration collaborator: discount tiers, pricing tiers and packages."""
import logging
from typing import List, Optional
from sqlalchemy.orm import Session
from marketplace.models import Seller, BulkDiscountTier, PricingTier, Package, TierType, parse_tier_type

logger = logging.getLogger(__name__)


class SellerConfig:
    """
    Reads seller pricing rules.

    Nothing here is cached: sellers may edit rules between a cart add and a
    checkout, so each call goes to the database.
    """

    def __init__(self, session: Session, default_tier_type: str = TierType.BASIC.value):
        self.session = session
        self.default_tier_type = parse_tier_type(default_tier_type).value

    def get_seller(self, seller_id: int) -> Optional[Seller]:
        return (self.session.query(Seller)
                .filter(Seller.id == seller_id)
                .populate_existing()
                .first())

    def get_bulk_discount_tiers(self, seller_id: int) -> List[BulkDiscountTier]:
        """Tiers of a goods seller; empty when the seller has bulk discounts switched off."""
        seller = self.get_seller(seller_id)
        if not seller or not seller.bulk_discount_enabled:
            return []
        return (self.session.query(BulkDiscountTier)
                .filter(BulkDiscountTier.seller_id == seller_id)
                .order_by(BulkDiscountTier.id)
                .populate_existing()
                .all())

    def get_pricing_tier(self, seller_id: int, tier_type: Optional[str] = None) -> Optional[PricingTier]:
        """Active pricing tier of a tailor for ``tier_type`` (default tier when omitted)."""
        tier_value = parse_tier_type(tier_type).value if tier_type else self.default_tier_type
        return (self.session.query(PricingTier)
                .filter(
                    PricingTier.seller_id == seller_id,
                    PricingTier.tier_type == tier_value,
                    PricingTier.active.is_(True)
                )
                .order_by(PricingTier.id)
                .populate_existing()
                .first())

    def get_package(self, package_id: int) -> Optional[Package]:
        return (self.session.query(Package)
                .filter(Package.id == package_id)
                .populate_existing()
                .first())

    def claim_package_slot(self, package_id: int) -> bool:
        """
        Reserve one order slot of a limited package (compare-and-set).

        Unlimited packages always succeed without touching the row.
        """
        package = self.get_package(package_id)
        if package is None:
            return False
        if not package.is_limited:
            return True
        if package.max_orders is None:
            return False
        updated = self.session.query(Package).filter(
            Package.id == package_id,
            Package.current_orders < package.max_orders
        ).update(
            {Package.current_orders: Package.current_orders + 1},
            synchronize_session=False
        )
        if updated != 1:
            logger.info(f"Package {package_id} has no order slots left")
            return False
        return True
