"""Models package - exports all SQLAlchemy models."""
from marketplace.models.seller import Seller, SellerType
from marketplace.models.product import Product
from marketplace.models.product_stock import ProductStock
from marketplace.models.bulk_discount_tier import BulkDiscountTier
from marketplace.models.pricing_tier import (
    PricingTier, GarmentType, ChargeType, TierType,
    parse_garment_type, parse_charge_type, parse_tier_type,
    parse_garment_pricing, parse_additional_charges,
)
from marketplace.models.package import Package, PackageGarment
from marketplace.models.cart import Cart, CartLine, ProductType
from marketplace.models.order_snapshot import (
    OrderSnapshot, OrderSnapshotLine, AppliedDiscount, DiscountSource, PricingMode
)

__all__ = [
    # Sellers and catalog
    'Seller', 'SellerType', 'Product', 'ProductStock',
    # Seller pricing configuration
    'BulkDiscountTier', 'PricingTier', 'GarmentType', 'ChargeType', 'TierType',
    'parse_garment_type', 'parse_charge_type', 'parse_tier_type',
    'parse_garment_pricing', 'parse_additional_charges',
    'Package', 'PackageGarment',
    # Cart
    'Cart', 'CartLine', 'ProductType',
    # Orders
    'OrderSnapshot', 'OrderSnapshotLine', 'AppliedDiscount', 'DiscountSource', 'PricingMode',
]
