"""Cart models (server-owned, one cart per customer)."""
import enum
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import Column, BigInteger, String, Numeric, Integer, DateTime, Enum, JSON, ForeignKey
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
from marketplace.database import Base, BigIntPK
from marketplace.models.pricing_tier import (
    GarmentType, ChargeType, parse_garment_type, parse_charge_type, parse_tier_type
)


class ProductType(enum.Enum):
    """What a cart line sells."""
    GOODS = "GOODS"
    SERVICE = "SERVICE"


class Cart(Base):
    """
    Cart - persistent, server-owned aggregate.
    
    Lines are only created, changed and removed through
    ``marketplace.services.cart_service`` and the checkout orchestrator.
    """
    
    __tablename__ = 'cart'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id = Column(BigInteger, nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    
    lines = relationship('CartLine', back_populates='cart', cascade='all, delete-orphan',
                         order_by='CartLine.id')
    
    def __repr__(self):
        return f"<Cart(id={self.id}, customer_id={self.customer_id}, lines={len(self.lines)})>"


class CartLine(Base):
    """
    Cart line item.
    
    Goods lines reference a product; service lines carry a garment type (and
    the pricing tier it is priced against) or a package. ``unit_price`` is the
    price snapshotted when the line was added or last re-confirmed.
    """
    
    __tablename__ = 'cart_line'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    cart_id = Column(BigInteger, ForeignKey('cart.id', ondelete='CASCADE'), nullable=False, index=True)
    product_type = Column(Enum(ProductType, name='product_type'), nullable=False)
    seller_id = Column(BigInteger, ForeignKey('seller.id'), nullable=False, index=True)
    
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=True)
    garment_type = Column(String(30), nullable=True)
    tier_type = Column(String(20), nullable=True)
    package_id = Column(BigInteger, ForeignKey('package.id'), nullable=True)
    
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit = Column(String(30), nullable=False, default='piece')
    selected_charges = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    # Relationships
    cart = relationship('Cart', back_populates='lines')
    seller = relationship('Seller')
    product = relationship('Product')
    package = relationship('Package')
    
    @validates('garment_type')
    def _validate_garment_type(self, key, value):
        return parse_garment_type(value).value if value is not None else None
    
    @validates('tier_type')
    def _validate_tier_type(self, key, value):
        return parse_tier_type(value).value if value is not None else None
    
    @validates('selected_charges')
    def _validate_selected_charges(self, key, value):
        return sorted({parse_charge_type(c).value for c in (value or [])})
    
    @property
    def is_goods(self) -> bool:
        return self.product_type == ProductType.GOODS
    
    @property
    def is_package(self) -> bool:
        return self.package_id is not None
    
    @property
    def garment(self) -> Optional[GarmentType]:
        return GarmentType(self.garment_type) if self.garment_type else None
    
    @property
    def charges(self) -> List[ChargeType]:
        return [ChargeType(c) for c in (self.selected_charges or [])]
    
    @property
    def line_subtotal(self) -> Decimal:
        return (Decimal(str(self.unit_price)) * self.quantity).quantize(Decimal('0.01'))
    
    def __repr__(self):
        ref = self.product_id or self.package_id or self.garment_type
        return f"<CartLine(id={self.id}, seller_id={self.seller_id}, ref={ref}, qty={self.quantity})>"
