"""Package model (precomputed bundle price for a fixed garment set)."""
from datetime import date
from decimal import Decimal
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, Integer, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
from marketplace.database import Base, BigIntPK
from marketplace.models.pricing_tier import GarmentType, TierType, parse_garment_type, parse_tier_type
from marketplace.utils.money import round_half_up


class Package(Base):
    """
    Package published by a tailor.
    
    ``package_price`` already carries the bundle discount, so no further
    discount stacks on top of it. A package outside its validity window, or a
    limited package whose slots are used up, is priced a la carte.
    """
    
    __tablename__ = 'package'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    seller_id = Column(BigInteger, ForeignKey('seller.id'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    tier_type = Column(String(20), nullable=False, default=TierType.BASIC.value)
    
    # Fabric included
    fabric_included = Column(Boolean, nullable=False, default=False)
    fabric_type = Column(String(100), nullable=True)
    fabric_cost = Column(Numeric(12, 2), nullable=True)
    
    # Pricing
    original_price = Column(Numeric(12, 2), nullable=False)
    package_price = Column(Numeric(12, 2), nullable=False)
    
    # Validity
    valid_from = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    is_limited = Column(Boolean, nullable=False, default=False)
    max_orders = Column(Integer, nullable=True)
    current_orders = Column(Integer, nullable=False, default=0)
    
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    seller = relationship('Seller', back_populates='packages')
    garments = relationship('PackageGarment', back_populates='package', cascade='all, delete-orphan',
                            order_by='PackageGarment.id')
    
    @validates('tier_type')
    def _validate_tier_type(self, key, value):
        return parse_tier_type(value).value
    
    @property
    def discount(self) -> Decimal:
        """Bundle saving baked into ``package_price``."""
        return Decimal(str(self.original_price)) - Decimal(str(self.package_price))
    
    @property
    def discount_percentage(self) -> Decimal:
        """Bundle saving as a percentage of ``original_price``."""
        original = Decimal(str(self.original_price))
        if original <= 0:
            return Decimal('0.00')
        return round_half_up(self.discount * 100 / original)
    
    @property
    def is_sold_out(self) -> bool:
        if not self.is_limited:
            return False
        if self.max_orders is None:
            return True  # limited without a cap is treated as unavailable
        return (self.current_orders or 0) >= self.max_orders
    
    def is_eligible(self, today: date) -> bool:
        """Whether ``package_price`` applies on ``today``."""
        if not self.active or self.is_sold_out:
            return False
        if self.valid_from is not None and today < self.valid_from:
            return False
        if self.valid_until is not None and today > self.valid_until:
            return False
        return True
    
    def to_dict(self):
        return {
            'id': self.id,
            'seller_id': self.seller_id,
            'name': self.name,
            'tier_type': self.tier_type,
            'garments': [g.to_dict() for g in self.garments],
            'fabric_included': self.fabric_included,
            'fabric_type': self.fabric_type,
            'fabric_cost': None if self.fabric_cost is None else str(self.fabric_cost),
            'original_price': str(self.original_price),
            'package_price': str(self.package_price),
            'discount': str(self.discount),
            'discount_percentage': str(self.discount_percentage),
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'active': self.active,
            'is_limited': self.is_limited,
            'max_orders': self.max_orders,
            'current_orders': self.current_orders,
        }
    
    def __repr__(self):
        return f"<Package(id={self.id}, name='{self.name}', price={self.package_price})>"


class PackageGarment(Base):
    """Garment component of a package."""
    
    __tablename__ = 'package_garment'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    package_id = Column(BigInteger, ForeignKey('package.id', ondelete='CASCADE'), nullable=False, index=True)
    garment_type = Column(String(30), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    
    package = relationship('Package', back_populates='garments')
    
    @validates('garment_type')
    def _validate_garment_type(self, key, value):
        return parse_garment_type(value).value
    
    @property
    def garment(self) -> GarmentType:
        return GarmentType(self.garment_type)
    
    def to_dict(self):
        return {'garment_type': self.garment_type, 'quantity': self.quantity}
    
    def __repr__(self):
        return f"<PackageGarment(package_id={self.package_id}, {self.garment_type} x{self.quantity})>"
