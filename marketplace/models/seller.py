"""Seller model."""
import enum
from sqlalchemy import Column, String, Boolean, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from marketplace.database import Base, BigIntPK


class SellerType(enum.Enum):
    """Seller kind: goods supplier or service-providing tailor."""
    SUPPLIER = "SUPPLIER"
    TAILOR = "TAILOR"


class Seller(Base):
    """Seller (supplier or tailor)."""
    
    __tablename__ = 'seller'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    seller_type = Column(Enum(SellerType, name='seller_type'), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    bulk_discount_enabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    # Relationships
    products = relationship('Product', back_populates='seller')
    bulk_discount_tiers = relationship('BulkDiscountTier', back_populates='seller', cascade='all, delete-orphan')
    pricing_tiers = relationship('PricingTier', back_populates='seller', cascade='all, delete-orphan')
    packages = relationship('Package', back_populates='seller', cascade='all, delete-orphan')
    
    @property
    def is_tailor(self):
        return self.seller_type == SellerType.TAILOR
    
    def __repr__(self):
        return f"<Seller(id={self.id}, name='{self.name}', type={self.seller_type.value})>"
