"""Bulk discount tier model."""
from sqlalchemy import Column, BigInteger, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from marketplace.database import Base, BigIntPK


class BulkDiscountTier(Base):
    """
    Quantity tier configured by a goods seller.

    Columns are nullable on purpose: sellers edit tiers freely and a
    half-filled tier must reach the resolver as a configuration error
    instead of failing the insert.
    """
    
    __tablename__ = 'bulk_discount_tier'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    seller_id = Column(BigInteger, ForeignKey('seller.id'), nullable=False, index=True)
    min_quantity = Column(Integer, nullable=True)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    
    seller = relationship('Seller', back_populates='bulk_discount_tiers')
    
    def __repr__(self):
        return f"<BulkDiscountTier(seller_id={self.seller_id}, min={self.min_quantity}, pct={self.discount_percentage})>"
