"""Product model."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from marketplace.database import Base, BigIntPK


class Product(Base):
    """Goods sold by a supplier (fabric, supplies)."""
    
    __tablename__ = 'product'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    seller_id = Column(BigInteger, ForeignKey('seller.id'), nullable=False, index=True)
    name = Column(String, nullable=False)
    unit = Column(String(30), nullable=False, default='piece')
    unit_price = Column(Numeric(12, 2), nullable=False)
    minimum_order_quantity = Column(Integer, nullable=False, default=1, server_default='1')
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    seller = relationship('Seller', back_populates='products')
    # Cascade delete-orphan: deleting the product deletes its stock row
    stock = relationship('ProductStock', uselist=False, back_populates='product', cascade="all, delete-orphan")
    
    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', seller_id={self.seller_id})>"
    
    @property
    def on_hand_qty(self):
        """Get on hand quantity from stock."""
        if self.stock:
            return self.stock.on_hand_qty
        return 0
