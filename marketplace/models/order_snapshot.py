"""Order snapshot models - immutable result of a confirmed checkout group."""
import enum
from sqlalchemy import (
    Column, BigInteger, String, Boolean, Numeric, Integer, DateTime, Enum, ForeignKey, event
)
from sqlalchemy.orm import relationship, object_session
from sqlalchemy.sql import func
from marketplace.database import Base, BigIntPK
from marketplace.exceptions import BusinessLogicError
from marketplace.utils.money import to_minor_units


class DiscountSource(enum.Enum):
    """Origin of an applied discount."""
    BULK_TIER = "BULK_TIER"
    MULTIPLE_GARMENTS = "MULTIPLE_GARMENTS"
    SEASONAL = "SEASONAL"
    CORPORATE = "CORPORATE"


class PricingMode(enum.Enum):
    """How a snapshot line was priced."""
    CATALOG = "CATALOG"
    TIER = "TIER"
    PACKAGE = "PACKAGE"
    PACKAGE_FALLBACK = "PACKAGE_FALLBACK"


class OrderSnapshot(Base):
    """Priced order for one seller group. Never updated after insert."""
    
    __tablename__ = 'order_snapshot'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id = Column(BigInteger, nullable=False, index=True)
    seller_id = Column(BigInteger, ForeignKey('seller.id'), nullable=False, index=True)
    
    items_subtotal = Column(Numeric(12, 2), nullable=False)
    charges_total = Column(Numeric(12, 2), nullable=False, default=0)
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    discount_total = Column(Numeric(12, 2), nullable=False, default=0)
    package_total = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    grand_total = Column(Numeric(12, 2), nullable=False)
    
    # Set when the unclamped total went negative (seller configuration fault)
    needs_review = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    seller = relationship('Seller')
    lines = relationship('OrderSnapshotLine', back_populates='snapshot', cascade='all, delete-orphan',
                         order_by='OrderSnapshotLine.id')
    discounts = relationship('AppliedDiscount', back_populates='snapshot', cascade='all, delete-orphan',
                             order_by='AppliedDiscount.id')
    
    def discount_audit(self):
        """Discount audit trail for display and dispute resolution."""
        return [
            {
                'source': d.source.value,
                'percentage_applied': str(d.percentage),
                'amount_applied': str(d.amount),
            }
            for d in self.discounts
        ]
    
    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'seller_id': self.seller_id,
            'lines': [line.to_dict() for line in self.lines],
            'items_subtotal': str(self.items_subtotal),
            'charges_total': str(self.charges_total),
            'subtotal': str(self.subtotal),
            'discount_percentage': str(self.discount_percentage),
            'discount_total': str(self.discount_total),
            'package_total': str(self.package_total),
            'shipping_cost': str(self.shipping_cost),
            'grand_total': str(self.grand_total),
            'grand_total_minor': to_minor_units(self.grand_total),
            'needs_review': self.needs_review,
            'discounts': self.discount_audit(),
        }
    
    def __repr__(self):
        return f"<OrderSnapshot(id={self.id}, seller_id={self.seller_id}, grand_total={self.grand_total})>"


class OrderSnapshotLine(Base):
    """Priced line of an order snapshot."""
    
    __tablename__ = 'order_snapshot_line'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    snapshot_id = Column(BigInteger, ForeignKey('order_snapshot.id'), nullable=False, index=True)
    product_type = Column(String(10), nullable=False)
    product_id = Column(BigInteger, nullable=True)
    garment_type = Column(String(30), nullable=True)
    package_id = Column(BigInteger, nullable=True)
    description = Column(String(255), nullable=False)
    pricing_mode = Column(Enum(PricingMode, name='pricing_mode'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)
    
    snapshot = relationship('OrderSnapshot', back_populates='lines')
    
    def to_dict(self):
        return {
            'product_type': self.product_type,
            'product_id': self.product_id,
            'garment_type': self.garment_type,
            'package_id': self.package_id,
            'description': self.description,
            'pricing_mode': self.pricing_mode.value,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'line_total': str(self.line_total),
        }


class AppliedDiscount(Base):
    """One discount source applied to an order snapshot."""
    
    __tablename__ = 'applied_discount'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    snapshot_id = Column(BigInteger, ForeignKey('order_snapshot.id'), nullable=False, index=True)
    source = Column(Enum(DiscountSource, name='discount_source'), nullable=False)
    percentage = Column(Numeric(5, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    
    snapshot = relationship('OrderSnapshot', back_populates='discounts')


def _reject_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and session.is_modified(target, include_collections=False):
        raise BusinessLogicError(f'{type(target).__name__} records are immutable once persisted')


for _model in (OrderSnapshot, OrderSnapshotLine, AppliedDiscount):
    event.listen(_model, 'before_update', _reject_update)
