"""Pricing tier model for tailoring services."""
import enum
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, Integer, Date, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
from marketplace.database import Base, BigIntPK
from marketplace.exceptions import ValidationError


class GarmentType(enum.Enum):
    """Garments a tailor can price individually."""
    SHALWAR_KAMEEZ = "shalwar_kameez"
    SHERWANI = "sherwani"
    LEHENGA = "lehenga"
    SUIT = "suit"
    DRESS = "dress"
    TROUSERS = "trousers"
    KURTA = "kurta"
    OTHER = "other"


class ChargeType(enum.Enum):
    """Optional per-order surcharges."""
    EMBROIDERY = "embroidery"
    ALTERATIONS = "alterations"
    RUSH_ORDER = "rush_order"
    CUSTOM_DESIGN = "custom_design"


class TierType(enum.Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    LUXURY = "luxury"
    BULK = "bulk"


def _parse_enum(enum_cls, raw, label):
    if isinstance(raw, enum_cls):
        return raw
    if isinstance(raw, str):
        key = raw.strip().lower()
        for member in enum_cls:
            if key in (member.value, member.name.lower()):
                return member
    raise ValidationError(f'Unknown {label}: {raw!r}')


def parse_garment_type(raw) -> GarmentType:
    return _parse_enum(GarmentType, raw, 'garment type')


def parse_charge_type(raw) -> ChargeType:
    return _parse_enum(ChargeType, raw, 'charge type')


def parse_tier_type(raw) -> TierType:
    return _parse_enum(TierType, raw, 'pricing tier type')


def _parse_amounts(mapping, parse_key, label) -> Dict:
    if mapping is None:
        return {}
    if not isinstance(mapping, Mapping):
        raise ValidationError(f'{label} must be a mapping')
    parsed = {}
    for raw_key, raw_amount in mapping.items():
        key = parse_key(raw_key)
        if key in parsed:
            raise ValidationError(f'Duplicate {label} entry: {key.value}')
        try:
            amount = Decimal(str(raw_amount))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f'Invalid amount for {key.value}: {raw_amount!r}')
        if not amount.is_finite() or amount < 0:
            raise ValidationError(f'Invalid amount for {key.value}: {raw_amount!r}')
        parsed[key] = amount.quantize(Decimal('0.01'))
    return parsed


def parse_garment_pricing(mapping) -> Dict[GarmentType, Decimal]:
    """Validate a garment -> price mapping; unknown garment keys are rejected."""
    return _parse_amounts(mapping, parse_garment_type, 'garment pricing')


def parse_additional_charges(mapping) -> Dict[ChargeType, Decimal]:
    """Validate a charge -> amount mapping; unknown charge keys are rejected."""
    return _parse_amounts(mapping, parse_charge_type, 'additional charges')


class PricingTier(Base):
    """
    Pricing tier of a tailor.

    ``garment_pricing`` and ``additional_charges`` are stored as JSON keyed by
    enum value; assignments go through the parsers above so unknown keys never
    reach the database. Discount columns are nullable: a source that is
    enabled but incomplete is resolved as ineligible.
    """
    
    __tablename__ = 'pricing_tier'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    seller_id = Column(BigInteger, ForeignKey('seller.id'), nullable=False, index=True)
    tier_type = Column(String(20), nullable=False, default=TierType.BASIC.value)
    name = Column(String(255), nullable=False)
    base_price = Column(Numeric(12, 2), nullable=False)
    garment_pricing = Column(JSON, nullable=False, default=dict)
    additional_charges = Column(JSON, nullable=False, default=dict)
    minimum_order = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
    
    # Discounts
    multiple_garments_enabled = Column(Boolean, nullable=False, default=False)
    multiple_garments_threshold = Column(Integer, nullable=True)
    multiple_garments_percentage = Column(Numeric(5, 2), nullable=True)
    
    seasonal_enabled = Column(Boolean, nullable=False, default=False)
    seasonal_percentage = Column(Numeric(5, 2), nullable=True)
    seasonal_start_date = Column(Date, nullable=True)
    seasonal_end_date = Column(Date, nullable=True)
    
    corporate_enabled = Column(Boolean, nullable=False, default=False)
    corporate_percentage = Column(Numeric(5, 2), nullable=True)
    corporate_minimum_orders = Column(Integer, nullable=True)
    
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    seller = relationship('Seller', back_populates='pricing_tiers')
    
    @validates('garment_pricing')
    def _validate_garment_pricing(self, key, value):
        return {g.value: str(p) for g, p in parse_garment_pricing(value).items()}
    
    @validates('additional_charges')
    def _validate_additional_charges(self, key, value):
        return {c.value: str(a) for c, a in parse_additional_charges(value).items()}
    
    @validates('tier_type')
    def _validate_tier_type(self, key, value):
        return parse_tier_type(value).value
    
    @property
    def garment_prices(self) -> Dict[GarmentType, Decimal]:
        return parse_garment_pricing(self.garment_pricing)
    
    @property
    def charge_amounts(self) -> Dict[ChargeType, Decimal]:
        return parse_additional_charges(self.additional_charges)
    
    def price_for(self, garment_type: Optional[GarmentType]) -> Decimal:
        """Garment override if configured, else the tier base price."""
        if garment_type is not None:
            override = self.garment_prices.get(garment_type)
            if override is not None:
                return override
        return Decimal(str(self.base_price)).quantize(Decimal('0.01'))
    
    def to_dict(self):
        def opt(value):
            return None if value is None else str(value)

        def day(value):
            return None if value is None else value.isoformat()

        return {
            'id': self.id,
            'seller_id': self.seller_id,
            'tier_type': self.tier_type,
            'name': self.name,
            'base_price': str(self.base_price),
            'garment_pricing': dict(self.garment_pricing or {}),
            'additional_charges': dict(self.additional_charges or {}),
            'minimum_order': self.minimum_order,
            'active': self.active,
            'discounts': {
                'multiple_garments': {
                    'enabled': self.multiple_garments_enabled,
                    'threshold': self.multiple_garments_threshold,
                    'percentage': opt(self.multiple_garments_percentage),
                },
                'seasonal': {
                    'enabled': self.seasonal_enabled,
                    'percentage': opt(self.seasonal_percentage),
                    'start_date': day(self.seasonal_start_date),
                    'end_date': day(self.seasonal_end_date),
                },
                'corporate': {
                    'enabled': self.corporate_enabled,
                    'percentage': opt(self.corporate_percentage),
                    'minimum_orders': self.corporate_minimum_orders,
                },
            },
        }
    
    def __repr__(self):
        return f"<PricingTier(id={self.id}, seller_id={self.seller_id}, type='{self.tier_type}')>"
