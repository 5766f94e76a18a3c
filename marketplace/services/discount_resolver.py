"""
Discount resolution for one seller group.

Two independent paths:

* goods sellers: bulk quantity tiers, single best match (never cumulative);
* tailors: composite pricing-tier discount, where the multiple-garments,
  seasonal and corporate sources are summed and clamped to
  ``MAX_COMBINED_DISCOUNT_PERCENTAGE``.

The 95% cap keeps a non-zero settlement floor on every order. Whenever it
trims the sum, the resolution reports ``capped=True`` and the trimmed
per-source percentages, so the audit trail shows exactly what was granted.

A rule that is enabled but incomplete or out of range never grants anything:
it is logged as a :class:`ConfigurationError`, listed on the resolution and
skipped.
"""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable, List, NamedTuple, Optional, Sequence

from marketplace.metrics import record_config_error
from marketplace.exceptions import ConfigurationError
from marketplace.models import BulkDiscountTier, PricingTier, DiscountSource

logger = logging.getLogger(__name__)

MAX_COMBINED_DISCOUNT_PERCENTAGE = Decimal('95')
ZERO_PERCENT = Decimal('0')


class DiscountCandidate(NamedTuple):
    source: DiscountSource
    percentage: Decimal


class DiscountResolution:
    """Eligible discount sources and the combined percentage to apply."""

    def __init__(self, allocations: Sequence[DiscountCandidate] = (), capped: bool = False,
                 config_errors: Sequence[ConfigurationError] = (), matched_tier=None):
        self.allocations = list(allocations)
        self.capped = capped
        self.config_errors = list(config_errors)
        self.matched_tier = matched_tier

    @property
    def percentage(self) -> Decimal:
        return sum((a.percentage for a in self.allocations), ZERO_PERCENT)

    @property
    def sources(self) -> List[DiscountSource]:
        return [a.source for a in self.allocations]

    def __repr__(self):
        return f"<DiscountResolution(pct={self.percentage}, sources={[s.value for s in self.sources]}, capped={self.capped})>"


def _as_percentage(seller_id, rule, value) -> Decimal:
    if value is None:
        raise ConfigurationError(seller_id, rule, 'percentage missing')
    try:
        pct = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(seller_id, rule, f'percentage {value!r} is not a number')
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise ConfigurationError(seller_id, rule, f'percentage {value} outside [0, 100]')
    return pct


def _as_count(seller_id, rule, field, value, minimum) -> int:
    if value is None:
        raise ConfigurationError(seller_id, rule, f'{field} missing')
    if int(value) < minimum:
        raise ConfigurationError(seller_id, rule, f'{field} must be >= {minimum}')
    return int(value)


def _report(error: ConfigurationError, errors: list):
    """Log a misconfigured rule for seller follow-up and keep resolving."""
    logger.warning(f"Ignoring discount rule: {error.message}")
    record_config_error(error.rule)
    errors.append(error)


# =====================================================
# BULK QUANTITY TIERS (goods sellers)
# =====================================================

def resolve_bulk_tier(tiers: Sequence[BulkDiscountTier], total_quantity: int,
                      seller_id: Optional[int] = None) -> DiscountResolution:
    """
    Select the single best-matching bulk tier for ``total_quantity``.

    Tiers are walked by ``min_quantity`` descending and the first one whose
    threshold is reached wins. In an inverted ladder, a tier offering more
    than some higher-threshold tier is reported and dropped. What remains
    grows with quantity, and no order gets more than the first match would
    give it.
    """
    errors = []
    valid = []
    for tier in tiers:
        try:
            min_qty = _as_count(seller_id, 'bulk_tier', 'min_quantity', tier.min_quantity, 1)
            pct = _as_percentage(seller_id, 'bulk_tier', tier.discount_percentage)
        except ConfigurationError as e:
            _report(e, errors)
            continue
        valid.append((min_qty, pct, tier))

    ladder = []
    ceiling = None  # lowest percentage among higher thresholds
    for min_qty, pct, tier in sorted(valid, key=lambda t: (-t[0], t[1])):
        if ceiling is not None and pct > ceiling:
            _report(ConfigurationError(
                seller_id, 'bulk_tier',
                f'inverted ladder: tier {min_qty} offers {pct}%, more than a higher tier ({ceiling}%)'
            ), errors)
            continue
        ceiling = pct
        ladder.append((min_qty, pct, tier))

    for min_qty, pct, tier in ladder:
        if total_quantity >= min_qty:
            allocations = [DiscountCandidate(DiscountSource.BULK_TIER, pct)] if pct > 0 else []
            return DiscountResolution(allocations, config_errors=errors, matched_tier=tier)

    return DiscountResolution(config_errors=errors)


# =====================================================
# COMPOSITE SERVICE-TIER DISCOUNT (tailors)
# =====================================================

def _multiple_garments(tier: PricingTier, garment_count: int) -> Optional[Decimal]:
    threshold = _as_count(tier.seller_id, 'multiple_garments', 'threshold', tier.multiple_garments_threshold, 1)
    pct = _as_percentage(tier.seller_id, 'multiple_garments', tier.multiple_garments_percentage)
    return pct if garment_count >= threshold else None


def _seasonal(tier: PricingTier, today: date) -> Optional[Decimal]:
    pct = _as_percentage(tier.seller_id, 'seasonal', tier.seasonal_percentage)
    start, end = tier.seasonal_start_date, tier.seasonal_end_date
    if start is None or end is None:
        raise ConfigurationError(tier.seller_id, 'seasonal', 'start or end date missing')
    if start > end:
        raise ConfigurationError(tier.seller_id, 'seasonal', f'start date {start} is after end date {end}')
    return pct if start <= today <= end else None


def _corporate(tier: PricingTier, completed_orders: Callable[[], int]) -> Optional[Decimal]:
    minimum = _as_count(tier.seller_id, 'corporate', 'minimum_orders', tier.corporate_minimum_orders, 0)
    pct = _as_percentage(tier.seller_id, 'corporate', tier.corporate_percentage)
    return pct if completed_orders() >= minimum else None


def combine_with_cap(candidates: Sequence[DiscountCandidate],
                     cap: Decimal = MAX_COMBINED_DISCOUNT_PERCENTAGE):
    """
    Additive stacking clamped to ``[0, cap]``.

    Returns ``(allocations, capped)``; when capped, sources later in the list
    are trimmed so the allocations sum exactly to ``cap``.
    """
    allocations = []
    remaining = cap
    capped = False
    for candidate in candidates:
        granted = min(candidate.percentage, remaining)
        if granted < candidate.percentage:
            capped = True
        if granted > 0:
            allocations.append(DiscountCandidate(candidate.source, granted))
        remaining -= granted
    return allocations, capped


def resolve_service_tier(tier: PricingTier, garment_count: int, today: date,
                         completed_orders: Callable[[], int]) -> DiscountResolution:
    """
    Evaluate the three discount sources of a pricing tier independently.

    ``completed_orders`` is called lazily, only when the corporate rule is
    enabled and well formed.
    """
    errors = []
    candidates = []
    checks = (
        (tier.multiple_garments_enabled, DiscountSource.MULTIPLE_GARMENTS,
         lambda: _multiple_garments(tier, garment_count)),
        (tier.seasonal_enabled, DiscountSource.SEASONAL,
         lambda: _seasonal(tier, today)),
        (tier.corporate_enabled, DiscountSource.CORPORATE,
         lambda: _corporate(tier, completed_orders)),
    )
    for enabled, source, evaluate in checks:
        if not enabled:
            continue
        try:
            pct = evaluate()
        except ConfigurationError as e:
            _report(e, errors)
            continue
        if pct is not None:
            candidates.append(DiscountCandidate(source, pct))

    allocations, capped = combine_with_cap(candidates)
    if capped:
        logger.info(
            f"Seller {tier.seller_id}: combined discount "
            f"{sum(c.percentage for c in candidates)}% capped at {MAX_COMBINED_DISCOUNT_PERCENTAGE}%"
        )
    return DiscountResolution(allocations, capped=capped, config_errors=errors, matched_tier=tier)


class DiscountResolver:
    """Resolves discounts for a seller group using live seller configuration."""

    def __init__(self, seller_config, customer_history, clock):
        self.seller_config = seller_config
        self.customer_history = customer_history
        self.clock = clock

    def resolve_goods(self, seller_id: int, total_quantity: int) -> DiscountResolution:
        tiers = self.seller_config.get_bulk_discount_tiers(seller_id)
        return resolve_bulk_tier(tiers, total_quantity, seller_id=seller_id)

    def resolve_service(self, tier: PricingTier, garment_count: int,
                        customer_id: Optional[int]) -> DiscountResolution:
        def completed_orders():
            if customer_id is None:
                return 0
            return self.customer_history.get_completed_order_count(customer_id, tier.seller_id)

        return resolve_service_tier(tier, garment_count, self.clock.now(), completed_orders)
