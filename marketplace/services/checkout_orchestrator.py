"""
Checkout orchestration - one state machine per seller group.

    CREATED -> VALIDATING -> PRICED -> CONFIRMED
         \____________\_________\____> REJECTED

Each seller group is its own transaction boundary: a rejected group rolls back
only its own work and never touches a sibling that was already confirmed.
The result is a partial-success report listing confirmed and rejected sellers.
"""
import enum
import logging
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from marketplace.metrics import record_checkout
from marketplace.exceptions import (
    MarketplaceError, BusinessLogicError, ValidationError, PriceChangedError, StockConflictError
)
from marketplace.models import (
    CartLine, OrderSnapshot, OrderSnapshotLine, AppliedDiscount, PricingMode, SellerType
)
from marketplace.services import cart_aggregator, cart_service
from marketplace.services.catalog_service import ProductCatalog
from marketplace.services.customer_history_service import CustomerHistory
from marketplace.services.discount_resolver import DiscountResolution, DiscountResolver
from marketplace.services.pricing_calculator import (
    calculate_order, charges_total, garment_count, package_unit_price, price_goods_line,
    price_package, price_service_line, resolved_unit_price, total_quantity
)
from marketplace.services.seller_config_service import SellerConfig
from marketplace.services.stock_locks import product_locks
from marketplace.utils.clock import SystemClock
from marketplace.utils.money import ZERO, round_half_up

logger = logging.getLogger(__name__)


class CheckoutState(enum.Enum):
    CREATED = "CREATED"
    VALIDATING = "VALIDATING"
    PRICED = "PRICED"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


_TRANSITIONS = {
    CheckoutState.CREATED: {CheckoutState.VALIDATING, CheckoutState.REJECTED},
    CheckoutState.VALIDATING: {CheckoutState.PRICED, CheckoutState.REJECTED},
    CheckoutState.PRICED: {CheckoutState.CONFIRMED, CheckoutState.REJECTED},
    CheckoutState.CONFIRMED: set(),
    CheckoutState.REJECTED: set(),
}


class SellerCheckout:
    """Checkout attempt for one seller group."""

    def __init__(self, seller_id: int):
        self.seller_id = seller_id
        self.state = CheckoutState.CREATED
        self.history = [CheckoutState.CREATED]
        self.error: Optional[MarketplaceError] = None
        self.quote: Optional[Dict] = None
        self.snapshot: Optional[OrderSnapshot] = None
        # Serialized while the snapshot's session is still open
        self.order: Optional[Dict] = None

    def advance(self, state: CheckoutState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise BusinessLogicError(
                f'Invalid checkout transition {self.state.value} -> {state.value}', status_code=500
            )
        self.state = state
        self.history.append(state)

    def reject(self, error: MarketplaceError) -> None:
        self.error = error
        self.advance(CheckoutState.REJECTED)

    def __repr__(self):
        return f"<SellerCheckout(seller_id={self.seller_id}, state={self.state.value})>"


class CheckoutReport:
    """Partial-success report of a checkout attempt."""

    def __init__(self, groups: List[SellerCheckout]):
        self.groups = groups

    @property
    def confirmed(self) -> List[int]:
        return [g.seller_id for g in self.groups if g.state == CheckoutState.CONFIRMED]

    @property
    def rejected(self) -> List[Dict]:
        return [
            {'seller_id': g.seller_id, 'reason': g.error}
            for g in self.groups if g.state == CheckoutState.REJECTED
        ]

    @property
    def snapshots(self) -> List[OrderSnapshot]:
        return [g.snapshot for g in self.groups if g.snapshot is not None]

    @property
    def all_confirmed(self) -> bool:
        return bool(self.groups) and all(g.state == CheckoutState.CONFIRMED for g in self.groups)

    def to_dict(self):
        return {
            'confirmed': self.confirmed,
            'rejected': [
                {'seller_id': r['seller_id'], 'reason': r['reason'].to_dict()}
                for r in self.rejected
            ],
            'orders': [g.order for g in self.groups if g.order is not None],
        }


class CheckoutOrchestrator:
    """
    Validates, prices and commits the seller groups of a customer's cart.

    With ``session_factory`` and ``max_workers > 1`` the groups run in a
    thread pool, each with its own session; otherwise they run one after the
    other on ``session``.
    """

    def __init__(self, session: Session, clock=None, session_factory=None, max_workers: int = 1,
                 lock_registry=None, default_tier_type: str = 'basic'):
        self.session = session
        self.clock = clock or SystemClock()
        self.session_factory = session_factory
        self.max_workers = max(1, int(max_workers or 1))
        self.locks = lock_registry or product_locks
        self.default_tier_type = default_tier_type

    # =====================================================
    # PUBLIC API
    # =====================================================

    def checkout(self, customer_id: int, seller_id: Optional[int] = None,
                 shipping_costs: Optional[Dict[int, Decimal]] = None) -> CheckoutReport:
        """
        Check out every seller group of the cart, or only ``seller_id``'s.

        ``shipping_costs`` maps seller id to an externally computed shipping
        amount (default 0). Raises ValidationError when there is nothing to
        check out; every other failure is reported per group.
        """
        cart = cart_service.get_cart(self.session, customer_id)
        if not cart or not cart.lines:
            raise ValidationError('Cart is empty')

        seller_ids = cart_aggregator.seller_order(cart.lines)
        if seller_id is not None:
            if seller_id not in seller_ids:
                raise ValidationError('No items found for the selected seller')
            seller_ids = [seller_id]
        shipping_costs = shipping_costs or {}
        started_at = time.perf_counter()

        if self.session_factory is not None and self.max_workers > 1 and len(seller_ids) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(seller_ids))) as pool:
                futures = [
                    pool.submit(self._checkout_group_isolated, customer_id, sid,
                                shipping_costs.get(sid, ZERO))
                    for sid in seller_ids
                ]
                groups = [f.result() for f in futures]
            self.session.expire_all()
        else:
            groups = [
                self._checkout_group(self.session, customer_id, sid, shipping_costs.get(sid, ZERO))
                for sid in seller_ids
            ]

        report = CheckoutReport(groups)
        _record_metrics(report, time.perf_counter() - started_at)
        logger.info(
            f"Checkout for customer {customer_id}: confirmed={report.confirmed} "
            f"rejected={[r['seller_id'] for r in report.rejected]}"
        )
        return report

    # =====================================================
    # PER-GROUP STATE MACHINE
    # =====================================================

    def _checkout_group_isolated(self, customer_id: int, seller_id: int, shipping_cost) -> SellerCheckout:
        try:
            session = self.session_factory()
        except Exception as e:
            logger.error(f"Could not open a session for seller group {seller_id}: {e}", exc_info=True)
            checkout = SellerCheckout(seller_id)
            checkout.reject(MarketplaceError(f'Checkout failed for seller {seller_id}: {e}'))
            return checkout
        try:
            return self._checkout_group(session, customer_id, seller_id, shipping_cost)
        finally:
            session.close()

    def _checkout_group(self, session: Session, customer_id: int, seller_id: int,
                        shipping_cost) -> SellerCheckout:
        checkout = SellerCheckout(seller_id)
        catalog = ProductCatalog(session)
        seller_config = SellerConfig(session, self.default_tier_type)
        history = CustomerHistory(session)

        try:
            cart = cart_service.get_cart(session, customer_id)
            all_lines = list(cart.lines) if cart else []
            lines = [l for l in all_lines if l.seller_id == seller_id]
            if not lines:
                raise ValidationError(f'No items found for seller {seller_id}')

            checkout.advance(CheckoutState.VALIDATING)
            self._validate(lines, catalog, seller_config)

            checkout.advance(CheckoutState.PRICED)
            checkout.quote = self._price(all_lines, customer_id, seller_id, catalog, seller_config,
                                         history, shipping_cost)

            checkout.snapshot = self._confirm(session, customer_id, seller_id, lines, checkout.quote,
                                              catalog, seller_config)
            checkout.order = checkout.snapshot.to_dict()
            checkout.advance(CheckoutState.CONFIRMED)
        except MarketplaceError as e:
            session.rollback()
            checkout.reject(e)
            logger.info(f"Seller group {seller_id} rejected in {checkout.history[-2].value}: {e.message}")
        except Exception as e:
            session.rollback()
            logger.error(f"Unexpected error checking out seller group {seller_id}: {e}", exc_info=True)
            error = MarketplaceError(f'Checkout failed for seller {seller_id}: {e}')
            error.__cause__ = e
            checkout.reject(error)
        else:
            logger.info(f"Seller group {seller_id} confirmed as order {checkout.snapshot.id}")
        return checkout

    def _validate(self, lines: List[CartLine], catalog: ProductCatalog, seller_config: SellerConfig) -> None:
        """Compare every cart snapshot with live data; never substitute the live price."""
        today = self.clock.now()
        prices = catalog.get_prices([l.product_id for l in lines if l.is_goods])
        requested: Dict[int, int] = OrderedDict()

        for line in lines:
            snapshot_price = round_half_up(line.unit_price)
            if line.is_goods:
                price = prices.get(line.product_id)
                if price is None or not price.is_active:
                    raise ValidationError(f'Product {line.product_id} is no longer available')
                live_price = resolved_unit_price(line, catalog_price=price)
                if live_price != snapshot_price:
                    raise PriceChangedError(line.id, snapshot_price, live_price)
                if line.quantity < price.minimum_order_quantity:
                    raise ValidationError(
                        f'Minimum order quantity for "{price.name}" is {price.minimum_order_quantity}'
                    )
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
            elif line.is_package:
                package = seller_config.get_package(line.package_id)
                if package is None or not package.active:
                    raise ValidationError(f'Package {line.package_id} is no longer available')
                tier = seller_config.get_pricing_tier(package.seller_id, package.tier_type)
                live_price = package_unit_price(package, tier, today)
                if live_price != snapshot_price:
                    raise PriceChangedError(line.id, snapshot_price, live_price)
            else:
                tier = seller_config.get_pricing_tier(line.seller_id, line.tier_type)
                if tier is None:
                    raise ValidationError(f'Seller {line.seller_id} no longer offers this service')
                live_price = resolved_unit_price(line, tier=tier)
                if live_price != snapshot_price:
                    raise PriceChangedError(line.id, snapshot_price, live_price)

        for product_id, qty in requested.items():
            available = prices[product_id].stock_quantity
            if available < qty:
                raise StockConflictError(product_id, qty, available)

    def _price(self, all_lines: List[CartLine], customer_id: int, seller_id: int,
               catalog: ProductCatalog, seller_config: SellerConfig, history: CustomerHistory,
               shipping_cost) -> Dict:
        """Aggregate (scoped to the seller), resolve discounts and compute totals. Persists nothing."""
        groups = cart_aggregator.group(all_lines, catalog, seller_config, seller_id=seller_id)
        group = groups[seller_id]
        resolver = DiscountResolver(seller_config, history, self.clock)

        if group.seller.seller_type == SellerType.SUPPLIER:
            prices = catalog.get_prices([l.product_id for l in group.lines])
            priced = [price_goods_line(l, prices[l.product_id]) for l in group.lines]
            resolution = resolver.resolve_goods(seller_id, total_quantity(priced))
            charges = ZERO
        else:
            today = self.clock.now()
            tier = None
            if group.tier_type:
                tier = seller_config.get_pricing_tier(seller_id, group.tier_type)
            priced = []
            for line in group.lines:
                if line.is_package:
                    package = seller_config.get_package(line.package_id)
                    package_tier = seller_config.get_pricing_tier(seller_id, package.tier_type)
                    tier = tier or package_tier
                    priced.extend(price_package(package, line.quantity, package_tier, today, line_id=line.id))
                else:
                    priced.append(price_service_line(line, tier))

            garments = garment_count(priced)
            if tier is not None and 0 < garments < (tier.minimum_order or 1):
                raise ValidationError(f'Minimum order for "{tier.name}" is {tier.minimum_order} garments')
            resolution = resolver.resolve_service(tier, garments, customer_id) if tier else DiscountResolution()
            selected = {c for line in group.lines for c in line.charges}
            charges = charges_total(selected, tier)

        quote = calculate_order(priced, resolution, charges, shipping_cost)
        quote['config_errors'] = [e.message for e in resolution.config_errors]
        return quote

    def _confirm(self, session: Session, customer_id: int, seller_id: int, lines: List[CartLine],
                 quote: Dict, catalog: ProductCatalog, seller_config: SellerConfig) -> OrderSnapshot:
        """Persist the snapshot, decrement stock and clear the group's lines as one unit."""
        requested: Dict[int, int] = OrderedDict()
        for line in lines:
            if line.is_goods:
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        with self.locks.hold(requested.keys()):
            snapshot = build_snapshot(customer_id, seller_id, quote)
            session.add(snapshot)
            session.flush()

            for product_id, qty in requested.items():
                if not catalog.decrement_stock(product_id, qty):
                    raise StockConflictError(product_id, qty, catalog.available_stock(product_id))

            for priced in quote['lines']:
                if priced.pricing_mode != PricingMode.PACKAGE:
                    continue
                for _ in range(priced.quantity):
                    if not seller_config.claim_package_slot(priced.package_id):
                        raise ValidationError(f'Package {priced.package_id} is sold out')

            for line in lines:
                session.delete(line)
            session.commit()
        return snapshot


def build_snapshot(customer_id: int, seller_id: int, quote: Dict) -> OrderSnapshot:
    """Turn a priced quote into an (unsaved) OrderSnapshot."""
    snapshot = OrderSnapshot(
        customer_id=customer_id,
        seller_id=seller_id,
        items_subtotal=quote['items_subtotal'],
        charges_total=quote['charges_total'],
        subtotal=quote['subtotal'],
        discount_percentage=quote['discount_percentage'],
        discount_total=quote['discount_amount'],
        package_total=quote['package_total'],
        shipping_cost=quote['shipping_cost'],
        grand_total=quote['total'],
        needs_review=quote['needs_review'],
    )
    for priced in quote['lines']:
        snapshot.lines.append(OrderSnapshotLine(
            product_type=priced.product_type.value,
            product_id=priced.product_id,
            garment_type=priced.garment_type.value if priced.garment_type else None,
            package_id=priced.package_id,
            description=priced.description[:255],
            pricing_mode=priced.pricing_mode,
            quantity=priced.quantity,
            unit_price=priced.unit_price,
            line_total=priced.line_total,
        ))
    for entry in quote['discounts']:
        snapshot.discounts.append(AppliedDiscount(
            source=entry['source'],
            percentage=entry['percentage'],
            amount=entry['amount'],
        ))
    return snapshot


def _record_metrics(report: CheckoutReport, duration: float) -> None:
    record_checkout([g.state.value.lower() for g in report.groups], duration)
