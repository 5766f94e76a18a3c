"""
Unit tests for discount resolution (bulk tiers and composite tailor discounts).
"""

import pytest
from datetime import date
from decimal import Decimal

from prometheus_client import REGISTRY

from marketplace.models import BulkDiscountTier, PricingTier, DiscountSource
from marketplace.services.discount_resolver import (
    MAX_COMBINED_DISCOUNT_PERCENTAGE, DiscountCandidate, DiscountResolver,
    combine_with_cap, resolve_bulk_tier, resolve_service_tier
)
from marketplace.utils.clock import FixedClock

TODAY = date(2024, 6, 15)


def bulk(min_qty, pct):
    return BulkDiscountTier(
        min_quantity=min_qty,
        discount_percentage=None if pct is None else Decimal(str(pct))
    )


def service_tier(**fields):
    return PricingTier(seller_id=7, name='Standard', base_price=Decimal('2000.00'), **fields)


def never_called():
    raise AssertionError('completed order count should not be read')


class TestBulkTierResolution:
    """Single best-match bulk tiers."""

    def test_matches_highest_reached_tier(self):
        """60 units with tiers 10/5% and 50/15% gets 15%."""
        resolution = resolve_bulk_tier([bulk(10, 5), bulk(50, 15)], 60, seller_id=1)

        assert resolution.percentage == Decimal('15')
        assert resolution.sources == [DiscountSource.BULK_TIER]
        assert resolution.matched_tier.min_quantity == 50

    def test_tiers_are_not_cumulative(self):
        """Crossing two thresholds grants only the higher percentage, never the sum."""
        resolution = resolve_bulk_tier([bulk(10, 5), bulk(50, 15)], 500)

        assert resolution.percentage == Decimal('15')
        assert len(resolution.allocations) == 1

    @pytest.mark.parametrize('quantity, expected', [
        (0, '0'), (9, '0'), (10, '5'), (49, '5'), (50, '15'), (51, '15'),
    ])
    def test_threshold_boundaries(self, quantity, expected):
        """A tier applies from exactly its minimum quantity."""
        resolution = resolve_bulk_tier([bulk(10, 5), bulk(50, 15)], quantity)
        assert resolution.percentage == Decimal(expected)

    def test_tier_order_in_configuration_is_irrelevant(self):
        resolution = resolve_bulk_tier([bulk(50, 15), bulk(10, 5)], 20)
        assert resolution.percentage == Decimal('5')

    def test_no_tiers_means_no_discount(self):
        resolution = resolve_bulk_tier([], 1000)

        assert resolution.percentage == 0
        assert resolution.allocations == []
        assert resolution.matched_tier is None

    def test_inverted_tiers_keep_first_match_and_are_reported(self):
        """60 units with 10/20% and 50/15%: the 50-unit tier applies, never the larger 20%."""
        resolution = resolve_bulk_tier([bulk(10, 20), bulk(50, 15)], 60, seller_id=3)

        assert resolution.percentage == Decimal('15')
        assert resolution.matched_tier.min_quantity == 50
        assert len(resolution.config_errors) == 1
        assert resolution.config_errors[0].rule == 'bulk_tier'
        assert 'inverted' in resolution.config_errors[0].reason

    @pytest.mark.parametrize('quantity, expected', [
        (9, '0'), (10, '0'), (49, '0'), (50, '15'), (99, '15'), (100, '25'),
    ])
    def test_inverted_tier_is_dropped(self, quantity, expected):
        """The 10-unit tier outbids the 50-unit one, so it never applies."""
        tiers = [bulk(10, 20), bulk(50, 15), bulk(100, 25)]

        resolution = resolve_bulk_tier(tiers, quantity, seller_id=3)

        assert resolution.percentage == Decimal(expected)

    def test_resolution_is_monotonic_and_never_above_first_match(self):
        tiers = [bulk(10, 20), bulk(50, 15), bulk(100, 25)]

        def first_match(quantity):
            for t in sorted(tiers, key=lambda t: -t.min_quantity):
                if quantity >= t.min_quantity:
                    return t.discount_percentage
            return Decimal('0')

        previous = Decimal('0')
        for quantity in range(0, 150):
            pct = resolve_bulk_tier(tiers, quantity).percentage
            assert pct >= previous
            assert pct <= first_match(quantity)
            previous = pct

    def test_consistent_ladder_reports_nothing(self):
        resolution = resolve_bulk_tier([bulk(10, 5), bulk(50, 15)], 60)
        assert resolution.config_errors == []

    def test_equal_thresholds_use_lowest_percentage(self):
        resolution = resolve_bulk_tier([bulk(10, 8), bulk(10, 5)], 10)
        assert resolution.percentage == Decimal('5')

    def test_incomplete_tier_is_ignored_not_granted(self):
        """A tier without a percentage never grants a discount."""
        resolution = resolve_bulk_tier([bulk(10, None), bulk(50, 15)], 20, seller_id=9)

        assert resolution.percentage == 0
        assert len(resolution.config_errors) == 1
        assert resolution.config_errors[0].seller_id == 9

    @pytest.mark.parametrize('pct', ['150', '-5'])
    def test_out_of_range_percentage_is_a_configuration_error(self, pct):
        resolution = resolve_bulk_tier([bulk(10, pct)], 20)

        assert resolution.percentage == 0
        assert len(resolution.config_errors) == 1

    def test_zero_quantity_threshold_is_a_configuration_error(self):
        resolution = resolve_bulk_tier([bulk(0, 5)], 20)

        assert resolution.percentage == 0
        assert resolution.config_errors


class TestServiceTierResolution:
    """Composite discount of a tailor pricing tier."""

    def test_multiple_garments_and_seasonal_stack(self):
        """4 garments, threshold 3 at 10% plus in-window seasonal 5% gives 15%."""
        tier = service_tier(
            multiple_garments_enabled=True, multiple_garments_threshold=3,
            multiple_garments_percentage=Decimal('10'),
            seasonal_enabled=True, seasonal_percentage=Decimal('5'),
            seasonal_start_date=date(2024, 6, 1), seasonal_end_date=date(2024, 6, 30),
            corporate_enabled=True, corporate_percentage=Decimal('20'), corporate_minimum_orders=5,
        )
        resolution = resolve_service_tier(tier, 4, TODAY, lambda: 0)

        assert resolution.percentage == Decimal('15')
        assert resolution.sources == [DiscountSource.MULTIPLE_GARMENTS, DiscountSource.SEASONAL]
        assert resolution.capped is False

    @pytest.mark.parametrize('garments, expected', [(2, '0'), (3, '10'), (10, '10')])
    def test_multiple_garments_threshold(self, garments, expected):
        tier = service_tier(
            multiple_garments_enabled=True, multiple_garments_threshold=3,
            multiple_garments_percentage=Decimal('10'),
        )
        assert resolve_service_tier(tier, garments, TODAY, never_called).percentage == Decimal(expected)

    @pytest.mark.parametrize('today, expected', [
        (date(2024, 5, 31), '0'),
        (date(2024, 6, 1), '5'),
        (date(2024, 6, 30), '5'),
        (date(2024, 7, 1), '0'),
    ])
    def test_seasonal_window_is_inclusive(self, today, expected):
        tier = service_tier(
            seasonal_enabled=True, seasonal_percentage=Decimal('5'),
            seasonal_start_date=date(2024, 6, 1), seasonal_end_date=date(2024, 6, 30),
        )
        assert resolve_service_tier(tier, 1, today, never_called).percentage == Decimal(expected)

    @pytest.mark.parametrize('completed, expected', [(4, '0'), (5, '20'), (12, '20')])
    def test_corporate_uses_completed_order_count(self, completed, expected):
        tier = service_tier(
            corporate_enabled=True, corporate_percentage=Decimal('20'), corporate_minimum_orders=5,
        )
        assert resolve_service_tier(tier, 1, TODAY, lambda: completed).percentage == Decimal(expected)

    def test_disabled_corporate_rule_never_reads_history(self):
        tier = service_tier(corporate_enabled=False, corporate_percentage=Decimal('20'))
        assert resolve_service_tier(tier, 1, TODAY, never_called).percentage == 0

    def test_combined_percentage_is_capped(self):
        """60% + 30% + 20% is clamped to the 95% cap and flagged."""
        tier = service_tier(
            multiple_garments_enabled=True, multiple_garments_threshold=1,
            multiple_garments_percentage=Decimal('60'),
            seasonal_enabled=True, seasonal_percentage=Decimal('30'),
            seasonal_start_date=date(2024, 1, 1), seasonal_end_date=date(2024, 12, 31),
            corporate_enabled=True, corporate_percentage=Decimal('20'), corporate_minimum_orders=0,
        )
        resolution = resolve_service_tier(tier, 2, TODAY, lambda: 0)

        assert resolution.percentage == MAX_COMBINED_DISCOUNT_PERCENTAGE
        assert resolution.capped is True
        assert [a.percentage for a in resolution.allocations] == [Decimal('60'), Decimal('30'), Decimal('5')]

    def test_enabled_rule_with_missing_fields_is_ineligible(self):
        tier = service_tier(
            multiple_garments_enabled=True, multiple_garments_threshold=None,
            multiple_garments_percentage=Decimal('10'),
            seasonal_enabled=True, seasonal_percentage=Decimal('5'),
        )
        resolution = resolve_service_tier(tier, 10, TODAY, never_called)

        assert resolution.percentage == 0
        assert sorted(e.rule for e in resolution.config_errors) == ['multiple_garments', 'seasonal']

    def test_seasonal_start_after_end_is_ineligible(self):
        tier = service_tier(
            seasonal_enabled=True, seasonal_percentage=Decimal('5'),
            seasonal_start_date=date(2024, 6, 30), seasonal_end_date=date(2024, 6, 1),
        )
        resolution = resolve_service_tier(tier, 1, TODAY, never_called)

        assert resolution.percentage == 0
        assert 'after end date' in resolution.config_errors[0].reason

    def test_broken_rule_does_not_block_valid_rules(self):
        tier = service_tier(
            multiple_garments_enabled=True, multiple_garments_threshold=2,
            multiple_garments_percentage=Decimal('10'),
            corporate_enabled=True, corporate_percentage=None, corporate_minimum_orders=1,
        )
        resolution = resolve_service_tier(tier, 2, TODAY, never_called)

        assert resolution.percentage == Decimal('10')
        assert [e.rule for e in resolution.config_errors] == ['corporate']

    def test_ignored_rule_is_counted(self):
        def count():
            return REGISTRY.get_sample_value('discount_config_errors_total', {'rule': 'seasonal'}) or 0
        before = count()
        tier = service_tier(seasonal_enabled=True, seasonal_percentage=Decimal('500'),
                            seasonal_start_date=date(2024, 6, 1), seasonal_end_date=date(2024, 6, 30))

        resolve_service_tier(tier, 1, TODAY, never_called)

        assert count() == before + 1


class TestCombineWithCap:

    def test_under_cap_keeps_every_source(self):
        allocations, capped = combine_with_cap([
            DiscountCandidate(DiscountSource.MULTIPLE_GARMENTS, Decimal('10')),
            DiscountCandidate(DiscountSource.SEASONAL, Decimal('5')),
        ])
        assert sum(a.percentage for a in allocations) == Decimal('15')
        assert capped is False

    def test_sources_past_the_cap_are_dropped(self):
        allocations, capped = combine_with_cap([
            DiscountCandidate(DiscountSource.MULTIPLE_GARMENTS, Decimal('95')),
            DiscountCandidate(DiscountSource.CORPORATE, Decimal('10')),
        ])
        assert [a.source for a in allocations] == [DiscountSource.MULTIPLE_GARMENTS]
        assert capped is True


class FakeSellerConfig:
    def __init__(self, tiers):
        self.tiers = tiers
        self.calls = 0

    def get_bulk_discount_tiers(self, seller_id):
        self.calls += 1
        return self.tiers


class FakeHistory:
    def __init__(self, count):
        self.count = count
        self.calls = []

    def get_completed_order_count(self, customer_id, seller_id):
        self.calls.append((customer_id, seller_id))
        return self.count


class TestDiscountResolver:

    def test_goods_rules_are_read_on_every_resolution(self):
        config = FakeSellerConfig([bulk(10, 5)])
        resolver = DiscountResolver(config, FakeHistory(0), FixedClock(TODAY))

        resolver.resolve_goods(1, 20)
        resolver.resolve_goods(1, 20)

        assert config.calls == 2

    def test_service_corporate_uses_customer_history(self):
        history = FakeHistory(6)
        resolver = DiscountResolver(FakeSellerConfig([]), history, FixedClock(TODAY))
        tier = service_tier(
            corporate_enabled=True, corporate_percentage=Decimal('20'), corporate_minimum_orders=5,
        )

        resolution = resolver.resolve_service(tier, 1, customer_id=42)

        assert resolution.percentage == Decimal('20')
        assert history.calls == [(42, 7)]

    def test_anonymous_customer_has_no_history(self):
        history = FakeHistory(100)
        resolver = DiscountResolver(FakeSellerConfig([]), history, FixedClock(TODAY))
        tier = service_tier(
            corporate_enabled=True, corporate_percentage=Decimal('20'), corporate_minimum_orders=5,
        )

        assert resolver.resolve_service(tier, 1, customer_id=None).percentage == 0
        assert history.calls == []
