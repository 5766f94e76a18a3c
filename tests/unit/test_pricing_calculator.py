"""
Unit tests for the pricing calculator (pure functions, no database).
"""

import pytest
from datetime import date
from decimal import Decimal

from marketplace.exceptions import ValidationError
from marketplace.models import (
    BulkDiscountTier, CartLine, ChargeType, DiscountSource, GarmentType, Package,
    PackageGarment, PricingMode, PricingTier, ProductType
)
from marketplace.services.catalog_service import CatalogPrice
from marketplace.services.discount_resolver import (
    DiscountCandidate, DiscountResolution, resolve_bulk_tier, resolve_service_tier
)
from marketplace.services.pricing_calculator import (
    calculate_order, charges_total, garment_count, package_unit_price, price_goods_line,
    price_package, price_service_line, quote_service_order, quote_to_dict
)

TODAY = date(2024, 6, 15)


def catalog_price(unit_price='100.00', product_id=1):
    return CatalogPrice(
        product_id=product_id, seller_id=1, name='Lawn Cotton', unit='meter',
        unit_price=Decimal(unit_price), stock_quantity=1000, minimum_order_quantity=1, is_active=True
    )


def goods_line(qty, product_id=1):
    return CartLine(id=product_id, product_type=ProductType.GOODS, seller_id=1,
                    product_id=product_id, unit_price=Decimal('100.00'), quantity=qty)


def service_line(garment, qty):
    return CartLine(product_type=ProductType.SERVICE, seller_id=7, garment_type=garment,
                    tier_type='basic', unit_price=Decimal('0'), quantity=qty)


def tailor_tier(**fields):
    values = dict(
        seller_id=7, name='Standard', base_price=Decimal('2000.00'),
        garment_pricing={'sherwani': '5000'},
        additional_charges={'embroidery': '500', 'rush_order': '1000'},
        multiple_garments_enabled=True, multiple_garments_threshold=3,
        multiple_garments_percentage=Decimal('10'),
        seasonal_enabled=True, seasonal_percentage=Decimal('5'),
        seasonal_start_date=date(2024, 6, 1), seasonal_end_date=date(2024, 6, 30),
        corporate_enabled=False,
    )
    values.update(fields)
    return PricingTier(**values)


def package(valid_until=None, fabric_cost=None, **fields):
    values = dict(
        id=11, seller_id=7, name='Eid Family Pack', tier_type='basic',
        original_price=Decimal('18000'), package_price=Decimal('15000'),
        valid_until=valid_until, active=True, is_limited=False, current_orders=0,
        fabric_included=fabric_cost is not None, fabric_type='lawn', fabric_cost=fabric_cost,
    )
    values.update(fields)
    pkg = Package(**values)
    pkg.garments.append(PackageGarment(garment_type='shalwar_kameez', quantity=3))
    return pkg


class TestGoodsPricing:

    def test_bulk_order_scenario(self):
        """60 units at 100 with tiers 10/5% and 50/15%: 6000 - 900 = 5100."""
        priced = [price_goods_line(goods_line(60), catalog_price())]
        tiers = [BulkDiscountTier(min_quantity=10, discount_percentage=Decimal('5')),
                 BulkDiscountTier(min_quantity=50, discount_percentage=Decimal('15'))]

        result = calculate_order(priced, resolve_bulk_tier(tiers, 60))

        assert result['subtotal'] == Decimal('6000.00')
        assert result['discount_amount'] == Decimal('900.00')
        assert result['total'] == Decimal('5100.00')
        assert result['discounts'] == [{
            'source': DiscountSource.BULK_TIER,
            'percentage': Decimal('15'),
            'amount': Decimal('900.00'),
        }]

    def test_goods_use_live_catalog_price(self):
        """The cart snapshot is validated elsewhere; totals use the live price."""
        line = price_goods_line(goods_line(3), catalog_price('120.50'))

        assert line.unit_price == Decimal('120.50')
        assert line.line_total == Decimal('361.50')
        assert line.pricing_mode == PricingMode.CATALOG


class TestServicePricing:

    def test_multi_garment_seasonal_scenario(self):
        """4 garments at 2000 with 10% + 5%: 8000 - 1200 = 6800."""
        tier = tailor_tier()
        priced = [price_service_line(service_line('shalwar_kameez', 4), tier)]
        resolution = resolve_service_tier(tier, garment_count(priced), TODAY, lambda: 0)

        result = calculate_order(priced, resolution)

        assert result['subtotal'] == Decimal('8000.00')
        assert result['discount_percentage'] == Decimal('15')
        assert result['discount_amount'] == Decimal('1200.00')
        assert result['total'] == Decimal('6800.00')
        assert [(d['source'], d['amount']) for d in result['discounts']] == [
            (DiscountSource.MULTIPLE_GARMENTS, Decimal('800.00')),
            (DiscountSource.SEASONAL, Decimal('400.00')),
        ]

    def test_garment_override_beats_base_price(self):
        tier = tailor_tier()

        assert price_service_line(service_line('sherwani', 1), tier).unit_price == Decimal('5000.00')
        assert price_service_line(service_line('kurta', 1), tier).unit_price == Decimal('2000.00')

    def test_charges_billed_once_and_discounted_with_subtotal(self):
        tier = tailor_tier()
        priced = [price_service_line(service_line('shalwar_kameez', 4), tier)]
        charges = charges_total([ChargeType.EMBROIDERY, ChargeType.RUSH_ORDER, ChargeType.EMBROIDERY], tier)
        resolution = resolve_service_tier(tier, 4, TODAY, lambda: 0)

        result = calculate_order(priced, resolution, charges)

        assert result['charges_total'] == Decimal('1500.00')
        assert result['subtotal'] == Decimal('9500.00')
        assert result['discount_amount'] == Decimal('1425.00')
        assert result['total'] == Decimal('8075.00')

    def test_charge_not_offered_is_not_billed(self):
        assert charges_total([ChargeType.CUSTOM_DESIGN], tailor_tier()) == Decimal('0.00')


class TestPackagePricing:

    def test_valid_package_price_takes_no_further_discount(self):
        tier = tailor_tier()
        priced = price_package(package(valid_until=date(2024, 12, 31)), 1, tier, TODAY)
        resolution = DiscountResolution([DiscountCandidate(DiscountSource.SEASONAL, Decimal('5'))])

        result = calculate_order(priced, resolution)

        assert [l.pricing_mode for l in priced] == [PricingMode.PACKAGE]
        assert result['package_total'] == Decimal('15000.00')
        assert result['discount_amount'] == Decimal('0.00')
        assert result['total'] == Decimal('15000.00')

    def test_expired_package_falls_back_to_tier_prices(self):
        """An expired package is priced a la carte through the pricing tier."""
        tier = tailor_tier()
        priced = price_package(package(valid_until=date(2024, 6, 14)), 1, tier, TODAY)

        assert [l.pricing_mode for l in priced] == [PricingMode.PACKAGE_FALLBACK]
        assert priced[0].garment_type == GarmentType.SHALWAR_KAMEEZ
        assert priced[0].quantity == 3
        assert priced[0].line_total == Decimal('6000.00')

        resolution = resolve_service_tier(tier, garment_count(priced), TODAY, lambda: 0)
        result = calculate_order(priced, resolution)
        assert result['subtotal'] == Decimal('6000.00')
        assert result['total'] == Decimal('5100.00')

    def test_package_valid_on_its_last_day(self):
        priced = price_package(package(valid_until=TODAY), 1, tailor_tier(), TODAY)
        assert priced[0].pricing_mode == PricingMode.PACKAGE

    def test_fallback_includes_fabric_which_is_not_a_garment(self):
        priced = price_package(package(valid_until=date(2024, 1, 1), fabric_cost=Decimal('1500')),
                               2, tailor_tier(), TODAY)

        assert [l.line_total for l in priced] == [Decimal('12000.00'), Decimal('3000.00')]
        assert garment_count(priced) == 6

    def test_sold_out_limited_package_falls_back(self):
        pkg = package(is_limited=True, max_orders=10)
        pkg.current_orders = 10

        assert package_unit_price(pkg, tailor_tier(), TODAY) == Decimal('6000.00')

    def test_fallback_without_tier_is_rejected(self):
        with pytest.raises(ValidationError):
            price_package(package(valid_until=date(2024, 1, 1)), 1, None, TODAY)


class TestTotals:

    def test_discount_rounds_half_up_once_on_subtotal(self):
        priced = [price_goods_line(goods_line(1), catalog_price('333.33'))]
        resolution = DiscountResolution([
            DiscountCandidate(DiscountSource.MULTIPLE_GARMENTS, Decimal('10')),
            DiscountCandidate(DiscountSource.SEASONAL, Decimal('5')),
        ])

        result = calculate_order(priced, resolution)

        # 333.33 * 15% = 49.9995
        assert result['discount_amount'] == Decimal('50.00')
        assert [d['amount'] for d in result['discounts']] == [Decimal('33.33'), Decimal('16.67')]
        assert sum(d['amount'] for d in result['discounts']) == result['discount_amount']

    def test_calculation_is_idempotent(self):
        tier = tailor_tier()
        priced = [price_service_line(service_line('shalwar_kameez', 4), tier)]
        resolution = resolve_service_tier(tier, 4, TODAY, lambda: 0)

        assert calculate_order(priced, resolution, Decimal('500')) == \
            calculate_order(priced, resolution, Decimal('500'))

    @pytest.mark.parametrize('qty', [0, 1, 7, 999])
    @pytest.mark.parametrize('pct', ['0', '15', '95', '100'])
    def test_total_is_never_negative(self, qty, pct):
        priced = [price_goods_line(goods_line(qty), catalog_price('19.99'))] if qty else []
        resolution = DiscountResolution([DiscountCandidate(DiscountSource.BULK_TIER, Decimal(pct))])

        assert calculate_order(priced, resolution)['total'] >= 0

    def test_negative_total_is_clamped_and_flagged(self):
        priced = [price_goods_line(goods_line(1), catalog_price('100.00'))]
        resolution = DiscountResolution([DiscountCandidate(DiscountSource.SEASONAL, Decimal('150'))])

        result = calculate_order(priced, resolution, shipping_cost=Decimal('250'))

        assert result['total'] == Decimal('250.00')
        assert result['needs_review'] is True

    def test_shipping_is_added_after_discount(self):
        priced = [price_goods_line(goods_line(60), catalog_price())]
        resolution = DiscountResolution([DiscountCandidate(DiscountSource.BULK_TIER, Decimal('15'))])

        assert calculate_order(priced, resolution, shipping_cost='350')['total'] == Decimal('5450.00')

    def test_negative_shipping_is_rejected(self):
        with pytest.raises(ValidationError):
            calculate_order([], DiscountResolution(), shipping_cost=Decimal('-1'))

    @pytest.mark.parametrize('shipping', ['NaN', Decimal('Infinity'), float('-inf'), 'free'])
    def test_non_finite_shipping_is_a_validation_error(self, shipping):
        with pytest.raises(ValidationError):
            calculate_order([], DiscountResolution(), shipping_cost=shipping)


class TestQuoteServiceOrder:

    def test_quote_matches_checkout_pricing(self):
        quote = quote_service_order(tailor_tier(), [(GarmentType.SHALWAR_KAMEEZ, 4)], TODAY)

        assert quote['total'] == Decimal('6800.00')
        assert quote['config_errors'] == []

    def test_quote_reports_misconfigured_rules(self):
        tier = tailor_tier(seasonal_start_date=None)
        quote = quote_service_order(tier, [(GarmentType.SHALWAR_KAMEEZ, 4)], TODAY)

        assert quote['total'] == Decimal('7200.00')
        assert len(quote['config_errors']) == 1

    def test_quote_with_package(self):
        quote = quote_service_order(
            tailor_tier(), [(GarmentType.SHERWANI, 1)], TODAY,
            package=package(valid_until=date(2024, 12, 31)),
        )

        # Seasonal 5% applies to the sherwani only
        assert quote['items_subtotal'] == Decimal('5000.00')
        assert quote['discount_amount'] == Decimal('250.00')
        assert quote['package_total'] == Decimal('15000.00')
        assert quote['total'] == Decimal('19750.00')

    def test_empty_quote_is_rejected(self):
        with pytest.raises(ValidationError):
            quote_service_order(tailor_tier(), [], TODAY)

    def test_quote_serializes_amounts_as_strings(self):
        quote = quote_to_dict(quote_service_order(tailor_tier(), [(GarmentType.KURTA, 4)], TODAY))

        assert quote['total'] == '6800.00'
        assert quote['discounts'][0]['source'] == 'MULTIPLE_GARMENTS'
        assert quote['lines'][0]['pricing_mode'] == 'TIER'
