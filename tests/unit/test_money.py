"""
Unit tests for money helpers.
"""

import pytest
from decimal import Decimal

from marketplace.utils.money import (
    format_money, from_minor_units, percentage_of, round_half_up, to_decimal, to_minor_units
)


class TestRounding:

    @pytest.mark.parametrize('value, expected', [
        ('0.005', '0.01'),
        ('2.675', '2.68'),
        ('49.9995', '50.00'),
        ('-0.005', '-0.01'),
        (10, '10.00'),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == Decimal(expected)

    def test_floats_go_through_str(self):
        assert to_decimal(0.1) == Decimal('0.1')

    def test_invalid_value_raises_value_error(self):
        with pytest.raises(ValueError):
            to_decimal('ten')

    @pytest.mark.parametrize('value', ['NaN', 'sNaN', 'Infinity', '-inf', float('nan'), Decimal('Infinity')])
    def test_non_finite_values_are_rejected(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)
        with pytest.raises(ValueError):
            round_half_up(value)

    def test_value_too_large_to_quantize_is_a_value_error(self):
        with pytest.raises(ValueError):
            round_half_up(Decimal('1E+40'))

    def test_percentage_of(self):
        assert percentage_of(Decimal('8000'), Decimal('15')) == Decimal('1200.00')
        assert percentage_of(Decimal('333.33'), 15) == Decimal('50.00')


class TestMinorUnits:

    def test_to_and_from_minor_units(self):
        assert to_minor_units(Decimal('5100.50')) == 510050
        assert from_minor_units(510050) == Decimal('5100.50')


class TestFormatting:

    def test_format_without_currency(self):
        assert format_money(Decimal('6800')) == '6,800.00'

    def test_format_with_currency(self):
        assert format_money(Decimal('5100.5'), 'PKR') == 'PKR 5,100.50'

    def test_format_missing_value(self):
        assert format_money(None) == '-'
