"""Tests for quantity coercion and the single line-total derivation."""

from decimal import Decimal

import pytest

from procurement_kernel.domain.values import (
    ZERO,
    line_total,
    non_negative_amount,
    positive_quantity,
    remaining,
    sum_totals,
    to_quantity,
)
from procurement_kernel.exceptions import InvalidQuantityError, ValidationError


class TestToQuantity:

    def test_accepts_int_str_and_decimal(self):
        assert to_quantity(10) == Decimal("10")
        assert to_quantity("2.5") == Decimal("2.5")
        assert to_quantity(Decimal("0.125")) == Decimal("0.125")

    def test_rejects_float(self):
        with pytest.raises(InvalidQuantityError) as exc_info:
            to_quantity(1.5, "quantity")
        assert exc_info.value.field == "quantity"

    def test_rejects_bool(self):
        with pytest.raises(InvalidQuantityError):
            to_quantity(True)

    def test_rejects_junk_string(self):
        with pytest.raises(InvalidQuantityError) as exc_info:
            to_quantity("ten")
        assert exc_info.value.reason == "not a number"

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    def test_rejects_non_finite(self, value):
        with pytest.raises(InvalidQuantityError):
            to_quantity(value)

    def test_rejects_excess_precision(self):
        with pytest.raises(InvalidQuantityError):
            to_quantity("0.0000000001")

    def test_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            to_quantity("x")


class TestRangeChecks:

    @pytest.mark.parametrize("value", [0, "0", -1, "-0.5"])
    def test_positive_quantity_rejects_zero_and_negative(self, value):
        with pytest.raises(InvalidQuantityError):
            positive_quantity(value)

    def test_non_negative_amount_allows_zero(self):
        assert non_negative_amount(0) == ZERO

    def test_non_negative_amount_rejects_negative(self):
        with pytest.raises(InvalidQuantityError) as exc_info:
            non_negative_amount(-5, "rate_estimate")
        assert exc_info.value.field == "rate_estimate"


class TestDerivations:

    def test_line_total(self):
        assert line_total(Decimal(10), Decimal(100)) == Decimal("1000")

    def test_line_total_is_the_exact_product(self):
        assert line_total(Decimal("0.5"), Decimal("0.000000002")) == Decimal("0.000000001")

    def test_line_total_refuses_sub_quantum_product(self):
        with pytest.raises(InvalidQuantityError) as exc_info:
            line_total(Decimal("0.5"), Decimal("0.000000001"), "total_estimate")
        assert exc_info.value.field == "total_estimate"
        assert "decimal places" in exc_info.value.reason

    def test_line_total_overflow_is_typed(self):
        with pytest.raises(InvalidQuantityError) as exc_info:
            line_total(Decimal("1e10"), Decimal("1e10"))
        assert exc_info.value.reason == "total too large"

    def test_sum_totals_overflow_is_typed(self):
        big = Decimal("9" * 19)
        with pytest.raises(InvalidQuantityError) as exc_info:
            sum_totals([big] * 20)
        assert exc_info.value.reason == "total too large"

    def test_sum_totals_empty(self):
        assert sum_totals([]) == ZERO

    def test_sum_totals(self):
        assert sum_totals([Decimal(1000), Decimal(750)]) == Decimal(1750)

    def test_remaining(self):
        assert remaining(Decimal(100), Decimal(60)) == Decimal(40)
