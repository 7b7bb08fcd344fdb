"""
Unit tests for numeric coercion.
"""

import math
from decimal import Decimal

import pytest

from service_royalties.app.coercion import coerce, coerce_int, coerce_non_negative


class TestCoerce:
    """Test cases for coerce."""

    @pytest.mark.parametrize("value,expected", [
        (4, 4.0),
        (2.5, 2.5),
        (Decimal("12.34"), 12.34),
        ("7.25", 7.25),
        ("  42 ", 42.0),
        ("$1,234.50", 1234.5),
        ("€ 99", 99.0),
        ("1 000", 1000.0),
        ("1\u00a0000", 1000.0),
        ("-3.5", -3.5),
    ])
    def test_numbers_and_numeric_strings(self, value, expected):
        """Test numbers and numeric strings coerce to floats."""
        assert coerce(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [
        None, True, False, "", "   ", "abc", "Tier 1", "standard rate",
        "nan", "inf", "-infinity", float("nan"), float("inf"), Decimal("NaN"),
        [1, 2], object(), 10 ** 400, -(10 ** 400), Decimal("1e400"), Decimal("sNaN"),
    ])
    def test_rejected_values(self, value):
        """Test values that are not numbers return the rejection marker."""
        assert coerce(value) is None

    def test_amount_mappings(self):
        """Test nested amount objects use the first known key."""
        assert coerce({"amount": "12.5"}) == 12.5
        assert coerce({"value": 3}) == 3.0
        assert coerce({"rate": "$4.00"}) == 4.0
        assert coerce({"baseAmount": 10, "amount": 20}) == 20.0
        assert coerce({"number": {"amount": 6}}) == 6.0

    def test_mapping_without_amount_key(self):
        """Test mappings without a known key are rejected."""
        assert coerce({"price": 5}) is None
        assert coerce({"amount": "n/a"}) is None

    @pytest.mark.parametrize("value", [3, 2.75, "1,500", "$9.99", Decimal("0.1")])
    def test_idempotent(self, value):
        """Test coercing an already coerced value changes nothing."""
        once = coerce(value)
        assert coerce(once) == once

    def test_result_is_finite(self):
        """Test coerced values are always finite."""
        for value in ["1e308", "12", 5]:
            assert math.isfinite(coerce(value))
        assert coerce("1e999") is None


class TestCoerceHelpers:
    """Test cases for coerce_non_negative and coerce_int."""

    def test_non_negative(self):
        """Test negatives are rejected along with non-numbers."""
        assert coerce_non_negative("15") == 15.0
        assert coerce_non_negative(0) == 0.0
        assert coerce_non_negative(-1) is None
        assert coerce_non_negative("abc") is None

    def test_coerce_int(self):
        """Test integer coercion with default."""
        assert coerce_int("7") == 7
        assert coerce_int(3.9) == 3
        assert coerce_int(None) is None
        assert coerce_int("high", default=50) == 50
