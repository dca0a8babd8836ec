"""
Tests for money and date normalization.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest

from receivables.models import Frequency
from receivables.utils.normalize import (
    add_frequency,
    days_overdue,
    money_equal,
    normalize_text,
    parse_date,
    split_amount,
    to_money,
)


class TestToMoney:
    """Test money coercion."""

    @pytest.mark.parametrize("raw,expected", [
        (100, Decimal("100.00")),
        (12.345, Decimal("12.35")),
        ("1234.5", Decimal("1234.50")),
        ("1.234,56", Decimal("1234.56")),
        ("R$ 99,90", Decimal("99.90")),
        (Decimal("0.005"), Decimal("0.01")),
        (None, Decimal("0.00")),
        ("", Decimal("0.00")),
    ])
    def test_accepted_values(self, raw, expected):
        assert to_money(raw) == expected

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            to_money("-1")

    @pytest.mark.parametrize("raw", ["abc", True, float("nan")])
    def test_invalid_rejected(self, raw):
        with pytest.raises(ValueError):
            to_money(raw)


class TestMoneyEqual:
    def test_within_tolerance(self):
        assert money_equal("100.00", "100.01")

    def test_outside_tolerance(self):
        assert not money_equal("100.00", "100.02")


class TestParseDate:
    def test_iso_date(self):
        assert parse_date("2024-01-10") == date(2024, 1, 10)

    def test_iso_datetime(self):
        assert parse_date("2024-01-10T15:30:00Z") == date(2024, 1, 10)

    def test_datetime_instance(self):
        assert parse_date(datetime(2024, 1, 10, 8, 0)) == date(2024, 1, 10)

    def test_empty_is_none(self):
        assert parse_date("") is None
        assert parse_date(None) is None

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            parse_date("10/01/2024")


def test_normalize_text_upper_cases_and_collapses_spaces():
    assert normalize_text("  acme   corp ") == "ACME CORP"
    assert normalize_text(None) == ""
    assert normalize_text(Frequency.WEEKLY) == "WEEKLY"


class TestAddFrequency:
    """Installment date stepping."""

    def test_weekly(self):
        assert add_frequency(date(2024, 1, 10), Frequency.WEEKLY, 2) == date(2024, 1, 24)

    def test_biweekly_is_fifteen_days(self):
        assert add_frequency(date(2024, 1, 10), "BIWEEKLY", 1) == date(2024, 1, 25)

    def test_monthly(self):
        assert [add_frequency(date(2024, 1, 10), Frequency.MONTHLY, n) for n in range(3)] == [
            date(2024, 1, 10), date(2024, 2, 10), date(2024, 3, 10),
        ]

    def test_monthly_month_end_does_not_drift(self):
        dates = [add_frequency(date(2024, 1, 31), Frequency.MONTHLY, n) for n in range(3)]
        assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            add_frequency(date(2024, 1, 1), "DAILY", 1)


def test_days_overdue_never_negative():
    assert days_overdue(date(2024, 1, 1), date(2024, 1, 5)) == 4
    assert days_overdue(date(2024, 2, 1), date(2024, 1, 5)) == 0
    assert days_overdue(None, date(2024, 1, 5)) == 0


class TestSplitAmount:
    def test_even_split(self):
        assert split_amount(Decimal("120.00"), 3) == [Decimal("40.00")] * 3

    def test_remainder_goes_to_last_part(self):
        parts = split_amount(Decimal("100.00"), 3)
        assert parts == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(parts) == Decimal("100.00")

    def test_single_part(self):
        assert split_amount(Decimal("10.01"), 1) == [Decimal("10.01")]

    def test_zero_parts_rejected(self):
        with pytest.raises(ValueError):
            split_amount(Decimal("10"), 0)

    def test_every_part_gets_at_least_a_cent(self):
        assert split_amount(Decimal("0.03"), 3) == [Decimal("0.01")] * 3
        with pytest.raises(ValueError):
            split_amount(Decimal("0.02"), 3)
