"""
Tests for the deterministic bookkeeping rules.
"""

from datetime import date

import pytest

from cfo_assistant.config import AUTO_APPROVE_LIMIT, DOCUMENT_YEAR
from cfo_assistant.services.finance_rules import (
    UNKNOWN_VENDOR,
    assess_client_risk,
    corporate_tax,
    days_overdue,
    due_date_for,
    is_auto_approvable,
    is_outstanding,
    is_overdue,
    manual_review_reason,
    month_bounds,
    monthly_equivalent,
    next_bank_day,
    next_sequence_number,
    percent_change,
    rate_from_percent,
    reminder_tier,
    vat_from_gross,
    vat_on_net,
)


class TestVat:
    """VAT is added on top for invoices and carved out for receipts."""

    def test_vat_on_net_adds_quarter(self):
        assert vat_on_net(12000) == 3000.0
        assert 12000 + vat_on_net(12000) == 15000.0

    def test_vat_on_net_rounds_to_whole_kronor(self):
        assert vat_on_net(99.9) == 25.0

    @pytest.mark.parametrize("gross,rate", [(1250.0, 0.25), (1000.0, 0.25), (560.0, 0.12), (333.33, 0.25)])
    def test_back_calculated_vat_round_trip(self, gross, rate):
        tax = vat_from_gross(gross, rate)
        net = gross - tax
        assert tax + net == pytest.approx(gross, abs=0.01)
        assert net * (1 + rate) == pytest.approx(gross, abs=0.02)

    def test_vat_from_gross_known_value(self):
        assert vat_from_gross(1250.0) == 250.0

    def test_rate_from_percent(self):
        assert rate_from_percent(12.0) == pytest.approx(0.12)
        assert rate_from_percent(None) == 0.25


class TestClientRisk:
    @pytest.mark.parametrize("terms,expected", [
        (10, "low"), (15, "low"), (16, "medium"), (30, "medium"), (31, "high"), (None, "unknown"),
    ])
    def test_risk_steps(self, terms, expected):
        assert assess_client_risk(terms) == expected


class TestReminders:
    @pytest.mark.parametrize("days,expected", [
        (1, "gentle"), (15, "gentle"), (16, "firm"), (45, "firm"), (46, "final"), (120, "final"),
    ])
    def test_reminder_tiers(self, days, expected):
        assert reminder_tier(days) == expected

    def test_days_overdue_never_negative(self):
        assert days_overdue(date(2025, 3, 10), today=date(2025, 3, 1)) == 0
        assert days_overdue(date(2025, 3, 1), today=date(2025, 3, 21)) == 20


class TestInvoiceStatus:
    def test_outstanding_excludes_paid_and_cancelled(self):
        assert is_outstanding("draft")
        assert is_outstanding("sent")
        assert not is_outstanding("paid")
        assert not is_outstanding("Cancelled")

    def test_overdue_needs_past_due_date(self):
        today = date(2025, 5, 20)
        assert is_overdue("sent", date(2025, 5, 19), today)
        assert not is_overdue("sent", date(2025, 5, 20), today)
        assert not is_overdue("paid", date(2025, 1, 1), today)


class TestBankDays:
    def test_weekend_rolls_to_monday(self):
        # 2025-03-15 is a Saturday
        assert next_bank_day(date(2025, 3, 15)) == date(2025, 3, 17)

    def test_swedish_holiday_is_skipped(self):
        # Juldagen and Annandag jul fall on Thursday and Friday, then a weekend
        assert next_bank_day(date(2025, 12, 25)) == date(2025, 12, 29)

    def test_due_date_for_weekday_unchanged(self):
        # 2025-03-03 + 30 days = 2025-04-02, a Wednesday
        assert due_date_for(date(2025, 3, 3), 30) == date(2025, 4, 2)


class TestNumbering:
    def test_first_number(self):
        assert next_sequence_number(None, "INV") == f"INV-{DOCUMENT_YEAR}-001"

    def test_increments_trailing_digits(self):
        assert next_sequence_number("INV-2025-007", "INV", year=2025) == "INV-2025-008"

    def test_keeps_growing_past_three_digits(self):
        assert next_sequence_number("INV-2025-999", "INV", year=2025) == "INV-2025-1000"

    def test_unparsable_restarts(self):
        assert next_sequence_number("legacy", "REC", year=2025) == "REC-2025-001"


class TestAutoApproval:
    def test_threshold_is_inclusive(self):
        assert is_auto_approvable(AUTO_APPROVE_LIMIT, "Kontorsmaterial", "Office Depot")

    def test_one_cent_above_threshold(self):
        assert not is_auto_approvable(AUTO_APPROVE_LIMIT + 0.01, "Kontorsmaterial", "Office Depot")

    def test_missing_category_or_vendor(self):
        assert not is_auto_approvable(100, None, "Office Depot")
        assert not is_auto_approvable(100, "Kontorsmaterial", UNKNOWN_VENDOR)

    def test_manual_review_reason(self):
        assert manual_review_reason(AUTO_APPROVE_LIMIT + 1) == "amount_too_high"
        assert manual_review_reason(10) == "incomplete_information"


class TestRecurringAndReporting:
    @pytest.mark.parametrize("frequency,expected", [
        ("Monthly", 1200.0), ("Quarterly", 400.0), ("Annually", 100.0), ("Weekly", 5200.0),
    ])
    def test_monthly_equivalent(self, frequency, expected):
        assert monthly_equivalent(1200.0, frequency) == pytest.approx(expected)

    def test_unknown_frequency_raises(self):
        with pytest.raises(ValueError):
            monthly_equivalent(100, "Fortnightly")

    def test_month_bounds(self):
        assert month_bounds(date(2025, 1, 15)) == (date(2025, 1, 1), date(2025, 2, 1))
        assert month_bounds(date(2025, 1, 15), 1) == (date(2024, 12, 1), date(2025, 1, 1))
        assert month_bounds(date(2025, 12, 3), -1) == (date(2026, 1, 1), date(2026, 2, 1))

    def test_corporate_tax_only_on_profit(self):
        assert corporate_tax(100000) == 20600.0
        assert corporate_tax(-5000) == 0.0

    def test_percent_change(self):
        assert percent_change(150, 100) == 50.0
        assert percent_change(10, 0) == 0.0
