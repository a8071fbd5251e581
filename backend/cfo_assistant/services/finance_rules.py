"""Deterministic Swedish bookkeeping rules used by the domain agents.

Two VAT directions exist and are kept apart on purpose:

- vat_on_net: invoices state a net amount and VAT is added on top.
- vat_from_gross: receipts state what was paid and VAT is carved out of it.
"""

import re
from datetime import date, timedelta
from typing import Optional, Tuple

import holidays

from ..config import AUTO_APPROVE_LIMIT, DOCUMENT_YEAR, VAT_RATE

UNKNOWN_VENDOR = "Unknown Vendor"

# Monthly multipliers for recurring billing frequencies
FREQUENCY_TO_MONTHLY = {
    "weekly": 52 / 12,
    "monthly": 1.0,
    "quarterly": 1 / 3,
    "annually": 1 / 12,
}


# ==========================================
# 🧾 VAT
# ==========================================
def vat_on_net(net_amount: float, rate: float = VAT_RATE) -> float:
    """VAT added on top of a net amount, rounded to whole kronor."""
    return float(round(net_amount * rate))


def vat_from_gross(gross_amount: float, rate: float = VAT_RATE) -> float:
    """VAT contained in a gross amount, rounded to öre."""
    return round(gross_amount * rate / (1 + rate), 2)


def rate_from_percent(percent: Optional[float]) -> float:
    """Category tax rates are stored as percent (25.0); fall back to standard VAT."""
    if percent is None:
        return VAT_RATE
    return percent / 100


# ==========================================
# 👤 CLIENT RISK & COLLECTIONS
# ==========================================
def assess_client_risk(payment_terms: Optional[int]) -> str:
    """Payment risk as a step function of the client's payment terms in days."""
    if not payment_terms:
        return "unknown"
    if payment_terms <= 15:
        return "low"
    if payment_terms <= 30:
        return "medium"
    return "high"


SETTLED_INVOICE_STATUSES = {"paid", "cancelled"}


def is_outstanding(status: Optional[str]) -> bool:
    return (status or "").lower() not in SETTLED_INVOICE_STATUSES


def is_overdue(status: Optional[str], due_date: Optional[date], today: Optional[date] = None) -> bool:
    return is_outstanding(status) and due_date is not None and due_date < (today or date.today())


def amount_due(total_amount: Optional[float], paid_amount: Optional[float]) -> float:
    return (total_amount or 0.0) - (paid_amount or 0.0)


def days_overdue(due_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    return max(0, (today - due_date).days)


def reminder_tier(overdue_days: int) -> str:
    """gentle up to 15 days past due, firm up to 45, final notice after that."""
    if overdue_days <= 15:
        return "gentle"
    if overdue_days <= 45:
        return "firm"
    return "final"


def next_bank_day(day: date) -> date:
    """Roll a date forward past weekends and Swedish public holidays."""
    se_holidays = holidays.country_holidays("SE", years=[day.year, day.year + 1])
    while day.weekday() >= 5 or day in se_holidays:
        day += timedelta(days=1)
    return day


def due_date_for(issue_date: date, payment_terms: int) -> date:
    return next_bank_day(issue_date + timedelta(days=payment_terms))


def estimate_payment_date(due_date: date, payment_terms: Optional[int]) -> date:
    """Clients tend to pay one more term after the due date."""
    return next_bank_day(due_date + timedelta(days=payment_terms or 30))


# ==========================================
# 🔢 DOCUMENT NUMBERING
# ==========================================
_TRAILING_DIGITS = re.compile(r"(\d+)\s*$")


def next_sequence_number(last_number: Optional[str], prefix: str, year: int = DOCUMENT_YEAR) -> str:
    """Next number in a PREFIX-YEAR-NNN sequence.

    Reads the trailing digits of the last issued number and adds one.
    Missing or unparsable numbers restart the sequence at 001.
    """
    sequence = 1
    if last_number:
        match = _TRAILING_DIGITS.search(last_number)
        if match:
            sequence = int(match.group(1)) + 1
    return f"{prefix}-{year}-{sequence:03d}"


# ==========================================
# ✅ RECEIPT APPROVAL
# ==========================================
def is_auto_approvable(
    amount: float,
    category: Optional[str],
    vendor_name: Optional[str],
    limit: float = AUTO_APPROVE_LIMIT,
) -> bool:
    """Small, categorised receipts from a named vendor need no human review."""
    return amount <= limit and bool(category) and bool(vendor_name) and vendor_name != UNKNOWN_VENDOR


def manual_review_reason(amount: float, limit: float = AUTO_APPROVE_LIMIT) -> str:
    return "amount_too_high" if amount > limit else "incomplete_information"


# ==========================================
# 🔁 RECURRING BILLING
# ==========================================
def monthly_equivalent(amount: float, frequency: str) -> float:
    multiplier = FREQUENCY_TO_MONTHLY.get((frequency or "").lower())
    if multiplier is None:
        raise ValueError(f"Unknown billing frequency: {frequency}")
    return amount * multiplier


# ==========================================
# 📊 REPORTING
# ==========================================
CORPORATE_TAX_RATE = 0.206


def month_bounds(day: date, months_back: int = 0) -> Tuple[date, date]:
    """First day of the month `months_back` before `day`, and first day of the month after it."""
    month_index = day.year * 12 + day.month - 1 - months_back
    start = date(month_index // 12, month_index % 12 + 1, 1)
    following = month_index + 1
    return start, date(following // 12, following % 12 + 1, 1)


def corporate_tax(result: float, rate: float = CORPORATE_TAX_RATE) -> float:
    """Bolagsskatt on a positive result; losses carry no tax."""
    return round(max(result, 0.0) * rate, 2)


def percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100
