"""Heuristic entity extraction and Swedish number formatting.

Everything here is best effort. Extracted client names are used as
case-insensitive partial matches against the database, never as keys.
"""

import re
from datetime import date
from typing import Optional

KNOWN_CLIENT_NAMES = ("joakim", "anna", "erik", "sofia", "magnus", "emma")

_PRONOUNS = {"me", "my", "our", "their", "his", "her", "your", "its"}

# Pattern 1: "Joakim's invoices"
_POSSESSIVE = re.compile(r"(\w+)'s?\s+(?:invoices?|fakturor|faktura)", re.IGNORECASE)
# Pattern 2: "invoices for Joakim", "bill to Anna", "faktura till Erik"
_PREPOSITIONAL = re.compile(
    r"(?:invoices?|bills?|faktura|fakturor)\s+(?:for|from|to|till|för|från)\s+([A-Za-zÀ-ÿ]+)",
    re.IGNORECASE,
)
_STOP_WORDS = {"the", "a", "an", "all", "this", "that", "last", "next", "same", "alla", "den", "det"}

# First number followed by a currency marker or the end of the text
# Thousands grouped by space or comma; decimals after '.' or ',' (1 450,50 kr / 1,250.50 kr)
_AMOUNT = re.compile(
    r"(\d{1,3}(?:[ ,]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?)\s*(?:SEK|kr|$)",
    re.IGNORECASE,
)
_DECIMALS = re.compile(r"[.,](\d{1,2})$")
_INVOICE_NUMBER = re.compile(r"\bINV-\d{4}-\d{3,}\b", re.IGNORECASE)
_DOCUMENT_NUMBER = re.compile(r"\b([A-Z]{2,4}-\d{4}-\d{3,})\b", re.IGNORECASE)
_VENDOR = re.compile(r"\b(?:from|at|hos|från)\s+([A-ZÅÄÖ][\w&.-]*(?:\s+[A-ZÅÄÖ][\w&.-]*)*)")


def extract_client_name(text: str) -> Optional[str]:
    """Best-effort client name from free text, or None."""
    if not text:
        return None
    lowered = text.lower()

    for name in KNOWN_CLIENT_NAMES:
        if name in lowered:
            return name

    match = _POSSESSIVE.search(text)
    if match and match.group(1).lower() not in _PRONOUNS:
        return match.group(1)

    match = _PREPOSITIONAL.search(text)
    if match and match.group(1).lower() not in _STOP_WORDS:
        return match.group(1)

    return None


def extract_amount(text: str) -> Optional[float]:
    """Amount in kronor, e.g. '12000 SEK', '1,250.50 kr', '450,50 kr' or a trailing number."""
    if not text:
        return None
    match = _AMOUNT.search(text)
    if not match:
        return None
    raw = match.group(1).replace(" ", "")
    decimals = _DECIMALS.search(raw)
    whole = raw[:decimals.start()] if decimals else raw
    fraction = decimals.group(1) if decimals else "0"
    try:
        return float(f"{whole.replace(',', '')}.{fraction}")
    except ValueError:
        return None


def extract_invoice_number(text: str) -> Optional[str]:
    match = _INVOICE_NUMBER.search(text or "")
    return match.group(0).upper() if match else None


def extract_document_number(text: str) -> Optional[str]:
    """Any PREFIX-YEAR-NNN reference, e.g. REC-2025-004."""
    match = _DOCUMENT_NUMBER.search(text or "")
    return match.group(1).upper() if match else None


def extract_vendor(text: str) -> Optional[str]:
    """Capitalised name after 'from', 'at', 'hos' or 'från', e.g. 'from Office Depot'."""
    match = _VENDOR.search(text or "")
    return match.group(1).strip() if match else None


def format_sek(amount: Optional[float], decimals: int = 0) -> str:
    """Swedish style amount: '12 500 SEK', '1 234,50 SEK'."""
    value = float(amount or 0)
    formatted = f"{value:,.{decimals}f}".replace(",", " ").replace(".", ",")
    return f"{formatted} SEK"


def format_date(value: Optional[date]) -> str:
    return value.isoformat() if value else "-"
