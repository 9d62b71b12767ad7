"""
Utility functions and constants for reimbursement auditing.
"""

import hashlib
import re
import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Optional

CENTS = Decimal("0.01")

# Phase markers emitted by the extraction collaborator
PHASE_NAMES = ("phase1", "phase2", "phase3", "phase4")
PHASE_MARKERS = {
    "phase1": ("<<<PHASE_1_START>>>", "<<<PHASE_1_END>>>"),
    "phase2": ("<<<PHASE_2_START>>>", "<<<PHASE_2_END>>>"),
    "phase3": ("<<<PHASE_3_START>>>", "<<<PHASE_3_END>>>"),
    "phase4": ("<<<PHASE_4_START>>>", "<<<PHASE_4_END>>>"),
}

# Pattern constants for parsing
DATE_PATTERNS = [
    r"\b(\d{4})[-/](\d{1,2})[-/](\d{1,2})\b",            # YYYY-MM-DD or YYYY/MM/DD
    r"\b(\d{1,2})[-/](\d{1,2})[-/](\d{2,4})\b",          # MM/DD/YYYY or DD/MM/YYYY (heuristic later)
    r"\b([A-Za-z]{3,9})\s+(\d{1,2}),\s*(\d{4})\b",       # Month DD, YYYY
]

# A currency token: "$" followed by digits, thousands commas and an optional decimal part
CURRENCY_PATTERN = r"\$\s*([0-9][0-9,]*(?:\.[0-9]+)?)"

AMOUNT_LABEL_PATTERN = r"\*{0,2}Amount:\*{0,2}\s*" + CURRENCY_PATTERN
STAFF_LABEL_PATTERN = r"Staff Member:\*{0,2}\s*([^\n*]+)"
REFERENCE_LABEL_PATTERN = r"NAB Reference:\*{0,2}\s*([^\n*]+)"
CLIENT_LABEL_PATTERN = r"Client(?:\s+name)?\s*/\s*Location:\*{0,2}\s*([^\n*]+)"
CATEGORY_LABEL_PATTERN = r"Type of expense:\*{0,2}\s*([^\n*]+)"
RECEIPT_TOTAL_PATTERN = r"Total Amount.*?" + CURRENCY_PATTERN
FORM_AMOUNT_LINE_PATTERN = r"^\s*" + CURRENCY_PATTERN + r"\s*$"
FORM_DATE_LINE_PATTERN = r"^\s*(\d{1,2}/\d{1,2}/\d{4})\s*$"


def slugify(s: str) -> str:
    """Convert string to filesystem-safe slug."""
    return re.sub(r"[^a-z0-9]+", "-", s.lower()).strip("-")


def normalize_amount(s) -> Optional[Decimal]:
    """Normalize an amount string (or number) to a 2dp Decimal."""
    if s is None:
        return None
    if not isinstance(s, Decimal):
        s = str(s).replace("$", "").replace(",", "").replace(" ", "").strip()
        if not s:
            return None
    try:
        value = Decimal(s)
        if not value.is_finite():
            return None
        return value.quantize(CENTS)
    except InvalidOperation:
        return None


def clean_text(s: Optional[str]) -> str:
    """Strip markdown emphasis and surrounding whitespace from an extracted value."""
    return (s or "").replace("*", "").strip()


def compute_receipt_fingerprint(store: Optional[str], date: Optional[str],
                                amount: Optional[Decimal]) -> str:
    """Create a fingerprint for duplicate detection based on store, date, and amount."""
    parts = [
        (store or "").strip().lower(),
        date or "",
        f"{amount:.2f}" if amount is not None else ""
    ]
    fingerprint_str = "|".join(parts)
    return hashlib.sha256(fingerprint_str.encode()).hexdigest()


def money_fmt(v: Optional[Decimal]) -> str:
    """Format amount as currency."""
    return f"${v:,.2f}" if v is not None else ""


def plain_amount(v: Optional[Decimal]) -> str:
    """Format amount without currency symbol or separators (for bank forms)."""
    return f"{v:.2f}" if v is not None else ""


def start_of_day(day: dt.date) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min)


def start_of_quarter(day: dt.date) -> dt.date:
    """First day of the calendar quarter containing ``day``."""
    first_month = 3 * ((day.month - 1) // 3) + 1
    return dt.date(day.year, first_month, 1)


def parse_clock(value: str) -> dt.time:
    """Parse an HH:MM clock value from configuration."""
    return dt.datetime.strptime(value, "%H:%M").time()
