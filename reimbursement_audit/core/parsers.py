"""
Parsers for extracting information from the extraction collaborator's response.
"""

import re
import datetime as dt
from decimal import Decimal
from typing import Optional, List

from .models import RawAnalysis, Transaction, AuditEvidence
from .utils import (DATE_PATTERNS, PHASE_NAMES, PHASE_MARKERS, CURRENCY_PATTERN,
                    AMOUNT_LABEL_PATTERN, STAFF_LABEL_PATTERN, REFERENCE_LABEL_PATTERN,
                    CLIENT_LABEL_PATTERN, CATEGORY_LABEL_PATTERN, RECEIPT_TOTAL_PATTERN,
                    FORM_AMOUNT_LINE_PATTERN, FORM_DATE_LINE_PATTERN,
                    normalize_amount, clean_text)

UNKNOWN_NAME = "UNKNOWN"
PENDING_REFERENCE = "PENDING"


def parse_date(text: str, day_first: bool = False) -> Optional[dt.date]:
    """
    Extract the first date from text.

    Numeric dates are read month-first unless ``day_first`` is set; either way
    the two leading fields are swapped when the month would be out of range.
    """
    for pat in DATE_PATTERNS:
        for m in re.finditer(pat, text, flags=re.IGNORECASE):
            g = m.groups()
            try:
                if pat.startswith(r"\b(\d{4})"):
                    y, mo, d = int(g[0]), int(g[1]), int(g[2])
                elif pat.startswith(r"\b(\d{1,2})"):
                    if day_first:
                        d, mo, y = int(g[0]), int(g[1]), int(g[2])
                    else:
                        mo, d, y = int(g[0]), int(g[1]), int(g[2])
                    if y < 100:  # YY -> 20YY
                        y += 2000
                    if mo > 12 and d <= 12:
                        mo, d = d, mo
                else:
                    # Month name
                    mn, d, y = g[0], int(g[1]), int(g[2])
                    mo = dt.datetime.strptime(mn[:3], "%b").month
                return dt.date(y, mo, d)
            except ValueError:
                continue
    return None


def parse_section(text: str, start_marker: str, end_marker: str) -> Optional[str]:
    """Return the stripped text between two markers, or None if either is missing."""
    start_idx = text.find(start_marker)
    if start_idx == -1:
        return None
    end_idx = text.find(end_marker, start_idx + len(start_marker))
    if end_idx == -1:
        return None
    return text[start_idx + len(start_marker):end_idx].strip()


def parse_sections(text: str) -> RawAnalysis:
    """
    Slice one extraction blob into its four phase sections.

    A missing marker pair yields an empty section and is listed in
    ``missing_phases``; it never raises.
    """
    text = text or ""
    sections = {}
    missing = []
    for name in PHASE_NAMES:
        start_marker, end_marker = PHASE_MARKERS[name]
        section = parse_section(text, start_marker, end_marker)
        if section is None:
            missing.append(name)
            section = ""
        sections[name] = section
    return RawAnalysis(missing_phases=tuple(missing), **sections)


def parse_amount(text: str) -> Optional[Decimal]:
    """
    Extract the claim amount from decision text.
    A labeled "Amount:" value wins; otherwise the first currency token.
    """
    if not text:
        return None
    m = re.search(AMOUNT_LABEL_PATTERN, text, flags=re.IGNORECASE)
    if not m:
        m = re.search(CURRENCY_PATTERN, text)
    if not m:
        return None
    return normalize_amount(m.group(1))


def _labeled_value(pattern: str, text: str) -> Optional[str]:
    m = re.search(pattern, text or "", flags=re.IGNORECASE)
    if not m:
        return None
    value = clean_text(m.group(1))
    return value or None


def parse_staff_name(text: str) -> Optional[str]:
    return _labeled_value(STAFF_LABEL_PATTERN, text)


def format_payee_name(name: Optional[str]) -> str:
    """Normalize a payee name for bank transfer forms."""
    name = re.sub(r"\s+", " ", clean_text(name))
    return name.upper() if name else UNKNOWN_NAME


def parse_transactions(phase4: str) -> List[Transaction]:
    """
    Pull the proposed payment out of the decision section.

    No amount means no transaction: the result is an empty list, not an error.
    """
    amount = parse_amount(phase4)
    if amount is None:
        return []

    reference = _labeled_value(REFERENCE_LABEL_PATTERN, phase4) or PENDING_REFERENCE
    return [Transaction(
        formatted_name=format_payee_name(parse_staff_name(phase4)),
        amount=amount,
        current_reference=reference,
        source_text=phase4,
    )]


def _table_rows(text: str) -> List[List[str]]:
    """Split markdown table lines into cleaned cells, skipping separator rows."""
    rows = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line.startswith("|"):
            continue
        cells = [clean_text(c) for c in line.strip("|").split("|")]
        if all(re.fullmatch(r":?-*:?", c) for c in cells):
            continue
        rows.append(cells)
    return rows


def parse_receipt_summary(phase1: str):
    """
    Read store name and receipt id from the first row of the summary table
    (``| # | Store Name | Receipt ID | Grand Total |``).
    """
    for cells in _table_rows(phase1):
        if len(cells) == 4 and re.fullmatch(r"\[?\d+\]?", cells[0]) and "$" in cells[3]:
            return cells[1] or None, cells[2] or None
    return None, None


def parse_receipt_total(phase1: str) -> Optional[Decimal]:
    m = re.search(RECEIPT_TOTAL_PATTERN, phase1 or "", flags=re.IGNORECASE)
    return normalize_amount(m.group(1)) if m else None


def parse_form_amount(phase2: str) -> Optional[Decimal]:
    """Sum the standalone "$X" lines of the form blocks (one per staff member)."""
    amounts = [normalize_amount(m.group(1))
               for m in re.finditer(FORM_AMOUNT_LINE_PATTERN, phase2 or "", flags=re.MULTILINE)]
    amounts = [a for a in amounts if a is not None]
    return sum(amounts, Decimal("0.00")) if amounts else None


def parse_receipt_date(raw: RawAnalysis) -> Optional[dt.date]:
    """Form date (mm/dd/yyyy) first, then the itemization table (dd/mm/yy)."""
    m = re.search(FORM_DATE_LINE_PATTERN, raw.phase2, flags=re.MULTILINE)
    if m:
        found = parse_date(m.group(1))
        if found:
            return found
    for cells in _table_rows(raw.phase1):
        if len(cells) >= 2 and re.fullmatch(r"\[?\d+\]?", cells[0]):
            found = parse_date(cells[1], day_first=True)
            if found:
                return found
    return None


def parse_evidence(raw: RawAnalysis) -> AuditEvidence:
    """Gather everything reconciliation needs from the four phases."""
    store_name, receipt_id = parse_receipt_summary(raw.phase1)
    form_amount = parse_form_amount(raw.phase2)
    if form_amount is None:
        form_amount = parse_amount(raw.phase4)

    return AuditEvidence(
        form_amount=form_amount,
        receipt_amount=parse_receipt_total(raw.phase1),
        receipt_date=parse_receipt_date(raw),
        store_name=store_name,
        receipt_id=receipt_id,
        staff_name=parse_staff_name(raw.phase4),
        client_location=(_labeled_value(CLIENT_LABEL_PATTERN, raw.phase2)
                         or _labeled_value(CLIENT_LABEL_PATTERN, raw.phase4)),
        category=_labeled_value(CATEGORY_LABEL_PATTERN, raw.phase2),
    )
