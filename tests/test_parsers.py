import datetime as dt
from decimal import Decimal

from reimbursement_audit.core.parsers import (parse_sections, parse_transactions, parse_amount,
                                              parse_evidence, parse_date, format_payee_name,
                                              parse_form_amount, parse_receipt_summary)

from conftest import make_analysis


def test_parse_sections_extracts_all_phases(analysis_text):
    raw = parse_sections(analysis_text)

    assert raw.is_complete
    assert raw.phase1.startswith("Receipt 1: Good")
    assert raw.phase4.endswith("**NAB Reference:** PENDING")
    assert "<<<" not in raw.phase2


def test_parse_sections_missing_marker_yields_empty_section():
    text = ("<<<PHASE_1_START>>>one<<<PHASE_1_END>>>"
            "<<<PHASE_2_START>>>two<<<PHASE_2_END>>>"
            "<<<PHASE_3_START>>>three"
            "<<<PHASE_4_START>>>four<<<PHASE_4_END>>>")
    raw = parse_sections(text)

    assert raw.phase3 == ""
    assert raw.missing_phases == ("phase3",)
    assert raw.phase4 == "four"
    assert not raw.is_complete


def test_parse_sections_handles_empty_input():
    raw = parse_sections("")
    assert raw.missing_phases == ("phase1", "phase2", "phase3", "phase4")


def test_parse_transactions_builds_single_proposal(analysis_text):
    raw = parse_sections(analysis_text)
    txs = parse_transactions(raw.phase4)

    assert len(txs) == 1
    tx = txs[0]
    assert tx.formatted_name == "SMITH, JANE"
    assert tx.amount == Decimal("45.50")
    assert tx.current_reference == "PENDING"
    assert tx.source_text == raw.phase4


def test_parse_transactions_without_amount_is_empty():
    assert parse_transactions("**Staff Member:** Smith, Jane\nNo money here.") == []
    assert parse_transactions("") == []


def test_parse_transactions_unknown_staff():
    txs = parse_transactions("**Amount:** $12.00")
    assert txs[0].formatted_name == "UNKNOWN"


def test_parse_amount_prefers_label():
    assert parse_amount("Receipt total $10.00\n**Amount:** $1,234.50") == Decimal("1234.50")
    assert parse_amount("Paid $7.25 then $9.00") == Decimal("7.25")
    assert parse_amount("nothing") is None


def test_format_payee_name():
    assert format_payee_name("  smith,   jane ") == "SMITH, JANE"
    assert format_payee_name(None) == "UNKNOWN"


def test_parse_evidence(analysis_text):
    ev = parse_evidence(parse_sections(analysis_text))

    assert ev.form_amount == Decimal("45.50")
    assert ev.receipt_amount == Decimal("45.50")
    assert ev.receipt_date == dt.date(2025, 3, 5)
    assert ev.store_name == "Woolworths"
    assert ev.receipt_id == "TX-9981"
    assert ev.staff_name == "Smith, Jane"
    assert ev.client_location == "Maple House"
    assert ev.category == "groceries"


def test_parse_evidence_different_amounts():
    ev = parse_evidence(parse_sections(make_analysis(form_total="$50.00", receipt_total="$42.50")))
    assert ev.form_amount == Decimal("50.00")
    assert ev.receipt_amount == Decimal("42.50")


def test_receipt_summary_skips_header_and_total_rows():
    table = ("| Receipt # | Store Name | Receipt ID | Grand Total |\n"
             "|:---|:---|:---|:---|\n"
             "| 1 | Kmart | K-1 | $10.00 |\n"
             "| **Total Amount** | | | **$10.00** |")
    assert parse_receipt_summary(table) == ("Kmart", "K-1")
    assert parse_receipt_summary("no table") == (None, None)


def test_form_amount_sums_staff_blocks():
    phase2 = "SMITH, JANE\n$10.00\n\nLEE, TOM\n$5.50\n"
    assert parse_form_amount(phase2) == Decimal("15.50")
    assert parse_form_amount("no amounts") is None


def test_parse_date_formats():
    assert parse_date("Date: 2025-03-05") == dt.date(2025, 3, 5)
    assert parse_date("03/05/2025") == dt.date(2025, 3, 5)
    assert parse_date("03/05/2025", day_first=True) == dt.date(2025, 5, 3)
    assert parse_date("13/02/2025") == dt.date(2025, 2, 13)
    assert parse_date("Mar 5, 2025") == dt.date(2025, 3, 5)
    assert parse_date("no date") is None
