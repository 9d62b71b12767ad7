import datetime as dt
from decimal import Decimal
from unittest.mock import Mock

import pytest

from reimbursement_audit.core.database import SQLiteRecordStore, RecordStoreError
from reimbursement_audit.core.extraction import ExtractionError
from reimbursement_audit.core.models import (Attachment, Disposition, ProcessingState, RecordStatus,
                                             ReimbursementRecord, Transaction,
                                             SaveStatus)
from reimbursement_audit.core.processor import AuditSession

from conftest import make_analysis

PROCESSING_DAY = dt.date(2025, 3, 10)
SAVED_AT = dt.datetime(2025, 3, 10, 11, 0)


def test_load_analysis_populates_working_set(tmp_path, analysis_text):
    session = AuditSession(SQLiteRecordStore(tmp_path / "a.sqlite"))
    result = session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)

    assert session.state == ProcessingState.COMPLETE
    assert result.disposition == Disposition.STANDARD_CONFIRMATION
    assert result.final_amount == Decimal("45.50")
    assert len(session.registry) == 1
    assert session.registry.document.startswith("Hi Jane")


def test_save_persists_and_resets(tmp_path, analysis_text):
    store = SQLiteRecordStore(tmp_path / "a.sqlite")
    session = AuditSession(store)
    session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)
    session.update_reference(0, "NAB123")

    assert session.save(now=SAVED_AT) == SaveStatus.SAVED
    assert len(session.registry) == 0
    assert session.state == ProcessingState.IDLE

    [record] = store.list_all()
    assert session.records == [record]
    assert record.staff_name == "SMITH, JANE"
    assert record.status == RecordStatus.PAID
    assert record.reference == "NAB123"
    assert record.client_location == "Maple House"
    assert record.category == "Groceries"
    assert record.receipt_date == dt.date(2025, 3, 5)
    assert "**NAB Reference:** NAB123" in record.raw_text


def test_save_without_reference_is_pending(tmp_path, analysis_text):
    store = SQLiteRecordStore(tmp_path / "a.sqlite")
    session = AuditSession(store)
    session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)
    session.save(now=SAVED_AT)

    assert store.list_all()[0].status == RecordStatus.PENDING


def test_duplicate_is_held_back_unless_forced(tmp_path, analysis_text):
    store = SQLiteRecordStore(tmp_path / "a.sqlite")
    session = AuditSession(store)
    session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)
    session.save(now=SAVED_AT)

    second = session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)
    assert second.flags.duplicate
    assert session.save(now=SAVED_AT) == SaveStatus.DUPLICATE
    assert len(session.registry) == 1
    assert len(store.list_all()) == 1

    assert session.save(force=True, now=SAVED_AT) == SaveStatus.SAVED
    assert len(store.list_all()) == 2


def test_store_failure_keeps_working_set(analysis_text):
    store = Mock()
    store.create.side_effect = RecordStoreError("disk full")
    session = AuditSession(store)
    session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)

    assert session.save() == SaveStatus.ERROR
    assert session.error_message == "disk full"
    assert len(session.registry) == 1
    assert session.state == ProcessingState.COMPLETE
    store.list_all.assert_not_called()


def test_reentrant_parse_is_refused(analysis_text):
    session = AuditSession(Mock())
    session.state = ProcessingState.PROCESSING

    with pytest.raises(RuntimeError):
        session.load_analysis(analysis_text)


def test_save_with_nothing_to_save_raises():
    session = AuditSession(Mock())
    with pytest.raises(RuntimeError):
        session.save()

    session.load_analysis("no markers and no amount", processing_date=PROCESSING_DAY)
    assert session.result.disposition == Disposition.CRITICAL_DISCREPANCY
    with pytest.raises(RuntimeError):
        session.save()


def test_run_uses_extractor(analysis_text):
    extractor = Mock(return_value=make_analysis(form_total="$400.00", receipt_total="$400.00"))
    session = AuditSession(Mock(), llm_provider="anthropic", llm_model="m1",
                           llm_fallback_model="m2", extractor=extractor)
    receipt = Attachment("image/png", b"png", "r.png")

    result = session.run([receipt], None, processing_date=PROCESSING_DAY)

    assert result.disposition == Disposition.ESCALATION
    assert result.flags.escalate_amount
    args, kwargs = extractor.call_args
    assert args == ([receipt], None)
    assert kwargs["provider"] == "anthropic"
    assert kwargs["model"] == "m1"
    assert kwargs["fallback_model"] == "m2"
    assert kwargs["escalation_contact"] == "Julian"


def test_run_extraction_error_sets_error_state():
    extractor = Mock(side_effect=ExtractionError("quota exceeded"))
    session = AuditSession(Mock(), extractor=extractor)

    assert session.run([Attachment("image/png", b"x")]) is None
    assert session.state == ProcessingState.ERROR
    assert session.error_message == "Extraction failed: quota exceeded"

    session.reset()
    assert session.state == ProcessingState.IDLE
    assert session.error_message == ""


def test_saved_amount_is_the_reconciled_amount(tmp_path):
    text = make_analysis(form_total="$20.00", receipt_total="$310.00").replace(
        "**Amount:** $20.00", "**Amount:** $310.00")
    store = SQLiteRecordStore(tmp_path / "a.sqlite")
    session = AuditSession(store)
    result = session.load_analysis(text, processing_date=PROCESSING_DAY)

    assert result.final_amount == Decimal("20.00")
    assert result.disposition == Disposition.STANDARD_CONFIRMATION
    assert session.registry[0].amount == Decimal("20.00")

    session.update_reference(0, "NAB1")
    assert session.save(now=SAVED_AT) == SaveStatus.SAVED
    [record] = store.list_all()
    assert record.amount == Decimal("20.00")
    assert record.status == RecordStatus.PAID


def test_critical_discrepancy_is_held_back(tmp_path):
    store = SQLiteRecordStore(tmp_path / "a.sqlite")
    session = AuditSession(store)
    result = session.load_analysis(make_analysis(receipt_total="illegible"),
                                   processing_date=PROCESSING_DAY)
    assert result.disposition == Disposition.CRITICAL_DISCREPANCY
    assert "discrepancy was found" in session.registry.document

    session.update_reference(0, "NAB1")
    assert session.save(now=SAVED_AT) == SaveStatus.DISCREPANCY
    assert store.list_all() == []
    assert len(session.registry) == 1

    assert session.save(allow_discrepancy=True, now=SAVED_AT) == SaveStatus.SAVED
    [record] = store.list_all()
    assert record.status == RecordStatus.PENDING
    assert record.reference == "NAB1"


def test_escalated_claim_stays_pending(tmp_path):
    store = SQLiteRecordStore(tmp_path / "a.sqlite")
    session = AuditSession(store)
    result = session.load_analysis(make_analysis(form_total="$400.00", receipt_total="$400.00"),
                                   processing_date=PROCESSING_DAY)
    assert result.disposition == Disposition.ESCALATION
    assert session.registry.document.startswith("Hi Julian,")

    session.update_reference(0, "NAB9")
    assert session.save(now=SAVED_AT) == SaveStatus.SAVED
    [record] = store.list_all()
    assert record.amount == Decimal("400.00")
    assert record.status == RecordStatus.PENDING


def test_partial_write_is_not_repeated_on_retry(analysis_text):
    store = Mock()
    store.create.side_effect = [1, RecordStoreError("disk full"), 3]
    store.list_all.return_value = []
    session = AuditSession(store)
    session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)
    session.registry.replace_all([Transaction("SMITH, JANE", Decimal("10.00"), "PENDING", "a"),
                                  Transaction("LEE, TOM", Decimal("5.00"), "PENDING", "b")])

    assert session.save(now=SAVED_AT) == SaveStatus.ERROR
    assert [tx.formatted_name for tx in session.registry] == ["LEE, TOM"]
    assert session.registry.document.startswith("Hi Jane")

    assert session.save(now=SAVED_AT) == SaveStatus.SAVED
    assert store.create.call_count == 3
    saved = [c.args[0].staff_name for c in store.create.call_args_list]
    assert saved == ["SMITH, JANE", "LEE, TOM", "LEE, TOM"]


def test_refresh_failure_after_save(analysis_text):
    store = Mock()
    store.create.return_value = 7
    store.list_all.side_effect = RecordStoreError("database is locked")
    session = AuditSession(store)
    session.records = [ReimbursementRecord(staff_name="OLD", amount=Decimal("1.00"))]
    session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)

    assert session.save(now=SAVED_AT) == SaveStatus.SAVED
    assert session.error_message == "database is locked"
    assert session.state == ProcessingState.IDLE
    assert [r.staff_name for r in session.records] == ["OLD"]


def test_unexpected_extractor_failure_does_not_wedge_session(analysis_text):
    extractor = Mock(side_effect=ImportError("No module named 'openpyxl'"))
    session = AuditSession(Mock(), extractor=extractor)

    with pytest.raises(ImportError):
        session.run([Attachment("image/png", b"x")])
    assert session.state == ProcessingState.ERROR
    assert "openpyxl" in session.error_message

    result = session.load_analysis(analysis_text, processing_date=PROCESSING_DAY)
    assert result.disposition == Disposition.STANDARD_CONFIRMATION
    assert session.state == ProcessingState.COMPLETE
