import datetime as dt
import sqlite3
from decimal import Decimal

import pytest

from reimbursement_audit.core.database import SQLiteRecordStore, RecordStoreError
from reimbursement_audit.core.models import RecordStatus, ReimbursementRecord

from conftest import make_record


def test_create_and_list_round_trip(tmp_path):
    store = SQLiteRecordStore(tmp_path / "db" / "audit.sqlite")
    rid = store.create(make_record("SMITH, JANE", "45.50", dt.datetime(2025, 5, 14, 9, 0),
                                   category="Groceries", receipt_date=dt.date(2025, 5, 10)))
    store.create(make_record("LEE, TOM", "0.10", dt.datetime(2025, 5, 13, 9, 0)))

    records = store.list_all()

    assert [r.staff_name for r in records] == ["LEE, TOM", "SMITH, JANE"]
    saved = store.get(rid)
    assert saved.id == rid
    assert saved.amount == Decimal("45.50")
    assert saved.receipt_date == dt.date(2025, 5, 10)
    assert saved.status == RecordStatus.PENDING
    assert saved.category == "Groceries"


def test_update_and_mark_paid(tmp_path):
    store = SQLiteRecordStore(tmp_path / "audit.sqlite")
    rid = store.create(make_record("ANN", "10.00", dt.datetime(2025, 5, 14, 9, 0)))

    updated = store.update(rid, amount=Decimal("12.5"), client_location="Oak Street")
    assert updated.amount == Decimal("12.50")
    assert updated.client_location == "Oak Street"

    paid = store.mark_paid(rid, " NAB55 ")
    assert paid.status == RecordStatus.PAID
    assert paid.reference == "NAB55"


def test_paid_record_cannot_return_to_pending(tmp_path):
    store = SQLiteRecordStore(tmp_path / "audit.sqlite")
    rid = store.create(make_record("ANN", "10.00", dt.datetime(2025, 5, 14, 9, 0)))
    store.mark_paid(rid, "NAB1")

    with pytest.raises(ValueError):
        store.update(rid, status=RecordStatus.PENDING)
    assert store.get(rid).status == RecordStatus.PAID


def test_invalid_updates(tmp_path):
    store = SQLiteRecordStore(tmp_path / "audit.sqlite")
    rid = store.create(make_record("ANN", "10.00", dt.datetime(2025, 5, 14, 9, 0)))

    with pytest.raises(ValueError):
        store.update(rid, amount=Decimal("-1"))
    with pytest.raises(ValueError):
        store.update(rid, id=99)
    with pytest.raises(ValueError):
        store.mark_paid(rid, "  ")
    with pytest.raises(KeyError):
        store.update(999, amount=Decimal("1"))


def test_negative_record_cannot_be_built():
    with pytest.raises(ValueError):
        ReimbursementRecord(staff_name="ANN", amount=Decimal("-0.01"))


def test_bulk_delete(tmp_path):
    store = SQLiteRecordStore(tmp_path / "audit.sqlite")
    ids = [store.create(make_record(f"S{i}", "1.00", dt.datetime(2025, 5, 14, 9, i))) for i in range(3)]

    assert store.bulk_delete([ids[0], ids[2], 12345]) == 2
    assert [r.id for r in store.list_all()] == [ids[1]]
    assert store.bulk_delete([]) == 0


def test_create_failure_is_wrapped(tmp_path):
    store = SQLiteRecordStore(tmp_path / "audit.sqlite")
    record = make_record("ANN", "1.00", dt.datetime(2025, 5, 14, 9, 0))
    record.staff_name = None  # violates NOT NULL

    with pytest.raises(RecordStoreError):
        store.create(record)


def test_read_failures_are_wrapped(tmp_path):
    path = tmp_path / "audit.sqlite"
    store = SQLiteRecordStore(path)
    with sqlite3.connect(path.as_posix()) as conn:
        conn.execute("DROP TABLE reimbursements")

    with pytest.raises(RecordStoreError):
        store.list_all()
    with pytest.raises(RecordStoreError):
        store.get(1)


def test_unopenable_path_is_wrapped(tmp_path):
    with pytest.raises(RecordStoreError) as exc:
        SQLiteRecordStore(tmp_path)
    assert str(tmp_path) in str(exc.value)
