"""
Database operations for reimbursement record storage.
"""

import sqlite3
import datetime as dt
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List

from .models import ReimbursementRecord, RecordStatus

UPDATABLE_COLUMNS = ("staff_name", "amount", "status", "reference",
                     "client_location", "category", "receipt_date", "raw_text")


class RecordStoreError(Exception):
    """The store rejected a create, update or delete."""


def _row_to_record(row) -> ReimbursementRecord:
    return ReimbursementRecord(
        id=row[0],
        staff_name=row[1],
        amount=Decimal(row[2]),
        status=RecordStatus(row[3]),
        reference=row[4],
        client_location=row[5],
        category=row[6],
        receipt_date=dt.date.fromisoformat(row[7]) if row[7] else None,
        created_at=dt.datetime.fromisoformat(row[8]),
        raw_text=row[9] or "",
    )


def _to_column(name: str, value):
    if name == "amount":
        return f"{Decimal(value):.2f}"
    if name == "status":
        return RecordStatus(value).value
    if name == "receipt_date":
        return value.isoformat() if value else None
    return value


class SQLiteRecordStore:
    """
    Reimbursement records in a single SQLite table.

    Amounts are stored as text so they round-trip as exact 2dp decimals.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.init_db()

    def _connect(self):
        return sqlite3.connect(self.db_path.as_posix())

    def init_db(self):
        """Create the records table if needed."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("""
                CREATE TABLE IF NOT EXISTS reimbursements (
                    id INTEGER PRIMARY KEY,
                    staff_name TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    reference TEXT NOT NULL DEFAULT 'PENDING',
                    client_location TEXT,
                    category TEXT,
                    receipt_date TEXT,
                    created_at TEXT NOT NULL,
                    raw_text TEXT
                )
                """)
                cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON reimbursements(created_at)
                """)
                conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise RecordStoreError(f"Could not open record store {self.db_path}: {e}") from e

    def create(self, record: ReimbursementRecord) -> int:
        """Insert a record and return its new id."""
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("""
                    INSERT INTO reimbursements
                    (staff_name, amount, status, reference, client_location,
                     category, receipt_date, created_at, raw_text)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (record.staff_name, _to_column("amount", record.amount),
                      _to_column("status", record.status), record.reference,
                      record.client_location, record.category,
                      _to_column("receipt_date", record.receipt_date),
                      record.created_at.isoformat(), record.raw_text))
                conn.commit()
                return cur.lastrowid
        except sqlite3.Error as e:
            raise RecordStoreError(f"Could not save record for {record.staff_name}: {e}") from e

    def list_all(self) -> List[ReimbursementRecord]:
        """Every record, oldest first."""
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("""
                    SELECT id, staff_name, amount, status, reference, client_location,
                           category, receipt_date, created_at, raw_text
                    FROM reimbursements
                    ORDER BY created_at, id
                """)
                rows = cur.fetchall()
        except sqlite3.Error as e:
            raise RecordStoreError(f"Could not read records: {e}") from e
        return [_row_to_record(row) for row in rows]

    def get(self, record_id: int) -> ReimbursementRecord:
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("""
                    SELECT id, staff_name, amount, status, reference, client_location,
                           category, receipt_date, created_at, raw_text
                    FROM reimbursements
                    WHERE id = ?
                """, (record_id,))
                row = cur.fetchone()
        except sqlite3.Error as e:
            raise RecordStoreError(f"Could not read record {record_id}: {e}") from e
        if row is None:
            raise KeyError(f"No reimbursement with id {record_id}")
        return _row_to_record(row)

    def update(self, record_id: int, **fields) -> ReimbursementRecord:
        """
        Apply a partial update.

        Status may only move PENDING -> PAID; amounts must stay >= 0.

        Raises:
            KeyError: unknown record id
            ValueError: unknown column, negative amount or illegal status transition
            RecordStoreError: the database rejected the write
        """
        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update column(s): {', '.join(sorted(unknown))}")

        current = self.get(record_id)
        if "status" in fields:
            new_status = RecordStatus(fields["status"])
            if current.status == RecordStatus.PAID and new_status == RecordStatus.PENDING:
                raise ValueError(f"Record {record_id} is already PAID; it cannot return to PENDING")
        if "amount" in fields and Decimal(fields["amount"]) < 0:
            raise ValueError(f"Reimbursement amount must be >= 0, got {fields['amount']}")
        if not fields:
            return current

        values: Dict = {k: _to_column(k, v) for k, v in fields.items()}
        assignments = ", ".join(f"{k} = ?" for k in values)
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute(f"UPDATE reimbursements SET {assignments} WHERE id = ?",
                            (*values.values(), record_id))
                conn.commit()
        except sqlite3.Error as e:
            raise RecordStoreError(f"Could not update record {record_id}: {e}") from e
        return self.get(record_id)

    def mark_paid(self, record_id: int, reference: str) -> ReimbursementRecord:
        """Record the bank settlement reference and move the record to PAID."""
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("A settlement reference is required to mark a record paid")
        return self.update(record_id, status=RecordStatus.PAID, reference=reference)

    def bulk_delete(self, record_ids: Iterable[int]) -> int:
        """
        Delete records by id.

        Returns:
            Number of records removed
        """
        ids = [(rid,) for rid in record_ids]
        if not ids:
            return 0
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                before = conn.total_changes
                cur.executemany("DELETE FROM reimbursements WHERE id = ?", ids)
                conn.commit()
                return conn.total_changes - before
        except sqlite3.Error as e:
            raise RecordStoreError(f"Could not delete records: {e}") from e
