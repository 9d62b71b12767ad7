import datetime as dt
from decimal import Decimal

import pytest

from reimbursement_audit.core.models import ReimbursementRecord, RecordStatus

ANALYSIS_TEMPLATE = """Here is the audit.

<<<PHASE_1_START>>>
Receipt 1: Good

| Receipt # | Store Name Date & Time | Product (Per Item) | Category | Item Amount | Grand Total |
| :--- | :--- | :--- | :--- | :--- | :--- |
| [1] | {store} 05/03/25 14:22 | Milk | Groceries | $4.50 | {receipt_total} |

| Receipt # | Store Name | Receipt ID | Grand Total |
|:---|:---|:---|:---|
| 1 | {store} | TX-9981 | {receipt_total} |
| **Total Amount** | | | **{receipt_total}** |
<<<PHASE_1_END>>>

<<<PHASE_2_START>>>
-- PHASE 1 BLOCK: Jane Smith
Client name / Location: Maple House
SMITH, JANE
Approved by: Tom Lee
Type of expense: groceries
03/05/2025
{form_total}
<<<PHASE_2_END>>>

<<<PHASE_3_START>>>
Form total {form_total}, receipt total {receipt_total}. Receipts legible.
<<<PHASE_3_END>>>

<<<PHASE_4_START>>>
Hi Jane,

Your reimbursement has been processed.

**Staff Member:** Smith, Jane
**Client / Location:** Maple House
**Amount:** {form_total}
**Receipt ID:** TX-9981
**NAB Reference:** PENDING
<<<PHASE_4_END>>>
"""


def make_analysis(form_total="$45.50", receipt_total="$45.50", store="Woolworths"):
    return ANALYSIS_TEMPLATE.format(form_total=form_total, receipt_total=receipt_total, store=store)


@pytest.fixture
def analysis_text():
    return make_analysis()


def make_record(staff, amount, created_at, location="Maple House",
                reference="PENDING", status=RecordStatus.PENDING, **kwargs):
    return ReimbursementRecord(staff_name=staff, amount=Decimal(amount),
                               client_location=location, reference=reference,
                               status=status, created_at=created_at, **kwargs)


@pytest.fixture
def now():
    return dt.datetime(2025, 5, 14, 16, 30)
