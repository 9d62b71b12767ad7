"""
Data models for reimbursement auditing.
"""

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


class Disposition(str, Enum):
    """Categorical outcome of reconciliation."""
    STANDARD_CONFIRMATION = "STANDARD_CONFIRMATION"
    ESCALATION = "ESCALATION"
    CRITICAL_DISCREPANCY = "CRITICAL_DISCREPANCY"


class RecordStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class ReportKind(str, Enum):
    DAILY_BANKING = "daily-banking"
    END_OF_DAY_SCHEDULE = "end-of-day-schedule"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# One state value per surface instead of loose booleans

class ProcessingState(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    DUPLICATE = "duplicate"
    DISCREPANCY = "discrepancy"
    ERROR = "error"


class CopyStatus(str, Enum):
    IDLE = "idle"
    COPIED = "copied"
    FALLBACK_COPIED = "fallback-copied"
    FAILED = "failed"


class EditMode(str, Enum):
    VIEWING = "viewing"
    EDITING = "editing"


@dataclass
class RawAnalysis:
    """The four phase sections of one extraction result."""
    phase1: str = ""
    phase2: str = ""
    phase3: str = ""
    phase4: str = ""
    missing_phases: Tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.missing_phases


@dataclass
class Transaction:
    """A proposed payment awaiting confirmation in the working set."""
    formatted_name: str
    amount: Decimal
    current_reference: str
    source_text: str


@dataclass
class AuditEvidence:
    """Values scraped from the extraction result that feed reconciliation."""
    form_amount: Optional[Decimal] = None
    receipt_amount: Optional[Decimal] = None
    receipt_date: Optional[dt.date] = None
    store_name: Optional[str] = None
    receipt_id: Optional[str] = None
    staff_name: Optional[str] = None
    client_location: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class ReconciliationFlags:
    duplicate: bool = False
    escalate_amount: bool = False
    escalate_age: bool = False


@dataclass(frozen=True)
class ReconciliationResult:
    final_amount: Optional[Decimal]
    disposition: Disposition
    flags: ReconciliationFlags
    fingerprint: str


@dataclass
class ReimbursementRecord:
    """A persisted reimbursement."""
    staff_name: str
    amount: Decimal
    status: RecordStatus = RecordStatus.PENDING
    reference: str = "PENDING"
    client_location: str = "N/A"
    category: str = "Uncategorized"
    receipt_date: Optional[dt.date] = None
    created_at: dt.datetime = field(default_factory=dt.datetime.now)
    raw_text: str = ""
    id: Optional[int] = None

    def __post_init__(self):
        if self.amount is None or self.amount < 0:
            raise ValueError(f"Reimbursement amount must be >= 0, got {self.amount}")
        self.status = RecordStatus(self.status)
        if not (self.reference or "").strip():
            self.reference = "PENDING"


@dataclass(frozen=True)
class ScheduleEntry:
    time_in: dt.datetime
    time_out: dt.datetime
    activity: str
    yp_name: str = ""
    staff_name: str = ""
    amount: Optional[Decimal] = None
    status: str = ""
    is_idle: bool = False


@dataclass(frozen=True)
class RankedTotal:
    name: str
    total: Decimal


@dataclass(frozen=True)
class ReportSnapshot:
    title: str
    kind: ReportKind
    range_start: dt.datetime
    range_end: dt.datetime
    total_spend: Decimal
    total_requests: int
    pending_count: int
    top_staff: Tuple[RankedTotal, ...]
    top_location: Tuple[RankedTotal, ...]
    staff_ranking: Tuple[RankedTotal, ...]
    location_ranking: Tuple[RankedTotal, ...]
    highest_single_item: ReimbursementRecord


@dataclass(frozen=True)
class BankingLog:
    day: dt.date
    paid: Tuple[ReimbursementRecord, ...]
    pending: Tuple[ReimbursementRecord, ...]
    paid_total: Decimal
    pending_total: Decimal


@dataclass(frozen=True)
class EndOfDayReport:
    day: dt.date
    entries: Tuple[ScheduleEntry, ...]
    total: Decimal
    count: int


@dataclass(frozen=True)
class NoData:
    """An empty report window. Never a zero-total snapshot."""
    kind: ReportKind
    range_start: dt.datetime
    range_end: dt.datetime
    message: str = "No data for this period."

    def __bool__(self):
        return False


@dataclass(frozen=True)
class Attachment:
    """One uploaded file handed to the extraction collaborator."""
    mime_type: str
    data: bytes
    name: str = ""
