"""
Time-windowed aggregation and report synthesis over persisted records.

Everything here is read-only over the record collection and recomputed on
every call; nothing is cached between calls.
"""

import random
import datetime as dt
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .models import (ReimbursementRecord, ReportKind, ReportSnapshot, RankedTotal,
                     ScheduleEntry, BankingLog, EndOfDayReport, NoData, RecordStatus)
from .policy import AuditPolicy, DEFAULT_POLICY
from .utils import start_of_day, start_of_quarter

ZERO = Decimal("0.00")

PERIOD_TITLES = {
    ReportKind.WEEKLY: ("WEEKLY EXPENSE REPORT", "Last 7 Days"),
    ReportKind.MONTHLY: ("MONTHLY EXPENSE REPORT (MTD)", "Month to Date"),
    ReportKind.QUARTERLY: ("QUARTERLY EXPENSE REPORT (QTD)", "Current Quarter"),
    ReportKind.YEARLY: ("YEARLY EXPENSE REPORT (YTD)", "Year to Date"),
}

PERIOD_KINDS = tuple(PERIOD_TITLES)

REIMBURSEMENT_ACTIVITY = "REIMBURSEMENT"
IDLE_ACTIVITY = "IDLE"


def report_window(kind: ReportKind, now: dt.datetime) -> Tuple[dt.datetime, dt.datetime]:
    """Return the [start, now) window for a period report."""
    kind = ReportKind(kind)
    if kind == ReportKind.WEEKLY:
        return now - dt.timedelta(days=7), now
    if kind == ReportKind.MONTHLY:
        return start_of_day(now.date().replace(day=1)), now
    if kind == ReportKind.QUARTERLY:
        return start_of_day(start_of_quarter(now.date())), now
    if kind == ReportKind.YEARLY:
        return start_of_day(dt.date(now.year, 1, 1)), now
    raise ValueError(f"{kind.value} is not a period report")


def filter_window(records: Iterable[ReimbursementRecord],
                  start: dt.datetime, end: dt.datetime) -> List[ReimbursementRecord]:
    return [r for r in records if start <= r.created_at < end]


def daily_window(records: Iterable[ReimbursementRecord], day: dt.date) -> List[ReimbursementRecord]:
    """Records created on ``day``."""
    return [r for r in records if r.created_at.date() == day]


def filter_records(records: Iterable[ReimbursementRecord], term: str) -> List[ReimbursementRecord]:
    """Case-insensitive search across staff, location, reference and category."""
    term = (term or "").strip().lower()
    if not term:
        return list(records)
    return [
        r for r in records
        if any(term in (value or "").lower()
               for value in (r.staff_name, r.client_location, r.reference, r.category))
    ]


@dataclass
class Aggregate:
    total_spend: Decimal = ZERO
    total_requests: int = 0
    staff_totals: Dict[str, Decimal] = field(default_factory=lambda: defaultdict(lambda: ZERO))
    location_totals: Dict[str, Decimal] = field(default_factory=lambda: defaultdict(lambda: ZERO))
    highest: Optional[ReimbursementRecord] = None
    unknown_count: int = 0


def aggregate(records: Iterable[ReimbursementRecord],
              policy: AuditPolicy = DEFAULT_POLICY) -> Aggregate:
    """Running totals over records, in encounter order."""
    agg = Aggregate()
    for r in records:
        agg.total_spend += r.amount
        agg.total_requests += 1
        agg.staff_totals[(r.staff_name or "").strip()] += r.amount
        agg.location_totals[(r.client_location or "").strip()] += r.amount
        # strict comparison keeps the first record on ties
        if agg.highest is None or r.amount > agg.highest.amount:
            agg.highest = r
        if policy.is_unknown(r.staff_name) or policy.is_unknown(r.client_location):
            agg.unknown_count += 1
    return agg


def rank_totals(totals: Dict[str, Decimal], limit: int) -> Tuple[RankedTotal, ...]:
    """Stable descending sort by total; ties keep encounter order."""
    ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
    return tuple(RankedTotal(name, total) for name, total in ranked[:limit])


def build_snapshot(records: Iterable[ReimbursementRecord], kind: ReportKind,
                   now: Optional[dt.datetime] = None,
                   policy: AuditPolicy = DEFAULT_POLICY) -> Union[ReportSnapshot, NoData]:
    """
    Aggregate one period report.

    Returns:
        ReportSnapshot, or NoData when the window holds no records
    """
    kind = ReportKind(kind)
    now = now or dt.datetime.now()
    start, end = report_window(kind, now)
    window = filter_window(records, start, end)
    if not window:
        return NoData(kind=kind, range_start=start, range_end=end)

    agg = aggregate(window, policy)
    title, _ = PERIOD_TITLES[kind]
    return ReportSnapshot(
        title=title,
        kind=kind,
        range_start=start,
        range_end=end,
        total_spend=agg.total_spend,
        total_requests=agg.total_requests,
        pending_count=agg.unknown_count,
        top_staff=rank_totals(agg.staff_totals, policy.summary_top_n),
        top_location=rank_totals(agg.location_totals, policy.summary_top_n),
        staff_ranking=rank_totals(agg.staff_totals, policy.trend_top_n),
        location_ranking=rank_totals(agg.location_totals, policy.trend_top_n),
        highest_single_item=agg.highest,
    )


def build_banking_log(records: Iterable[ReimbursementRecord], day: dt.date,
                      policy: AuditPolicy = DEFAULT_POLICY) -> Union[BankingLog, NoData]:
    """Split the day's records into paid (with a bank reference) and pending authorization."""
    window = sorted(daily_window(records, day), key=lambda r: r.created_at)
    if not window:
        return NoData(kind=ReportKind.DAILY_BANKING, range_start=start_of_day(day),
                      range_end=start_of_day(day + dt.timedelta(days=1)))

    paid, pending = [], []
    for r in window:
        settled = r.status == RecordStatus.PAID or not policy.is_placeholder_reference(r.reference)
        (paid if settled else pending).append(r)
    return BankingLog(
        day=day,
        paid=tuple(paid),
        pending=tuple(pending),
        paid_total=sum((r.amount for r in paid), ZERO),
        pending_total=sum((r.amount for r in pending), ZERO),
    )


def schedule_status(record: ReimbursementRecord, policy: AuditPolicy = DEFAULT_POLICY) -> str:
    if policy.is_placeholder_reference(record.reference):
        return policy.unresolved_status
    return policy.settled_status.format(reference=record.reference.strip())


def build_eod_schedule(records: Iterable[ReimbursementRecord], day: dt.date,
                       rng: Optional[random.Random] = None,
                       policy: AuditPolicy = DEFAULT_POLICY) -> List[ScheduleEntry]:
    """
    Lay the day's reimbursements out as sequential activity blocks.

    Blocks start at the day-start anchor in creation order, each lasting a
    random whole number of minutes within the policy range, with a fixed gap
    between one block's end and the next block's start. If time remains
    before the day-end anchor, one idle block fills it exactly.
    """
    rng = rng or random.Random()
    low, high = policy.block_minutes
    gap = dt.timedelta(minutes=policy.block_gap_minutes)
    day_end = dt.datetime.combine(day, policy.day_end_time)
    cursor = dt.datetime.combine(day, policy.day_start_time)

    entries = []
    for r in sorted(records, key=lambda rec: rec.created_at):
        time_in = cursor
        time_out = time_in + dt.timedelta(minutes=rng.randint(low, high))
        cursor = time_out + gap
        entries.append(ScheduleEntry(
            time_in=time_in,
            time_out=time_out,
            activity=REIMBURSEMENT_ACTIVITY,
            yp_name=(r.client_location or "").strip() or "N/A",
            staff_name=r.staff_name,
            amount=r.amount,
            status=schedule_status(r, policy),
        ))

    if cursor < day_end:
        entries.append(ScheduleEntry(time_in=cursor, time_out=day_end,
                                     activity=IDLE_ACTIVITY, is_idle=True))
    return entries


def build_end_of_day(records: Iterable[ReimbursementRecord], day: dt.date,
                     rng: Optional[random.Random] = None,
                     policy: AuditPolicy = DEFAULT_POLICY) -> Union[EndOfDayReport, NoData]:
    window = daily_window(records, day)
    if not window:
        return NoData(kind=ReportKind.END_OF_DAY_SCHEDULE, range_start=start_of_day(day),
                      range_end=start_of_day(day + dt.timedelta(days=1)))
    return EndOfDayReport(
        day=day,
        entries=tuple(build_eod_schedule(window, day, rng=rng, policy=policy)),
        total=sum((r.amount for r in window), ZERO),
        count=len(window),
    )


class ReportingEngine:
    """Computes reports from a fresh ``list_all()`` of the record store on every call."""

    def __init__(self, store, policy: AuditPolicy = DEFAULT_POLICY):
        self.store = store
        self.policy = policy

    def snapshot(self, kind: ReportKind, now: Optional[dt.datetime] = None):
        return build_snapshot(self.store.list_all(), kind, now=now, policy=self.policy)

    def banking_log(self, day: Optional[dt.date] = None):
        return build_banking_log(self.store.list_all(), day or dt.date.today(), policy=self.policy)

    def end_of_day(self, day: Optional[dt.date] = None, rng: Optional[random.Random] = None):
        return build_end_of_day(self.store.list_all(), day or dt.date.today(),
                                rng=rng, policy=self.policy)

    def compute(self, kind: ReportKind, now: Optional[dt.datetime] = None,
                day: Optional[dt.date] = None, rng: Optional[random.Random] = None):
        """Dispatch on report kind."""
        kind = ReportKind(kind)
        if kind == ReportKind.DAILY_BANKING:
            return self.banking_log(day or (now.date() if now else None))
        if kind == ReportKind.END_OF_DAY_SCHEDULE:
            return self.end_of_day(day or (now.date() if now else None), rng=rng)
        return self.snapshot(kind, now=now)
