"""
Rendering of reports for preview, clipboard paste and download.
"""

import html
import datetime as dt
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .models import (ReportSnapshot, BankingLog, EndOfDayReport, NoData, ReimbursementRecord,
                     ReportKind, CopyStatus, EditMode)
from .reporting import PERIOD_TITLES
from .utils import money_fmt, plain_amount

Report = Union[ReportSnapshot, BankingLog, EndOfDayReport, NoData]

CSV_COLUMNS = ["id", "date", "staff", "location", "amount", "status"]

TABLE_STYLE = ("width: 100%; border-collapse: collapse; "
               "font-family: Calibri, Arial, sans-serif; font-size: 11pt; color: #000000;")
TH_STYLE = ("border: 1px solid #000000; padding: 4px 8px; font-weight: bold; "
            "background-color: #ffffff;")
TD_STYLE = "border: 1px solid #000000; padding: 4px 8px;"

NO_DATA_TITLES = {
    ReportKind.DAILY_BANKING: "NAB BANKING LOG",
    ReportKind.END_OF_DAY_SCHEDULE: "DAILY ACTIVITY TRACKER (EOD)",
}


def us_date(d: dt.date) -> str:
    """Date as m/d/yyyy."""
    return f"{d.month}/{d.day}/{d.year}"


def clock(t: dt.datetime) -> str:
    return t.strftime("%H:%M")


# --------------- Tables ---------------

@dataclass(frozen=True)
class Table:
    headers: Sequence[str]
    rows: Sequence[Sequence[str]]
    right_align: Sequence[int] = ()


def schedule_table(report: EndOfDayReport) -> Table:
    rows = []
    for e in report.entries:
        rows.append([
            clock(e.time_in),
            clock(e.time_out),
            e.activity,
            e.yp_name,
            (e.staff_name or "").upper(),
            money_fmt(e.amount),
            e.status,
        ])
    return Table(["TIME IN", "TIME OUT", "ACTIVITY", "NAME OF YP", "NAME OF STAFF",
                  "AMOUNT", "COMMENTS / STATUS"], rows)


def banking_table(log: BankingLog) -> Table:
    rows = [[us_date(r.created_at.date()), r.staff_name.replace("*", "").strip(),
             r.reference.replace("*", "").strip(), money_fmt(r.amount)]
            for r in log.paid]
    return Table(["Date", "Staff Member", "NAB CODE", "Amount"], rows, right_align=(3,))


def snapshot_table(snapshot: ReportSnapshot) -> Table:
    rows = [
        ["Total Spend", money_fmt(snapshot.total_spend)],
        ["Total Requests", str(snapshot.total_requests)],
        ["Pending Categorization", str(snapshot.pending_count)],
        ["Highest Single Item", money_fmt(snapshot.highest_single_item.amount)],
    ]
    rows += [[f"Top Staff #{i}: {t.name}", money_fmt(t.total)]
             for i, t in enumerate(snapshot.top_staff, 1)]
    rows += [[f"Top Location #{i}: {t.name}", money_fmt(t.total)]
             for i, t in enumerate(snapshot.top_location, 1)]
    return Table(["Metric", "Value"], rows, right_align=(1,))


def to_rich_table(table: Table) -> str:
    """Inline-styled HTML table for pasting into Outlook or Word."""
    def cell(tag, value, idx, base_style):
        style = base_style + (" text-align: right;" if idx in table.right_align else "")
        return f'<{tag} style="{style}">{html.escape(str(value))}</{tag}>'

    head = "".join(cell("th", h, i, TH_STYLE) for i, h in enumerate(table.headers))
    body = "".join(
        "<tr>" + "".join(cell("td", v, i, TD_STYLE) for i, v in enumerate(row)) + "</tr>"
        for row in table.rows
    )
    return (f'<table style="{TABLE_STYLE}"><thead><tr style="text-align: left;">{head}</tr></thead>'
            f"<tbody>{body}</tbody></table>")


def to_flat_table(table: Table, delimiter: str = "\t") -> str:
    """Delimited plain-text fallback of a table."""
    lines = [delimiter.join(table.headers)]
    lines += [delimiter.join(str(v) for v in row) for row in table.rows]
    return "\n".join(lines)


def report_table(report: Report) -> Optional[Table]:
    if isinstance(report, EndOfDayReport):
        return schedule_table(report)
    if isinstance(report, BankingLog):
        return banking_table(report)
    if isinstance(report, ReportSnapshot):
        return snapshot_table(report)
    return None


# --------------- Markdown preview ---------------

def _ranking_rows(ranking) -> str:
    return "\n".join(f"| {i} | {t.name or 'N/A'} | {money_fmt(t.total)} |"
                     for i, t in enumerate(ranking, 1))


def render_no_data(report: NoData) -> str:
    title = NO_DATA_TITLES.get(report.kind) or PERIOD_TITLES[report.kind][0]
    return (f"# {title}\n"
            f"**Date Range: {us_date(report.range_start.date())} - {us_date(report.range_end.date())}**\n\n"
            f"_{report.message}_")


def render_snapshot_markdown(snapshot: ReportSnapshot) -> str:
    highest = snapshot.highest_single_item
    return f"""# {snapshot.title}
**Date Range: {us_date(snapshot.range_start.date())} - {us_date(snapshot.range_end.date())}**

### EXECUTIVE SUMMARY

| Metric | Value |
| :--- | :--- |
| **Total Spend** | **{money_fmt(snapshot.total_spend)}** |
| **Total Requests** | {snapshot.total_requests} |
| **Pending Categorization** | {snapshot.pending_count} |
| **Highest Single Item** | {money_fmt(highest.amount)} ({highest.staff_name}) |

### TOP SPENDERS (STAFF)

| Rank | Staff Member | Total Amount |
| :--- | :--- | :--- |
{_ranking_rows(snapshot.staff_ranking)}

### SPENDING BY LOCATION

| Rank | Location | Total Amount |
| :--- | :--- | :--- |
{_ranking_rows(snapshot.location_ranking)}"""


def render_banking_markdown(log: BankingLog) -> str:
    lines = [f"# NAB BANKING LOG ({us_date(log.day)})", ""]
    if log.pending:
        lines += [f"### PENDING AUTHORIZATION ({len(log.pending)})", ""]
        lines += [f"- {r.staff_name} ({r.reference}): {money_fmt(r.amount)}" for r in log.pending]
        lines.append("")
    lines += ["| Date | Staff Member | NAB CODE | Amount |",
              "| :--- | :--- | :--- | ---: |"]
    lines += [f"| {us_date(r.created_at.date())} | {r.staff_name} | {r.reference} | {money_fmt(r.amount)} |"
              for r in log.paid]
    lines += ["", f"**Total Processed: {money_fmt(log.paid_total)}**"]
    return "\n".join(lines)


def render_schedule_markdown(report: EndOfDayReport) -> str:
    table = schedule_table(report)
    lines = [f"# DAILY ACTIVITY TRACKER (EOD) - {us_date(report.day)}", "",
             "| " + " | ".join(table.headers) + " |",
             "| " + " | ".join(":---" for _ in table.headers) + " |"]
    lines += ["| " + " | ".join(row) + " |" for row in table.rows]
    lines += ["", f"**Processed: {report.count} | Total Processed: {money_fmt(report.total)}**"]
    return "\n".join(lines)


def render_markdown(report: Report) -> str:
    """Hierarchical text preview of any report result."""
    if isinstance(report, NoData):
        return render_no_data(report)
    if isinstance(report, ReportSnapshot):
        return render_snapshot_markdown(report)
    if isinstance(report, BankingLog):
        return render_banking_markdown(report)
    if isinstance(report, EndOfDayReport):
        return render_schedule_markdown(report)
    raise TypeError(f"Cannot render {type(report).__name__}")


class ReportBuffer:
    """
    Free-text edits of a report preview, held apart from the canonical text
    until committed or discarded.
    """

    def __init__(self, canonical: str):
        self.canonical = canonical
        self.mode = EditMode.VIEWING
        self._draft: Optional[str] = None

    @property
    def text(self) -> str:
        """What the preview currently shows."""
        if self.mode == EditMode.EDITING and self._draft is not None:
            return self._draft
        return self.canonical

    def begin_edit(self):
        if self.mode == EditMode.VIEWING:
            self._draft = self.canonical
            self.mode = EditMode.EDITING

    def set_text(self, text: str):
        if self.mode != EditMode.EDITING:
            raise RuntimeError("Call begin_edit() before changing the preview text")
        self._draft = text

    def commit(self) -> str:
        if self.mode == EditMode.EDITING and self._draft is not None:
            self.canonical = self._draft
        self._draft = None
        self.mode = EditMode.VIEWING
        return self.canonical

    def discard(self) -> str:
        self._draft = None
        self.mode = EditMode.VIEWING
        return self.canonical


# --------------- Clipboard ---------------

class ClipboardUnsupported(Exception):
    """The target clipboard cannot take rich (HTML) content."""


@dataclass(frozen=True)
class ClipboardPayload:
    html: str
    text: str


def build_payload(report: Report, buffer: Optional[ReportBuffer] = None) -> ClipboardPayload:
    """
    Paste-ready content for a report. The rich part is always built from the
    report data. The plain part is the committed preview text when a buffer
    is given, else the flat table.
    """
    table = report_table(report)
    if buffer is not None:
        text = buffer.canonical
    elif table is not None:
        text = to_flat_table(table)
    else:
        text = render_markdown(report)
    rich = to_rich_table(table) if table is not None else f"<pre>{html.escape(text)}</pre>"
    return ClipboardPayload(html=rich, text=text)


def copy_payload(payload: ClipboardPayload, clipboard) -> CopyStatus:
    """
    Write rich content, falling back to plain text when the clipboard
    cannot take HTML.
    """
    try:
        clipboard.write_rich(payload.html, payload.text)
        return CopyStatus.COPIED
    except ClipboardUnsupported:
        pass
    try:
        clipboard.write_text(payload.text)
    except ClipboardUnsupported:
        return CopyStatus.FAILED
    return CopyStatus.FALLBACK_COPIED


# --------------- Files ---------------

def records_to_csv(records: Iterable[ReimbursementRecord]) -> str:
    """
    Bulk export with a fixed column order.

    Values are joined with commas as-is: a comma inside a value is not quoted
    or escaped and will shift the columns of that row.
    """
    lines = [",".join(CSV_COLUMNS)]
    for r in records:
        lines.append(",".join([
            str(r.id if r.id is not None else ""),
            r.created_at.date().isoformat(),
            r.staff_name or "",
            r.client_location or "",
            plain_amount(r.amount),
            r.status.value,
        ]))
    return "\n".join(lines) + "\n"


def write_records_csv(records: Iterable[ReimbursementRecord], out_csv: Path):
    """Write records to a CSV file."""
    with out_csv.open("w", newline="", encoding="utf-8") as f:
        f.write(records_to_csv(records))


def build_snapshot_pdf(snapshot: ReportSnapshot, out_pdf: Path):
    """Build a one-document PDF of a period report."""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas
    from reportlab.lib.units import inch

    c = canvas.Canvas(out_pdf.as_posix(), pagesize=letter)
    width, height = letter

    def new_page_if_needed(y):
        if y < 1.2 * inch:
            c.showPage()
            c.setFont("Helvetica", 10)
            return height - 1 * inch
        return y

    # Title
    y = height - 1 * inch
    c.setFont("Helvetica-Bold", 16)
    c.drawString(1 * inch, y, snapshot.title)
    y -= 0.3 * inch
    c.setFont("Helvetica", 10)
    c.drawString(1 * inch, y, f"Date Range: {us_date(snapshot.range_start.date())} - "
                              f"{us_date(snapshot.range_end.date())}")
    y -= 0.2 * inch
    timestamp = dt.datetime.now().isoformat(timespec='seconds')
    c.drawString(1 * inch, y, f"Generated: {timestamp}")
    y -= 0.4 * inch

    # Executive summary
    c.setFont("Helvetica-Bold", 12)
    c.drawString(1 * inch, y, "Executive Summary")
    y -= 0.25 * inch
    c.setFont("Helvetica", 10)
    for label, value in snapshot_table(snapshot).rows[:4]:
        c.drawString(1.1 * inch, y, label)
        c.drawRightString(7.5 * inch, y, value)
        y -= 0.2 * inch

    sections: List = [("Top Spenders (Staff)", snapshot.staff_ranking),
                      ("Spending by Location", snapshot.location_ranking)]
    for heading, ranking in sections:
        y -= 0.2 * inch
        y = new_page_if_needed(y)
        c.setFont("Helvetica-Bold", 12)
        c.drawString(1 * inch, y, heading)
        y -= 0.25 * inch
        c.setFont("Helvetica", 10)
        for i, t in enumerate(ranking, 1):
            c.drawString(1.1 * inch, y, f"{i}. {(t.name or 'N/A')[:60]}")
            c.drawRightString(7.5 * inch, y, money_fmt(t.total))
            y -= 0.2 * inch
            y = new_page_if_needed(y)

    c.showPage()
    c.save()
