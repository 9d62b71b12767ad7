import datetime as dt
import random
from decimal import Decimal

import pytest

from reimbursement_audit.core.models import ReportKind, RecordStatus, CopyStatus, EditMode
from reimbursement_audit.core.reporting import build_snapshot, build_banking_log, build_end_of_day
from reimbursement_audit.core.export import (records_to_csv, write_records_csv, render_markdown,
                                             to_rich_table, to_flat_table, schedule_table,
                                             build_payload, copy_payload, ReportBuffer,
                                             ClipboardUnsupported, Table)

from conftest import make_record

DAY = dt.date(2025, 5, 14)


class FakeClipboard:
    def __init__(self, rich=True, text=True):
        self.rich, self.text = rich, text
        self.written = None

    def write_rich(self, html, text):
        if not self.rich:
            raise ClipboardUnsupported("no html")
        self.written = ("rich", html, text)

    def write_text(self, text):
        if not self.text:
            raise ClipboardUnsupported("no clipboard")
        self.written = ("text", text)


def day_records():
    return [
        make_record("SMITH, JANE", "45.50", dt.datetime(2025, 5, 14, 9, 0), id=1),
        make_record("LEE, TOM", "120.00", dt.datetime(2025, 5, 14, 10, 0), location="Oak Street",
                    reference="NAB77", status=RecordStatus.PAID, id=2),
    ]


def test_records_to_csv():
    csv_text = records_to_csv(day_records())
    lines = csv_text.splitlines()

    assert lines[0] == "id,date,staff,location,amount,status"
    assert lines[2] == "2,2025-05-14,LEE, TOM,Oak Street,120.00,PAID"
    assert csv_text.endswith("\n")


def test_write_records_csv(tmp_path):
    out = tmp_path / "records.csv"
    write_records_csv(day_records(), out)
    assert out.read_text(encoding="utf-8") == records_to_csv(day_records())


def test_rich_table_is_styled_and_escaped():
    html = to_rich_table(Table(["Name", "Amount"], [["<b>A&B</b>", "$1.00"]], right_align=(1,)))

    assert "Calibri" in html and "11pt" in html
    assert "1px solid #000000" in html
    assert "&lt;b&gt;A&amp;B&lt;/b&gt;" in html
    assert "text-align: right;" in html


def test_flat_table():
    assert to_flat_table(Table(["A", "B"], [["1", "2"]])) == "A\tB\n1\t2"


def test_schedule_table_rows():
    report = build_end_of_day(day_records(), DAY, rng=random.Random(5))
    table = schedule_table(report)

    assert table.rows[0][0] == "07:00"
    assert table.rows[-1][2] == "IDLE"
    assert table.rows[-1][1] == "15:00"
    assert table.rows[1][6] == "Paid to Nab [NAB77]"


def test_render_markdown_variants(now):
    snap = build_snapshot(day_records(), ReportKind.WEEKLY, now=now)
    text = render_markdown(snap)
    assert text.startswith("# WEEKLY EXPENSE REPORT")
    assert "**$165.50**" in text
    assert "| 1 | LEE, TOM | $120.00 |" in text

    empty = render_markdown(build_snapshot([], ReportKind.YEARLY, now=now))
    assert "YEARLY EXPENSE REPORT (YTD)" in empty
    assert "No data for this period." in empty

    banking = render_markdown(build_banking_log(day_records(), DAY))
    assert "PENDING AUTHORIZATION (1)" in banking
    assert "**Total Processed: $120.00**" in banking

    with pytest.raises(TypeError):
        render_markdown("not a report")


def test_report_buffer_edit_commit_discard():
    buf = ReportBuffer("canonical")
    with pytest.raises(RuntimeError):
        buf.set_text("x")

    buf.begin_edit()
    buf.set_text("draft")
    assert buf.mode == EditMode.EDITING
    assert buf.text == "draft"
    assert buf.canonical == "canonical"

    assert buf.discard() == "canonical"
    assert buf.text == "canonical"

    buf.begin_edit()
    buf.set_text("edited")
    assert buf.commit() == "edited"
    assert buf.mode == EditMode.VIEWING


def test_payload_uses_committed_preview_without_touching_report(now):
    snap = build_snapshot(day_records(), ReportKind.WEEKLY, now=now)
    buf = ReportBuffer(render_markdown(snap))
    buf.begin_edit()
    buf.set_text("my notes")
    buf.commit()

    payload = build_payload(snap, buf)

    assert payload.text == "my notes"
    assert "$165.50" in payload.html
    assert snap.total_spend == Decimal("165.50")


def test_payload_for_no_data_is_preformatted(now):
    payload = build_payload(build_snapshot([], ReportKind.WEEKLY, now=now))
    assert payload.html.startswith("<pre>")
    assert "No data for this period." in payload.text


def test_copy_rich():
    clip = FakeClipboard()
    payload = build_payload(build_banking_log(day_records(), DAY))

    assert copy_payload(payload, clip) == CopyStatus.COPIED
    assert clip.written[0] == "rich"
    assert "NAB77" in clip.written[1]


def test_copy_falls_back_to_plain_text():
    clip = FakeClipboard(rich=False)
    payload = build_payload(build_banking_log(day_records(), DAY))

    assert copy_payload(payload, clip) == CopyStatus.FALLBACK_COPIED
    assert clip.written == ("text", payload.text)
    assert payload.text.startswith("Date\tStaff Member\tNAB CODE\tAmount")


def test_copy_fails_when_nothing_is_supported():
    clip = FakeClipboard(rich=False, text=False)
    payload = build_payload(build_banking_log(day_records(), DAY))
    assert copy_payload(payload, clip) == CopyStatus.FAILED


def test_snapshot_pdf(tmp_path, now):
    from reimbursement_audit.core.export import build_snapshot_pdf

    out = tmp_path / "weekly.pdf"
    build_snapshot_pdf(build_snapshot(day_records(), ReportKind.WEEKLY, now=now), out)
    assert out.read_bytes().startswith(b"%PDF")
