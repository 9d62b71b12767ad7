#!/usr/bin/env python3
"""
Main CLI entrypoint for the reimbursement audit tool.
"""

import argparse
import datetime as dt
import mimetypes
import os
import random
import sys
from pathlib import Path

from reimbursement_audit.core.models import Attachment, ReportKind, NoData, ReportSnapshot, SaveStatus
from reimbursement_audit.core.policy import load_policy
from reimbursement_audit.core.database import SQLiteRecordStore, RecordStoreError
from reimbursement_audit.core.processor import AuditSession
from reimbursement_audit.core.reporting import ReportingEngine, filter_records, PERIOD_KINDS
from reimbursement_audit.core.export import (render_markdown, build_payload, build_snapshot_pdf,
                                             write_records_csv)
from reimbursement_audit.core.utils import money_fmt, slugify

LLM_PROVIDERS = ["openai", "anthropic", "azure-openai"]
REPORT_FORMATS = ["markdown", "html", "tsv", "pdf"]


def load_attachment(path: Path) -> Attachment:
    """Read an upload from disk, guessing its MIME type from the extension."""
    mime_type, _ = mimetypes.guess_type(path.name)
    return Attachment(mime_type=mime_type or "application/octet-stream",
                      data=path.read_bytes(), name=path.name)


def parse_day(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected a date as YYYY-MM-DD, got {value!r}")


def emit_report(report, fmt: str, out: Path = None) -> int:
    """Render a report and print it or write it to ``out``."""
    if isinstance(report, NoData):
        print(f"[INFO] {report.message}")

    if fmt == "pdf":
        if not isinstance(report, ReportSnapshot):
            print("[ERROR] PDF download is only available for weekly/monthly/quarterly/yearly reports with data")
            return 1
        if out is None:
            out = Path(f"{slugify(report.title)}.pdf")
        build_snapshot_pdf(report, out)
        print(f"[OK] Wrote {out}")
        return 0

    if fmt == "markdown":
        text = render_markdown(report)
    elif fmt == "html":
        text = build_payload(report).html
    else:
        text = build_payload(report).text

    if out is None:
        print(text)
    else:
        out.write_text(text + "\n", encoding="utf-8")
        print(f"[OK] Wrote {out}")
    return 0


def cmd_audit(args, store, policy) -> int:
    llm_provider = args.llm_provider or os.getenv("LLM_PROVIDER", "openai")
    if llm_provider not in LLM_PROVIDERS:
        print(f"[ERROR] Invalid LLM provider: {llm_provider}")
        print(f"[ERROR] Must be one of: {', '.join(LLM_PROVIDERS)}")
        return 1
    llm_model = args.llm_model or os.getenv("LLM_MODEL")
    llm_fallback_model = args.llm_fallback_model or os.getenv("LLM_FALLBACK_MODEL")

    session = AuditSession(store, policy=policy, verbose=args.verbose,
                           llm_provider=llm_provider, llm_model=llm_model,
                           llm_fallback_model=llm_fallback_model)

    if args.analysis:
        text = Path(args.analysis).read_text(encoding="utf-8")
        print(f"[INFO] Loading saved analysis: {args.analysis}")
        result = session.load_analysis(text, processing_date=args.date)
    else:
        if not args.receipts:
            print("[ERROR] Provide receipt files or --analysis")
            return 1
        missing = [p for p in args.receipts + ([args.form] if args.form else []) if not Path(p).exists()]
        if missing:
            print(f"[ERROR] File(s) not found: {', '.join(missing)}")
            return 1
        print(f"[INFO] LLM: {llm_provider} ({llm_model or 'default'})")
        receipts = [load_attachment(Path(p)) for p in args.receipts]
        form = load_attachment(Path(args.form)) if args.form else None
        result = session.run(receipts, form, processing_date=args.date)
        if result is None:
            return 1

    raw = session.raw
    for title, body in (("RECEIPT ANALYSIS", raw.phase1), ("FORM DATA", raw.phase2),
                        ("AUDIT", raw.phase3)):
        if body:
            print(f"\n=== {title} ===\n{body}")

    flags = result.flags
    print(f"\n=== DECISION ===")
    print(f"Disposition: {result.disposition.value}")
    print(f"Final amount: {money_fmt(result.final_amount) or '(none)'}")
    print(f"Flags: duplicate={flags.duplicate} amount_escalation={flags.escalate_amount} "
          f"age_escalation={flags.escalate_age}")

    if args.reference:
        for i in range(len(session.registry)):
            session.update_reference(i, args.reference)

    print(f"\n=== EMAIL ===\n{session.registry.document}")
    for tx in session.registry:
        print(f"[INFO] Payment: {tx.formatted_name} {money_fmt(tx.amount)} ref {tx.current_reference}")

    if args.save:
        if not len(session.registry):
            print("[ERROR] Nothing to save")
            return 1
        if not session.registry.has_concrete_references():
            print("[INFO] No bank reference entered; saving as PENDING")
        status = session.save(force=args.force, allow_discrepancy=args.allow_discrepancy)
        return 0 if status == SaveStatus.SAVED else 1
    return 0


def cmd_report(args, store, policy) -> int:
    engine = ReportingEngine(store, policy)
    return emit_report(engine.snapshot(ReportKind(args.kind)), args.format, args.out)


def cmd_banking(args, store, policy) -> int:
    engine = ReportingEngine(store, policy)
    return emit_report(engine.banking_log(args.date), args.format, args.out)


def cmd_eod(args, store, policy) -> int:
    engine = ReportingEngine(store, policy)
    rng = random.Random(args.seed) if args.seed is not None else None
    return emit_report(engine.end_of_day(args.date, rng=rng), args.format, args.out)


def cmd_export_csv(args, store, policy) -> int:
    records = filter_records(store.list_all(), args.search)
    write_records_csv(records, args.out)
    print(f"[OK] Wrote {len(records)} record(s) to {args.out}")
    return 0


def cmd_mark_paid(args, store, policy) -> int:
    record = store.mark_paid(args.id, args.reference)
    print(f"[OK] #{record.id} {record.staff_name} {money_fmt(record.amount)} marked PAID ({record.reference})")
    return 0


def cmd_delete(args, store, policy) -> int:
    removed = store.bulk_delete(args.ids)
    if removed < len(set(args.ids)):
        print(f"[WARN] {len(set(args.ids)) - removed} id(s) not found")
    print(f"[OK] Deleted {removed} record(s)")
    return 0


def add_output_args(p, default_format="markdown"):
    p.add_argument("--format", choices=REPORT_FORMATS, default=default_format,
                   help=f"Output format (default: {default_format})")
    p.add_argument("--out", type=Path,
                   help="Write to this file instead of stdout (pdf default: <report-title>.pdf)")


def main():
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Audit staff reimbursement claims and produce finance reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Audit receipts against a claim form and save with the bank reference
  reimbursement-audit audit receipt1.jpg receipt2.pdf --form claim.pdf --reference NAB123 --save

  # Re-audit a saved extraction response without calling the LLM
  reimbursement-audit audit --analysis response.txt

  # Month-to-date report as a PDF
  reimbursement-audit report monthly --format pdf --out monthly.pdf

  # Today's end-of-day schedule as a paste-ready HTML table
  reimbursement-audit eod --format html --seed 7
        """
    )
    parser.add_argument("--db", type=Path,
                        help="SQLite database (default: ./reimbursements.sqlite, or AUDIT_DB env var)")
    parser.add_argument("--policy", type=Path, default=Path("./policy.json"),
                        help="policy.json with threshold/schedule overrides (default: ./policy.json)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show detailed parsing information for debugging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("audit", help="Audit one claim")
    p.add_argument("receipts", nargs="*", help="Receipt files (images, PDF, xlsx, csv, docx)")
    p.add_argument("--form", help="Reimbursement form file")
    p.add_argument("--analysis", help="Audit a saved extraction response instead of calling the LLM")
    p.add_argument("--date", type=parse_day, help="Processing date, YYYY-MM-DD (default: today)")
    p.add_argument("--reference", help="Bank settlement reference to fill into the email")
    p.add_argument("--save", action="store_true", help="Save the reviewed transaction(s)")
    p.add_argument("--force", action="store_true", help="Save even if flagged as a duplicate")
    p.add_argument("--allow-discrepancy", action="store_true",
                   help="Save a critical discrepancy as PENDING instead of holding it back")
    p.add_argument("--llm-provider", choices=LLM_PROVIDERS,
                   help="LLM provider to use (default: openai, or LLM_PROVIDER env var)")
    p.add_argument("--llm-model",
                   help="LLM model to use (uses provider default if not specified, or LLM_MODEL env var)")
    p.add_argument("--llm-fallback-model",
                   help="Model tried if the primary fails (or LLM_FALLBACK_MODEL env var)")
    p.set_defaults(func=cmd_audit)

    p = sub.add_parser("report", help="Period expense report")
    p.add_argument("kind", choices=[k.value for k in PERIOD_KINDS])
    add_output_args(p)
    p.set_defaults(func=cmd_report)

    p = sub.add_parser("banking", help="Daily banking log")
    p.add_argument("--date", type=parse_day, help="Day, YYYY-MM-DD (default: today)")
    add_output_args(p)
    p.set_defaults(func=cmd_banking)

    p = sub.add_parser("eod", help="End-of-day activity schedule")
    p.add_argument("--date", type=parse_day, help="Day, YYYY-MM-DD (default: today)")
    p.add_argument("--seed", type=int, help="Seed for block durations (reproducible schedule)")
    add_output_args(p)
    p.set_defaults(func=cmd_eod)

    p = sub.add_parser("export-csv", help="Export records to CSV")
    p.add_argument("--out", type=Path, default=Path("./reimbursements.csv"),
                   help="CSV file (default: ./reimbursements.csv)")
    p.add_argument("--search", default="", help="Only records matching this text")
    p.set_defaults(func=cmd_export_csv)

    p = sub.add_parser("mark-paid", help="Record a bank reference and mark a record PAID")
    p.add_argument("id", type=int)
    p.add_argument("reference")
    p.set_defaults(func=cmd_mark_paid)

    p = sub.add_parser("delete", help="Delete records by id")
    p.add_argument("ids", type=int, nargs="+")
    p.set_defaults(func=cmd_delete)

    args = parser.parse_args()

    db_path = args.db or Path(os.getenv("AUDIT_DB", "./reimbursements.sqlite"))
    try:
        policy = load_policy(args.policy)
    except ValueError as e:
        print(f"[ERROR] Invalid policy file {args.policy}: {e}")
        return 1
    if args.verbose:
        print(f"  [DEBUG] Database: {db_path}")
        print(f"  [DEBUG] Amount threshold: {money_fmt(policy.amount_threshold)}, "
              f"age limit: {policy.age_limit_days} days")

    try:
        store = SQLiteRecordStore(db_path)
        return args.func(args, store, policy)
    except (RecordStoreError, ValueError, KeyError, IndexError) as e:
        print(f"[ERROR] {e.args[0] if e.args else e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
