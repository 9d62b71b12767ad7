"""
Audit session orchestration: extraction, parsing, reconciliation, review and save.
"""

import datetime as dt
from typing import Callable, List, Optional

from .models import (Attachment, AuditEvidence, Disposition, ProcessingState, RawAnalysis,
                     ReconciliationResult, RecordStatus, ReimbursementRecord, SaveStatus,
                     Transaction)
from .policy import AuditPolicy, DEFAULT_POLICY
from .parsers import parse_sections, parse_evidence, parse_transactions, format_payee_name
from .reconciliation import ReconciliationEngine
from .registry import TransactionRegistry
from .emails import render_decision_email
from .extraction import analyze_reimbursement, ExtractionError
from .database import RecordStoreError
from .utils import money_fmt

# ANSI color codes
YELLOW = '\033[93m'
RED = '\033[91m'
BOLD = '\033[1m'
RESET = '\033[0m'


class AuditSession:
    """One reviewer's audit session: a claim at a time, persisted on confirm."""

    def __init__(self, store, policy: AuditPolicy = DEFAULT_POLICY,
                 verbose: bool = False,
                 llm_provider: str = "openai",
                 llm_model: Optional[str] = None,
                 llm_fallback_model: Optional[str] = None,
                 extractor: Callable[..., str] = analyze_reimbursement):
        """
        Initialize audit session.

        Args:
            store: Record store (``create`` and ``list_all``)
            policy: Audit thresholds and sentinels
            verbose: Whether to show verbose debugging output
            llm_provider: LLM provider to use ("openai", "anthropic", "azure-openai") - default: openai
            llm_model: Primary model name (uses provider default if not specified)
            llm_fallback_model: Model tried when the primary call fails
            extractor: Extraction collaborator (replaceable in tests)
        """
        self.store = store
        self.policy = policy
        self.verbose = verbose
        self.llm_provider = llm_provider
        self.llm_model = llm_model
        self.llm_fallback_model = llm_fallback_model
        self.extractor = extractor

        self.engine = ReconciliationEngine(policy)
        self.registry = TransactionRegistry(policy)
        self.records: List[ReimbursementRecord] = []
        self.reset()

    def reset(self):
        """Drop the claim in progress. The duplicate ledger is kept for the session."""
        self.state = ProcessingState.IDLE
        self.save_status = SaveStatus.IDLE
        self.raw: Optional[RawAnalysis] = None
        self.evidence: Optional[AuditEvidence] = None
        self.result: Optional[ReconciliationResult] = None
        self.error_message = ""
        self.registry.clear()

    def _begin(self):
        if self.state == ProcessingState.PROCESSING:
            raise RuntimeError("An audit is already being processed")
        self.reset()
        self.state = ProcessingState.PROCESSING

    def _fail(self, message: str):
        self.state = ProcessingState.ERROR
        self.error_message = message
        print(f"{RED}[ERROR] {message}{RESET}")

    def run(self, receipts: List[Attachment], form: Optional[Attachment] = None,
            processing_date: Optional[dt.date] = None) -> Optional[ReconciliationResult]:
        """
        Send the uploads through extraction and audit the response.

        Returns:
            ReconciliationResult, or None when extraction failed (see ``error_message``)
        """
        self._begin()
        print(f"[INFO] Auditing {len(receipts)} receipt file(s)"
              f"{' with form' if form is not None else ' without form'}")
        try:
            text = self.extractor(receipts, form,
                                  provider=self.llm_provider,
                                  model=self.llm_model,
                                  fallback_model=self.llm_fallback_model,
                                  categories=self.policy.categories,
                                  escalation_contact=self.policy.escalation_contact,
                                  verbose=self.verbose)
            return self._analyze(text, processing_date)
        except ExtractionError as e:
            self._fail(f"Extraction failed: {e}")
            return None
        except Exception as e:
            self._fail(f"Audit failed: {e}")
            raise

    def load_analysis(self, text: str,
                      processing_date: Optional[dt.date] = None) -> ReconciliationResult:
        """Audit an extraction response that is already in hand."""
        self._begin()
        try:
            return self._analyze(text, processing_date)
        except Exception as e:
            self._fail(f"Audit failed: {e}")
            raise

    def _proposals(self, raw: RawAnalysis, evidence: AuditEvidence,
                   result: ReconciliationResult, document: str) -> List[Transaction]:
        """Payment proposals carrying the reconciled amount and the decision email."""
        transactions = parse_transactions(raw.phase4)
        if not transactions and result.final_amount is not None:
            transactions = [Transaction(format_payee_name(evidence.staff_name), result.final_amount,
                                        self.policy.pending_reference, document)]
        for tx in transactions:
            if result.final_amount is not None:
                tx.amount = result.final_amount
            tx.source_text = document
        return transactions

    def _analyze(self, text: str, processing_date: Optional[dt.date]) -> ReconciliationResult:
        raw = parse_sections(text)
        if raw.missing_phases:
            print(f"[WARN] Response is missing section(s): {', '.join(raw.missing_phases)}")

        evidence = parse_evidence(raw)
        result = self.engine.evaluate_evidence(evidence, processing_date)
        document = render_decision_email(result, evidence, raw, self.policy)
        self.registry.replace_all(self._proposals(raw, evidence, result, document), document=document)

        self.raw, self.evidence, self.result = raw, evidence, result
        self.state = ProcessingState.COMPLETE

        if self.verbose:
            print(f"  [DEBUG] Form amount: {money_fmt(evidence.form_amount) or '(none)'}")
            print(f"  [DEBUG] Receipt amount: {money_fmt(evidence.receipt_amount) or '(none)'}")
            print(f"  [DEBUG] Receipt date: {evidence.receipt_date or '(unknown)'}")
            print(f"  [DEBUG] Store: {evidence.store_name or '(unknown)'}")
        print(f"[INFO] Decision: {result.disposition.value} "
              f"({money_fmt(result.final_amount) or 'no amount'})")
        if result.flags.duplicate:
            print(f"{YELLOW}{BOLD}[WARN] Receipt already processed this session: "
                  f"{evidence.store_name or '(unknown store)'} | {evidence.receipt_date or '?'} | "
                  f"{money_fmt(evidence.receipt_amount or evidence.form_amount)}{RESET}")
        if not len(self.registry):
            print("[WARN] No payable amount found")
        return result

    def update_reference(self, index: int, reference: str):
        """Enter the bank settlement reference for one proposed payment."""
        return self.registry.update_field(index, "current_reference", reference)

    def build_records(self, now: Optional[dt.datetime] = None) -> List[ReimbursementRecord]:
        """
        Turn the reviewed working set into records ready to persist.

        Only a standard confirmation with a real reference is saved as PAID;
        escalated and discrepant claims stay PENDING until approved.
        """
        now = now or dt.datetime.now()
        evidence = self.evidence or AuditEvidence()
        confirmed = (self.result is not None
                     and self.result.disposition == Disposition.STANDARD_CONFIRMATION)
        records = []
        for tx in self.registry:
            settled = confirmed and not self.policy.is_placeholder_reference(tx.current_reference)
            records.append(ReimbursementRecord(
                staff_name=tx.formatted_name,
                amount=tx.amount,
                status=RecordStatus.PAID if settled else RecordStatus.PENDING,
                reference=tx.current_reference,
                client_location=evidence.client_location or "N/A",
                category=self.policy.normalize_category(evidence.category),
                receipt_date=evidence.receipt_date,
                created_at=now,
                raw_text=tx.source_text,
            ))
        return records

    def save(self, force: bool = False, allow_discrepancy: bool = False,
             now: Optional[dt.datetime] = None) -> SaveStatus:
        """
        Persist the working set.

        A claim flagged as a duplicate is held back (``SaveStatus.DUPLICATE``)
        unless ``force`` is set; a critical discrepancy is held back
        (``SaveStatus.DISCREPANCY``) unless ``allow_discrepancy`` is set. On a
        store failure the transactions already written leave the working set
        and the rest stay for another attempt.
        """
        if self.state != ProcessingState.COMPLETE or not len(self.registry):
            raise RuntimeError("Nothing to save: no audited transactions in progress")

        if (self.result is not None and self.result.disposition == Disposition.CRITICAL_DISCREPANCY
                and not allow_discrepancy):
            self.save_status = SaveStatus.DISCREPANCY
            print(f"{YELLOW}[WARN] Not saved: critical discrepancy, the claim must be resubmitted{RESET}")
            return self.save_status

        if self.result is not None and self.result.flags.duplicate and not force:
            self.save_status = SaveStatus.DUPLICATE
            print(f"{YELLOW}[WARN] Not saved: duplicate receipt (use --force to save anyway){RESET}")
            return self.save_status

        self.save_status = SaveStatus.SAVING
        pending = list(zip(self.registry.transactions, self.build_records(now)))
        saved = []
        for tx, record in pending:
            try:
                record.id = self.store.create(record)
            except RecordStoreError as e:
                remaining = [t for t, _ in pending[len(saved):]]
                self.registry.replace_all(remaining)
                self.save_status = SaveStatus.ERROR
                self.error_message = str(e)
                print(f"{RED}[ERROR] {e}{RESET}")
                if saved:
                    print(f"[WARN] {len(saved)} of {len(pending)} transaction(s) were saved before the failure")
                return self.save_status
            saved.append(record)

        for record in saved:
            print(f"[OK] Saved #{record.id}: {record.staff_name} {money_fmt(record.amount)} "
                  f"[{record.status.value}]")
        self.reset()
        self.save_status = SaveStatus.SAVED
        try:
            self.records = self.store.list_all()
        except RecordStoreError as e:
            self.error_message = str(e)
            print(f"[WARN] Saved, but the record list could not be refreshed: {e}")
        return self.save_status
