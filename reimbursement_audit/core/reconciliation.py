"""
Reconciliation of claimed (form) amounts against receipt evidence.

The decision is a pure function of the form amount, the receipt amount, the
receipt date and the set of receipt fingerprints already seen this session:

1. Amount resolution: the payout is never more than requested and never more
   than proven, so the lower of the two amounts wins. Missing receipt
   evidence skips resolution and forces a critical discrepancy.
2. Duplicate check on (store, date, amount).
3. Amount escalation when the final amount is strictly above the threshold.
4. Age escalation when the receipt is strictly older than the age limit.
5. Disposition: discrepancy > escalation > standard confirmation. A
   duplicate is reported alongside the disposition and never replaces it.
"""

import datetime as dt
from decimal import Decimal
from typing import AbstractSet, Optional, Set

from .models import Disposition, ReconciliationFlags, ReconciliationResult, AuditEvidence
from .policy import AuditPolicy, DEFAULT_POLICY
from .utils import compute_receipt_fingerprint, normalize_amount


def resolve_amount(form_amount: Optional[Decimal],
                   receipt_amount: Optional[Decimal]) -> Optional[Decimal]:
    """Pick the payable amount; always one of the two inputs."""
    if receipt_amount is None:
        return form_amount
    if form_amount is None:
        return receipt_amount
    if receipt_amount > form_amount:
        return form_amount
    return receipt_amount


def receipt_fingerprint(store: Optional[str], receipt_date: Optional[dt.date],
                        amount: Optional[Decimal]) -> str:
    date_str = receipt_date.isoformat() if receipt_date else None
    return compute_receipt_fingerprint(store, date_str, normalize_amount(amount))


def reconcile(form_amount: Optional[Decimal],
              receipt_amount: Optional[Decimal],
              receipt_date: Optional[dt.date],
              seen_triples: AbstractSet[str] = frozenset(),
              *,
              store: Optional[str] = None,
              processing_date: Optional[dt.date] = None,
              policy: AuditPolicy = DEFAULT_POLICY) -> ReconciliationResult:
    """
    Decide the payable amount and disposition for one claim.

    Args:
        form_amount: Amount requested on the reimbursement form (None if no form)
        receipt_amount: Amount proven by the receipts (None if missing/illegible/unrelated)
        receipt_date: Purchase date on the receipt (None if unknown)
        seen_triples: Fingerprints of (store, date, amount) already processed this session
        store: Store name on the receipt, part of the duplicate key
        processing_date: Date the claim is processed (default: today)
        policy: Thresholds to apply

    Returns:
        ReconciliationResult; insufficient input yields CRITICAL_DISCREPANCY, never an exception
    """
    processing_date = processing_date or dt.date.today()
    form_amount = normalize_amount(form_amount)
    receipt_amount = normalize_amount(receipt_amount)

    insufficient = receipt_amount is None
    final_amount = resolve_amount(form_amount, receipt_amount)

    dup_amount = receipt_amount if receipt_amount is not None else form_amount
    fingerprint = receipt_fingerprint(store, receipt_date, dup_amount)
    duplicate = fingerprint in seen_triples

    escalate_amount = (not insufficient and final_amount is not None
                       and final_amount > policy.amount_threshold)
    escalate_age = (receipt_date is not None
                    and (processing_date - receipt_date).days > policy.age_limit_days)

    if insufficient:
        disposition = Disposition.CRITICAL_DISCREPANCY
    elif escalate_amount or escalate_age:
        disposition = Disposition.ESCALATION
    else:
        disposition = Disposition.STANDARD_CONFIRMATION

    return ReconciliationResult(
        final_amount=final_amount,
        disposition=disposition,
        flags=ReconciliationFlags(
            duplicate=duplicate,
            escalate_amount=escalate_amount,
            escalate_age=escalate_age,
        ),
        fingerprint=fingerprint,
    )


class ReconciliationEngine:
    """Applies ``reconcile`` while remembering the receipts seen this session."""

    def __init__(self, policy: AuditPolicy = DEFAULT_POLICY):
        self.policy = policy
        self._seen: Set[str] = set()

    @property
    def seen(self) -> AbstractSet[str]:
        return frozenset(self._seen)

    def evaluate(self, form_amount: Optional[Decimal],
                 receipt_amount: Optional[Decimal],
                 receipt_date: Optional[dt.date],
                 store: Optional[str] = None,
                 processing_date: Optional[dt.date] = None) -> ReconciliationResult:
        """Reconcile one claim and register its receipt for later duplicate checks."""
        result = reconcile(form_amount, receipt_amount, receipt_date,
                           seen_triples=self.seen, store=store,
                           processing_date=processing_date, policy=self.policy)
        self._seen.add(result.fingerprint)
        return result

    def evaluate_evidence(self, evidence: AuditEvidence,
                          processing_date: Optional[dt.date] = None) -> ReconciliationResult:
        return self.evaluate(evidence.form_amount, evidence.receipt_amount,
                             evidence.receipt_date, store=evidence.store_name,
                             processing_date=processing_date)

    def clear(self):
        """Forget every receipt seen (session restart)."""
        self._seen.clear()
