"""
Decision emails rendered from the reconciliation outcome.

One template per disposition: a resubmit request for a critical discrepancy,
a success confirmation carrying the bank reference placeholder, and an
approval request to the escalation contact.
"""

from typing import List, Optional

from .models import AuditEvidence, Disposition, RawAnalysis, ReconciliationResult
from .policy import AuditPolicy, DEFAULT_POLICY
from .utils import money_fmt

DISCREPANCY_TEMPLATE = """Hi {first_name},

I hope you are having a good day.

I am writing to inform you that a discrepancy was found during the audit of your reimbursement request.

**Staff Member:** {staff}
**Client / Location:** {location}
**Amount:** {amount}

**Amount on Form:** {form_amount}
**Amount on Receipt:** {receipt_amount}

The receipts are missing, illegible or do not relate to this claim, so the amount could not be verified.
{duplicate_note}
Here is the full breakdown of the items analyzed from your receipts:

{itemization}

Please update the reimbursement form and resubmit it so we can finalize the processing."""

SUCCESS_TEMPLATE = """Hi {first_name},

I hope this message finds you well.

I am writing to confirm that your reimbursement request has been successfully processed today.

**Staff Member:** {staff}
**Client / Location:** {location}
**Amount:** {amount}
**Receipt ID:** {receipt_id}
{reference_line}
{duplicate_note}
{itemization}

**TOTAL AMOUNT: {amount}**

{summary}"""

ESCALATION_TEMPLATE = """Hi {contact},

I hope you are well.

The reimbursement request below needs your approval before it can be paid: {reasons}.

**Staff Member:** {staff}
**Client / Location:** {location}
**Amount:** {amount}
**Receipt ID:** {receipt_id}
**Receipt Date:** {receipt_date}
{duplicate_note}
{summary}

Please let me know if it can be processed."""

NO_ITEMS = "_No items could be read from the receipts._"


def table_blocks(text: str) -> List[str]:
    """Consecutive markdown table lines, one string per table."""
    blocks, current = [], []
    for line in (text or "").splitlines():
        if line.strip().startswith("|"):
            current.append(line.strip())
        elif current:
            blocks.append("\n".join(current))
            current = []
    if current:
        blocks.append("\n".join(current))
    return blocks


def first_name(staff: Optional[str]) -> str:
    """First name from a "Last, First" staff name."""
    staff = (staff or "").strip()
    if "," in staff:
        staff = staff.split(",", 1)[1]
    parts = staff.split()
    return parts[0].title() if parts else "there"


def escalation_reasons(result: ReconciliationResult, policy: AuditPolicy = DEFAULT_POLICY) -> List[str]:
    reasons = []
    if result.flags.escalate_amount:
        reasons.append(f"the amount is over {money_fmt(policy.amount_threshold)}")
    if result.flags.escalate_age:
        reasons.append(f"the receipt is over {policy.age_limit_days} days old")
    return reasons


def render_decision_email(result: ReconciliationResult, evidence: AuditEvidence,
                          raw: Optional[RawAnalysis] = None,
                          policy: AuditPolicy = DEFAULT_POLICY) -> str:
    """Build the email for the claim's disposition."""
    tables = table_blocks(raw.phase1 if raw else "")
    duplicate_note = ""
    if result.flags.duplicate:
        duplicate_note = ("\n**Note:** a receipt with the same store, date and amount "
                          "was already processed this session.\n")

    values = dict(
        first_name=first_name(evidence.staff_name),
        staff=evidence.staff_name or "N/A",
        location=evidence.client_location or "N/A",
        amount=money_fmt(result.final_amount) or "N/A",
        form_amount=money_fmt(evidence.form_amount) or "N/A",
        receipt_amount=money_fmt(evidence.receipt_amount) or "N/A",
        receipt_id=evidence.receipt_id or "N/A",
        receipt_date=evidence.receipt_date.strftime("%m/%d/%Y") if evidence.receipt_date else "Unknown",
        itemization=tables[0] if tables else NO_ITEMS,
        summary=tables[1] if len(tables) > 1 else "",
        reference_line=policy.reference_placeholder,
        contact=policy.escalation_contact,
        reasons=" and ".join(escalation_reasons(result, policy)),
        duplicate_note=duplicate_note,
    )

    if result.disposition == Disposition.CRITICAL_DISCREPANCY:
        template = DISCREPANCY_TEMPLATE
    elif result.disposition == Disposition.ESCALATION:
        template = ESCALATION_TEMPLATE
    else:
        template = SUCCESS_TEMPLATE
    return template.format(**values).strip()
