"""
Reimbursement Audit

Audits staff reimbursement claims against receipt evidence, keeps a ledger
of confirmed payments and produces finance reports for paste or download.
"""

__version__ = "1.0.0"
__author__ = "Reimbursement Audit Contributors"

from reimbursement_audit.core.models import ReimbursementRecord
from reimbursement_audit.core.processor import AuditSession

__all__ = ["ReimbursementRecord", "AuditSession"]
