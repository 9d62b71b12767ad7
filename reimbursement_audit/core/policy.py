"""
Financial policy configuration for the audit rules and reports.
"""

import json
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .utils import parse_clock

EXPENSE_CATEGORIES = [
    "Activities/incentive", "Groceries", "Other Expenses-Activity",
    "Other Expenses-Appliances", "Other Expenses-Clothing",
    "Other Expenses-Family Contact", "Other Expenses-Food",
    "Other Expenses-Haircut", "Other Expenses-Home Improvement",
    "Other Expenses-Medication", "Other Expenses-Mobile",
    "Other Expenses-Parking", "Other Expenses-Phone",
    "Other Expenses-School Supplies", "Other Expenses-Shopping",
    "Other Expenses-Sports", "Other Expenses-Toy",
    "Other Expenses-Transportation", "Pocket Money", "Takeaway",
    "Other Expenses-Office Supplies", "Other Expenses-School Holiday",
    "Other Expenses-Approved by DCJ", "Other Expenses-Petty Cash",
    "Other Expenses-School Activity",
]


@dataclass(frozen=True)
class AuditPolicy:
    """
    The fixed reimbursement policy.

    Thresholds are strict: a claim escalates only when the final amount is
    above ``amount_threshold`` or the receipt is older than ``age_limit_days``.
    """
    amount_threshold: Decimal = Decimal("300.00")
    age_limit_days: int = 30

    # End-of-day schedule anchors and block sizing (minutes)
    day_start: str = "07:00"
    day_end: str = "15:00"
    block_minutes: Tuple[int, int] = (10, 15)
    block_gap_minutes: int = 1

    # Sentinels
    pending_reference: str = "PENDING"
    reference_sentinels: Tuple[str, ...] = ("", "PENDING", "PROCESSED", "N/A")
    unknown_sentinels: Tuple[str, ...] = ("", "N/A", "UNKNOWN", "NONE")

    # Generated text
    reference_placeholder: str = "**NAB Reference:** PENDING"
    reference_template: str = "**NAB Reference:** {value}"
    unresolved_status: str = "Dashboard Rule Mismatch"
    settled_status: str = "Paid to Nab [{reference}]"
    escalation_contact: str = "Julian"

    # Ranking sizes
    summary_top_n: int = 3
    trend_top_n: int = 5

    categories: List[str] = field(default_factory=lambda: list(EXPENSE_CATEGORIES))

    @property
    def day_start_time(self):
        return parse_clock(self.day_start)

    @property
    def day_end_time(self):
        return parse_clock(self.day_end)

    def is_placeholder_reference(self, reference: Optional[str]) -> bool:
        """True when a settlement reference is absent or a placeholder sentinel."""
        return (reference or "").strip().upper() in self.reference_sentinels

    def is_unknown(self, value: Optional[str]) -> bool:
        """True when a staff/location value is absent or an unknown sentinel."""
        return (value or "").strip().upper() in self.unknown_sentinels

    def normalize_category(self, category: Optional[str]) -> str:
        """Map a free-text category onto the policy list (case-insensitive)."""
        category = (category or "").strip()
        if category in self.categories:
            return category
        matched = [c for c in self.categories if c.lower() == category.lower()]
        return matched[0] if matched else "Uncategorized"


DEFAULT_POLICY = AuditPolicy()


def _coerce(name: str, value):
    if name == "amount_threshold":
        return Decimal(str(value))
    if name in ("block_minutes", "reference_sentinels", "unknown_sentinels"):
        return tuple(value)
    return value


def load_policy(path: Optional[Path]) -> AuditPolicy:
    """
    Load policy overrides from a JSON file.

    A missing file (or no path) yields the default policy. Keys that are not
    policy fields are ignored, e.g.:

        {"amount_threshold": "250.00", "day_end": "16:00"}
    """
    if path is None or not path.exists():
        return DEFAULT_POLICY
    with path.open("r", encoding="utf-8") as f:
        overrides: Dict = json.load(f)

    known = {f.name for f in fields(AuditPolicy)}
    values = {k: _coerce(k, v) for k, v in overrides.items() if k in known}
    policy = replace(DEFAULT_POLICY, **values)

    low, high = policy.block_minutes
    if low < 1 or high < low:
        raise ValueError(f"Invalid block_minutes range: {policy.block_minutes}")
    if policy.day_end_time <= policy.day_start_time:
        raise ValueError(f"day_end {policy.day_end} must be after day_start {policy.day_start}")
    return policy
