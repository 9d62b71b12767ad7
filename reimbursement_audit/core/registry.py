"""
Editable working set of proposed transactions for the audit in progress.
"""

from typing import List, Optional

from .models import Transaction
from .policy import AuditPolicy, DEFAULT_POLICY
from .utils import normalize_amount, clean_text

EDITABLE_FIELDS = ("formatted_name", "amount", "current_reference")


class TransactionRegistry:
    """
    Proposed payments awaiting confirmation, plus the generated document
    (the decision email) that echoes them.

    Editing the reference re-derives generated text by literal substitution
    of the policy's placeholder token. There is no template engine: once the
    placeholder has been replaced, later reference edits update the field
    only and leave the text as it is.
    """

    def __init__(self, policy: AuditPolicy = DEFAULT_POLICY):
        self.policy = policy
        self._transactions: List[Transaction] = []
        self.document = ""

    def __len__(self):
        return len(self._transactions)

    def __iter__(self):
        return iter(list(self._transactions))

    def __getitem__(self, index: int) -> Transaction:
        return self._transactions[index]

    @property
    def transactions(self) -> List[Transaction]:
        return list(self._transactions)

    def replace_all(self, transactions: List[Transaction], document: Optional[str] = None):
        """Swap in a new proposal set (and optionally its generated document)."""
        self._transactions = list(transactions)
        if document is not None:
            self.document = document

    def clear(self):
        self._transactions = []
        self.document = ""

    def _substitute_reference(self, text: str, value: str) -> str:
        placeholder = self.policy.reference_placeholder
        if placeholder not in text:
            return text
        return text.replace(placeholder, self.policy.reference_template.format(value=value))

    def update_field(self, index: int, field: str, value) -> Transaction:
        """
        Set one field on one transaction. Last write wins.

        Raises:
            IndexError: no transaction at ``index``
            ValueError: unknown field, or an amount that is not a non-negative money value
        """
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Field '{field}' is not editable (expected one of {', '.join(EDITABLE_FIELDS)})")
        tx = self._transactions[index]

        if field == "amount":
            amount = normalize_amount(value)
            if amount is None or amount < 0:
                raise ValueError(f"Invalid amount: {value!r}")
            tx.amount = amount
        elif field == "formatted_name":
            tx.formatted_name = clean_text(value)
        else:
            reference = clean_text(value)
            tx.current_reference = reference or self.policy.pending_reference
            if reference:
                tx.source_text = self._substitute_reference(tx.source_text, reference)
                self.document = self._substitute_reference(self.document, reference)
        return tx

    def has_concrete_references(self) -> bool:
        """True once every transaction carries a real settlement reference."""
        return bool(self._transactions) and not any(
            self.policy.is_placeholder_reference(tx.current_reference) for tx in self._transactions
        )
