"""
Canonical ledger transaction (SSOT).

This is THE single transaction shape used from candidate creation through
rule evaluation, transfer expansion, persistence and balance posting.

Invariants:
- amount is always stored positive, in minor currency units; the sign is
  implied by ``type``
- a transfer-typed transaction carries both transfer_to_account_id and
  transfer_id; the two sides of one transfer share transfer_id
- applied_rules is None (not an empty list) when no rule fired
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any


class TransactionType(str, Enum):
    """Ledger transaction type."""

    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class DuplicateStatus(str, Enum):
    """Duplicate review state.

    NONE is represented as a null column in the store.
    """

    NONE = "none"
    PENDING_REVIEW = "pending_review"


class TransferDirection(str, Enum):
    """Which side of a transfer an entry represents."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"


def normalize_amount(value: Any) -> int | None:
    """
    Normalize an amount to integer minor units.

    Accepts int, float, Decimal, or numeric strings. Floats and fractional
    values are rounded half-up. Non-numeric input returns None so amount
    conditions can treat it as non-matching.

    Examples:
        >>> normalize_amount(50000)
        50000
        >>> normalize_amount("119000.5")
        119001
        >>> normalize_amount("n/a") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return abs(value)
    try:
        if isinstance(value, float):
            number = Decimal(str(value))
        elif isinstance(value, Decimal):
            number = value
        elif isinstance(value, str):
            cleaned = value.strip().replace("$", "").replace(" ", "")
            if not cleaned:
                return None
            number = Decimal(cleaned)
        else:
            return None
    except InvalidOperation:
        return None

    if not number.is_finite():
        return None
    return abs(int(number.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


@dataclass
class AppliedRule:
    """Provenance record for one rule that fired on a transaction."""

    rule_id: str
    rule_name: str
    actions_applied: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "actions_applied": dict(self.actions_applied),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppliedRule:
        return cls(
            rule_id=str(data.get("rule_id", "")),
            rule_name=data.get("rule_name", ""),
            # Older rows used "actions"
            actions_applied=dict(data.get("actions_applied") or data.get("actions") or {}),
        )


@dataclass
class Transaction:
    """
    A candidate or persisted ledger transaction.

    ``id`` is None until the store has inserted the record.
    """

    user_id: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM, 24-hour
    amount: int | None
    description: str
    account_id: str
    type: TransactionType = TransactionType.EXPENSE
    source: str = "api"

    category_id: str | None = None
    payment_method: str | None = None
    confidence: int | None = None  # 0-100, from extraction

    # Raw input and extractor output
    raw_text: str | None = None
    parsed_data: dict[str, Any] | None = None

    # Transfer linkage
    transfer_to_account_id: str | None = None
    transfer_id: str | None = None
    transfer_direction: TransferDirection | None = None

    # Append-only notes, joined by newlines
    notes: str | None = None

    is_reconciled: bool = False

    # Duplicate review
    duplicate_status: DuplicateStatus = DuplicateStatus.NONE
    duplicate_of: str | None = None

    # Provenance of rules that fired
    applied_rules: list[AppliedRule] | None = None

    id: str | None = None
    created_at: str | None = None

    @property
    def is_transfer_linked(self) -> bool:
        """True if this entry already belongs to a transfer pair."""
        return bool(self.transfer_to_account_id and self.transfer_id)

    def append_note(self, note: str) -> None:
        """Append a note on a new line, never replacing existing notes."""
        if not note:
            return
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def copy(self, **changes: Any) -> Transaction:
        """Return a copy with the given fields changed.

        Mutable containers are copied so the clone can be mutated freely.
        """
        clone = replace(self, **changes)
        if "applied_rules" not in changes and self.applied_rules is not None:
            clone.applied_rules = list(self.applied_rules)
        if "parsed_data" not in changes and self.parsed_data is not None:
            clone.parsed_data = dict(self.parsed_data)
        return clone

    def validate(self) -> list[str]:
        """Validate persisted-record invariants.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []
        if not self.user_id:
            errors.append("user_id is required")
        if not self.account_id:
            errors.append("account_id is required")
        if self.amount is None:
            errors.append("amount must be numeric")
        elif self.amount < 0:
            errors.append("amount must be positive; the sign is implied by type")
        if self.confidence is not None and not 0 <= self.confidence <= 100:
            errors.append(f"confidence must be within 0-100, got {self.confidence}")
        if self.type == TransactionType.TRANSFER:
            if not self.transfer_to_account_id:
                errors.append("transfer requires transfer_to_account_id")
            if not self.transfer_id:
                errors.append("transfer requires transfer_id")
        if self.duplicate_status == DuplicateStatus.PENDING_REVIEW and not self.duplicate_of:
            errors.append("pending_review requires duplicate_of")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the store.

        None values are omitted to keep the persisted record minimal;
        DuplicateStatus.NONE maps to an absent column.
        """
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                if value is DuplicateStatus.NONE:
                    continue
                value = value.value
            elif f.name == "applied_rules":
                value = [rule.to_dict() for rule in value]
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        """Build from a store row."""
        applied = data.get("applied_rules")
        direction = data.get("transfer_direction")
        return cls(
            id=str(data["id"]) if data.get("id") is not None else None,
            user_id=str(data.get("user_id", "")),
            date=data.get("date", ""),
            time=data.get("time") or "",
            amount=normalize_amount(data.get("amount")),
            description=data.get("description") or "",
            account_id=str(data.get("account_id") or ""),
            type=TransactionType(data.get("type") or TransactionType.EXPENSE.value),
            source=data.get("source") or "api",
            category_id=data.get("category_id"),
            payment_method=data.get("payment_method"),
            confidence=data.get("confidence"),
            raw_text=data.get("raw_text"),
            parsed_data=data.get("parsed_data"),
            transfer_to_account_id=data.get("transfer_to_account_id"),
            transfer_id=data.get("transfer_id"),
            transfer_direction=TransferDirection(direction) if direction else None,
            notes=data.get("notes"),
            is_reconciled=bool(data.get("is_reconciled", False)),
            duplicate_status=DuplicateStatus(data.get("duplicate_status") or "none"),
            duplicate_of=data.get("duplicate_of"),
            applied_rules=[AppliedRule.from_dict(a) for a in applied] if applied else None,
            created_at=data.get("created_at"),
        )
