"""
Extractor output record (fixed shape).

The language model is a black box that returns this record for one message.
Everything downstream of extraction reads these fields and nothing else.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from .transaction import normalize_amount


@dataclass
class ParsedExpense:
    """Structured data extracted from one free-text message."""

    is_transaction: bool = True
    skip_reason: str | None = None
    amount: int | None = None
    description: str = ""
    category: str | None = None  # category slug
    bank: str | None = None  # institution tag
    payment_type: str | None = None
    source: str | None = None
    confidence: int = 0  # 0-100
    original_date: str | None = None  # DD/MM/YYYY as written in the message
    original_time: str | None = None  # HH:MM
    last_four: str | None = None
    account_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParsedExpense:
        """Build from model JSON output, tolerating missing keys."""
        confidence = data.get("confidence")
        try:
            confidence = max(0, min(100, int(confidence))) if confidence is not None else 0
        except (TypeError, ValueError):
            confidence = 0

        last_four = data.get("last_four")
        return cls(
            is_transaction=data.get("is_transaction", True) is not False,
            skip_reason=data.get("skip_reason"),
            amount=normalize_amount(data.get("amount")),
            description=(data.get("description") or "").strip(),
            category=data.get("category") or None,
            bank=(data.get("bank") or None),
            payment_type=data.get("payment_type"),
            source=data.get("source"),
            confidence=confidence,
            original_date=data.get("original_date"),
            original_time=data.get("original_time"),
            last_four=str(last_four) if last_four else None,
            account_type=data.get("account_type"),
        )
