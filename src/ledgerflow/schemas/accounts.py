"""Account and category records as returned by the data store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class Account:
    """A user account with a running balance in minor units.

    Invariant: balance equals the sum of every signed delta ever posted to
    this account, assuming a single writer.
    """

    id: str
    user_id: str
    name: str = ""
    institution: str | None = None
    last_four: str | None = None
    account_kind: str | None = None  # savings, checking, credit_card, cash, ...
    balance: int = 0
    is_active: bool = True

    @property
    def is_cash(self) -> bool:
        return self.account_kind == "cash" or self.institution == "cash"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Account:
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id", "")),
            name=data.get("name") or "",
            institution=data.get("institution"),
            last_four=data.get("last_four"),
            # The store column is "type"
            account_kind=data.get("type") or data.get("account_kind"),
            balance=int(data.get("balance") or 0),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class Category:
    """A user category; slug is unique per user."""

    id: str
    user_id: str
    slug: str
    name: str = ""
    type: str = "expense"  # matches TransactionType values

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Category:
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id", "")),
            slug=data.get("slug", ""),
            name=data.get("name") or "",
            type=data.get("type") or "expense",
        )
