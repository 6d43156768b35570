"""Transfer expansion into ledger entries.

Policy for a message classified as a transfer:

- No destination phone: one entry, type unchanged, fallback category if none.
- Phone without a registered destination account: one expense entry with a
  note naming the phone, so the money is still tracked.
- Phone mapped to a destination account: two transfer entries sharing a
  fresh transfer_id. The outgoing entry sits on the origin account and links
  to the destination; the incoming entry sits on the destination and links
  back to the origin.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..rules.actions import new_transfer_id
from ..schemas.rules import AutomationRule
from ..schemas.transaction import Transaction, TransactionType, TransferDirection
from .detector import TransferDetection, TransferDetector

logger = logging.getLogger(__name__)


@dataclass
class TransferInfo:
    """Summary of how a transfer message was resolved."""

    destination_phone: str | None = None
    origin_account: str | None = None
    is_internal_transfer: bool = False
    linked_account_id: str | None = None
    rule_name: str | None = None
    transfer_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination_phone": self.destination_phone,
            "origin_account": self.origin_account,
            "is_internal_transfer": self.is_internal_transfer,
            "linked_account_id": self.linked_account_id,
            "rule_name": self.rule_name,
            "transfer_id": self.transfer_id,
        }


@dataclass
class TransferResult:
    """Entries produced for one transfer message (one or two)."""

    transactions: list[Transaction] = field(default_factory=list)
    transfer_info: TransferInfo = field(default_factory=TransferInfo)


class TransferExpander:
    """Turns a detected transfer into one or two ledger entries."""

    def __init__(
        self,
        detector: TransferDetector | None = None,
        id_factory: Callable[[], str] = new_transfer_id,
    ) -> None:
        self.detector = detector or TransferDetector()
        self._new_id = id_factory

    def expand(
        self,
        candidate: Transaction,
        raw_text: str,
        transfer_rules: Iterable[AutomationRule],
        missing_category_id: str | None = None,
        transfer_category_id: str | None = None,
        category_slug: str | None = None,
    ) -> TransferResult:
        """Expand a candidate according to the transfer policy.

        The candidate itself is never modified.

        Args:
            candidate: Transaction built from the extractor output
            raw_text: Message text the phone and origin are extracted from
            transfer_rules: Rules carrying a phone mapping
            missing_category_id: Fallback category for untracked destinations
            transfer_category_id: Category forced onto linked transfer entries
            category_slug: Category slug resolved by extraction, if any
        """
        detection = self.detector.detect(raw_text, transfer_rules, category_slug)
        return self.expand_detection(
            candidate, detection, missing_category_id, transfer_category_id
        )

    def expand_detection(
        self,
        candidate: Transaction,
        detection: TransferDetection,
        missing_category_id: str | None = None,
        transfer_category_id: str | None = None,
    ) -> TransferResult:
        info = TransferInfo(
            destination_phone=detection.destination_phone,
            origin_account=detection.origin_last_four,
        )

        if not detection.destination_phone:
            entry = candidate.copy()
            if not entry.category_id:
                entry.category_id = missing_category_id
            entry.append_note("Transfer: destination not identified")
            return TransferResult(transactions=[entry], transfer_info=info)

        destination_id = detection.destination_account_id
        if destination_id is None or destination_id == candidate.account_id:
            if detection.rule is not None:
                logger.warning(
                    "Transfer rule '%s' has no usable destination account",
                    detection.rule.name,
                )
            entry = candidate.copy(type=TransactionType.EXPENSE)
            if not entry.category_id:
                entry.category_id = missing_category_id
            entry.append_note(
                f"Transfer to unregistered destination *{detection.destination_phone}"
            )
            return TransferResult(transactions=[entry], transfer_info=info)

        transfer_id = self._new_id()
        category_id = transfer_category_id or candidate.category_id
        rule_name = detection.rule.name if detection.rule else None

        outgoing = candidate.copy(
            type=TransactionType.TRANSFER,
            category_id=category_id,
            transfer_to_account_id=destination_id,
            transfer_id=transfer_id,
            transfer_direction=TransferDirection.OUTGOING,
        )
        outgoing.append_note(f"Transfer to {rule_name} (*{detection.destination_phone})")

        incoming = candidate.copy(
            type=TransactionType.TRANSFER,
            category_id=category_id,
            account_id=destination_id,
            transfer_to_account_id=candidate.account_id,
            transfer_id=transfer_id,
            transfer_direction=TransferDirection.INCOMING,
        )
        if detection.origin_last_four:
            incoming.append_note(f"Transfer from account *{detection.origin_last_four}")

        info.is_internal_transfer = True
        info.linked_account_id = destination_id
        info.rule_name = rule_name
        info.transfer_id = transfer_id

        logger.info(
            "Internal transfer %s: %s -> %s via rule '%s'",
            transfer_id,
            candidate.account_id,
            destination_id,
            rule_name,
        )
        return TransferResult(transactions=[outgoing, incoming], transfer_info=info)
