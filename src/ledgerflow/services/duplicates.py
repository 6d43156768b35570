"""Duplicate classification service.

A duplicate is never rejected. A candidate that repeats an earlier message
(exact) or lands on the same day, amount and account as an earlier entry
(near) is flagged ``pending_review`` with a back-reference, persisted as
usual, and left for a human to confirm or discard.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..schemas.transaction import DuplicateStatus, Transaction

if TYPE_CHECKING:
    from ..store_client import StoreClient

logger = logging.getLogger(__name__)


class DuplicateKind(str, Enum):
    """Which check matched."""

    EXACT = "exact"
    NEAR = "near"


@dataclass
class DuplicateMatch:
    """An earlier transaction the candidate appears to repeat."""

    duplicate_of: str
    kind: DuplicateKind
    status: DuplicateStatus = DuplicateStatus.PENDING_REVIEW


class DuplicateClassifier:
    """Flags candidates that repeat an earlier transaction.

    Usage:
        classifier = DuplicateClassifier(store_client)
        match = classifier.classify(raw_text, source, date, amount, account_id, user_id)
        classifier.annotate(entries, match)
    """

    def __init__(self, store: StoreClient) -> None:
        """Initialize the classifier.

        Args:
            store: Transaction-read collaborator.
        """
        self.store = store

    def classify(
        self,
        candidate_text: str | None,
        source: str,
        date: str,
        amount: int | None,
        account_id: str,
        user_id: str,
    ) -> DuplicateMatch | None:
        """Check for an exact repeat, then for a near match.

        Returns:
            The match, or None if the candidate looks new
        """
        if candidate_text:
            existing = self.store.find_exact_duplicate(user_id, candidate_text, source)
            if existing is not None and existing.id:
                logger.info("Exact duplicate of transaction %s", existing.id)
                return DuplicateMatch(duplicate_of=existing.id, kind=DuplicateKind.EXACT)

        if amount is None or not date or not account_id:
            return None

        existing = self.store.find_near_duplicate(user_id, date, amount, account_id)
        if existing is not None and existing.id:
            logger.info("Near duplicate of transaction %s", existing.id)
            return DuplicateMatch(duplicate_of=existing.id, kind=DuplicateKind.NEAR)

        return None

    def classify_transaction(self, candidate: Transaction) -> DuplicateMatch | None:
        """Classify using the candidate's own fields."""
        return self.classify(
            candidate.raw_text,
            candidate.source,
            candidate.date,
            candidate.amount,
            candidate.account_id,
            candidate.user_id,
        )

    @staticmethod
    def annotate(entries: Iterable[Transaction], match: DuplicateMatch | None) -> None:
        """Mark every entry produced for a message as pending review."""
        if match is None:
            return
        for entry in entries:
            entry.duplicate_status = match.status
            entry.duplicate_of = match.duplicate_of
