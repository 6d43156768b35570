"""Action application for automation rules."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from ..schemas.rules import UNSET, RuleActions
from ..schemas.transaction import Transaction, TransferDirection

logger = logging.getLogger(__name__)


def new_transfer_id() -> str:
    """Mint a fresh transfer correlation id."""
    return str(uuid.uuid4())


class ActionApplier:
    """Mutates a transaction according to a rule's actions.

    Order is fixed: type, category, account, transfer link, reconciliation
    flag, note.
    """

    def __init__(self, id_factory: Callable[[], str] = new_transfer_id) -> None:
        self._new_id = id_factory

    def apply(self, transaction: Transaction, actions: RuleActions) -> Transaction:
        """Apply actions in place and return the same transaction."""
        if actions.set_type is not None:
            transaction.type = actions.set_type

        if actions.set_category is not UNSET:
            # Explicit null (or empty string) clears the category
            transaction.category_id = actions.set_category or None

        if actions.set_account:
            transaction.account_id = actions.set_account

        if actions.link_to_account:
            if transaction.is_transfer_linked:
                logger.debug(
                    "Transaction already linked by transfer %s, keeping existing link",
                    transaction.transfer_id,
                )
            else:
                transaction.transfer_to_account_id = actions.link_to_account
                transaction.transfer_id = self._new_id()
                transaction.transfer_direction = TransferDirection.OUTGOING

        if actions.auto_reconcile:
            transaction.is_reconciled = True

        if actions.add_note:
            transaction.append_note(actions.add_note)

        return transaction
