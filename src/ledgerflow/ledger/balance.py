"""
Per-account running balances.

Every persisted entry is posted exactly once. Each affected account is
updated read-then-write (fetch, compute, patch); the store offers no atomic
increment. Two invocations posting to the same account concurrently can
therefore lose an update (last write wins). Callers that process messages in
parallel must serialize posts per account.

Delta rules (amounts are positive, the sign comes from the type):
- expense: -amount on account_id
- income: +amount on account_id
- transfer, outgoing side: -amount on account_id, +amount on
  transfer_to_account_id
- transfer, incoming mirror: no change (its outgoing side moved both accounts)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..schemas.transaction import Transaction, TransactionType, TransferDirection

if TYPE_CHECKING:
    from ..state_store import CacheStore
    from ..store_client import StoreClient

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Raised when a balance post cannot be applied."""

    pass


@dataclass
class BalanceUpdate:
    """One account write performed by a post."""

    account_id: str
    old_balance: int
    new_balance: int

    @property
    def delta(self) -> int:
        return self.new_balance - self.old_balance


def compute_new_balance(old_balance: int, delta: int) -> int:
    """Pure balance transition."""
    return old_balance + delta


def balance_deltas(transaction: Transaction) -> list[tuple[str, int]]:
    """Signed (account_id, delta) pairs a transaction contributes.

    Raises:
        LedgerError: If the transaction has no numeric amount
    """
    if transaction.amount is None:
        raise LedgerError(f"Transaction {transaction.id} has no amount to post")

    amount = transaction.amount

    if transaction.type == TransactionType.EXPENSE:
        return [(transaction.account_id, -amount)]
    if transaction.type == TransactionType.INCOME:
        return [(transaction.account_id, amount)]

    if transaction.transfer_direction == TransferDirection.INCOMING:
        return []

    deltas = [(transaction.account_id, -amount)]
    if transaction.transfer_to_account_id:
        deltas.append((transaction.transfer_to_account_id, amount))
    return deltas


class BalanceLedger:
    """
    Applies balance deltas for persisted transactions.

    Usage:
        ledger = BalanceLedger(store_client, cache)
        ledger.post(transaction)
    """

    def __init__(
        self,
        store: StoreClient,
        cache: CacheStore | None = None,
        cache_ttl_seconds: int = 300,
    ) -> None:
        """Initialize the ledger.

        Args:
            store: Account-read/patch collaborator.
            cache: Optional balance cache; invalidated after every write.
            cache_ttl_seconds: Freshness window for cached balance reads.
        """
        self.store = store
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    def post(self, transaction: Transaction) -> list[BalanceUpdate]:
        """Apply a persisted transaction's deltas, one account at a time.

        Raises:
            LedgerError: If an affected account does not exist
            StoreError: If a read or patch fails
        """
        updates: list[BalanceUpdate] = []

        for account_id, delta in balance_deltas(transaction):
            old_balance = self.store.get_account_balance(account_id)
            if old_balance is None:
                raise LedgerError(f"Account {account_id} not found while posting {transaction.id}")

            new_balance = compute_new_balance(old_balance, delta)
            self.store.update_account_balance(account_id, new_balance)

            if self.cache is not None:
                self.cache.invalidate_balance(account_id)

            logger.info(
                "Balance %s: %d -> %d (%+d, transaction %s)",
                account_id,
                old_balance,
                new_balance,
                delta,
                transaction.id,
            )
            updates.append(BalanceUpdate(account_id, old_balance, new_balance))

        return updates

    def get_balance(self, account_id: str) -> int:
        """Current balance, served from cache while fresh.

        Raises:
            LedgerError: If the account does not exist
        """
        if self.cache is not None:
            cached = self.cache.get_balance(account_id, self.cache_ttl_seconds)
            if cached is not None:
                logger.debug("Balance cache hit for %s", account_id)
                return cached

        balance = self.store.get_account_balance(account_id)
        if balance is None:
            raise LedgerError(f"Account {account_id} not found")

        if self.cache is not None:
            self.cache.set_balance(account_id, balance)
        return balance
