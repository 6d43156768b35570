"""Balance ledger."""

from .balance import (
    BalanceLedger,
    BalanceUpdate,
    LedgerError,
    balance_deltas,
    compute_new_balance,
)

__all__ = [
    "BalanceLedger",
    "BalanceUpdate",
    "LedgerError",
    "balance_deltas",
    "compute_new_balance",
]
