"""
Financial message → Rules → Transfers → Ledger

A deterministic transaction-processing pipeline that turns free-text bank
notifications into ledger entries: user rules rewrite fields, transfers expand
into linked entries, duplicates are flagged for review, and account balances
are kept in step with every persisted entry.
"""

__version__ = "0.1.0"
