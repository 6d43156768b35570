"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .accounts import Account, Category
from .extraction import ParsedExpense
from .rules import (
    ACTION_FIELDS,
    CONDITION_FIELDS,
    AutomationRule,
    ConditionLogic,
    RuleActions,
    RuleConditions,
    RuleType,
    RuleValidationError,
    normalize_phone,
    validate_rule_payload,
)
from .transaction import (
    AppliedRule,
    DuplicateStatus,
    Transaction,
    TransactionType,
    TransferDirection,
    normalize_amount,
)

__all__ = [
    # Transactions (canonical ledger record)
    "Transaction",
    "TransactionType",
    "TransferDirection",
    "DuplicateStatus",
    "AppliedRule",
    "normalize_amount",
    # Rules
    "AutomationRule",
    "RuleConditions",
    "RuleActions",
    "RuleType",
    "ConditionLogic",
    "RuleValidationError",
    "CONDITION_FIELDS",
    "ACTION_FIELDS",
    "normalize_phone",
    "validate_rule_payload",
    # Store records
    "Account",
    "Category",
    # Extraction
    "ParsedExpense",
]
