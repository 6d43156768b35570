"""Automation rule evaluation: condition matching, action application, ordering."""

from ledgerflow.rules.actions import ActionApplier, new_transfer_id
from ledgerflow.rules.conditions import ConditionMatcher, matches_conditions
from ledgerflow.rules.engine import (
    RuleEngine,
    RuleEvaluation,
    RuleSet,
    generate_account_rules,
    order_rules,
)

__all__ = [
    "ActionApplier",
    "ConditionMatcher",
    "RuleEngine",
    "RuleEvaluation",
    "RuleSet",
    "generate_account_rules",
    "matches_conditions",
    "new_transfer_id",
    "order_rules",
]
