"""Rule engine for rewriting transactions with user automation rules.

Two passes use the same condition matcher:

- Post-parse pass (``evaluate``/``apply``): every general rule is tried in
  descending priority order against the current, possibly already rewritten,
  transaction. Rules are cumulative; there is no first-match short-circuit.
  Each firing appends a provenance record.
- Pre-parse pass (``detect_account``): only account_detection rules are tried
  against the raw message text, and the first match (by priority) wins.

The engine is a pure transform over (transaction, rules); rule retrieval is
the caller's job, except for the ``apply`` convenience wrapper.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..schemas.rules import (
    AutomationRule,
    ConditionLogic,
    RuleActions,
    RuleConditions,
    RuleType,
)
from ..schemas.transaction import AppliedRule, Transaction
from .actions import ActionApplier
from .conditions import ConditionMatcher

if TYPE_CHECKING:
    from ..schemas.accounts import Account
    from ..store_client import StoreClient

logger = logging.getLogger(__name__)


def order_rules(rules: Iterable[AutomationRule]) -> list[AutomationRule]:
    """Active, non-deleted rules in descending priority.

    The sort is stable: rules with equal priority keep their input order.
    """
    live = [r for r in rules if r.is_active and not r.deleted_at]
    return sorted(live, key=lambda r: r.priority, reverse=True)


@dataclass
class RuleSet:
    """A user's rules split by the pass that evaluates them."""

    general: list[AutomationRule] = field(default_factory=list)
    account_detection: list[AutomationRule] = field(default_factory=list)
    transfer: list[AutomationRule] = field(default_factory=list)

    @classmethod
    def partition(cls, rules: Iterable[AutomationRule]) -> RuleSet:
        """Split rules for the pre-parse, post-parse and transfer lookups.

        Transfer-typed rules without their own conditions only serve the
        phone lookup; with conditions they also take part in the post-parse
        pass.
        """
        result = cls()
        for rule in order_rules(rules):
            if rule.rule_type == RuleType.ACCOUNT_DETECTION:
                result.account_detection.append(rule)
                continue
            if rule.has_phone_mapping:
                result.transfer.append(rule)
                if rule.conditions.is_empty:
                    continue
            result.general.append(rule)
        return result


@dataclass
class RuleEvaluation:
    """Result of one post-parse pass."""

    transaction: Transaction
    applied_rules: list[AppliedRule] = field(default_factory=list)
    skipped_rules: list[str] = field(default_factory=list)

    @property
    def fired(self) -> bool:
        return bool(self.applied_rules)


class RuleEngine:
    """Applies automation rules to transactions.

    Usage:
        engine = RuleEngine()
        result = engine.evaluate(transaction, rules)
        transaction = result.transaction
    """

    def __init__(
        self,
        rule_source: StoreClient | None = None,
        matcher: ConditionMatcher | None = None,
        applier: ActionApplier | None = None,
    ) -> None:
        """Initialize the rule engine.

        Args:
            rule_source: Store used by ``apply`` to fetch a user's rules.
            matcher: Condition matcher (default instance if None).
            applier: Action applier (default instance if None).
        """
        self.rule_source = rule_source
        self.matcher = matcher or ConditionMatcher()
        self.applier = applier or ActionApplier()

    def _safe_match(self, rule: AutomationRule, subject: object) -> bool | None:
        """Match one rule; None means the rule is misconfigured and was skipped."""
        try:
            return self.matcher.matches(subject, rule.conditions, rule.condition_logic)
        except re.error as e:
            logger.warning("Skipping rule '%s' (%s): invalid pattern: %s", rule.name, rule.id, e)
            return None

    def evaluate(
        self,
        transaction: Transaction,
        rules: Iterable[AutomationRule],
    ) -> RuleEvaluation:
        """Run the post-parse pass.

        The input transaction is not modified; a rewritten copy is returned.
        account_detection rules are ignored here.
        """
        current = transaction.copy()
        applied: list[AppliedRule] = []
        skipped: list[str] = []

        for rule in order_rules(rules):
            if rule.rule_type == RuleType.ACCOUNT_DETECTION:
                continue
            if rule.has_phone_mapping and rule.conditions.is_empty:
                continue

            matched = self._safe_match(rule, current)
            if matched is None:
                skipped.append(rule.name)
                continue
            if not matched:
                continue

            actions = rule.effective_actions()
            self.applier.apply(current, actions)
            applied.append(
                AppliedRule(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    actions_applied=actions.to_dict(),
                )
            )
            logger.info("Rule applied: %s", rule.name)

        if applied:
            current.applied_rules = (current.applied_rules or []) + applied

        return RuleEvaluation(transaction=current, applied_rules=applied, skipped_rules=skipped)

    def apply(self, transaction: Transaction, user_id: str) -> Transaction:
        """Fetch the user's active rules and run the post-parse pass."""
        if self.rule_source is None:
            raise RuntimeError("RuleEngine.apply requires a rule_source")
        rules = self.rule_source.list_rules(user_id)
        return self.evaluate(transaction, rules).transaction

    def detect_account(
        self,
        raw_text: str,
        rules: Iterable[AutomationRule],
    ) -> AutomationRule | None:
        """Run the pre-parse pass and return the first matching rule, if any."""
        subject = {"raw_text": raw_text}
        for rule in order_rules(rules):
            if rule.rule_type != RuleType.ACCOUNT_DETECTION:
                continue
            if self._safe_match(rule, subject):
                logger.debug("Account detection matched rule '%s'", rule.name)
                return rule
        return None


def generate_account_rules(user_id: str, accounts: Iterable[Account]) -> list[AutomationRule]:
    """Build one account_detection rule per active, non-cash account.

    Keywords are the institution and last four digits; both must appear in
    the raw text. The rules are previews and are not persisted here.
    """
    rules: list[AutomationRule] = []

    for account in accounts:
        if account.is_cash or not account.is_active:
            continue

        keywords = [k for k in (account.institution, account.last_four) if k]
        if not keywords:
            continue

        rules.append(
            AutomationRule(
                id="",
                user_id=user_id,
                name=f"Account: {account.name or account.id}",
                conditions=RuleConditions(raw_text_contains=tuple(keywords)),
                actions=RuleActions(set_account=account.id),
                priority=100,
                rule_type=RuleType.ACCOUNT_DETECTION,
                condition_logic=ConditionLogic.AND,
            )
        )

    return rules
