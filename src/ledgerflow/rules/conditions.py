"""Condition matching for automation rules.

Every present condition field must pass (fields are always ANDed together).
The rule's condition_logic only decides how the keywords inside one
multi-keyword field combine: ``or`` needs any keyword, ``and`` needs all.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from ..schemas.rules import ConditionLogic, RuleConditions
from ..schemas.transaction import normalize_amount


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def _get(subject: Any, name: str) -> Any:
    """Read a field from a Transaction-like object or a plain mapping."""
    if isinstance(subject, Mapping):
        return subject.get(name)
    return getattr(subject, name, None)


def _keywords_match(text: str | None, keywords: tuple[str, ...], logic: ConditionLogic) -> bool:
    haystack = (text or "").lower()
    if logic == ConditionLogic.AND:
        return all(keyword.lower() in haystack for keyword in keywords)
    return any(keyword.lower() in haystack for keyword in keywords)


class ConditionMatcher:
    """Evaluates a rule's conditions against a transaction or raw message.

    The subject may be a Transaction or a mapping that supplies only the
    fields the conditions reference (e.g. ``{"raw_text": ...}`` for the
    pre-parse account detection pass).
    """

    def matches(
        self,
        subject: Any,
        conditions: RuleConditions,
        logic: ConditionLogic = ConditionLogic.OR,
    ) -> bool:
        """Return True only if every present condition passes.

        Raises:
            re.error: If description_regex does not compile
        """
        if conditions.description_contains is not None:
            if not _keywords_match(
                _get(subject, "description"), conditions.description_contains, logic
            ):
                return False

        if conditions.description_regex is not None:
            regex = _compile(conditions.description_regex)
            if not regex.search(_get(subject, "description") or ""):
                return False

        if conditions.raw_text_contains is not None:
            if not _keywords_match(_get(subject, "raw_text"), conditions.raw_text_contains, logic):
                return False

        if conditions.amount_between is not None or conditions.amount_equals is not None:
            amount = normalize_amount(_get(subject, "amount"))
            # A candidate without a numeric amount never satisfies an amount condition
            if amount is None:
                return False
            if conditions.amount_between is not None:
                low, high = conditions.amount_between
                if amount < low or amount > high:
                    return False
            if conditions.amount_equals is not None and amount != conditions.amount_equals:
                return False

        if conditions.from_account is not None:
            if _get(subject, "account_id") != conditions.from_account:
                return False

        if conditions.source is not None:
            source = _get(subject, "source")
            if not source or source not in conditions.source:
                return False

        return True


_default_matcher = ConditionMatcher()


def matches_conditions(
    subject: Any,
    conditions: RuleConditions,
    logic: ConditionLogic = ConditionLogic.OR,
) -> bool:
    """Module-level shortcut for ConditionMatcher().matches()."""
    return _default_matcher.matches(subject, conditions, logic)
