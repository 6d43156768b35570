"""
Automation rule schema (SSOT).

Rules are exchanged as JSON documents. Conditions and actions are a CLOSED set
of optional fields: the evaluator never inspects arbitrary keys. Payloads are
validated here, at the boundary where a rule is authored or loaded, so the
evaluation core only ever sees well-typed values.

JSON shape:
    {
      "id": "...", "user_id": "...", "name": "Salary",
      "is_active": true, "priority": 10,
      "rule_type": "general" | "account_detection" | "transfer",
      "condition_logic": "and" | "or",
      "conditions": {"description_contains": ["nomina"], ...},
      "actions": {"set_type": "income", ...},
      "match_phone": null, "transfer_to_account_id": null
    }
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .transaction import TransactionType

logger = logging.getLogger(__name__)


class RuleValidationError(ValueError):
    """Raised when a rule payload is malformed."""

    def __init__(self, errors: list[str], rule_name: str | None = None):
        self.errors = errors
        self.rule_name = rule_name
        prefix = f"Invalid rule '{rule_name}'" if rule_name else "Invalid rule"
        super().__init__(f"{prefix}: {'; '.join(errors)}")


class RuleType(str, Enum):
    """When a rule is evaluated."""

    GENERAL = "general"
    ACCOUNT_DETECTION = "account_detection"
    TRANSFER = "transfer"


class ConditionLogic(str, Enum):
    """How multi-keyword conditions combine their keywords."""

    AND = "and"
    OR = "or"


CONDITION_FIELDS = (
    "description_contains",
    "description_regex",
    "raw_text_contains",
    "amount_between",
    "amount_equals",
    "from_account",
    "source",
)

ACTION_FIELDS = (
    "set_type",
    "set_category",
    "set_account",
    "link_to_account",
    "auto_reconcile",
    "add_note",
)

# Sentinel distinguishing "set_category absent" from "set_category: null"
UNSET: Any = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(value: Any, name: str, errors: list[str]) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        errors.append(f"{name} must be a list of strings")
        return None
    if not value:
        errors.append(f"{name} must not be empty")
        return None
    return list(value)


@dataclass(frozen=True)
class RuleConditions:
    """Optional condition fields; absence means no constraint."""

    description_contains: tuple[str, ...] | None = None
    description_regex: str | None = None
    raw_text_contains: tuple[str, ...] | None = None
    amount_between: tuple[float, float] | None = None
    amount_equals: float | None = None
    from_account: str | None = None
    source: tuple[str, ...] | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in CONDITION_FIELDS)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for name in CONDITION_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            result[name] = list(value) if isinstance(value, tuple) else value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, strict: bool = True) -> RuleConditions:
        """Parse and validate a conditions payload.

        Args:
            data: Raw conditions mapping (None means no conditions)
            strict: If True, unknown keys are errors; otherwise they are ignored

        Raises:
            RuleValidationError: If any present field is malformed
        """
        data = data or {}
        if not isinstance(data, dict):
            raise RuleValidationError(["conditions must be an object"])

        errors: list[str] = []
        unknown = sorted(set(data) - set(CONDITION_FIELDS))
        if unknown:
            if strict:
                errors.append(f"unknown condition fields: {', '.join(unknown)}")
            else:
                logger.debug("Ignoring unknown condition fields: %s", unknown)

        description_contains = _string_list(
            data.get("description_contains"), "description_contains", errors
        )
        raw_text_contains = _string_list(data.get("raw_text_contains"), "raw_text_contains", errors)
        source = _string_list(data.get("source"), "source", errors)

        description_regex = data.get("description_regex")
        if description_regex is not None:
            if not isinstance(description_regex, str):
                errors.append("description_regex must be a string")
                description_regex = None
            else:
                try:
                    re.compile(description_regex, re.IGNORECASE)
                except re.error as e:
                    errors.append(f"description_regex is not a valid pattern: {e}")

        amount_between = data.get("amount_between")
        if amount_between is not None:
            if (
                not isinstance(amount_between, (list, tuple))
                or len(amount_between) != 2
                or not all(_is_number(v) for v in amount_between)
            ):
                errors.append("amount_between must be [min, max]")
                amount_between = None
            elif amount_between[0] > amount_between[1]:
                errors.append("amount_between min must not exceed max")
                amount_between = None
            else:
                amount_between = (amount_between[0], amount_between[1])

        amount_equals = data.get("amount_equals")
        if amount_equals is not None and not _is_number(amount_equals):
            errors.append("amount_equals must be a number")
            amount_equals = None

        from_account = data.get("from_account")
        if from_account is not None and not isinstance(from_account, str):
            errors.append("from_account must be a string")

        if errors:
            raise RuleValidationError(errors)

        return cls(
            description_contains=tuple(description_contains) if description_contains else None,
            description_regex=description_regex,
            raw_text_contains=tuple(raw_text_contains) if raw_text_contains else None,
            amount_between=amount_between,
            amount_equals=amount_equals,
            from_account=from_account,
            source=tuple(source) if source else None,
        )


@dataclass(frozen=True)
class RuleActions:
    """Optional action fields.

    set_category uses the UNSET sentinel when absent, so an explicit null
    (clear the category) can be told apart from "leave it alone".
    """

    set_type: TransactionType | None = None
    set_category: Any = UNSET
    set_account: str | None = None
    link_to_account: str | None = None
    auto_reconcile: bool = False
    add_note: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.set_type is not None:
            result["set_type"] = self.set_type.value
        if self.set_category is not UNSET:
            result["set_category"] = self.set_category
        if self.set_account:
            result["set_account"] = self.set_account
        if self.link_to_account:
            result["link_to_account"] = self.link_to_account
        if self.auto_reconcile:
            result["auto_reconcile"] = True
        if self.add_note:
            result["add_note"] = self.add_note
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, strict: bool = True) -> RuleActions:
        """Parse and validate an actions payload.

        Raises:
            RuleValidationError: If any present field is malformed
        """
        data = data or {}
        if not isinstance(data, dict):
            raise RuleValidationError(["actions must be an object"])

        errors: list[str] = []
        unknown = sorted(set(data) - set(ACTION_FIELDS))
        if unknown:
            if strict:
                errors.append(f"unknown action fields: {', '.join(unknown)}")
            else:
                logger.debug("Ignoring unknown action fields: %s", unknown)

        set_type = None
        if data.get("set_type") is not None:
            try:
                set_type = TransactionType(data["set_type"])
            except ValueError:
                errors.append(f"set_type must be one of expense, income, transfer: {data['set_type']!r}")

        set_category = data["set_category"] if "set_category" in data else UNSET
        if set_category is not UNSET and set_category is not None and not isinstance(set_category, str):
            errors.append("set_category must be a string or null")

        for name in ("set_account", "link_to_account", "add_note"):
            value = data.get(name)
            if value is not None and not isinstance(value, str):
                errors.append(f"{name} must be a string")

        auto_reconcile = data.get("auto_reconcile", False)
        if not isinstance(auto_reconcile, bool):
            errors.append("auto_reconcile must be a boolean")

        if errors:
            raise RuleValidationError(errors)

        return cls(
            set_type=set_type,
            set_category=set_category,
            set_account=data.get("set_account"),
            link_to_account=data.get("link_to_account"),
            auto_reconcile=auto_reconcile,
            add_note=data.get("add_note"),
        )


@dataclass
class AutomationRule:
    """A user-owned rule.

    Mutations take effect on the next evaluation only; nothing is re-applied
    retroactively.
    """

    id: str
    user_id: str
    name: str
    conditions: RuleConditions = field(default_factory=RuleConditions)
    actions: RuleActions = field(default_factory=RuleActions)
    is_active: bool = True
    priority: int = 0
    rule_type: RuleType = RuleType.GENERAL
    condition_logic: ConditionLogic = ConditionLogic.OR
    match_phone: str | None = None
    transfer_to_account_id: str | None = None
    prompt_text: str | None = None
    deleted_at: str | None = None

    @property
    def has_phone_mapping(self) -> bool:
        return bool(self.match_phone)

    def effective_actions(self) -> RuleActions:
        """Actions with the rule-level link target applied as a fallback."""
        if self.transfer_to_account_id and not self.actions.link_to_account:
            return RuleActions(
                set_type=self.actions.set_type,
                set_category=self.actions.set_category,
                set_account=self.actions.set_account,
                link_to_account=self.transfer_to_account_id,
                auto_reconcile=self.actions.auto_reconcile,
                add_note=self.actions.add_note,
            )
        return self.actions

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON exchange shape."""
        result: dict[str, Any] = {
            "user_id": self.user_id,
            "name": self.name,
            "is_active": self.is_active,
            "priority": self.priority,
            "rule_type": self.rule_type.value,
            "condition_logic": self.condition_logic.value,
            "conditions": self.conditions.to_dict(),
            "actions": self.actions.to_dict(),
            "match_phone": self.match_phone,
            "transfer_to_account_id": self.transfer_to_account_id,
        }
        if self.id:
            result["id"] = self.id
        if self.prompt_text:
            result["prompt_text"] = self.prompt_text
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], strict: bool = True) -> AutomationRule:
        """Parse and validate a rule payload.

        Args:
            data: Rule JSON document
            strict: Reject unknown condition/action keys (authoring); the
                loader passes False so older stored rules still evaluate

        Raises:
            RuleValidationError: If the payload is malformed
        """
        name = data.get("name") or ""
        errors: list[str] = []

        if not name:
            errors.append("name is required")
        if not data.get("user_id"):
            errors.append("user_id is required")

        try:
            rule_type = RuleType(data.get("rule_type") or RuleType.GENERAL.value)
        except ValueError:
            errors.append(f"rule_type must be general, account_detection or transfer: {data.get('rule_type')!r}")
            rule_type = RuleType.GENERAL

        try:
            logic = ConditionLogic(data.get("condition_logic") or ConditionLogic.OR.value)
        except ValueError:
            errors.append(f"condition_logic must be 'and' or 'or': {data.get('condition_logic')!r}")
            logic = ConditionLogic.OR

        priority = data.get("priority", 0)
        if not isinstance(priority, int) or isinstance(priority, bool):
            errors.append("priority must be an integer")
            priority = 0

        match_phone = data.get("match_phone")
        if match_phone is not None:
            match_phone = normalize_phone(str(match_phone))
            if not match_phone:
                errors.append("match_phone must contain digits")

        conditions = RuleConditions()
        actions = RuleActions()
        try:
            conditions = RuleConditions.from_dict(data.get("conditions"), strict=strict)
        except RuleValidationError as e:
            errors.extend(e.errors)
        try:
            actions = RuleActions.from_dict(data.get("actions"), strict=strict)
        except RuleValidationError as e:
            errors.extend(e.errors)

        if errors:
            raise RuleValidationError(errors, rule_name=name or None)

        return cls(
            id=str(data.get("id") or ""),
            user_id=str(data["user_id"]),
            name=name,
            conditions=conditions,
            actions=actions,
            is_active=bool(data.get("is_active", True)),
            priority=priority,
            rule_type=rule_type,
            condition_logic=logic,
            match_phone=match_phone,
            transfer_to_account_id=data.get("transfer_to_account_id"),
            prompt_text=data.get("prompt_text"),
            deleted_at=data.get("deleted_at"),
        )


def normalize_phone(phone: str) -> str:
    """Strip a leading '*' and any non-digit characters from a phone token."""
    return re.sub(r"\D", "", phone.lstrip("*"))


def validate_rule_payload(data: dict[str, Any]) -> list[str]:
    """Validate a rule payload for authoring.

    Returns:
        List of validation errors (empty if valid)
    """
    try:
        rule = AutomationRule.from_dict(data, strict=True)
    except RuleValidationError as e:
        return e.errors

    errors: list[str] = []
    if rule.rule_type == RuleType.TRANSFER and not rule.match_phone:
        errors.append("transfer rules require match_phone")
    if rule.rule_type != RuleType.TRANSFER and rule.match_phone:
        errors.append("match_phone is only allowed on transfer rules")
    if rule.rule_type == RuleType.ACCOUNT_DETECTION and not rule.actions.set_account:
        errors.append("account_detection rules require actions.set_account")
    return errors
