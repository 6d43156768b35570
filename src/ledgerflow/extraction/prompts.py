"""Prompt templates for message extraction.

The system prompt describes the fixed output record; dynamic sections built
from the user's rules (account hint, transfer phone mappings, automation
rule summaries, free-text rule prompts) are appended after it.
Prompts are versioned to support cache invalidation.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..rules.engine import order_rules
from ..schemas.rules import AutomationRule, RuleType

# Prompt version for cache invalidation
PROMPT_VERSION = "v1.0"


@dataclass
class ExtractionPrompt:
    """Prompt template for expense extraction.

    Attributes:
        version: Prompt version for cache invalidation.
        system_template: System message with CURRENT_DATE/CURRENT_TIME placeholders.
        user_template: Template for the message to parse.
    """

    version: str = PROMPT_VERSION

    system_template: str = """You are an expert Colombian financial assistant that extracts expense data.

CURRENT_DATE: {current_date} (format: YYYY-MM-DD)
CURRENT_TIME: {current_time} (format: HH:MM, 24-hour)
The above date and time are in the user's local timezone ({timezone}). Use them to
resolve ALL relative date references (hoy, ayer, esta semana, ...).

POSSIBLE INPUTS:
1. Bank email/SMS: "Bancolombia: Compraste $X en Y con tu T.Deb *XXXX, el DD/MM/YYYY a las HH:MM"
2. Wallet SMS: "Nequi: Pagaste $X en Y. Saldo: $Z"
3. Manual message: "20k in rappi", "50mil for lunch" (spanish or english)

First decide whether the message is a real financial transaction. Spending
summaries, balance inquiries, promotions, OTP codes, account alerts and other
informational notices are NOT transactions: set is_transaction=false and give a
skip_reason (spending_summary, balance_inquiry, promotional, otp_code,
informational).

OUTPUT (strict JSON, no markdown):
{{
  "is_transaction": boolean,
  "skip_reason": string | null,
  "amount": number,
  "description": string,
  "category": "slug-from-list-below",
  "bank": "bancolombia|nequi|daviplata|cash|other",
  "payment_type": "debit|credit|cash|transfer|qr",
  "source": "bancolombia_email|bancolombia_sms|nequi_sms|manual",
  "confidence": number (0-100),
  "original_date": string | null,
  "original_time": string | null,
  "last_four": string | null,
  "account_type": "checking|savings|credit_card|credit" | null
}}

CATEGORY SLUGS (choose the most specific):
- food: bar-cafe, restaurant, groceries
- shopping: drugstore, leisure, stationery, gifts, electronics, pets, home-garden,
  kids, health-beauty, jewels, clothes
- housing: property-insurance, maintenance, housing-services, utilities, mortgage, rent
- transportation: business-trips, long-distance, taxi, public-transport
- vehicle: leasing, vehicle-insurance, vehicle-rentals, vehicle-maintenance, parking, fuel
- life: lottery, alcohol-tobacco, charity, holiday, streaming, subscriptions,
  education, hobbies, life-events, culture-events, fitness, wellness, health-care
- communication: postal, software, internet, phone
- financial: child-support-expense, fees, advisory, fines, loans, insurances, taxes
- investments: collections, savings-category, financial-investments,
  vehicles-chattels, realty
- income: gifts-income, child-support-income, refunds, lottery-income, checks,
  lending, grants, rental-income, sale, dividends, wage
- transfers between own accounts: transfer
- unknown: missing

PARSING RULES:
- Amounts: remove $, dots and commas; "k" or "mil" means x1000; $119.000,00 -> 119000
- Source: "Bancolombia:" -> bancolombia_email; "Nequi:" or 85954 -> nequi_sms; else manual
- Bank: from the source; manual messages default to "cash"
- Payment type: "T.Deb"/"debito" -> debit; "T.Cred"/"Credito" -> credit; Nequi -> transfer;
  manual -> cash
- Account type: debit -> checking; credit card -> credit_card; "ahorros" and transfers
  (Transferiste, Enviaste) -> savings; loans -> credit; else null
- Last four: from the "*7799" pattern, as a string
- Dates: output DD/MM/YYYY; times HH:MM (24-hour). Manual messages without a date or
  time reference -> null. Never invent a date from the amount.

AUTOMATION RULES:
- Dynamic rule sections may follow this prompt. When a rule's conditions match the
  input, use its values (type, category) in your output; keep parsing every other
  field normally.

ALWAYS respond with ONLY valid JSON. Amount ALWAYS as a plain number. Category MUST
be a slug from the list."""

    user_template: str = 'Input to parse: "{text}"'

    def format_system_prompt(self, current_date: str, current_time: str, timezone: str) -> str:
        """Render the system prompt for the current local date and time."""
        return self.system_template.format(
            current_date=current_date,
            current_time=current_time,
            timezone=timezone,
        )

    def format_user_message(self, text: str) -> str:
        return self.user_template.format(text=text)


def _num(value: float) -> str:
    """Render 100000.0 as "100000" and 12.5 as "12.5"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_account_hint(rule: AutomationRule | None) -> str:
    """Account-context line for a pre-parse account detection match."""
    if rule is None or not rule.actions.set_account:
        return ""
    return (
        f'ACCOUNT CONTEXT: This message is from account "{rule.name}" '
        f"(id: {rule.actions.set_account})."
    )


def build_transfer_prompt_section(rules: Iterable[AutomationRule]) -> str:
    """List registered transfer destinations by phone.

    Returns an empty string when no rule carries a phone mapping.
    """
    mapped = [r for r in order_rules(rules) if r.match_phone]
    if not mapped:
        return ""

    lines = [
        "TRANSFERS:",
        "The user has registered these transfer destinations. A message sending money",
        "to one of these numbers is a transfer between the user's own accounts; use",
        'category "transfer" for it.',
    ]
    for rule in mapped:
        lines.append(f"- *{rule.match_phone} -> {rule.name}")
    return "\n".join(lines)


def _describe_conditions(rule: AutomationRule) -> list[str]:
    cond = rule.conditions
    joiner = " and " if rule.condition_logic.value == "and" else " or "
    parts: list[str] = []

    if cond.description_contains:
        parts.append(f"description contains [{joiner.join(cond.description_contains)}]")
    if cond.description_regex:
        parts.append(f"description matches /{cond.description_regex}/")
    if cond.raw_text_contains:
        parts.append(f"raw text contains [{joiner.join(cond.raw_text_contains)}]")
    if cond.amount_between:
        low, high = cond.amount_between
        parts.append(f"amount between {_num(low)}-{_num(high)}")
    if cond.amount_equals is not None:
        parts.append(f"amount equals {_num(cond.amount_equals)}")
    if cond.from_account:
        parts.append(f"from account {cond.from_account}")
    if cond.source:
        parts.append(f"source is [{', '.join(cond.source)}]")
    return parts


def _describe_actions(rule: AutomationRule) -> list[str]:
    actions = rule.actions.to_dict()
    parts: list[str] = []
    if "set_type" in actions:
        parts.append(f"set type = {actions['set_type']}")
    if "set_category" in actions:
        parts.append(f"set category = {actions['set_category']}")
    if "set_account" in actions:
        parts.append(f"set account = {actions['set_account']}")
    if "link_to_account" in actions:
        parts.append(f"link to account = {actions['link_to_account']}")
    if "add_note" in actions:
        parts.append(f'add note "{actions["add_note"]}"')
    return parts


def build_rules_prompt_section(rules: Iterable[AutomationRule]) -> str:
    """Summarize general rules so the model can apply them while parsing.

    Phone-mapped rules, account detection rules, and rules without conditions
    or without describable actions are left out.
    """
    lines: list[str] = []
    for rule in order_rules(rules):
        if rule.match_phone or rule.rule_type == RuleType.ACCOUNT_DETECTION:
            continue
        conditions = _describe_conditions(rule)
        actions = _describe_actions(rule)
        if not conditions or not actions:
            continue
        lines.append(f'- "{rule.name}": IF {" AND ".join(conditions)} THEN {", ".join(actions)}')

    if not lines:
        return ""
    return "\n".join(["AUTOMATION RULES (apply when the conditions match):", *lines])


def collect_rule_prompts(rules: Iterable[AutomationRule]) -> list[str]:
    """Free-text prompt additions attached to the user's active rules."""
    return [rule.prompt_text for rule in order_rules(rules) if rule.prompt_text]


def build_dynamic_prompts(
    rules: Iterable[AutomationRule],
    detected_account: AutomationRule | None = None,
) -> list[str]:
    """All non-empty dynamic sections, in the order they are appended.

    A rule listed more than once (phone-mapped rules with conditions belong to
    both the general and the transfer pass) is described once.
    """
    unique: dict[str, AutomationRule] = {}
    for rule in rules:
        unique.setdefault(rule.id or str(id(rule)), rule)
    rules = list(unique.values())
    sections = [
        build_account_hint(detected_account),
        *collect_rule_prompts(rules),
        build_transfer_prompt_section(rules),
        build_rules_prompt_section(rules),
    ]
    return [section for section in sections if section]
