"""Heuristic transfer detection.

Two stages:
1. Lexical: does the raw text read like a transfer ("transferiste",
   "enviaste", "transferencia", ...) or did extraction already classify it
   under the transfer category?
2. Identifier extraction: a 10-digit phone-like destination (optionally
   prefixed with '*') and a 4-digit origin account suffix.

Pattern lists are ordered and the first pattern that matches wins. Inputs
with two phone-shaped tokens resolve to whichever pattern is tried first.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from ..rules.engine import order_rules
from ..schemas.rules import AutomationRule, normalize_phone

logger = logging.getLogger(__name__)

TRANSFER_KEYWORDS = (
    "transferiste",
    "transferencia",
    "enviaste",
    "envío a",
    "envio a",
    "you sent",
    "transferred",
)

# Ordered: first match wins
PHONE_PATTERNS = (
    # "Transferiste $100.000 a *3104633357"
    re.compile(r"\ba\s+\*(\d{10})\b", re.IGNORECASE),
    # "a la cuenta *3104633357", "cuenta *3104633357 a la ..."
    re.compile(r"\bcuenta\s+\*(\d{10})\b", re.IGNORECASE),
    # "enviaste a 3104633357 desde tu cuenta"
    re.compile(r"\ba\s+(\d{10})\s+desde\b", re.IGNORECASE),
)

# Ordered: first match wins
ORIGIN_ACCOUNT_PATTERNS = (
    # "desde tu cuenta 2651", "desde cuenta *2651"
    re.compile(r"\bdesde\s+(?:tu\s+)?cuenta\s+\*?(\d{4})\b", re.IGNORECASE),
    # "cuenta 2651 a la cuenta ..."
    re.compile(r"\bcuenta\s+\*?(\d{4})\s+a\s+la\s+cuenta\b", re.IGNORECASE),
)


def is_transfer_message(text: str | None) -> bool:
    """True if the raw text contains a transfer-indicating phrase."""
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in TRANSFER_KEYWORDS)


def extract_phone_number(text: str | None) -> str | None:
    """Extract the destination phone (10 digits, '*' stripped)."""
    if not text:
        return None
    for pattern in PHONE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_origin_account(text: str | None) -> str | None:
    """Extract the origin account's last four digits."""
    if not text:
        return None
    for pattern in ORIGIN_ACCOUNT_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


@dataclass
class TransferDetection:
    """What the detector learned about one message."""

    is_transfer: bool
    destination_phone: str | None = None
    origin_last_four: str | None = None
    rule: AutomationRule | None = None

    @property
    def destination_account_id(self) -> str | None:
        return self.rule.transfer_to_account_id if self.rule else None


class TransferDetector:
    """Recognizes transfers and resolves their destination from phone rules.

    Transfer rules are passed in explicitly; the detector keeps no rule state.
    """

    def __init__(self, transfer_category_slug: str = "transfer") -> None:
        self.transfer_category_slug = transfer_category_slug

    def is_transfer(self, raw_text: str | None, category_slug: str | None = None) -> bool:
        return is_transfer_message(raw_text) or category_slug == self.transfer_category_slug

    def find_rule(
        self,
        phone: str,
        transfer_rules: Iterable[AutomationRule],
    ) -> AutomationRule | None:
        """Return the highest-priority rule registered for this phone."""
        wanted = normalize_phone(phone)
        for rule in order_rules(transfer_rules):
            if rule.match_phone and normalize_phone(rule.match_phone) == wanted:
                return rule
        return None

    def detect(
        self,
        raw_text: str | None,
        transfer_rules: Iterable[AutomationRule],
        category_slug: str | None = None,
    ) -> TransferDetection:
        """Classify a message and resolve its transfer destination."""
        if not self.is_transfer(raw_text, category_slug):
            return TransferDetection(is_transfer=False)

        phone = extract_phone_number(raw_text)
        origin = extract_origin_account(raw_text)
        rule = self.find_rule(phone, transfer_rules) if phone else None

        if phone and rule is None:
            logger.info("Transfer to unregistered phone %s", phone)
        elif rule is not None:
            logger.info("Transfer matched rule '%s'", rule.name)

        return TransferDetection(
            is_transfer=True,
            destination_phone=phone,
            origin_last_four=origin,
            rule=rule,
        )
