"""Test fixtures and utilities."""

from __future__ import annotations

import copy
import dataclasses
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from ledgerflow.config import PipelineConfig
from ledgerflow.rules.engine import order_rules
from ledgerflow.schemas import (
    Account,
    AutomationRule,
    Category,
    ParsedExpense,
    RuleActions,
    RuleConditions,
    RuleType,
    Transaction,
    normalize_phone,
)
from ledgerflow.store_client import StoreAPIError

USER_ID = "user-1"

# Wednesday 2024-11-20 10:15 in Bogota
FIXED_NOW = datetime(2024, 11, 20, 10, 15, tzinfo=ZoneInfo("America/Bogota"))

SAMPLE_PURCHASE_SMS = (
    "Bancolombia: Compraste $119.000,00 en CODASHOP con tu T.Deb *7799, "
    "el 23/11/2024 a las 19:47"
)
SAMPLE_TRANSFER_SMS = (
    "Bancolombia: Transferiste $100.000 desde tu cuenta 2651 a la cuenta *3104633357 "
    "el 20/11/2024 a las 09:30"
)


def make_transaction(**overrides) -> Transaction:
    """Build a candidate transaction with sensible defaults."""
    data = {
        "user_id": USER_ID,
        "date": "2024-11-20",
        "time": "10:15",
        "amount": 50000,
        "description": "Rappi",
        "account_id": "acc-bancolombia",
        "source": "bancolombia_sms",
        "raw_text": "Bancolombia: Compraste $50.000 en RAPPI",
    }
    data.update(overrides)
    return Transaction(**data)


def make_rule(
    name: str = "Rule",
    conditions: dict | None = None,
    actions: dict | None = None,
    **overrides,
) -> AutomationRule:
    """Build a validated rule from JSON-shaped conditions/actions."""
    data = {
        "id": overrides.pop("id", f"rule-{name.lower().replace(' ', '-')}"),
        "user_id": USER_ID,
        "name": name,
        "conditions": RuleConditions.from_dict(conditions or {}),
        "actions": RuleActions.from_dict(actions or {}),
    }
    data.update(overrides)
    return AutomationRule(**data)


def make_parsed(**overrides) -> ParsedExpense:
    """Extractor output for a Bancolombia debit purchase."""
    data = {
        "is_transaction": True,
        "amount": 119000,
        "description": "CODASHOP",
        "category": "software",
        "bank": "bancolombia",
        "payment_type": "debit",
        "source": "bancolombia_email",
        "confidence": 100,
        "original_date": "23/11/2024",
        "original_time": "19:47",
        "last_four": "7799",
        "account_type": "checking",
    }
    data.update(overrides)
    return ParsedExpense(**data)


class FakeStore:
    """In-memory stand-in for StoreClient.

    Implements the same read/insert/patch surface, including the
    progressive account lookup and duplicate queries.
    """

    def __init__(self) -> None:
        self.rules: list[AutomationRule] = []
        self.accounts: dict[str, Account] = {}
        self.categories: list[Category] = []
        self.transactions: list[Transaction] = []
        self.skipped: list[dict] = []
        self.balance_writes: list[tuple[str, int]] = []
        self.created_rules: list[AutomationRule] = []
        # Fail the Nth insert (1-based) with a store error
        self.fail_on_insert: int | None = None
        self._inserts = 0

    # Setup helpers

    def add_account(self, account_id: str, institution: str, **kwargs) -> Account:
        account = Account(id=account_id, user_id=USER_ID, institution=institution, **kwargs)
        self.accounts[account_id] = account
        return account

    def add_category(self, category_id: str, slug: str, type: str = "expense") -> Category:
        category = Category(id=category_id, user_id=USER_ID, slug=slug, name=slug, type=type)
        self.categories.append(category)
        return category

    # Rules

    def list_rules(self, user_id: str) -> list[AutomationRule]:
        return order_rules(r for r in self.rules if r.user_id == user_id)

    def list_account_detection_rules(self, user_id: str) -> list[AutomationRule]:
        return [r for r in self.list_rules(user_id) if r.rule_type == RuleType.ACCOUNT_DETECTION]

    def list_transfer_rules(self, user_id: str) -> list[AutomationRule]:
        return [r for r in self.list_rules(user_id) if r.match_phone]

    def find_transfer_rule(self, user_id: str, phone: str) -> AutomationRule | None:
        wanted = normalize_phone(phone)
        for rule in self.list_transfer_rules(user_id):
            if rule.match_phone == wanted:
                return rule
        return None

    def bulk_create_rules(self, rules) -> list[AutomationRule]:
        created = []
        for i, rule in enumerate(rules, start=1):
            created.append(dataclasses.replace(rule, id=f"new-{i}"))
        self.created_rules.extend(created)
        return created

    # Accounts and categories

    def find_account(self, user_id, institution, last_four=None, account_kind=None):
        candidates = [
            a
            for a in self.accounts.values()
            if a.user_id == user_id and a.institution == institution and a.is_active
        ]
        attempts = []
        if last_four and account_kind:
            attempts.append(lambda a: a.last_four == last_four and a.account_kind == account_kind)
        if last_four:
            attempts.append(lambda a: a.last_four == last_four)
        if account_kind:
            attempts.append(lambda a: a.account_kind == account_kind)
        attempts.append(lambda a: True)
        for predicate in attempts:
            for account in candidates:
                if predicate(account):
                    return account
        return None

    def list_accounts(self, user_id: str) -> list[Account]:
        return [a for a in self.accounts.values() if a.user_id == user_id]

    def get_account_balance(self, account_id: str) -> int | None:
        account = self.accounts.get(account_id)
        return account.balance if account else None

    def update_account_balance(self, account_id: str, balance: int) -> None:
        self.accounts[account_id].balance = balance
        self.balance_writes.append((account_id, balance))

    def get_category(self, user_id: str, slug: str) -> Category | None:
        for category in self.categories:
            if category.user_id == user_id and category.slug == slug:
                return category
        return None

    # Transactions

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        self._inserts += 1
        if self.fail_on_insert == self._inserts:
            raise StoreAPIError(503, "Service unavailable")
        saved = transaction.copy(id=f"tx-{len(self.transactions) + 1}")
        self.transactions.append(saved)
        return saved

    def find_exact_duplicate(self, user_id, raw_text, source):
        for tx in self.transactions:
            if tx.user_id == user_id and tx.raw_text == raw_text and tx.source == source:
                return tx
        return None

    def find_near_duplicate(self, user_id, date, amount, account_id):
        for tx in self.transactions:
            if (
                tx.user_id == user_id
                and tx.date == date
                and tx.amount == amount
                and tx.account_id == account_id
            ):
                return tx
        return None

    def create_skipped_message(self, user_id, raw_text, source, reason, parsed_data=None):
        self.skipped.append(
            {
                "user_id": user_id,
                "raw_text": raw_text,
                "source": source,
                "reason": reason,
                "parsed_data": parsed_data,
            }
        )


class FakeExtractor:
    """Returns a preset ParsedExpense and records the prompts it was given."""

    def __init__(self, parsed: ParsedExpense | None = None) -> None:
        self.parsed = parsed or make_parsed()
        self.calls: list[tuple[str, list[str]]] = []

    def parse(self, text, dynamic_prompts=None, now=None) -> ParsedExpense:
        self.calls.append((text, list(dynamic_prompts or [])))
        return copy.deepcopy(self.parsed)


@pytest.fixture
def fake_store() -> FakeStore:
    """Store with a Bancolombia debit account, a Nequi account and a cash account."""
    store = FakeStore()
    store.add_account(
        "acc-bancolombia",
        "bancolombia",
        name="Bancolombia Debito",
        last_four="7799",
        account_kind="checking",
        balance=1_000_000,
    )
    store.add_account(
        "acc-savings",
        "bancolombia",
        name="Bancolombia Ahorros",
        last_four="2651",
        account_kind="savings",
        balance=500_000,
    )
    store.add_account("acc-nequi", "nequi", name="Nequi", account_kind="savings", balance=20_000)
    store.add_account("acc-cash", "cash", name="Efectivo", account_kind="cash", balance=0)
    store.add_category("cat-software", "software")
    store.add_category("cat-missing", "missing")
    store.add_category("cat-transfer", "transfer", type="transfer")
    return store


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(default_user_id=USER_ID)


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_cache.db"
