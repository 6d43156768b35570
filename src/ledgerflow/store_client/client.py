"""
REST data store client.

The store is PostgREST-shaped: tables under /rest/v1, filters passed as query
parameters (``user_id=eq.<id>``), inserts and field-level patches. There are
no multi-statement transactions, so every method here is one independent call.
"""

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.accounts import Account, Category
from ..schemas.rules import (
    AutomationRule,
    RuleType,
    RuleValidationError,
    normalize_phone,
    validate_rule_payload,
)
from ..schemas.transaction import Transaction

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for data store errors."""

    pass


class StoreAPIError(StoreError):
    """Store returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        details: str | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.details = details

        detail_str = f"{message} ({details})" if details else message
        super().__init__(f"Store API error {status_code}: {detail_str}")


class StoreConnectionError(StoreError):
    """Failed to reach the store (network error or timeout)."""

    pass


class StoreClient:
    """
    Client for the REST data store.

    Features:
    - Rule reads (all, account-detection only, phone-mapped only, by phone)
    - Rule authoring (create, bulk create, soft delete)
    - Account resolution with progressive fallback
    - Balance read and patch
    - Transaction insert and duplicate lookups
    - Skipped-message log

    Reads are retried on transient errors; writes never are, so a failed
    insert is never silently repeated.
    """

    DEFAULT_TIMEOUT = 30
    REST_PREFIX = "/rest/v1"

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize store client.

        Args:
            base_url: Store URL (e.g., "http://localhost:54321")
            service_key: Service role key, sent as apikey and bearer token
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for reads
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        table: str,
        params: dict | None = None,
        json_data: Any = None,
    ) -> requests.Response:
        """Make a store request with error handling."""
        url = f"{self.base_url}{self.REST_PREFIX}/{table}"

        logger.debug(f"Store request: {method} {url} {params or ''}")
        if json_data is not None:
            logger.debug(f"Request body: {json.dumps(json_data, default=str)}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error to {url}: {e}")
            raise StoreConnectionError(f"Failed to connect to store at {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout for {url}: {e}")
            raise StoreConnectionError(f"Request to store timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {url}: {e}")
            raise StoreError(f"Request failed: {e}") from e

        logger.debug(f"Response status: {response.status_code}")

        if not response.ok:
            error_body = response.text
            details = None
            try:
                error_json = response.json()
                message = error_json.get("message") or response.reason
                details = error_json.get("details") or error_json.get("hint")
            except ValueError:
                message = response.reason or "request failed"

            logger.error(f"Store API error {response.status_code} on {table}: {message}")
            raise StoreAPIError(
                status_code=response.status_code,
                message=message,
                response_body=error_body,
                details=details,
            )

        return response

    def _rows(self, response: requests.Response) -> list[dict]:
        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return data

    def _first(self, response: requests.Response) -> dict | None:
        rows = self._rows(response)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _parse_rules(self, rows: Iterable[dict]) -> list[AutomationRule]:
        """Parse stored rules; malformed ones are logged and skipped."""
        rules: list[AutomationRule] = []
        for row in rows:
            try:
                rules.append(AutomationRule.from_dict(row, strict=False))
            except RuleValidationError as e:
                logger.warning(f"Skipping malformed rule {row.get('id')}: {e}")
        return rules

    def _list_rules(self, user_id: str, **filters: str) -> list[AutomationRule]:
        params = {
            "user_id": f"eq.{user_id}",
            "is_active": "eq.true",
            "deleted_at": "is.null",
            "order": "priority.desc",
            **filters,
        }
        response = self._request("GET", "automation_rules", params=params)
        return self._parse_rules(self._rows(response))

    def list_rules(self, user_id: str) -> list[AutomationRule]:
        """List active, non-deleted rules for a user, highest priority first."""
        return self._list_rules(user_id)

    def list_account_detection_rules(self, user_id: str) -> list[AutomationRule]:
        """List only account_detection rules for a user."""
        return self._list_rules(user_id, rule_type=f"eq.{RuleType.ACCOUNT_DETECTION.value}")

    def list_transfer_rules(self, user_id: str) -> list[AutomationRule]:
        """List only rules carrying a transfer phone mapping."""
        return self._list_rules(user_id, match_phone="not.is.null")

    def find_transfer_rule(self, user_id: str, phone: str) -> AutomationRule | None:
        """Resolve one rule by exact phone match ('*' prefix ignored)."""
        rules = self._list_rules(user_id, match_phone=f"eq.{normalize_phone(phone)}", limit="1")
        return rules[0] if rules else None

    def create_rule(self, rule: AutomationRule | dict) -> AutomationRule:
        """
        Create one rule.

        Raises:
            RuleValidationError: If the payload fails authoring validation
            StoreAPIError: If the store rejects the insert
        """
        payload = self._rule_payload(rule)
        response = self._request("POST", "automation_rules", json_data=payload)
        row = self._first(response) or payload
        created = AutomationRule.from_dict(row, strict=False)
        logger.info(f"Created rule '{created.name}' ({created.id})")
        return created

    def bulk_create_rules(self, rules: Iterable[AutomationRule | dict]) -> list[AutomationRule]:
        """Create several rules in a single insert."""
        payloads = [self._rule_payload(rule) for rule in rules]
        if not payloads:
            return []
        response = self._request("POST", "automation_rules", json_data=payloads)
        created = self._parse_rules(self._rows(response))
        logger.info(f"Created {len(created)} rules")
        return created

    def soft_delete_rule(self, rule_id: str) -> None:
        """Mark a rule deleted; rows stay so transaction provenance keeps resolving."""
        deleted_at = datetime.now(timezone.utc).isoformat()
        self._request(
            "PATCH",
            "automation_rules",
            params={"id": f"eq.{rule_id}"},
            json_data={"deleted_at": deleted_at, "is_active": False},
        )
        logger.info(f"Soft-deleted rule {rule_id}")

    def _rule_payload(self, rule: AutomationRule | dict) -> dict:
        data = rule.to_dict() if isinstance(rule, AutomationRule) else dict(rule)
        errors = validate_rule_payload(data)
        if errors:
            raise RuleValidationError(errors, rule_name=data.get("name"))
        data.pop("id", None)
        return data

    # ------------------------------------------------------------------
    # Accounts and categories
    # ------------------------------------------------------------------

    def find_account(
        self,
        user_id: str,
        institution: str,
        last_four: str | None = None,
        account_kind: str | None = None,
    ) -> Account | None:
        """
        Resolve an account with progressively looser filters.

        Tries (institution, last_four, kind), then (institution, last_four),
        then (institution, kind), then institution only. Filters whose value
        is missing are not attempted.
        """
        attempts: list[dict[str, str]] = []
        if last_four and account_kind:
            attempts.append({"last_four": last_four, "type": account_kind})
        if last_four:
            attempts.append({"last_four": last_four})
        if account_kind:
            attempts.append({"type": account_kind})
        attempts.append({})

        for extra in attempts:
            params = {
                "user_id": f"eq.{user_id}",
                "institution": f"eq.{institution}",
                "is_active": "eq.true",
                "limit": "1",
            }
            params.update({key: f"eq.{value}" for key, value in extra.items()})
            row = self._first(self._request("GET", "accounts", params=params))
            if row:
                return Account.from_dict(row)

        return None

    def get_account(self, account_id: str) -> Account | None:
        row = self._first(
            self._request("GET", "accounts", params={"id": f"eq.{account_id}", "limit": "1"})
        )
        return Account.from_dict(row) if row else None

    def list_accounts(self, user_id: str) -> list[Account]:
        response = self._request(
            "GET",
            "accounts",
            params={"user_id": f"eq.{user_id}", "is_active": "eq.true", "order": "name.asc"},
        )
        return [Account.from_dict(row) for row in self._rows(response)]

    def get_account_balance(self, account_id: str) -> int | None:
        """Current balance in minor units, or None if the account is unknown."""
        response = self._request(
            "GET",
            "accounts",
            params={"id": f"eq.{account_id}", "select": "balance", "limit": "1"},
        )
        row = self._first(response)
        if row is None:
            return None
        return int(row.get("balance") or 0)

    def update_account_balance(self, account_id: str, balance: int) -> None:
        self._request(
            "PATCH",
            "accounts",
            params={"id": f"eq.{account_id}"},
            json_data={"balance": balance},
        )

    def get_category(self, user_id: str, slug: str) -> Category | None:
        response = self._request(
            "GET",
            "categories",
            params={"user_id": f"eq.{user_id}", "slug": f"eq.{slug}", "limit": "1"},
        )
        row = self._first(response)
        return Category.from_dict(row) if row else None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        """Insert one transaction and return it with its generated id."""
        payload = transaction.to_dict()
        payload.pop("id", None)
        response = self._request("POST", "transactions", json_data=payload)
        row = self._first(response)
        if not row or row.get("id") is None:
            raise StoreError("Store did not return the inserted transaction")
        return Transaction.from_dict(row)

    def find_exact_duplicate(self, user_id: str, raw_text: str, source: str) -> Transaction | None:
        """Find an earlier transaction with identical raw text and source."""
        params = {
            "user_id": f"eq.{user_id}",
            "raw_text": f"eq.{raw_text}",
            "source": f"eq.{source}",
            "order": "created_at.asc",
            "limit": "1",
        }
        row = self._first(self._request("GET", "transactions", params=params))
        return Transaction.from_dict(row) if row else None

    def find_near_duplicate(
        self,
        user_id: str,
        date: str,
        amount: int,
        account_id: str,
    ) -> Transaction | None:
        """Find an earlier transaction on the same day, amount and account."""
        params = {
            "user_id": f"eq.{user_id}",
            "date": f"eq.{date}",
            "amount": f"eq.{amount}",
            "account_id": f"eq.{account_id}",
            "order": "created_at.asc",
            "limit": "1",
        }
        row = self._first(self._request("GET", "transactions", params=params))
        return Transaction.from_dict(row) if row else None

    # ------------------------------------------------------------------
    # Skipped messages
    # ------------------------------------------------------------------

    def create_skipped_message(
        self,
        user_id: str,
        raw_text: str,
        source: str,
        reason: str | None,
        parsed_data: dict | None = None,
    ) -> None:
        """Record a message the extractor classified as non-transactional."""
        self._request(
            "POST",
            "skipped_messages",
            json_data={
                "user_id": user_id,
                "raw_text": raw_text,
                "source": source,
                "reason": reason,
                "parsed_data": parsed_data,
            },
        )
