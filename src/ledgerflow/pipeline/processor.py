"""One-message pipeline orchestration.

Control flow for one inbound message:

1. Load the user's rules once and split them by pass
2. Pre-parse account detection against the raw text
3. Extraction (external model), with rule-derived prompt sections
4. Non-transactions are logged to the skipped-message table and stop here
5. Date/time normalization, account and category resolution
6. Transfer expansion into one or two entries
7. Duplicate classification on the source candidate, copied to every entry
8. Post-parse rule evaluation on the outgoing or single entry; the incoming
   side of a transfer pair is rebuilt from the result
9. Persist each entry, then post its balance delta

Every fatal error becomes a ProcessingResult with status "failed". When some
entries were already persisted before the failure, the result is flagged
inconsistent so an operator can repair the ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..extraction.client import ExtractionError
from ..extraction.prompts import build_dynamic_prompts
from ..ledger.balance import BalanceLedger, LedgerError
from ..rules.engine import RuleEngine, RuleSet
from ..schemas.rules import AutomationRule
from ..schemas.transaction import Transaction, TransactionType, TransferDirection
from ..services.duplicates import DuplicateClassifier
from ..store_client.client import StoreError
from ..transfers.detector import TransferDetector
from ..transfers.expander import TransferExpander, TransferInfo
from .dates import resolve_date_time

if TYPE_CHECKING:
    from ..config import PipelineConfig
    from ..extraction.client import GeminiExtractor
    from ..schemas.extraction import ParsedExpense
    from ..store_client import StoreClient

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Base exception for pipeline failures."""

    pass


class AccountResolutionError(PipelineError):
    """No account matched and the fallback chain is exhausted."""

    pass


class ProcessingStatus(str, Enum):
    """Outcome of one message."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ProcessingResult:
    """Structured outcome returned to the transport layer."""

    status: ProcessingStatus
    transactions: list[Transaction] = field(default_factory=list)
    transfer_info: TransferInfo | None = None
    parsed: ParsedExpense | None = None
    skip_reason: str | None = None
    error: str | None = None
    inconsistent: bool = False

    @property
    def success(self) -> bool:
        return self.status == ProcessingStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status.value,
            "transactions": [tx.to_dict() for tx in self.transactions],
        }
        if self.transfer_info is not None:
            result["transfer_info"] = self.transfer_info.to_dict()
        if self.skip_reason:
            result["skip_reason"] = self.skip_reason
        if self.error:
            result["error"] = self.error
        if self.inconsistent:
            result["inconsistent"] = True
        return result


class MessageProcessor:
    """Runs the full pipeline for one message at a time.

    Usage:
        processor = MessageProcessor(store, extractor, config.pipeline)
        result = processor.process(text, user_id)
    """

    def __init__(
        self,
        store: StoreClient,
        extractor: GeminiExtractor,
        config: PipelineConfig,
        ledger: BalanceLedger | None = None,
        rule_engine: RuleEngine | None = None,
        expander: TransferExpander | None = None,
        duplicates: DuplicateClassifier | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            store: Data store client (rules, accounts, categories, transactions).
            extractor: Text-to-record extractor.
            config: Pipeline configuration.
            ledger: Balance ledger (defaults to one without a cache).
            rule_engine: Rule engine (default instance if None).
            expander: Transfer expander (default instance if None).
            duplicates: Duplicate classifier (defaults to one over ``store``).
        """
        self.store = store
        self.extractor = extractor
        self.config = config
        self.ledger = ledger or BalanceLedger(store)
        self.rule_engine = rule_engine or RuleEngine()
        self.expander = expander or TransferExpander(
            TransferDetector(transfer_category_slug=config.transfer_category_slug)
        )
        self.duplicates = duplicates or DuplicateClassifier(store)

    def process(
        self,
        text: str,
        user_id: str | None = None,
        source: str | None = None,
        now: datetime | None = None,
    ) -> ProcessingResult:
        """Process one message end to end.

        Never raises for the known error families; they are reported in the
        returned result.
        """
        persisted: list[Transaction] = []
        try:
            return self._process(text, user_id, source, now, persisted)
        except (PipelineError, StoreError, ExtractionError, LedgerError) as e:
            inconsistent = bool(persisted)
            if inconsistent:
                transfer_ids = sorted({tx.transfer_id for tx in persisted if tx.transfer_id})
                logger.error(
                    "Message partially applied: %d entries persisted (ids=%s, transfer=%s) before failure: %s",
                    len(persisted),
                    [tx.id for tx in persisted],
                    ",".join(transfer_ids) or "-",
                    e,
                )
            else:
                logger.error("Message processing failed: %s", e)
            return ProcessingResult(
                status=ProcessingStatus.FAILED,
                transactions=list(persisted),
                error=str(e),
                inconsistent=inconsistent,
            )

    def _process(
        self,
        text: str,
        user_id: str | None,
        source: str | None,
        now: datetime | None,
        persisted: list[Transaction],
    ) -> ProcessingResult:
        user_id = user_id or self.config.default_user_id
        if not user_id:
            raise PipelineError("user_id is required")
        if not text or not text.strip():
            raise PipelineError("message text is empty")
        channel = source or self.config.default_source

        # Rules are fetched once and passed explicitly to every stage
        rules = RuleSet.partition(self.store.list_rules(user_id))
        detected = self.rule_engine.detect_account(text, rules.account_detection)

        dynamic_prompts = build_dynamic_prompts(
            [*rules.general, *rules.transfer], detected_account=detected
        )
        parsed = self.extractor.parse(text, dynamic_prompts, now=now)

        if not parsed.is_transaction:
            reason = parsed.skip_reason or "not_transaction"
            self.store.create_skipped_message(user_id, text, channel, reason, parsed.to_dict())
            logger.info("Skipped non-transactional message (%s)", reason)
            return ProcessingResult(
                status=ProcessingStatus.SKIPPED, parsed=parsed, skip_reason=reason
            )

        candidate = self._build_candidate(text, user_id, channel, parsed, detected, now)

        transfer_info: TransferInfo | None = None
        entries = [candidate]
        if self.expander.detector.is_transfer(text, parsed.category):
            missing = self.store.get_category(user_id, self.config.missing_category_slug)
            transfer_category = self.store.get_category(user_id, self.config.transfer_category_slug)
            expansion = self.expander.expand(
                candidate,
                text,
                rules.transfer,
                missing_category_id=missing.id if missing else None,
                transfer_category_id=transfer_category.id if transfer_category else None,
                category_slug=parsed.category,
            )
            entries = expansion.transactions
            transfer_info = expansion.transfer_info

        match = self.duplicates.classify_transaction(candidate)
        self.duplicates.annotate(entries, match)

        finals = self._apply_rules(entries, rules.general)

        for entry in finals:
            errors = entry.validate()
            if errors:
                raise PipelineError(f"Invalid transaction: {'; '.join(errors)}")

        for entry in finals:
            saved = self.store.insert_transaction(entry)
            persisted.append(saved)
            self.ledger.post(saved)

        logger.info("Processed message into %d transaction(s)", len(persisted))
        return ProcessingResult(
            status=ProcessingStatus.SUCCESS,
            transactions=list(persisted),
            transfer_info=transfer_info,
            parsed=parsed,
        )

    def _build_candidate(
        self,
        text: str,
        user_id: str,
        channel: str,
        parsed: ParsedExpense,
        detected: AutomationRule | None,
        now: datetime | None,
    ) -> Transaction:
        date, time = resolve_date_time(
            parsed.original_date, parsed.original_time, self.config.timezone, now
        )
        account_id = self.resolve_account(user_id, parsed, detected)

        category_id = None
        if parsed.category:
            category = self.store.get_category(user_id, parsed.category)
            category_id = category.id if category else None

        return Transaction(
            user_id=user_id,
            date=date,
            time=time,
            amount=parsed.amount,
            description=parsed.description,
            account_id=account_id,
            type=TransactionType.EXPENSE,
            source=parsed.source or channel,
            category_id=category_id,
            payment_method=parsed.payment_type,
            confidence=parsed.confidence,
            raw_text=text,
            parsed_data=parsed.to_dict(),
        )

    def resolve_account(
        self,
        user_id: str,
        parsed: ParsedExpense,
        detected: AutomationRule | None = None,
    ) -> str:
        """Pick the account a message belongs to.

        Order: extracted institution/last-four/kind, then the pre-parse
        account detection match, then the configured fallback institutions.

        Raises:
            AccountResolutionError: If nothing resolves
        """
        if parsed.bank:
            account = self.store.find_account(
                user_id, parsed.bank, parsed.last_four, parsed.account_type
            )
            if account is not None:
                return account.id

        if detected is not None and detected.actions.set_account:
            logger.debug("Using detected account from rule '%s'", detected.name)
            return detected.actions.set_account

        for institution in self.config.fallback_institutions:
            account = self.store.find_account(user_id, institution)
            if account is not None:
                logger.info("Account fell back to '%s'", institution)
                return account.id

        raise AccountResolutionError(
            f"Could not determine account for institution {parsed.bank!r}; "
            f"no fallback among {self.config.fallback_institutions}"
        )

    def _apply_rules(
        self, entries: list[Transaction], rules: list[AutomationRule]
    ) -> list[Transaction]:
        """Run the post-parse pass and keep a transfer pair mirrored.

        Only the outgoing (or single) entry is evaluated. The incoming side is
        then derived from the rewritten outgoing entry so both sides share the
        transfer id and swap account roles. When rules turn the outgoing entry
        into something other than a linked transfer, the incoming side is
        dropped.
        """
        incoming = TransferDirection.INCOMING
        primary = next(e for e in entries if e.transfer_direction != incoming)
        mirror = next((e for e in entries if e.transfer_direction == incoming), None)

        result = self.rule_engine.evaluate(primary, rules).transaction

        note = None
        if result.type == TransactionType.TRANSFER and not result.is_transfer_linked:
            # A transfer needs a destination; without one it is spent money
            note = "Transfer without destination account; recorded as expense"
        elif result.type == TransactionType.TRANSFER and result.transfer_to_account_id == result.account_id:
            note = "Transfer destination equals origin; recorded as expense"
        elif result.type != TransactionType.TRANSFER and mirror is not None:
            note = f"Transfer retyped by rules; recorded as {result.type.value}"

        if note:
            if mirror is not None:
                logger.info("Transfer %s dissolved by rules; incoming side dropped", result.transfer_id)
            self._unlink(result, note)

        if result.type != TransactionType.TRANSFER:
            return [result]

        result.transfer_direction = TransferDirection.OUTGOING
        return [result, self._mirror(result, mirror)]

    @staticmethod
    def _unlink(entry: Transaction, note: str) -> None:
        if entry.type == TransactionType.TRANSFER:
            entry.type = TransactionType.EXPENSE
        entry.transfer_to_account_id = None
        entry.transfer_id = None
        entry.transfer_direction = None
        entry.append_note(note)

    @staticmethod
    def _mirror(outgoing: Transaction, previous: Transaction | None) -> Transaction:
        """Incoming side of ``outgoing``, keeping the notes of ``previous``."""
        return outgoing.copy(
            type=TransactionType.TRANSFER,
            account_id=outgoing.transfer_to_account_id,
            transfer_to_account_id=outgoing.account_id,
            transfer_id=outgoing.transfer_id,
            transfer_direction=TransferDirection.INCOMING,
            notes=previous.notes if previous is not None else None,
            applied_rules=list(previous.applied_rules) if previous is not None else [],
        )
