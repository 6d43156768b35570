"""Tests for the canonical transaction record."""

import pytest

from ledgerflow.schemas import (
    AppliedRule,
    DuplicateStatus,
    ParsedExpense,
    Transaction,
    TransactionType,
    TransferDirection,
    normalize_amount,
)

from conftest import make_transaction


class TestNormalizeAmount:
    """Tests for normalize_amount."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (50000, 50000),
            (-50000, 50000),
            (119000.0, 119000),
            ("119000.5", 119001),
            ("$ 20000", 20000),
            ("n/a", None),
            ("", None),
            (None, None),
            (True, None),
            (float("nan"), None),
        ],
    )
    def test_normalize(self, value, expected) -> None:
        """Test normalize."""
        assert normalize_amount(value) == expected


class TestTransactionValidate:
    """Tests for Transaction.validate."""

    def test_valid_expense(self) -> None:
        """Test valid expense."""
        assert make_transaction().validate() == []

    def test_transfer_needs_link_and_id(self) -> None:
        """Test transfer needs link and id."""
        tx = make_transaction(type=TransactionType.TRANSFER)
        errors = tx.validate()
        assert "transfer requires transfer_to_account_id" in errors
        assert "transfer requires transfer_id" in errors

    def test_pending_review_needs_back_reference(self) -> None:
        """Test pending review needs back reference."""
        tx = make_transaction(duplicate_status=DuplicateStatus.PENDING_REVIEW)
        assert tx.validate() == ["pending_review requires duplicate_of"]

    def test_confidence_range(self) -> None:
        """Test confidence range."""
        assert make_transaction(confidence=101).validate() == [
            "confidence must be within 0-100, got 101"
        ]

    def test_missing_amount(self) -> None:
        """Test missing amount."""
        assert "amount must be numeric" in make_transaction(amount=None).validate()


class TestTransactionSerialization:
    """Tests for Transaction serialization."""

    def test_to_dict_omits_none_and_default_duplicate_status(self) -> None:
        """Test to dict omits none and default duplicate status."""
        data = make_transaction().to_dict()
        assert "category_id" not in data
        assert "duplicate_status" not in data
        assert data["type"] == "expense"

    def test_store_row_round_trip(self) -> None:
        """Test store row round trip."""
        tx = make_transaction(
            id="tx-1",
            type=TransactionType.TRANSFER,
            transfer_to_account_id="acc-nequi",
            transfer_id="transfer-1",
            transfer_direction=TransferDirection.OUTGOING,
            duplicate_status=DuplicateStatus.PENDING_REVIEW,
            duplicate_of="tx-0",
            applied_rules=[AppliedRule("rule-1", "Salary", {"set_type": "income"})],
        )
        assert Transaction.from_dict(tx.to_dict()) == tx

    def test_legacy_applied_rules_key(self) -> None:
        """Test legacy applied rules key."""
        row = {**make_transaction().to_dict(), "id": "tx-1"}
        row["applied_rules"] = [{"rule_id": "r", "rule_name": "Old", "actions": {"add_note": "x"}}]
        tx = Transaction.from_dict(row)
        assert tx.applied_rules[0].actions_applied == {"add_note": "x"}

    def test_copy_isolates_provenance(self) -> None:
        """Test copy isolates provenance."""
        tx = make_transaction(applied_rules=[AppliedRule("r", "R")])
        clone = tx.copy()
        clone.applied_rules.append(AppliedRule("s", "S"))
        assert len(tx.applied_rules) == 1

    def test_append_note(self) -> None:
        """Test append note."""
        tx = make_transaction()
        tx.append_note("a")
        tx.append_note("")
        tx.append_note("b")
        assert tx.notes == "a\nb"


class TestParsedExpense:
    """Tests for ParsedExpense."""

    def test_from_model_output(self) -> None:
        """Test from model output."""
        parsed = ParsedExpense.from_dict(
            {"amount": "119000", "description": " CODASHOP ", "confidence": 140, "last_four": 7799}
        )
        assert parsed.amount == 119000
        assert parsed.description == "CODASHOP"
        assert parsed.confidence == 100
        assert parsed.last_four == "7799"
        assert parsed.is_transaction is True
