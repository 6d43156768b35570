"""Tests for rule condition matching."""

import re

import pytest

from ledgerflow.rules import ConditionMatcher, matches_conditions
from ledgerflow.schemas import ConditionLogic, RuleConditions

from conftest import make_transaction


def conditions(**fields) -> RuleConditions:
    return RuleConditions.from_dict(fields)


class TestKeywordConditions:
    """description_contains / raw_text_contains."""

    def test_description_contains_is_case_insensitive(self) -> None:
        """Test description contains is case insensitive."""
        tx = make_transaction(description="Pago NOMINA empresa")
        assert matches_conditions(tx, conditions(description_contains=["nomina"]))

    def test_or_logic_needs_any_keyword(self) -> None:
        """Test or logic needs any keyword."""
        tx = make_transaction(description="Pago nomina")
        cond = conditions(description_contains=["salario", "nomina"])
        assert matches_conditions(tx, cond, ConditionLogic.OR)

    def test_and_logic_needs_every_keyword(self) -> None:
        """Test and logic needs every keyword."""
        tx = make_transaction(description="Pago nomina")
        cond = conditions(description_contains=["pago", "salario"])
        assert not matches_conditions(tx, cond, ConditionLogic.AND)

        tx = make_transaction(description="Pago salario mensual")
        assert matches_conditions(tx, cond, ConditionLogic.AND)

    def test_raw_text_contains_reads_raw_text_not_description(self) -> None:
        """Test raw text contains reads raw text not description."""
        tx = make_transaction(description="CODASHOP", raw_text="Bancolombia T.Deb *7799")
        assert matches_conditions(tx, conditions(raw_text_contains=["7799"]))
        assert not matches_conditions(tx, conditions(description_contains=["7799"]))

    def test_mapping_subject_for_pre_parse_pass(self) -> None:
        """Test mapping subject for pre parse pass."""
        subject = {"raw_text": "Nequi: Pagaste $5.000 en TIENDA"}
        cond = conditions(raw_text_contains=["nequi"])
        assert ConditionMatcher().matches(subject, cond)

    def test_missing_field_on_subject_does_not_match(self) -> None:
        """Test missing field on subject does not match."""
        assert not matches_conditions({}, conditions(description_contains=["x"]))


class TestRegexCondition:
    """Tests for the description regex condition."""

    def test_regex_is_case_insensitive_search(self) -> None:
        """Test regex is case insensitive search."""
        tx = make_transaction(description="Transferencia NOMINA 11/2024")
        assert matches_conditions(tx, conditions(description_regex=r"nomina\s+\d+"))

    def test_regex_no_match(self) -> None:
        """Test regex no match."""
        tx = make_transaction(description="Rappi")
        assert not matches_conditions(tx, conditions(description_regex=r"^uber"))

    def test_invalid_regex_raises_re_error(self) -> None:
        """Test invalid regex raises re error."""
        # Bypasses boundary validation the way a legacy stored rule could
        cond = RuleConditions(description_regex="([unclosed")
        with pytest.raises(re.error):
            ConditionMatcher().matches(make_transaction(), cond)


class TestAmountConditions:
    """Tests for amount range and equality conditions."""

    def test_amount_between_is_inclusive(self) -> None:
        """Test amount between is inclusive."""
        cond = conditions(amount_between=[10000, 50000])
        assert matches_conditions(make_transaction(amount=10000), cond)
        assert matches_conditions(make_transaction(amount=50000), cond)
        assert not matches_conditions(make_transaction(amount=50001), cond)

    def test_amount_equals(self) -> None:
        """Test amount equals."""
        cond = conditions(amount_equals=50000)
        assert matches_conditions(make_transaction(amount=50000), cond)
        assert not matches_conditions(make_transaction(amount=49999), cond)

    def test_missing_amount_is_non_matching(self) -> None:
        """Test missing amount is non matching."""
        tx = make_transaction(amount=None)
        assert not matches_conditions(tx, conditions(amount_between=[0, 100]))
        assert not matches_conditions(tx, conditions(amount_equals=0))

    def test_non_numeric_amount_on_mapping_is_non_matching(self) -> None:
        """Test non numeric amount on mapping is non matching."""
        subject = {"amount": "n/a"}
        assert not matches_conditions(subject, conditions(amount_equals=10))

    def test_string_amount_is_normalized(self) -> None:
        """Test string amount is normalized."""
        subject = {"amount": "50000"}
        assert matches_conditions(subject, conditions(amount_equals=50000))


class TestOtherConditions:
    """Tests for account and source conditions."""

    def test_from_account_exact(self) -> None:
        """Test from account exact."""
        tx = make_transaction(account_id="acc-nequi")
        assert matches_conditions(tx, conditions(from_account="acc-nequi"))
        assert not matches_conditions(tx, conditions(from_account="acc-nequi-2"))

    def test_source_membership(self) -> None:
        """Test source membership."""
        tx = make_transaction(source="nequi_sms")
        assert matches_conditions(tx, conditions(source=["bancolombia_email", "nequi_sms"]))
        assert not matches_conditions(tx, conditions(source=["manual"]))

    def test_fields_are_anded_regardless_of_logic(self) -> None:
        """Test fields are anded regardless of logic."""
        tx = make_transaction(description="Rappi", amount=90000)
        cond = conditions(description_contains=["rappi"], amount_between=[0, 50000])
        assert not matches_conditions(tx, cond, ConditionLogic.OR)

    def test_empty_conditions_match_everything(self) -> None:
        """Test empty conditions match everything."""
        assert matches_conditions(make_transaction(), RuleConditions())
