"""Tests for duplicate classification."""

from ledgerflow.schemas import DuplicateStatus
from ledgerflow.services import DuplicateClassifier, DuplicateKind

from conftest import USER_ID, make_transaction


def seed(store, **overrides):
    return store.insert_transaction(make_transaction(**overrides))


class TestDuplicateClassifier:
    """Tests for DuplicateClassifier."""

    def test_new_candidate(self, fake_store) -> None:
        """Test new candidate."""
        classifier = DuplicateClassifier(fake_store)
        assert classifier.classify_transaction(make_transaction()) is None

    def test_exact_duplicate_same_text_and_source(self, fake_store) -> None:
        """Test exact duplicate same text and source."""
        earlier = seed(fake_store)
        match = DuplicateClassifier(fake_store).classify_transaction(make_transaction())

        assert match.kind == DuplicateKind.EXACT
        assert match.duplicate_of == earlier.id
        assert match.status == DuplicateStatus.PENDING_REVIEW

    def test_same_text_from_other_source_is_not_exact(self, fake_store) -> None:
        """Test same text from other source is not exact."""
        seed(fake_store, source="nequi_sms", date="2024-11-01")
        match = DuplicateClassifier(fake_store).classify_transaction(make_transaction())
        assert match is None

    def test_near_duplicate_same_day_amount_account(self, fake_store) -> None:
        """Test near duplicate same day amount account."""
        earlier = seed(fake_store, raw_text="Bancolombia: Pagaste $50.000 en RAPPI")
        match = DuplicateClassifier(fake_store).classify_transaction(make_transaction())

        assert match.kind == DuplicateKind.NEAR
        assert match.duplicate_of == earlier.id

    def test_exact_wins_over_near(self, fake_store) -> None:
        """Test exact wins over near."""
        near = seed(fake_store, raw_text="another wording")
        exact = seed(fake_store, date="2024-10-01")
        match = DuplicateClassifier(fake_store).classify_transaction(make_transaction())

        assert match.kind == DuplicateKind.EXACT
        assert match.duplicate_of == exact.id
        assert match.duplicate_of != near.id

    def test_different_account_is_not_near(self, fake_store) -> None:
        """Test different account is not near."""
        seed(fake_store, raw_text="other", account_id="acc-nequi")
        assert DuplicateClassifier(fake_store).classify_transaction(make_transaction()) is None

    def test_near_check_needs_amount(self, fake_store) -> None:
        """Test near check needs amount."""
        seed(fake_store, raw_text="other")
        match = DuplicateClassifier(fake_store).classify(
            None, "manual", "2024-11-20", None, "acc-bancolombia", USER_ID
        )
        assert match is None

    def test_annotate_marks_every_entry(self, fake_store) -> None:
        """Test annotate marks every entry."""
        earlier = seed(fake_store)
        classifier = DuplicateClassifier(fake_store)
        match = classifier.classify_transaction(make_transaction())

        entries = [make_transaction(), make_transaction(account_id="acc-nequi")]
        classifier.annotate(entries, match)

        for entry in entries:
            assert entry.duplicate_status == DuplicateStatus.PENDING_REVIEW
            assert entry.duplicate_of == earlier.id
            assert entry.validate() == []

    def test_annotate_without_match_is_noop(self) -> None:
        """Test annotate without match is noop."""
        entry = make_transaction()
        DuplicateClassifier.annotate([entry], None)
        assert entry.duplicate_status == DuplicateStatus.NONE
        assert entry.duplicate_of is None
