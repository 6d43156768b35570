"""Pipeline services."""

from ledgerflow.services.duplicates import DuplicateClassifier, DuplicateKind, DuplicateMatch

__all__ = ["DuplicateClassifier", "DuplicateKind", "DuplicateMatch"]
