"""
Error taxonomy for the reconciliation engine.

Gateways raise these; the engine catches them at its boundary and hands them
back inside typed results (LinkResult, SuggestionResult, BulkAcceptReport).
"""

from typing import Any, Optional


class ReconciliationError(Exception):
    """Base class for every failure the engine reports."""

    code = "reconciliation_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class EmptySelection(ReconciliationError):
    """One side of the selection has no items."""

    code = "empty_selection"


class UnsupportedMatchShape(ReconciliationError):
    """Many statement items against many transactions. Never coerced to a subset."""

    code = "unsupported_match_shape"


class ImbalancedSelection(ReconciliationError):
    """Signed statement total differs from signed transaction total."""

    code = "imbalanced_selection"


class ConcurrentModification(ReconciliationError):
    """An entity in the selection was reconciled or linked by another actor."""

    code = "concurrent_modification"


class InvalidSuggestionState(ReconciliationError):
    """Accept/reject on a suggestion that is no longer pending."""

    code = "invalid_suggestion_state"


class SuggestionInFlight(ReconciliationError):
    """A previous accept/reject for the same suggestion has not settled."""

    code = "suggestion_in_flight"


class SuggestionNotFound(ReconciliationError):
    code = "suggestion_not_found"


class StoreError(ReconciliationError):
    """Transport or persistence failure. The caller decides whether to retry."""

    code = "store_error"

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        details: Optional[Any] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        EmptySelection,
        UnsupportedMatchShape,
        ImbalancedSelection,
        ConcurrentModification,
        InvalidSuggestionState,
        SuggestionInFlight,
        SuggestionNotFound,
        StoreError,
    )
}
