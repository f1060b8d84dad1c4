"""Reconciliation engine components."""

from .cache import CandidatePoolCache
from .scoring import rank_candidates, score_transaction
from .linking import LinkApplier
from .selection import Selection, SelectionEngine
from .suggestions import SuggestionLifecycleManager
from .engine import ReconciliationEngine

__all__ = [
    "CandidatePoolCache",
    "rank_candidates",
    "score_transaction",
    "LinkApplier",
    "Selection",
    "SelectionEngine",
    "SuggestionLifecycleManager",
    "ReconciliationEngine",
]
