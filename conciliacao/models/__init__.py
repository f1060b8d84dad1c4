"""Data models for the bank-statement reconciliation engine."""

from .enums import (
    AuditAction,
    FeedbackAction,
    MatchType,
    PoolKind,
    StatementDirection,
    SuggestionStatus,
    TransactionDirection,
    TransactionStatus,
)
from .entities import (
    BatchLink,
    LedgerTransaction,
    MatchSuggestion,
    PeriodFilter,
    StatementItem,
    SuggestionFeedback,
    signed_total,
    to_decimal,
)
from .reconciliation import (
    AuditEntry,
    BalanceSnapshot,
    BulkAcceptReport,
    CoverageSummary,
    IgnoreResult,
    LinkPlan,
    LinkResult,
    ScoredCandidate,
    SuggestionResult,
    match_type_for,
)

__all__ = [
    # Enums
    "AuditAction",
    "FeedbackAction",
    "MatchType",
    "PoolKind",
    "StatementDirection",
    "SuggestionStatus",
    "TransactionDirection",
    "TransactionStatus",
    # Entities
    "BatchLink",
    "LedgerTransaction",
    "MatchSuggestion",
    "PeriodFilter",
    "StatementItem",
    "SuggestionFeedback",
    "signed_total",
    "to_decimal",
    # Reconciliation
    "AuditEntry",
    "BalanceSnapshot",
    "BulkAcceptReport",
    "CoverageSummary",
    "IgnoreResult",
    "LinkPlan",
    "LinkResult",
    "ScoredCandidate",
    "SuggestionResult",
    "match_type_for",
]
