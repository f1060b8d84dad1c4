"""Enumerations for the reconciliation engine."""

from enum import Enum


class StatementDirection(str, Enum):
    """Direction of a bank statement line."""
    CREDIT = "credit"      # Money in on the bank side
    DEBIT = "debit"        # Money out on the bank side


class TransactionDirection(str, Enum):
    """Direction of a ledger transaction."""
    ENTRADA = "entrada"    # Inflow
    SAIDA = "saida"        # Outflow


class TransactionStatus(str, Enum):
    """Payment status of a ledger transaction. Only PAID is reconcilable."""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class MatchType(str, Enum):
    """
    Shape of a link between statement items and transactions.

    ONE_TO_ONE: one statement item, one transaction
    ONE_TO_MANY: one statement item, several transactions (batch links)
    MANY_TO_ONE: several statement items, one transaction
    """
    ONE_TO_ONE = "1:1"
    ONE_TO_MANY = "1:N"
    MANY_TO_ONE = "N:1"


class SuggestionStatus(str, Enum):
    """Lifecycle of a machine-scored suggestion. ACCEPTED and REJECTED are terminal."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


class FeedbackAction(str, Enum):
    """What a user did with a suggestion."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PoolKind(str, Enum):
    """Which candidate pool a cache entry holds."""
    STATEMENT_ITEMS = "statement_items"
    TRANSACTIONS = "transactions"
    SUGGESTIONS = "suggestions"


class AuditAction(str, Enum):
    """Type of audit action."""
    LINK_APPLIED = "link_applied"
    LINK_REFUSED = "link_refused"
    STATEMENT_IGNORED = "statement_ignored"
    SUGGESTION_ACCEPTED = "suggestion_accepted"
    SUGGESTION_REJECTED = "suggestion_rejected"
    SUGGESTION_FAILED = "suggestion_failed"
    BULK_ACCEPT_COMPLETED = "bulk_accept_completed"
    SUGGESTIONS_REGENERATED = "suggestions_regenerated"
