"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import uuid4

from ..errors import EmptySelection, ReconciliationError, UnsupportedMatchShape
from .entities import BatchLink, LedgerTransaction, StatementItem
from .enums import AuditAction, MatchType, SuggestionStatus


def match_type_for(statement_count: int, transaction_count: int) -> MatchType:
    """
    Dispatch a selection to its link shape.
    A single transaction wins over a single statement item, so 1:1 is never 1:N.
    """
    if statement_count == 0 or transaction_count == 0:
        raise EmptySelection(
            "Select at least one item on each side",
            details={
                "statement_count": statement_count,
                "transaction_count": transaction_count,
            },
        )
    if transaction_count == 1:
        if statement_count == 1:
            return MatchType.ONE_TO_ONE
        return MatchType.MANY_TO_ONE
    if statement_count == 1:
        return MatchType.ONE_TO_MANY
    raise UnsupportedMatchShape(
        "Many-to-many links are not supported; split the selection",
        details={
            "statement_count": statement_count,
            "transaction_count": transaction_count,
        },
    )


@dataclass
class ScoredCandidate:
    """A transaction from the eligible pool, ranked against one statement item."""
    transaction: LedgerTransaction
    score: Optional[int] = None
    is_suggestion: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = self.transaction.to_dict()
        data["score"] = self.score
        data["is_suggestion"] = self.is_suggestion
        return data


@dataclass(frozen=True)
class BalanceSnapshot:
    """Derived totals of a selection."""
    total_statement: Decimal
    total_transaction: Decimal
    statement_count: int
    transaction_count: int

    @property
    def difference(self) -> Decimal:
        return self.total_statement - self.total_transaction

    @property
    def is_balanced(self) -> bool:
        return self.difference == 0

    @property
    def can_confirm(self) -> bool:
        """Exact equality: amounts are fixed-point, so there is no tolerance."""
        return (
            self.statement_count > 0
            and self.transaction_count > 0
            and self.is_balanced
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_statement": str(self.total_statement),
            "total_transaction": str(self.total_transaction),
            "difference": str(self.difference),
            "can_confirm": self.can_confirm,
        }


@dataclass
class LinkPlan:
    """
    The writes of one confirmed selection, decided before touching the store.

    link_to_transaction: statement items get linked_transaction_id (1:1, N:1)
    otherwise: a single statement item is reconciled and one BatchLink is
    created per transaction (1:N)
    """
    match_type: MatchType
    statement_item_ids: List[str]
    transaction_ids: List[str]
    tenant_id: str

    @property
    def link_to_transaction(self) -> bool:
        return self.match_type in (MatchType.ONE_TO_ONE, MatchType.MANY_TO_ONE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_type": self.match_type.value,
            "statement_item_ids": list(self.statement_item_ids),
            "transaction_ids": list(self.transaction_ids),
            "tenant_id": self.tenant_id,
        }


@dataclass
class LinkResult:
    """Outcome of applying a link."""
    statement_item_ids: List[str]
    transaction_ids: List[str]
    match_type: Optional[MatchType] = None
    batch_links: List[BatchLink] = field(default_factory=list)
    error: Optional[ReconciliationError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "match_type": self.match_type.value if self.match_type else None,
            "statement_item_ids": list(self.statement_item_ids),
            "transaction_ids": list(self.transaction_ids),
            "batch_links": [link.to_dict() for link in self.batch_links],
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class SuggestionResult:
    """Outcome of accepting or rejecting one suggestion."""
    suggestion_id: str
    status: Optional[SuggestionStatus] = None
    error: Optional[ReconciliationError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggestion_id": self.suggestion_id,
            "success": self.success,
            "status": self.status.value if self.status else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class BulkAcceptReport:
    """Aggregated outcome of accepting every high-confidence suggestion."""
    results: List[SuggestionResult] = field(default_factory=list)

    @property
    def total_attempted(self) -> int:
        return len(self.results)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def applied_count(self) -> int:
        return self.total_attempted - self.failed_count

    @property
    def level(self) -> str:
        """'warning' when anything failed, else 'success'."""
        return "warning" if self.failed_count > 0 else "success"

    @property
    def message(self) -> str:
        if self.failed_count > 0:
            return f"{self.applied_count} of {self.total_attempted} suggestions applied"
        return f"{self.total_attempted} suggestions applied automatically"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_attempted": self.total_attempted,
            "failed_count": self.failed_count,
            "level": self.level,
            "message": self.message,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class CoverageSummary:
    """How much of the statement has been reconciled for a filter."""
    total: int = 0
    reconciled: int = 0
    batch_links: int = 0

    @property
    def pending(self) -> int:
        return self.total - self.reconciled

    @property
    def coverage_percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.reconciled / self.total * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "reconciled": self.reconciled,
            "pending": self.pending,
            "batch_links": self.batch_links,
            "coverage_percent": self.coverage_percent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CoverageSummary":
        return cls(
            total=int(data.get("total", 0)),
            reconciled=int(data.get("reconciled", 0)),
            batch_links=int(data.get("batch_links", 0)),
        )


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    # Action
    action: AuditAction = AuditAction.LINK_APPLIED

    # Context
    statement_item_ids: List[str] = field(default_factory=list)
    transaction_ids: List[str] = field(default_factory=list)
    suggestion_id: Optional[str] = None
    user_id: Optional[str] = None

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "statement_item_ids": self.statement_item_ids,
            "transaction_ids": self.transaction_ids,
            "suggestion_id": self.suggestion_id,
            "user_id": self.user_id,
            "message": self.message,
            "details": self.details,
            "success": self.success,
            "error_message": self.error_message,
        }


@dataclass
class IgnoreResult:
    """Outcome of marking a statement item as reconciled without a link."""
    statement_item_id: str
    item: Optional[StatementItem] = None
    error: Optional[ReconciliationError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statement_item_id": self.statement_item_id,
            "success": self.success,
            "item": self.item.to_dict() if self.item else None,
            "error": self.error.to_dict() if self.error else None,
        }
