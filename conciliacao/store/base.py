"""
Gateway contracts for the persistent store and the external suggestion service.

Every method is an await boundary. Implementations raise ReconciliationError
subclasses; they never retry writes on their own.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..models import (
    BatchLink,
    CoverageSummary,
    LedgerTransaction,
    LinkPlan,
    MatchSuggestion,
    PeriodFilter,
    StatementItem,
)


class EntityStore(ABC):
    """Typed access to statement items, transactions and batch links."""

    @abstractmethod
    async def list_unreconciled_statement_items(
        self,
        period: PeriodFilter,
    ) -> List[StatementItem]:
        """Unreconciled statement items in the filter, most recent first."""

    @abstractmethod
    async def list_eligible_transactions(
        self,
        period: PeriodFilter,
    ) -> List[LedgerTransaction]:
        """
        Paid transactions in the filter, most recent first, excluding any
        transaction already referenced by a linked_transaction_id or a BatchLink.
        """

    @abstractmethod
    async def get_statement_items(self, ids: Sequence[str]) -> List[StatementItem]:
        """Current state of the given statement items. Unknown ids are omitted."""

    @abstractmethod
    async def get_transactions(self, ids: Sequence[str]) -> List[LedgerTransaction]:
        """Current state of the given transactions. Unknown ids are omitted."""

    @abstractmethod
    async def apply_link(self, plan: LinkPlan) -> List[BatchLink]:
        """
        Apply every write of the plan as one atomic unit.

        Raises ConcurrentModification when, at commit time, a statement item is
        already reconciled or a transaction is already linked or not paid.
        Returns the BatchLink rows created (empty for 1:1 and N:1).
        """

    @abstractmethod
    async def ignore_statement_item(self, statement_item_id: str) -> StatementItem:
        """Mark an unreconciled item as reconciled without linking it."""

    @abstractmethod
    async def coverage(self, period: PeriodFilter) -> CoverageSummary:
        """Reconciled vs total statement items for the filter."""


class SuggestionService(ABC):
    """External scorer plus its atomic apply/reject procedures."""

    @abstractmethod
    async def generate_suggestions(
        self,
        period: PeriodFilter,
        min_score: float,
    ) -> int:
        """(Re)compute pending suggestions for the filter. Returns how many were created."""

    @abstractmethod
    async def list_pending_suggestions(
        self,
        period: PeriodFilter,
    ) -> List[MatchSuggestion]:
        """Pending suggestions for the filter, highest score first."""

    @abstractmethod
    async def get_suggestion(self, suggestion_id: str) -> Optional[MatchSuggestion]:
        """Current state of one suggestion, or None when unknown."""

    @abstractmethod
    async def apply_suggestion(self, suggestion_id: str, user_id: Optional[str]) -> None:
        """Atomically link the suggestion's entities and mark it accepted."""

    @abstractmethod
    async def reject_suggestion(self, suggestion_id: str, user_id: Optional[str]) -> None:
        """Mark the suggestion rejected and record feedback. No ledger change."""
