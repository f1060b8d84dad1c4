"""
Selection & Balance Engine.

A Selection is an immutable pair of id sets (statement side, transaction
side). The SelectionEngine owns the current Selection together with the
candidate pools it was drawn from, derives the signed totals on every toggle
and gates confirmation on an exact zero difference.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence

import structlog

from ..errors import ImbalancedSelection, ReconciliationError
from ..models import (
    BalanceSnapshot,
    LedgerTransaction,
    LinkResult,
    ScoredCandidate,
    StatementItem,
    match_type_for,
)
from .linking import LinkApplier, balance_of
from .scoring import SUGGESTION_THRESHOLD, rank_candidates

logger = structlog.get_logger()


def _toggled(ids: FrozenSet[str], item_id: str) -> FrozenSet[str]:
    return ids - {item_id} if item_id in ids else ids | {item_id}


@dataclass(frozen=True)
class Selection:
    """Two independent id sets. Toggling returns a new Selection."""
    statement_ids: FrozenSet[str] = field(default_factory=frozenset)
    transaction_ids: FrozenSet[str] = field(default_factory=frozenset)

    def toggle_statement(self, statement_id: str) -> "Selection":
        return Selection(_toggled(self.statement_ids, statement_id), self.transaction_ids)

    def toggle_transaction(self, transaction_id: str) -> "Selection":
        return Selection(self.statement_ids, _toggled(self.transaction_ids, transaction_id))

    def clear(self) -> "Selection":
        return Selection()

    @property
    def is_empty(self) -> bool:
        return not self.statement_ids and not self.transaction_ids


class SelectionEngine:
    """
    Tracks a user's two-sided selection over loaded candidate pools.

    The engine re-checks balance before handing the selection to the
    LinkApplier, which in turn re-reads both sides from the store.
    """

    def __init__(
        self,
        statements: Sequence[StatementItem],
        transactions: Sequence[LedgerTransaction],
        linker: LinkApplier,
        threshold: int = SUGGESTION_THRESHOLD,
    ):
        self._statements = {s.id: s for s in statements}
        self._transactions = {t.id: t for t in transactions}
        self.linker = linker
        self.threshold = threshold
        self.selection = Selection()

    @property
    def statements(self) -> List[StatementItem]:
        return list(self._statements.values())

    @property
    def transactions(self) -> List[LedgerTransaction]:
        return list(self._transactions.values())

    def selected_statements(self) -> List[StatementItem]:
        """Selected statement items in pool order."""
        return [s for s in self._statements.values() if s.id in self.selection.statement_ids]

    def selected_transactions(self) -> List[LedgerTransaction]:
        return [t for t in self._transactions.values() if t.id in self.selection.transaction_ids]

    def toggle_statement(self, statement_id: str) -> BalanceSnapshot:
        if statement_id not in self._statements:
            raise KeyError(f"Statement item not in pool: {statement_id}")
        self.selection = self.selection.toggle_statement(statement_id)
        return self.balance

    def toggle_transaction(self, transaction_id: str) -> BalanceSnapshot:
        if transaction_id not in self._transactions:
            raise KeyError(f"Transaction not in pool: {transaction_id}")
        self.selection = self.selection.toggle_transaction(transaction_id)
        return self.balance

    def clear(self) -> None:
        self.selection = self.selection.clear()

    @property
    def balance(self) -> BalanceSnapshot:
        return balance_of(self.selected_statements(), self.selected_transactions())

    def ranked_transactions(self) -> List[ScoredCandidate]:
        """Transaction pool ranked against the selection (scored only for a single item)."""
        return rank_candidates(
            self.selected_statements(),
            self.transactions,
            threshold=self.threshold,
        )

    async def confirm(self, user_id: Optional[str] = None) -> LinkResult:
        """
        Commit the current selection. On success the selection is cleared and
        the linked entities leave the local pools.
        """
        statements = self.selected_statements()
        transactions = self.selected_transactions()
        statement_ids = [s.id for s in statements]
        transaction_ids = [t.id for t in transactions]

        try:
            # Same order as LinkApplier: shape first, then balance
            match_type_for(len(statement_ids), len(transaction_ids))
            balance = self.balance
            if not balance.is_balanced:
                raise ImbalancedSelection(
                    f"Selection does not balance: difference {balance.difference}",
                    details=balance.to_dict(),
                )
        except ReconciliationError as error:
            logger.info("Confirmation blocked", code=error.code)
            return LinkResult(
                statement_item_ids=statement_ids,
                transaction_ids=transaction_ids,
                error=error,
            )

        result = await self.linker.apply(statement_ids, transaction_ids, user_id=user_id)
        if result.success:
            for statement_id in statement_ids:
                self._statements.pop(statement_id, None)
            for transaction_id in transaction_ids:
                self._transactions.pop(transaction_id, None)
            self.clear()
        return result
