"""
In-memory reference implementations of the store gateways.

Used by the test suite and for local runs. Link writes are staged on copies
and swapped in under a lock, so a failure part-way through leaves nothing
behind and no reader ever sees half a link.
"""

import asyncio
import copy
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Set

import structlog

from ..errors import (
    ConcurrentModification,
    ImbalancedSelection,
    InvalidSuggestionState,
    StoreError,
    SuggestionNotFound,
)
from ..models import (
    BatchLink,
    CoverageSummary,
    FeedbackAction,
    LedgerTransaction,
    LinkPlan,
    MatchSuggestion,
    MatchType,
    PeriodFilter,
    StatementItem,
    SuggestionFeedback,
    SuggestionStatus,
    match_type_for,
    signed_total,
)
from .base import EntityStore, SuggestionService

logger = structlog.get_logger()


class InMemoryEntityStore(EntityStore):
    """Dictionary-backed store for one tenant."""

    def __init__(self, tenant_id: str = "default"):
        self.tenant_id = tenant_id
        self._statements: Dict[str, StatementItem] = {}
        self._transactions: Dict[str, LedgerTransaction] = {}
        self._batch_links: List[BatchLink] = []
        self._lock = asyncio.Lock()

    # Seeding (the import process and other modules own these records)

    def add_statement_items(self, items: Iterable[StatementItem]) -> None:
        for item in items:
            self._statements[item.id] = item

    def add_transactions(self, transactions: Iterable[LedgerTransaction]) -> None:
        for txn in transactions:
            self._transactions[txn.id] = txn

    @property
    def batch_links(self) -> List[BatchLink]:
        return list(self._batch_links)

    def statement_item(self, statement_id: str) -> Optional[StatementItem]:
        """Synchronous lookup for services sharing this store."""
        item = self._statements.get(statement_id)
        return copy.copy(item) if item else None

    def _linked_transaction_ids(self) -> Set[str]:
        linked = {
            s.linked_transaction_id
            for s in self._statements.values()
            if s.linked_transaction_id
        }
        linked.update(link.transaction_id for link in self._batch_links)
        return linked

    # Reads

    async def list_unreconciled_statement_items(
        self,
        period: PeriodFilter,
    ) -> List[StatementItem]:
        items = [
            copy.copy(s) for s in self._statements.values()
            if not s.reconciled
            and s.linked_transaction_id is None
            and period.matches_account(s.account_id)
            and period.contains(s.date)
        ]
        items.sort(key=lambda s: s.date, reverse=True)
        return items

    async def list_eligible_transactions(
        self,
        period: PeriodFilter,
    ) -> List[LedgerTransaction]:
        linked = self._linked_transaction_ids()
        txns = [
            copy.copy(t) for t in self._transactions.values()
            if t.is_eligible
            and t.id not in linked
            and period.matches_account(t.account_id)
            and period.contains(t.date)
        ]
        txns.sort(key=lambda t: t.date, reverse=True)
        return txns

    async def get_statement_items(self, ids: Sequence[str]) -> List[StatementItem]:
        return [copy.copy(self._statements[i]) for i in ids if i in self._statements]

    async def get_transactions(self, ids: Sequence[str]) -> List[LedgerTransaction]:
        return [copy.copy(self._transactions[i]) for i in ids if i in self._transactions]

    async def coverage(self, period: PeriodFilter) -> CoverageSummary:
        in_period = [
            s for s in self._statements.values()
            if period.matches_account(s.account_id) and period.contains(s.date)
        ]
        ids = {s.id for s in in_period}
        return CoverageSummary(
            total=len(in_period),
            reconciled=sum(1 for s in in_period if s.reconciled),
            batch_links=sum(1 for link in self._batch_links if link.statement_item_id in ids),
        )

    # Writes

    async def apply_link(self, plan: LinkPlan) -> List[BatchLink]:
        match_type = match_type_for(len(plan.statement_item_ids), len(plan.transaction_ids))

        async with self._lock:
            self._check_link_preconditions(plan)

            staged: Dict[str, StatementItem] = {}
            new_links: List[BatchLink] = []

            if match_type in (MatchType.ONE_TO_ONE, MatchType.MANY_TO_ONE):
                target = plan.transaction_ids[0]
                for statement_id in plan.statement_item_ids:
                    staged[statement_id] = self._stage_statement(statement_id, target)
            else:
                statement_id = plan.statement_item_ids[0]
                staged[statement_id] = self._stage_statement(statement_id, None)
                for transaction_id in plan.transaction_ids:
                    new_links.append(self._new_batch_link(statement_id, transaction_id))

            # Commit: nothing above touched shared state
            self._statements.update(staged)
            self._batch_links.extend(new_links)

        logger.info(
            "Link committed",
            match_type=match_type.value,
            statements=len(plan.statement_item_ids),
            transactions=len(plan.transaction_ids),
            batch_links=len(new_links),
        )
        return new_links

    async def ignore_statement_item(self, statement_item_id: str) -> StatementItem:
        async with self._lock:
            current = self._statements.get(statement_item_id)
            if current is None:
                raise StoreError(
                    f"Statement item not found: {statement_item_id}",
                    status_code=404,
                )
            if current.reconciled:
                raise ConcurrentModification(
                    f"Statement item {statement_item_id} is already reconciled",
                    details={"statement_item_ids": [statement_item_id]},
                )
            updated = replace(current, reconciled=True)
            self._statements[statement_item_id] = updated
        return copy.copy(updated)

    def _check_link_preconditions(self, plan: LinkPlan) -> None:
        """Optimistic check: every entity must still be where the caller saw it."""
        stale_statements = [
            sid for sid in plan.statement_item_ids
            if sid not in self._statements
            or self._statements[sid].reconciled
            or self._statements[sid].linked_transaction_id is not None
        ]
        linked = self._linked_transaction_ids()
        stale_transactions = [
            tid for tid in plan.transaction_ids
            if tid not in self._transactions
            or tid in linked
            or not self._transactions[tid].is_eligible
        ]
        if stale_statements or stale_transactions:
            raise ConcurrentModification(
                "Selection changed since it was loaded; refresh and try again",
                details={
                    "statement_item_ids": stale_statements,
                    "transaction_ids": stale_transactions,
                },
            )

    def _stage_statement(
        self,
        statement_id: str,
        linked_transaction_id: Optional[str],
    ) -> StatementItem:
        return replace(
            self._statements[statement_id],
            reconciled=True,
            linked_transaction_id=linked_transaction_id,
        )

    def _new_batch_link(self, statement_id: str, transaction_id: str) -> BatchLink:
        return BatchLink(
            statement_item_id=statement_id,
            transaction_id=transaction_id,
            tenant_id=self.tenant_id,
        )


class InMemorySuggestionService(SuggestionService):
    """
    Reference scorer and apply/reject procedures on top of InMemoryEntityStore.

    Generation replaces the filter's pending suggestions with 1:1 proposals
    from the local candidate heuristic.
    """

    def __init__(self, store: InMemoryEntityStore):
        self.store = store
        self._suggestions: Dict[str, MatchSuggestion] = {}
        self.feedback: List[SuggestionFeedback] = []
        self._lock = asyncio.Lock()

    def add_suggestions(self, suggestions: Iterable[MatchSuggestion]) -> None:
        for suggestion in suggestions:
            self._suggestions[suggestion.id] = suggestion

    def _in_period(self, suggestion: MatchSuggestion, period: PeriodFilter) -> bool:
        if not period.matches_account(suggestion.account_id):
            return False
        for statement_id in suggestion.statement_item_ids:
            item = self.store.statement_item(statement_id)
            if item is not None and period.contains(item.date):
                return True
        return False

    async def generate_suggestions(
        self,
        period: PeriodFilter,
        min_score: float,
    ) -> int:
        # Deferred: the scoring module lives in the engine package
        from ..reconciliation.scoring import rank_candidates

        async with self._lock:
            stale = [
                sid for sid, s in self._suggestions.items()
                if s.is_pending and period.matches_account(s.account_id)
            ]
            for sid in stale:
                del self._suggestions[sid]

            statements = await self.store.list_unreconciled_statement_items(period)
            transactions = await self.store.list_eligible_transactions(period)

            used: Set[str] = set()
            created = 0
            for statement in statements:
                # Only balanced pairs are proposed, so apply never trips the balance check
                same_account = [t for t in transactions if t.account_id == statement.account_id]
                ranked = rank_candidates([statement], same_account)
                best = next(
                    (
                        c for c in ranked
                        if c.transaction.id not in used
                        and c.transaction.signed_amount == statement.signed_amount
                    ),
                    None,
                )
                if best is None or best.score is None:
                    continue
                score = best.score / 100
                if score < min_score:
                    continue
                used.add(best.transaction.id)
                suggestion = MatchSuggestion(
                    match_type=MatchType.ONE_TO_ONE,
                    statement_item_ids=[statement.id],
                    transaction_ids=[best.transaction.id],
                    score=score,
                    account_id=statement.account_id,
                    features={
                        "heuristic_score": best.score,
                        "date_diff_days": abs((statement.date - best.transaction.date).days),
                        "value_diff": str(abs(statement.amount - best.transaction.amount)),
                    },
                )
                self._suggestions[suggestion.id] = suggestion
                created += 1

        logger.info(
            "Suggestions generated",
            account_id=period.account_id,
            removed=len(stale),
            created=created,
            min_score=min_score,
        )
        return created

    async def list_pending_suggestions(
        self,
        period: PeriodFilter,
    ) -> List[MatchSuggestion]:
        pending = [
            copy.deepcopy(s) for s in self._suggestions.values()
            if s.is_pending and self._in_period(s, period)
        ]
        pending.sort(key=lambda s: s.score, reverse=True)
        return pending

    async def get_suggestion(self, suggestion_id: str) -> Optional[MatchSuggestion]:
        suggestion = self._suggestions.get(suggestion_id)
        return copy.deepcopy(suggestion) if suggestion else None

    def _pending_or_raise(self, suggestion_id: str) -> MatchSuggestion:
        suggestion = self._suggestions.get(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFound(f"Suggestion not found: {suggestion_id}")
        if not suggestion.is_pending:
            raise InvalidSuggestionState(
                f"Suggestion {suggestion_id} is already {suggestion.status.value}",
                details={"suggestion_id": suggestion_id, "status": suggestion.status.value},
            )
        return suggestion

    async def apply_suggestion(self, suggestion_id: str, user_id: Optional[str]) -> None:
        async with self._lock:
            suggestion = self._pending_or_raise(suggestion_id)

            statements = await self.store.get_statement_items(suggestion.statement_item_ids)
            transactions = await self.store.get_transactions(suggestion.transaction_ids)
            difference = signed_total(statements) - signed_total(transactions)
            if difference != 0:
                raise ImbalancedSelection(
                    f"Suggestion {suggestion_id} does not balance",
                    details={"difference": str(difference)},
                )

            await self.store.apply_link(LinkPlan(
                match_type=suggestion.match_type,
                statement_item_ids=list(suggestion.statement_item_ids),
                transaction_ids=list(suggestion.transaction_ids),
                tenant_id=self.store.tenant_id,
            ))
            suggestion.transition(SuggestionStatus.ACCEPTED, user_id)
            self._record_feedback(suggestion, FeedbackAction.ACCEPTED, user_id)

    async def reject_suggestion(self, suggestion_id: str, user_id: Optional[str]) -> None:
        async with self._lock:
            suggestion = self._pending_or_raise(suggestion_id)
            suggestion.transition(SuggestionStatus.REJECTED, user_id)
            self._record_feedback(suggestion, FeedbackAction.REJECTED, user_id)

    def _record_feedback(
        self,
        suggestion: MatchSuggestion,
        action: FeedbackAction,
        user_id: Optional[str],
    ) -> None:
        self.feedback.append(SuggestionFeedback.for_suggestion(
            suggestion,
            action,
            user_id,
            self.store.tenant_id,
        ))
