"""
Reconciliation Engine - entry point for the back-office screens.

Wires the candidate pools, the link applier and the suggestion lifecycle
around one EntityStore and one SuggestionService:
1. Candidate pools (cached per account/period, filtered by description)
2. Candidate ranking for a single selected statement item
3. Manual links through a SelectionEngine or directly by ids
4. Ignore / coverage
5. Suggestion listing, accept, reject, bulk accept and regeneration
"""

from typing import List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..errors import ReconciliationError
from ..models import (
    AuditAction,
    AuditEntry,
    BulkAcceptReport,
    CoverageSummary,
    IgnoreResult,
    LedgerTransaction,
    LinkResult,
    MatchSuggestion,
    PeriodFilter,
    PoolKind,
    ScoredCandidate,
    StatementItem,
    SuggestionResult,
)
from ..store.base import EntityStore, SuggestionService
from ..utils.audit_logger import AuditLogger
from ..utils.text_search import filter_by_description
from .cache import CandidatePoolCache
from .linking import LinkApplier
from .scoring import rank_candidates
from .selection import SelectionEngine
from .suggestions import SuggestionLifecycleManager

logger = structlog.get_logger()


class ReconciliationEngine:
    """
    Facade over the reconciliation components for one tenant.

    Reads go through the candidate pool cache; every mutation invalidates the
    pools it touched so the next read re-fetches from the store.
    """

    def __init__(
        self,
        store: EntityStore,
        suggestion_service: SuggestionService,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.settings = settings or get_settings()
        self.tenant_id = self.settings.tenant_id
        self.store = store
        self.suggestion_service = suggestion_service
        self.cache = CandidatePoolCache()
        self.audit = audit or AuditLogger(self.tenant_id, self.settings.reports_dir)
        self.linker = LinkApplier(store, self.cache, self.audit, self.tenant_id)
        self.suggestions = SuggestionLifecycleManager(
            suggestion_service,
            self.cache,
            self.audit,
            high_confidence_score=self.settings.high_confidence_score,
        )

    def default_period(self, account_id: Optional[str] = None) -> PeriodFilter:
        return PeriodFilter.last_days(self.settings.default_period_days, account_id)

    # Candidate pools

    async def list_statement_items(
        self,
        period: PeriodFilter,
        search: Optional[str] = None,
    ) -> List[StatementItem]:
        """Unreconciled statement items, minus items carrying an ignored marker."""
        items = await self.cache.get_or_load(
            PoolKind.STATEMENT_ITEMS,
            period,
            self.store.list_unreconciled_statement_items,
        )
        return filter_by_description(
            items,
            search,
            excluded_markers=self.settings.ignored_description_markers,
            threshold=self.settings.search_similarity_threshold,
        )

    async def list_transactions(
        self,
        period: PeriodFilter,
        search: Optional[str] = None,
    ) -> List[LedgerTransaction]:
        txns = await self.cache.get_or_load(
            PoolKind.TRANSACTIONS,
            period,
            self.store.list_eligible_transactions,
        )
        return filter_by_description(
            txns,
            search,
            threshold=self.settings.search_similarity_threshold,
        )

    async def ranked_transactions(
        self,
        period: PeriodFilter,
        statement_ids: Sequence[str] = (),
        search: Optional[str] = None,
    ) -> List[ScoredCandidate]:
        """Eligible transactions ranked against the selected statement items."""
        selected = await self.store.get_statement_items(list(statement_ids)) if statement_ids else []
        pool = await self.list_transactions(period, search)
        return rank_candidates(
            selected,
            pool,
            threshold=self.settings.suggestion_threshold,
        )

    async def open_selection(
        self,
        period: PeriodFilter,
        statement_search: Optional[str] = None,
        transaction_search: Optional[str] = None,
    ) -> SelectionEngine:
        """Start an interactive selection over the current pools of the filter."""
        statements = await self.list_statement_items(period, statement_search)
        transactions = await self.list_transactions(period, transaction_search)
        return SelectionEngine(
            statements,
            transactions,
            self.linker,
            threshold=self.settings.suggestion_threshold,
        )

    # Manual links

    async def apply_link(
        self,
        statement_ids: Sequence[str],
        transaction_ids: Sequence[str],
        user_id: Optional[str] = None,
    ) -> LinkResult:
        return await self.linker.apply(statement_ids, transaction_ids, user_id=user_id)

    async def ignore_statement_item(
        self,
        statement_item_id: str,
        user_id: Optional[str] = None,
    ) -> IgnoreResult:
        """Mark a bank line as reconciled without linking it (fees, noise)."""
        result = IgnoreResult(statement_item_id=statement_item_id)
        try:
            result.item = await self.store.ignore_statement_item(statement_item_id)
        except ReconciliationError as e:
            result.error = e
            self.audit.log(AuditEntry(
                action=AuditAction.STATEMENT_IGNORED,
                statement_item_ids=[statement_item_id],
                user_id=user_id,
                message="Statement item could not be ignored",
                details={"code": e.code},
                success=False,
                error_message=e.message,
            ))
            return result

        self.cache.invalidate_tags(
            [result.item.account_id],
            [result.item.date],
            kinds=[PoolKind.STATEMENT_ITEMS],
        )
        self.audit.log(AuditEntry(
            action=AuditAction.STATEMENT_IGNORED,
            statement_item_ids=[statement_item_id],
            user_id=user_id,
            message="Statement item ignored",
            details={"amount": str(result.item.amount), "description": result.item.description},
        ))
        return result

    async def coverage(self, period: PeriodFilter) -> CoverageSummary:
        summary = await self.store.coverage(period)
        logger.debug(
            "Coverage computed",
            account_id=period.account_id,
            total=summary.total,
            reconciled=summary.reconciled,
        )
        return summary

    # Suggestions

    async def list_pending_suggestions(self, period: PeriodFilter) -> List[MatchSuggestion]:
        return await self.suggestions.list_pending(period)

    async def accept_suggestion(
        self,
        suggestion_id: str,
        user_id: Optional[str] = None,
    ) -> SuggestionResult:
        return await self.suggestions.accept(suggestion_id, user_id)

    async def reject_suggestion(
        self,
        suggestion_id: str,
        user_id: Optional[str] = None,
    ) -> SuggestionResult:
        return await self.suggestions.reject(suggestion_id, user_id)

    async def bulk_accept_high_confidence(
        self,
        period: PeriodFilter,
        user_id: Optional[str] = None,
    ) -> BulkAcceptReport:
        report = await self.suggestions.bulk_accept_high_confidence(period, user_id)
        log = logger.warning if report.level == "warning" else logger.info
        log(
            report.message,
            total_attempted=report.total_attempted,
            failed_count=report.failed_count,
        )
        return report

    async def regenerate_suggestions(
        self,
        period: PeriodFilter,
        min_score: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> int:
        if min_score is None:
            min_score = self.settings.regenerate_min_score
        return await self.suggestions.regenerate(period, min_score, user_id)
