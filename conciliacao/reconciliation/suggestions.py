"""
Suggestion Lifecycle Manager.

Pending machine-scored suggestions move to ACCEPTED or REJECTED exactly once.
Accepting delegates to the external atomic apply procedure; rejecting records
the decision without touching statements or transactions. Bulk acceptance
runs every high-confidence accept concurrently and isolates failures per
suggestion: one failed apply never cancels or rolls back another.
"""

import asyncio
from typing import Dict, List, Optional, Set

import structlog

from ..errors import (
    InvalidSuggestionState,
    ReconciliationError,
    SuggestionInFlight,
    SuggestionNotFound,
)
from ..models import (
    AuditAction,
    AuditEntry,
    BulkAcceptReport,
    MatchSuggestion,
    PeriodFilter,
    PoolKind,
    SuggestionResult,
    SuggestionStatus,
)
from ..store.base import SuggestionService
from ..utils.audit_logger import AuditLogger
from .cache import CandidatePoolCache

logger = structlog.get_logger()

HIGH_CONFIDENCE_SCORE = 0.9

_ENTITY_POOLS = (PoolKind.STATEMENT_ITEMS, PoolKind.TRANSACTIONS)


class SuggestionLifecycleManager:
    """Accept, reject, bulk-accept and regenerate match suggestions."""

    def __init__(
        self,
        service: SuggestionService,
        cache: CandidatePoolCache,
        audit: AuditLogger,
        high_confidence_score: float = HIGH_CONFIDENCE_SCORE,
    ):
        self.service = service
        self.cache = cache
        self.audit = audit
        self.high_confidence_score = high_confidence_score
        self._in_flight: Set[str] = set()
        self._views: Dict[str, MatchSuggestion] = {}

    def is_in_flight(self, suggestion_id: str) -> bool:
        return suggestion_id in self._in_flight

    def view(self, suggestion_id: str) -> Optional[MatchSuggestion]:
        """Last known local state of a suggestion this manager has seen."""
        return self._views.get(suggestion_id)

    async def list_pending(
        self,
        period: PeriodFilter,
        refresh: bool = False,
    ) -> List[MatchSuggestion]:
        if refresh:
            self.cache.invalidate_period(period, kinds=[PoolKind.SUGGESTIONS])
        suggestions = await self.cache.get_or_load(
            PoolKind.SUGGESTIONS,
            period,
            self.service.list_pending_suggestions,
        )
        for suggestion in suggestions:
            self._views.setdefault(suggestion.id, suggestion)
        return suggestions

    async def accept(self, suggestion_id: str, user_id: Optional[str] = None) -> SuggestionResult:
        return await self._decide(suggestion_id, user_id, SuggestionStatus.ACCEPTED)

    async def reject(self, suggestion_id: str, user_id: Optional[str] = None) -> SuggestionResult:
        return await self._decide(suggestion_id, user_id, SuggestionStatus.REJECTED)

    async def _decide(
        self,
        suggestion_id: str,
        user_id: Optional[str],
        target: SuggestionStatus,
    ) -> SuggestionResult:
        if suggestion_id in self._in_flight:
            return SuggestionResult(
                suggestion_id=suggestion_id,
                error=SuggestionInFlight(
                    f"Suggestion {suggestion_id} is still being processed",
                ),
            )

        self._in_flight.add(suggestion_id)
        try:
            try:
                suggestion = await self._load_pending(suggestion_id)
                if target == SuggestionStatus.ACCEPTED:
                    await self.service.apply_suggestion(suggestion_id, user_id)
                else:
                    await self.service.reject_suggestion(suggestion_id, user_id)
                suggestion.transition(target, user_id)
            except ReconciliationError as e:
                return self._failed(suggestion_id, user_id, target, e)
        finally:
            self._in_flight.discard(suggestion_id)

        self._views[suggestion_id] = suggestion
        self.cache.invalidate_kind(PoolKind.SUGGESTIONS)
        if target == SuggestionStatus.ACCEPTED:
            self._invalidate_entity_pools(suggestion)

        self.audit.log(AuditEntry(
            action=(
                AuditAction.SUGGESTION_ACCEPTED
                if target == SuggestionStatus.ACCEPTED
                else AuditAction.SUGGESTION_REJECTED
            ),
            statement_item_ids=list(suggestion.statement_item_ids),
            transaction_ids=list(suggestion.transaction_ids),
            suggestion_id=suggestion_id,
            user_id=user_id,
            message=f"Suggestion {target.value}",
            details={"match_type": suggestion.match_type.value, "score": suggestion.score},
        ))
        return SuggestionResult(suggestion_id=suggestion_id, status=target)

    async def _load_pending(self, suggestion_id: str) -> MatchSuggestion:
        suggestion = await self.service.get_suggestion(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFound(f"Suggestion not found: {suggestion_id}")
        if not suggestion.is_pending:
            self._views[suggestion_id] = suggestion
            raise InvalidSuggestionState(
                f"Suggestion {suggestion_id} is already {suggestion.status.value}",
                details={"suggestion_id": suggestion_id, "status": suggestion.status.value},
            )
        return suggestion

    def _failed(
        self,
        suggestion_id: str,
        user_id: Optional[str],
        target: SuggestionStatus,
        error: ReconciliationError,
    ) -> SuggestionResult:
        if isinstance(error, InvalidSuggestionState):
            # Stale view: the next listing refetches
            self.cache.invalidate_kind(PoolKind.SUGGESTIONS)
        self.audit.log(AuditEntry(
            action=AuditAction.SUGGESTION_FAILED,
            suggestion_id=suggestion_id,
            user_id=user_id,
            message=f"Suggestion could not be {target.value}",
            details={"code": error.code},
            success=False,
            error_message=error.message,
        ))
        return SuggestionResult(suggestion_id=suggestion_id, error=error)

    def _invalidate_entity_pools(self, suggestion: MatchSuggestion) -> None:
        if suggestion.account_id:
            self.cache.invalidate_tags([suggestion.account_id], kinds=_ENTITY_POOLS)
        else:
            for kind in _ENTITY_POOLS:
                self.cache.invalidate_kind(kind)

    async def bulk_accept_high_confidence(
        self,
        period: PeriodFilter,
        user_id: Optional[str] = None,
    ) -> BulkAcceptReport:
        """
        Accept every pending suggestion scoring at least the high-confidence
        threshold. Waits for all of them to settle, then reports counts.
        """
        pending = await self.list_pending(period, refresh=True)
        targets = [
            s for s in pending
            if s.is_pending and s.score >= self.high_confidence_score
        ]

        outcomes = await asyncio.gather(
            *(self.accept(s.id, user_id) for s in targets),
            return_exceptions=True,
        )

        report = BulkAcceptReport()
        for suggestion, outcome in zip(targets, outcomes):
            if isinstance(outcome, SuggestionResult):
                report.results.append(outcome)
            else:
                logger.error(
                    "Unexpected failure accepting suggestion",
                    suggestion_id=suggestion.id,
                    error=repr(outcome),
                )
                report.results.append(SuggestionResult(
                    suggestion_id=suggestion.id,
                    error=ReconciliationError(str(outcome) or type(outcome).__name__),
                ))

        self.audit.log(AuditEntry(
            action=AuditAction.BULK_ACCEPT_COMPLETED,
            user_id=user_id,
            message=report.message,
            details={
                "total_attempted": report.total_attempted,
                "failed_count": report.failed_count,
                "threshold": self.high_confidence_score,
            },
            success=report.failed_count == 0,
        ))
        return report

    async def regenerate(
        self,
        period: PeriodFilter,
        min_score: float,
        user_id: Optional[str] = None,
    ) -> int:
        """Ask the external scorer to recompute suggestions for the filter."""
        created = await self.service.generate_suggestions(period, min_score)

        if period.account_id:
            self.cache.invalidate_tags([period.account_id], kinds=[PoolKind.SUGGESTIONS])
        else:
            self.cache.invalidate_kind(PoolKind.SUGGESTIONS)

        self.audit.log(AuditEntry(
            action=AuditAction.SUGGESTIONS_REGENERATED,
            user_id=user_id,
            message="Suggestions regenerated",
            details={
                "account_id": period.account_id,
                "period_start": period.period_start.isoformat(),
                "period_end": period.period_end.isoformat(),
                "min_score": min_score,
                "created": created,
            },
        ))
        return created
