"""
Link Application Protocol.

Turns a confirmed selection into one of three link shapes and commits it as
a single atomic store call:

- one transaction (1:1, N:1): every statement item is reconciled and points
  at that transaction through linked_transaction_id
- one statement item, several transactions (1:N): the statement item is
  reconciled without linked_transaction_id and one BatchLink per transaction
  is inserted
- several on both sides: refused with UnsupportedMatchShape

Everything is re-read from the store and re-validated before the write; the
caller's own balance check is never trusted on its own.
"""

from typing import Iterable, List, Optional, Sequence

import structlog

from ..errors import ConcurrentModification, ImbalancedSelection, ReconciliationError
from ..models import (
    AuditAction,
    AuditEntry,
    BalanceSnapshot,
    LedgerTransaction,
    LinkPlan,
    LinkResult,
    StatementItem,
    match_type_for,
    signed_total,
)
from ..store.base import EntityStore
from ..utils.audit_logger import AuditLogger
from .cache import CandidatePoolCache

logger = structlog.get_logger()


def unique_ids(ids: Iterable[str]) -> List[str]:
    """Drop repeated ids, keeping first-seen order."""
    return list(dict.fromkeys(ids))


def balance_of(
    statements: Sequence[StatementItem],
    transactions: Sequence[LedgerTransaction],
) -> BalanceSnapshot:
    return BalanceSnapshot(
        total_statement=signed_total(statements),
        total_transaction=signed_total(transactions),
        statement_count=len(statements),
        transaction_count=len(transactions),
    )


class LinkApplier:
    """Validates and commits manual links, then invalidates the affected pools."""

    def __init__(
        self,
        store: EntityStore,
        cache: CandidatePoolCache,
        audit: AuditLogger,
        tenant_id: str,
    ):
        self.store = store
        self.cache = cache
        self.audit = audit
        self.tenant_id = tenant_id

    async def apply(
        self,
        statement_ids: Sequence[str],
        transaction_ids: Sequence[str],
        user_id: Optional[str] = None,
    ) -> LinkResult:
        statement_ids = unique_ids(statement_ids)
        transaction_ids = unique_ids(transaction_ids)
        result = LinkResult(
            statement_item_ids=statement_ids,
            transaction_ids=transaction_ids,
        )

        try:
            result.match_type = match_type_for(len(statement_ids), len(transaction_ids))

            statements = await self.store.get_statement_items(statement_ids)
            transactions = await self.store.get_transactions(transaction_ids)
            self._check_current(statement_ids, transaction_ids, statements, transactions)

            balance = balance_of(statements, transactions)
            if not balance.is_balanced:
                raise ImbalancedSelection(
                    f"Selection does not balance: difference {balance.difference}",
                    details=balance.to_dict(),
                )

            result.batch_links = await self.store.apply_link(LinkPlan(
                match_type=result.match_type,
                statement_item_ids=statement_ids,
                transaction_ids=transaction_ids,
                tenant_id=self.tenant_id,
            ))

        except ReconciliationError as e:
            result.error = e
            self.audit.log(AuditEntry(
                action=AuditAction.LINK_REFUSED,
                statement_item_ids=statement_ids,
                transaction_ids=transaction_ids,
                user_id=user_id,
                message="Link refused",
                details={"code": e.code, "details": e.details},
                success=False,
                error_message=e.message,
            ))
            return result

        self._invalidate(statements, transactions)
        self.audit.log(AuditEntry(
            action=AuditAction.LINK_APPLIED,
            statement_item_ids=statement_ids,
            transaction_ids=transaction_ids,
            user_id=user_id,
            message="Link applied",
            details={
                "match_type": result.match_type.value,
                "amount": str(balance.total_statement),
                "batch_links": len(result.batch_links),
            },
        ))
        return result

    def _check_current(
        self,
        statement_ids: Sequence[str],
        transaction_ids: Sequence[str],
        statements: Sequence[StatementItem],
        transactions: Sequence[LedgerTransaction],
    ) -> None:
        found_statements = {s.id for s in statements}
        found_transactions = {t.id for t in transactions}
        stale_statements = [
            sid for sid in statement_ids if sid not in found_statements
        ] + [
            s.id for s in statements
            if s.reconciled or s.linked_transaction_id is not None
        ]
        stale_transactions = [
            tid for tid in transaction_ids if tid not in found_transactions
        ] + [t.id for t in transactions if not t.is_eligible]

        if stale_statements or stale_transactions:
            raise ConcurrentModification(
                "Selection changed since it was loaded; refresh and try again",
                details={
                    "statement_item_ids": stale_statements,
                    "transaction_ids": stale_transactions,
                },
            )

    def _invalidate(
        self,
        statements: Sequence[StatementItem],
        transactions: Sequence[LedgerTransaction],
    ) -> None:
        accounts = {s.account_id for s in statements} | {t.account_id for t in transactions}
        dates = [s.date for s in statements] + [t.date for t in transactions]
        self.cache.invalidate_tags(accounts, dates)
