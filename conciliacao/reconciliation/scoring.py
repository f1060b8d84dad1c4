"""
Candidate scoring heuristic.

Ranks the eligible transaction pool against a single selected statement item.
Pure and stateless, so it is recomputed on every selection change.

Per transaction:
- direction must agree (credit <-> entrada, debit <-> saida), else score 0
- date distance: +50 within 3 days, +25 within 30 days
- amount distance: +50 when equal, +20 when under 50 currency units
"""

from decimal import Decimal
from typing import List, Sequence

from ..models import (
    LedgerTransaction,
    ScoredCandidate,
    StatementDirection,
    StatementItem,
    TransactionDirection,
)

SUGGESTION_THRESHOLD = 40

CLOSE_DATE_DAYS = 3
NEAR_DATE_DAYS = 30
CLOSE_DATE_POINTS = 50
NEAR_DATE_POINTS = 25

NEAR_VALUE_LIMIT = Decimal("50")
EXACT_VALUE_POINTS = 50
NEAR_VALUE_POINTS = 20

_DIRECTION_PAIRS = {
    StatementDirection.CREDIT: TransactionDirection.ENTRADA,
    StatementDirection.DEBIT: TransactionDirection.SAIDA,
}


def directions_match(statement: StatementItem, transaction: LedgerTransaction) -> bool:
    return _DIRECTION_PAIRS[statement.direction] == transaction.direction


def score_transaction(statement: StatementItem, transaction: LedgerTransaction) -> int:
    """Score in [0, 100] for one statement/transaction pair."""
    if not directions_match(statement, transaction):
        return 0

    score = 0

    date_diff = abs((statement.date - transaction.date).days)
    if date_diff <= CLOSE_DATE_DAYS:
        score += CLOSE_DATE_POINTS
    elif date_diff <= NEAR_DATE_DAYS:
        score += NEAR_DATE_POINTS

    value_diff = abs(statement.amount - transaction.amount)
    if value_diff == 0:
        score += EXACT_VALUE_POINTS
    elif value_diff < NEAR_VALUE_LIMIT:
        score += NEAR_VALUE_POINTS

    return score


def rank_candidates(
    selected_statements: Sequence[StatementItem],
    pool: Sequence[LedgerTransaction],
    threshold: int = SUGGESTION_THRESHOLD,
) -> List[ScoredCandidate]:
    """
    Annotate and sort the pool against the selection.

    With exactly one selected statement item the pool is scored and sorted by
    score, highest first (stable, ties keep pool order). With zero or several
    selected, scores are omitted and the pool order is kept.
    """
    if len(selected_statements) != 1:
        return [ScoredCandidate(transaction=t) for t in pool]

    statement = selected_statements[0]
    scored = []
    for transaction in pool:
        score = score_transaction(statement, transaction)
        scored.append(ScoredCandidate(
            transaction=transaction,
            score=score,
            is_suggestion=score > threshold,
        ))

    scored.sort(key=lambda c: c.score, reverse=True)
    return scored
