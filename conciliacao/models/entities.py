"""Entity models shared by the store gateways and the reconciliation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any, Iterable
from uuid import uuid4

from ..errors import InvalidSuggestionState
from .enums import (
    MatchType,
    StatementDirection,
    SuggestionStatus,
    FeedbackAction,
    TransactionDirection,
    TransactionStatus,
)

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """
    Convert a wire/user value to a fixed-point amount.
    Floats go through str() so 0.1 stays 0.10 instead of its binary expansion.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        amount = Decimal(value)
    return amount.quantize(CENT)


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class PeriodFilter:
    """
    Account/period filter for candidate pools.
    Also the cache key of every pooled read view.
    """
    period_start: date
    period_end: date
    account_id: Optional[str] = None

    def __post_init__(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end must not precede period_start")

    @classmethod
    def last_days(
        cls,
        days: int,
        account_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> "PeriodFilter":
        end = today or date.today()
        return cls(
            period_start=end - timedelta(days=days),
            period_end=end,
            account_id=account_id,
        )

    def contains(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end

    def matches_account(self, account_id: Optional[str]) -> bool:
        return self.account_id is None or self.account_id == account_id

    def to_params(self) -> Dict[str, str]:
        params = {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
        }
        if self.account_id:
            params["account_id"] = self.account_id
        return params


@dataclass
class StatementItem:
    """
    One line of an imported bank statement.
    Amount is always positive; the sign comes from the direction.
    """
    id: str
    date: date
    description: str
    amount: Decimal
    direction: StatementDirection
    account_id: str
    reconciled: bool = False
    linked_transaction_id: Optional[str] = None

    def __post_init__(self):
        self.amount = to_decimal(self.amount)
        self.direction = StatementDirection(self.direction)

    @property
    def signed_amount(self) -> Decimal:
        if self.direction == StatementDirection.DEBIT:
            return -self.amount
        return self.amount

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "direction": self.direction.value,
            "account_id": self.account_id,
            "reconciled": self.reconciled,
            "linked_transaction_id": self.linked_transaction_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatementItem":
        return cls(
            id=str(data["id"]),
            date=_parse_date(data["date"]),
            description=data.get("description") or "",
            amount=to_decimal(data["amount"]),
            direction=StatementDirection(data["direction"]),
            account_id=str(data["account_id"]),
            reconciled=bool(data.get("reconciled", False)),
            linked_transaction_id=data.get("linked_transaction_id"),
        )


@dataclass
class LedgerTransaction:
    """
    Internally recorded financial movement.
    Read-only for this engine: links are recorded on the statement side.
    """
    id: str
    date: date
    description: str
    amount: Decimal
    direction: TransactionDirection
    account_id: str
    status: TransactionStatus = TransactionStatus.PAID

    def __post_init__(self):
        self.amount = to_decimal(self.amount)
        self.direction = TransactionDirection(self.direction)
        self.status = TransactionStatus(self.status)

    @property
    def signed_amount(self) -> Decimal:
        if self.direction == TransactionDirection.SAIDA:
            return -self.amount
        return self.amount

    @property
    def is_eligible(self) -> bool:
        return self.status == TransactionStatus.PAID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "direction": self.direction.value,
            "account_id": self.account_id,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerTransaction":
        return cls(
            id=str(data["id"]),
            date=_parse_date(data["date"]),
            description=data.get("description") or "",
            amount=to_decimal(data["amount"]),
            direction=TransactionDirection(data["direction"]),
            account_id=str(data["account_id"]),
            status=TransactionStatus(data.get("status", TransactionStatus.PAID.value)),
        )


@dataclass
class BatchLink:
    """One edge of a 1:N match: a statement item paired with one of its transactions."""
    statement_item_id: str
    transaction_id: str
    tenant_id: str
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "statement_item_id": self.statement_item_id,
            "transaction_id": self.transaction_id,
            "tenant_id": self.tenant_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchLink":
        return cls(
            id=str(data["id"]),
            statement_item_id=str(data["statement_item_id"]),
            transaction_id=str(data["transaction_id"]),
            tenant_id=str(data["tenant_id"]),
        )


@dataclass
class MatchSuggestion:
    """
    Machine-scored candidate match awaiting a human decision.
    Score is in [0, 1]; features is an opaque diagnostic payload from the scorer.
    """
    match_type: MatchType
    statement_item_ids: List[str]
    transaction_ids: List[str]
    score: float
    id: str = field(default_factory=lambda: str(uuid4()))
    features: Dict[str, Any] = field(default_factory=dict)
    status: SuggestionStatus = SuggestionStatus.PENDING
    account_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None

    def __post_init__(self):
        self.match_type = MatchType(self.match_type)
        self.status = SuggestionStatus(self.status)
        if not self.statement_item_ids or not self.transaction_ids:
            raise ValueError("A suggestion needs ids on both sides")
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Suggestion score out of range: {self.score}")

    @property
    def is_pending(self) -> bool:
        return self.status == SuggestionStatus.PENDING

    def transition(self, target: SuggestionStatus, user_id: Optional[str]) -> None:
        """Move a pending suggestion to a terminal state."""
        if self.status.is_terminal or not target.is_terminal:
            raise InvalidSuggestionState(
                f"Suggestion {self.id} cannot go from {self.status.value} to {target.value}",
                details={"suggestion_id": self.id, "status": self.status.value},
            )
        self.status = target
        self.decided_by = user_id
        self.decided_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "match_type": self.match_type.value,
            "statement_item_ids": list(self.statement_item_ids),
            "transaction_ids": list(self.transaction_ids),
            "score": self.score,
            "features": self.features,
            "status": self.status.value,
            "account_id": self.account_id,
            "created_at": self.created_at.isoformat(),
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchSuggestion":
        return cls(
            id=str(data["id"]),
            match_type=MatchType(data["match_type"]),
            statement_item_ids=[str(i) for i in data["statement_item_ids"]],
            transaction_ids=[str(i) for i in data["transaction_ids"]],
            score=float(data["score"]),
            features=data.get("features") or {},
            status=SuggestionStatus(data.get("status", SuggestionStatus.PENDING.value)),
            account_id=data.get("account_id"),
            created_at=_parse_datetime(data.get("created_at")) or datetime.utcnow(),
            decided_by=data.get("decided_by"),
            decided_at=_parse_datetime(data.get("decided_at")),
        )


@dataclass
class SuggestionFeedback:
    """Record of a human decision on a suggestion, kept for retraining the scorer."""
    suggestion_id: str
    action: FeedbackAction
    match_type: MatchType
    statement_item_ids: List[str]
    transaction_ids: List[str]
    score: float
    user_id: Optional[str]
    tenant_id: str
    model_version: str = "v1"
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def for_suggestion(
        cls,
        suggestion: MatchSuggestion,
        action: FeedbackAction,
        user_id: Optional[str],
        tenant_id: str,
    ) -> "SuggestionFeedback":
        return cls(
            suggestion_id=suggestion.id,
            action=action,
            match_type=suggestion.match_type,
            statement_item_ids=list(suggestion.statement_item_ids),
            transaction_ids=list(suggestion.transaction_ids),
            score=suggestion.score,
            user_id=user_id,
            tenant_id=tenant_id,
        )


def signed_total(items: Iterable[Any]) -> Decimal:
    """Sum of signed amounts for statement items or transactions."""
    return sum((item.signed_amount for item in items), Decimal("0.00"))
