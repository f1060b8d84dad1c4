"""
EntityStore backed by the back-office persistence API.

The server applies each link as one database transaction and re-checks the
link preconditions inside it; a 409 comes back as ConcurrentModification.
"""

from typing import List, Sequence

import structlog

from ..models import (
    BatchLink,
    CoverageSummary,
    LedgerTransaction,
    LinkPlan,
    PeriodFilter,
    StatementItem,
)
from ..store.base import EntityStore
from .rest_client import RestClient, parse_many, parse_one

logger = structlog.get_logger()


class RestEntityStore(EntityStore):
    """Statement items, transactions and batch links over HTTP."""

    def __init__(self, client: RestClient):
        self.client = client

    async def list_unreconciled_statement_items(
        self,
        period: PeriodFilter,
    ) -> List[StatementItem]:
        endpoint = "/statement-items"
        params = period.to_params()
        params["reconciled"] = "false"
        data = await self.client.get(endpoint, params=params)
        return parse_many(StatementItem.from_dict, data, endpoint)

    async def list_eligible_transactions(
        self,
        period: PeriodFilter,
    ) -> List[LedgerTransaction]:
        endpoint = "/transactions/eligible"
        data = await self.client.get(endpoint, params=period.to_params())
        return parse_many(LedgerTransaction.from_dict, data, endpoint)

    async def get_statement_items(self, ids: Sequence[str]) -> List[StatementItem]:
        if not ids:
            return []
        endpoint = "/statement-items/lookup"
        data = await self.client.read("POST", endpoint, json={"ids": list(ids)})
        return parse_many(StatementItem.from_dict, data, endpoint)

    async def get_transactions(self, ids: Sequence[str]) -> List[LedgerTransaction]:
        if not ids:
            return []
        endpoint = "/transactions/lookup"
        data = await self.client.read("POST", endpoint, json={"ids": list(ids)})
        return parse_many(LedgerTransaction.from_dict, data, endpoint)

    async def apply_link(self, plan: LinkPlan) -> List[BatchLink]:
        data = await self.client.post("/links", json=plan.to_dict())
        raw_links = parse_one(lambda body: body.get("batch_links", []), data, "/links")
        links = parse_many(BatchLink.from_dict, raw_links, "/links")
        logger.info(
            "Link committed",
            match_type=plan.match_type.value,
            statements=len(plan.statement_item_ids),
            transactions=len(plan.transaction_ids),
            batch_links=len(links),
        )
        return links

    async def ignore_statement_item(self, statement_item_id: str) -> StatementItem:
        endpoint = f"/statement-items/{statement_item_id}/ignore"
        data = await self.client.post(endpoint)
        return parse_one(StatementItem.from_dict, data, endpoint)

    async def coverage(self, period: PeriodFilter) -> CoverageSummary:
        data = await self.client.get("/coverage", params=period.to_params())
        return parse_one(CoverageSummary.from_dict, data, "/coverage")
