"""
Client for the external suggestion scorer and its atomic apply/reject procedures.
"""

from typing import List, Optional

import structlog

from ..errors import StoreError, SuggestionNotFound
from ..models import MatchSuggestion, PeriodFilter
from ..store.base import SuggestionService
from .rest_client import RestClient, parse_many, parse_one

logger = structlog.get_logger()


class RestSuggestionService(SuggestionService):
    """Suggestion generation, listing and decisions over HTTP."""

    def __init__(self, client: RestClient):
        self.client = client

    async def generate_suggestions(
        self,
        period: PeriodFilter,
        min_score: float,
    ) -> int:
        payload = period.to_params()
        payload["min_score"] = min_score
        endpoint = "/suggestions/generate"
        data = await self.client.post(endpoint, json=payload)
        created = parse_one(lambda body: int(body.get("created", 0)), data, endpoint)
        logger.info(
            "Suggestions generated",
            account_id=period.account_id,
            created=created,
            min_score=min_score,
        )
        return created

    async def list_pending_suggestions(
        self,
        period: PeriodFilter,
    ) -> List[MatchSuggestion]:
        params = period.to_params()
        params["status"] = "pending"
        data = await self.client.get("/suggestions", params=params)
        suggestions = parse_many(MatchSuggestion.from_dict, data, "/suggestions")
        suggestions.sort(key=lambda s: s.score, reverse=True)
        return suggestions

    async def get_suggestion(self, suggestion_id: str) -> Optional[MatchSuggestion]:
        try:
            data = await self.client.get(f"/suggestions/{suggestion_id}")
        except SuggestionNotFound:
            return None
        except StoreError as e:
            if e.status_code == 404:
                return None
            raise
        return parse_one(MatchSuggestion.from_dict, data, f"/suggestions/{suggestion_id}")

    async def apply_suggestion(self, suggestion_id: str, user_id: Optional[str]) -> None:
        await self.client.post(
            f"/suggestions/{suggestion_id}/apply",
            json={"user_id": user_id},
        )

    async def reject_suggestion(self, suggestion_id: str, user_id: Optional[str]) -> None:
        await self.client.post(
            f"/suggestions/{suggestion_id}/reject",
            json={"user_id": user_id},
        )
