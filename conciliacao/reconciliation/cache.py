"""
Tag-based cache of candidate pools.

Entries are keyed by (pool kind, account, period). Mutations invalidate only
the entries whose tags they touch: the accounts involved (plus the
all-accounts views) and the periods containing the affected dates. Entries
are dropped and re-fetched, never patched.

Every key carries a generation number that each invalidation bumps, loads in
flight included. A load stores its result only if the generation it started
under is still current, so a snapshot taken before a mutation never outlives
that mutation's invalidation.
"""

from datetime import date
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

import structlog

from ..models import PeriodFilter, PoolKind

logger = structlog.get_logger()

CacheKey = Tuple[PoolKind, PeriodFilter]


class CandidatePoolCache:
    """Read-mostly cache of unreconciled pools and pending suggestion lists."""

    def __init__(self):
        self._entries: Dict[CacheKey, List[Any]] = {}
        self._generations: Dict[CacheKey, int] = {}
        self._loading: Dict[CacheKey, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def generation(self, key: CacheKey) -> int:
        return self._generations.get(key, 0)

    async def get_or_load(
        self,
        kind: PoolKind,
        period: PeriodFilter,
        loader: Callable[[PeriodFilter], Awaitable[List[Any]]],
    ) -> List[Any]:
        key = (kind, period)
        if key in self._entries:
            return list(self._entries[key])

        started = self.generation(key)
        self._loading[key] = self._loading.get(key, 0) + 1
        try:
            loaded = await loader(period)
        finally:
            self._loading[key] -= 1
            if not self._loading[key]:
                del self._loading[key]

        if self.generation(key) == started:
            self._entries[key] = loaded
        else:
            logger.debug(
                "Discarded stale pool load",
                kind=kind.value,
                account_id=period.account_id,
            )
        return list(loaded)

    def invalidate_period(
        self,
        period: PeriodFilter,
        kinds: Optional[Iterable[PoolKind]] = None,
    ) -> int:
        """Drop the entries of exactly this filter key."""
        wanted = set(kinds) if kinds is not None else set(PoolKind)
        return self._drop([
            key for key in self._known_keys()
            if key[1] == period and key[0] in wanted
        ])

    def invalidate_tags(
        self,
        account_ids: Iterable[str],
        dates: Iterable[date] = (),
        kinds: Optional[Iterable[PoolKind]] = None,
    ) -> int:
        """
        Drop entries that could contain an entity of the given accounts on the
        given dates. With no dates, every period of those accounts is dropped.
        """
        accounts = set(account_ids)
        days = list(dates)
        wanted = set(kinds) if kinds is not None else set(PoolKind)

        def touched(key: CacheKey) -> bool:
            kind, period = key
            if kind not in wanted:
                return False
            if period.account_id is not None and period.account_id not in accounts:
                return False
            return not days or any(period.contains(d) for d in days)

        return self._drop([key for key in self._known_keys() if touched(key)])

    def invalidate_kind(self, kind: PoolKind) -> int:
        return self._drop([key for key in self._known_keys() if key[0] == kind])

    def clear(self) -> None:
        self._drop(list(self._known_keys()))

    def _known_keys(self) -> Set[CacheKey]:
        return set(self._entries) | set(self._loading)

    def _drop(self, keys: List[CacheKey]) -> int:
        dropped = 0
        for key in keys:
            self._generations[key] = self.generation(key) + 1
            if self._entries.pop(key, None) is not None:
                dropped += 1
        if dropped:
            logger.debug("Candidate pools invalidated", entries=dropped)
        return dropped
