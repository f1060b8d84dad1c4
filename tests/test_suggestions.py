"""
Tests for the suggestion lifecycle manager.
"""

import asyncio
from datetime import date

import pytest

from conciliacao.errors import StoreError
from conciliacao.models import (
    AuditAction,
    FeedbackAction,
    MatchType,
    PeriodFilter,
    PoolKind,
    SuggestionStatus,
)
from conciliacao.reconciliation.cache import CandidatePoolCache
from conciliacao.reconciliation.suggestions import SuggestionLifecycleManager
from conciliacao.store import InMemorySuggestionService
from conciliacao.utils.audit_logger import AuditLogger
from tests.factories import (
    ACCOUNT,
    OTHER_ACCOUNT,
    TENANT,
    YEAR_2024,
    make_statement,
    make_suggestion,
    make_transaction,
    seeded_store,
)


class FailingService(InMemorySuggestionService):
    """Apply procedure that fails for chosen suggestion ids."""

    def __init__(self, store, failing_ids):
        super().__init__(store)
        self.failing_ids = set(failing_ids)

    async def apply_suggestion(self, suggestion_id, user_id):
        if suggestion_id in self.failing_ids:
            raise StoreError("apply procedure failed", status_code=500)
        await super().apply_suggestion(suggestion_id, user_id)


class BlockingService(InMemorySuggestionService):
    """Apply procedure that waits until released."""

    def __init__(self, store):
        super().__init__(store)
        self.release = asyncio.Event()

    async def apply_suggestion(self, suggestion_id, user_id):
        await self.release.wait()
        await super().apply_suggestion(suggestion_id, user_id)


def five_pairs():
    statements = [make_statement(f"s{i}", amount=f"{i}0.00") for i in range(1, 6)]
    transactions = [make_transaction(f"t{i}", amount=f"{i}0.00") for i in range(1, 6)]
    suggestions = [
        make_suggestion(f"sg{i}", [f"s{i}"], [f"t{i}"], score=1.0 - i / 100)
        for i in range(1, 6)
    ]
    return statements, transactions, suggestions


def build_manager(service, tmp_path, threshold=0.9):
    return SuggestionLifecycleManager(
        service,
        CandidatePoolCache(),
        AuditLogger(TENANT, reports_dir=tmp_path),
        high_confidence_score=threshold,
    )


@pytest.fixture
def one_pair():
    store, service = seeded_store([make_statement("s1")], [make_transaction("t1")])
    service.add_suggestions([make_suggestion("sg1", ["s1"], ["t1"], score=0.8)])
    return store, service


class TestAcceptReject:
    @pytest.mark.asyncio
    async def test_accept_links_entities(self, one_pair, tmp_path):
        store, service = one_pair
        manager = build_manager(service, tmp_path)

        result = await manager.accept("sg1", "tesoureiro")

        assert result.success
        assert result.status == SuggestionStatus.ACCEPTED
        assert manager.view("sg1").status == SuggestionStatus.ACCEPTED
        [statement] = await store.get_statement_items(["s1"])
        assert statement.linked_transaction_id == "t1"
        stored = await service.get_suggestion("sg1")
        assert stored.status == SuggestionStatus.ACCEPTED
        assert stored.decided_by == "tesoureiro"
        [feedback] = service.feedback
        assert feedback.action == FeedbackAction.ACCEPTED
        assert feedback.user_id == "tesoureiro"
        assert feedback.statement_item_ids == ["s1"]

    @pytest.mark.asyncio
    async def test_reject_records_feedback_without_ledger_change(self, one_pair, tmp_path):
        store, service = one_pair
        manager = build_manager(service, tmp_path)

        result = await manager.reject("sg1", "secretaria")

        assert result.status == SuggestionStatus.REJECTED
        [feedback] = service.feedback
        assert feedback.action == FeedbackAction.REJECTED
        assert feedback.user_id == "secretaria"
        assert feedback.transaction_ids == ["t1"]
        assert feedback.tenant_id == TENANT
        [statement] = await store.get_statement_items(["s1"])
        assert not statement.reconciled

    @pytest.mark.asyncio
    async def test_terminal_suggestion_is_immutable(self, one_pair, tmp_path):
        _, service = one_pair
        manager = build_manager(service, tmp_path)
        await manager.accept("sg1", "tesoureiro")

        again = await manager.accept("sg1", "outro")
        rejected = await manager.reject("sg1", "outro")

        assert again.error.code == "invalid_suggestion_state"
        assert rejected.error.code == "invalid_suggestion_state"
        stored = await service.get_suggestion("sg1")
        assert stored.status == SuggestionStatus.ACCEPTED
        assert stored.decided_by == "tesoureiro"
        assert [f.action for f in service.feedback] == [FeedbackAction.ACCEPTED]

    @pytest.mark.asyncio
    async def test_unknown_suggestion(self, one_pair, tmp_path):
        _, service = one_pair
        manager = build_manager(service, tmp_path)

        result = await manager.accept("missing")

        assert result.error.code == "suggestion_not_found"
        [entry] = manager.audit.get_entries(AuditAction.SUGGESTION_FAILED.value)
        assert not entry.success

    @pytest.mark.asyncio
    async def test_in_flight_guard(self, tmp_path):
        store, _ = seeded_store([make_statement("s1")], [make_transaction("t1")])
        service = BlockingService(store)
        service.add_suggestions([make_suggestion("sg1", ["s1"], ["t1"])])
        manager = build_manager(service, tmp_path)

        first = asyncio.create_task(manager.accept("sg1", "a"))
        await asyncio.sleep(0)
        assert manager.is_in_flight("sg1")

        second = await manager.accept("sg1", "b")
        service.release.set()
        first_result = await first

        assert second.error.code == "suggestion_in_flight"
        assert first_result.success
        assert not manager.is_in_flight("sg1")

    @pytest.mark.asyncio
    async def test_failed_apply_leaves_suggestion_pending(self, tmp_path):
        store, _ = seeded_store([make_statement("s1")], [make_transaction("t1")])
        service = FailingService(store, ["sg1"])
        service.add_suggestions([make_suggestion("sg1", ["s1"], ["t1"])])
        manager = build_manager(service, tmp_path)

        result = await manager.accept("sg1")

        assert result.error.code == "store_error"
        assert (await service.get_suggestion("sg1")).is_pending
        assert not manager.is_in_flight("sg1")

    @pytest.mark.asyncio
    async def test_already_linked_entities_fail_accept(self, one_pair, tmp_path):
        store, service = one_pair
        service.add_suggestions([make_suggestion("sg2", ["s1"], ["t1"], score=0.7)])
        manager = build_manager(service, tmp_path)
        await manager.accept("sg1")

        result = await manager.accept("sg2")

        assert result.error.code == "concurrent_modification"
        assert (await service.get_suggestion("sg2")).is_pending


class TestBulkAccept:
    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, tmp_path):
        statements, transactions, suggestions = five_pairs()
        store, _ = seeded_store(statements, transactions)
        service = FailingService(store, ["sg3"])
        service.add_suggestions(suggestions)
        manager = build_manager(service, tmp_path)

        report = await manager.bulk_accept_high_confidence(YEAR_2024, "tesoureiro")

        assert report.total_attempted == 5
        assert report.failed_count == 1
        assert report.level == "warning"
        assert report.message == "4 of 5 suggestions applied"
        failed = [r for r in report.results if not r.success]
        assert [r.suggestion_id for r in failed] == ["sg3"]

        for i in (1, 2, 4, 5):
            assert (await service.get_suggestion(f"sg{i}")).status == SuggestionStatus.ACCEPTED
        assert (await service.get_suggestion("sg3")).is_pending
        assert sorted(f.suggestion_id for f in service.feedback) == ["sg1", "sg2", "sg4", "sg5"]
        [s3] = await store.get_statement_items(["s3"])
        assert not s3.reconciled

    @pytest.mark.asyncio
    async def test_only_high_confidence_accepted(self, tmp_path):
        statements, transactions, suggestions = five_pairs()
        store, service = seeded_store(statements, transactions)
        suggestions[4].score = 0.5
        service.add_suggestions(suggestions)
        manager = build_manager(service, tmp_path, threshold=0.9)

        report = await manager.bulk_accept_high_confidence(YEAR_2024)

        assert report.total_attempted == 4
        assert report.level == "success"
        assert report.message == "4 suggestions applied automatically"
        assert (await service.get_suggestion("sg5")).is_pending
        [entry] = manager.audit.get_entries(AuditAction.BULK_ACCEPT_COMPLETED.value)
        assert entry.details["total_attempted"] == 4

    @pytest.mark.asyncio
    async def test_nothing_to_accept(self, tmp_path):
        _, service = seeded_store()
        manager = build_manager(service, tmp_path)

        report = await manager.bulk_accept_high_confidence(YEAR_2024)

        assert report.total_attempted == 0
        assert report.failed_count == 0

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported(self, tmp_path):
        class BrokenService(InMemorySuggestionService):
            async def apply_suggestion(self, suggestion_id, user_id):
                if suggestion_id == "sg2":
                    raise RuntimeError("connection reset")
                await super().apply_suggestion(suggestion_id, user_id)

        statements, transactions, suggestions = five_pairs()
        store, _ = seeded_store(statements, transactions)
        service = BrokenService(store)
        service.add_suggestions(suggestions)
        manager = build_manager(service, tmp_path)

        report = await manager.bulk_accept_high_confidence(YEAR_2024)

        assert report.total_attempted == 5
        assert report.failed_count == 1
        assert not manager.is_in_flight("sg2")


class TestListAndRegenerate:
    @pytest.mark.asyncio
    async def test_pending_list_ordered_and_cached(self, tmp_path):
        statements, transactions, suggestions = five_pairs()
        _, service = seeded_store(statements, transactions)
        service.add_suggestions(reversed(suggestions))
        manager = build_manager(service, tmp_path)

        listed = await manager.list_pending(YEAR_2024)
        service.add_suggestions([make_suggestion("late", ["s1"], ["t2"], score=0.99)])
        cached = await manager.list_pending(YEAR_2024)
        refreshed = await manager.list_pending(YEAR_2024, refresh=True)

        assert [s.id for s in listed] == ["sg1", "sg2", "sg3", "sg4", "sg5"]
        assert len(cached) == 5
        assert len(refreshed) == 6

    @pytest.mark.asyncio
    async def test_period_filter_uses_statement_dates(self, tmp_path):
        store, service = seeded_store(
            [make_statement("s1", day=date(2023, 12, 31)), make_statement("s2")],
            [make_transaction("t1"), make_transaction("t2")],
        )
        service.add_suggestions([
            make_suggestion("old", ["s1"], ["t1"]),
            make_suggestion("new", ["s2"], ["t2"]),
            make_suggestion("other", ["s2"], ["t1"], account_id=OTHER_ACCOUNT),
        ])
        manager = build_manager(service, tmp_path)

        period = PeriodFilter(date(2024, 1, 1), date(2024, 12, 31), account_id=ACCOUNT)
        listed = await manager.list_pending(period)

        assert [s.id for s in listed] == ["new"]

    @pytest.mark.asyncio
    async def test_suggestion_with_unknown_statement_is_not_listed(self, one_pair, tmp_path):
        store, service = one_pair
        service.add_suggestions([make_suggestion("ghost", ["gone"], ["t1"], score=0.99)])
        manager = build_manager(service, tmp_path)

        listed = await manager.list_pending(YEAR_2024)

        assert [s.id for s in listed] == ["sg1"]
        assert store.statement_item("gone") is None
        lookup = store.statement_item("s1")
        lookup.reconciled = True
        assert not store.statement_item("s1").reconciled

    @pytest.mark.asyncio
    async def test_regenerate_replaces_pending(self, tmp_path):
        store, service = seeded_store(
            [
                make_statement("s1", amount="100.00"),
                make_statement("s2", amount="42.00"),
                make_statement("s3", amount="7.00"),
            ],
            [
                make_transaction("t1", amount="100.00"),
                make_transaction("t2", amount="42.00"),
            ],
        )
        service.add_suggestions([make_suggestion("stale", ["s3"], ["t1"], score=0.95)])
        manager = build_manager(service, tmp_path)
        await manager.list_pending(YEAR_2024)

        created = await manager.regenerate(YEAR_2024, min_score=0.7, user_id="tesoureiro")
        pending = await manager.list_pending(YEAR_2024)

        assert created == 2
        assert await service.get_suggestion("stale") is None
        assert {(tuple(s.statement_item_ids), tuple(s.transaction_ids)) for s in pending} == {
            (("s1",), ("t1",)),
            (("s2",), ("t2",)),
        }
        assert all(s.match_type == MatchType.ONE_TO_ONE for s in pending)
        assert all(s.score == 1.0 for s in pending)
        [entry] = manager.audit.get_entries(AuditAction.SUGGESTIONS_REGENERATED.value)
        assert entry.details["created"] == 2

    @pytest.mark.asyncio
    async def test_regenerated_suggestions_apply_cleanly(self, tmp_path):
        store, service = seeded_store(
            [make_statement("s1", amount="100.00")],
            [make_transaction("t1", amount="100.00")],
        )
        manager = build_manager(service, tmp_path)

        await manager.regenerate(YEAR_2024, min_score=0.7)
        report = await manager.bulk_accept_high_confidence(YEAR_2024)

        assert report.total_attempted == 1
        assert report.failed_count == 0
        assert await store.list_unreconciled_statement_items(YEAR_2024) == []

    @pytest.mark.asyncio
    async def test_accept_invalidates_suggestion_list(self, one_pair, tmp_path):
        _, service = one_pair
        manager = build_manager(service, tmp_path)
        await manager.list_pending(YEAR_2024)

        await manager.accept("sg1")

        assert (PoolKind.SUGGESTIONS, YEAR_2024) not in manager.cache
        assert await manager.list_pending(YEAR_2024) == []
