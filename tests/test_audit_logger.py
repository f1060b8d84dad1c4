"""
Tests for the audit trail.
"""

import json

import pytest

from conciliacao.models import AuditAction, AuditEntry
from conciliacao.utils.audit_logger import AuditLogger
from tests.factories import TENANT


@pytest.fixture
def audit(tmp_path):
    return AuditLogger(TENANT, tmp_path / "reports")


def link_applied(user_id="tesoureiro"):
    return AuditEntry(
        action=AuditAction.LINK_APPLIED,
        statement_item_ids=["s1"],
        transaction_ids=["t1"],
        user_id=user_id,
        message="Link applied",
    )


def accept_failed():
    return AuditEntry(
        action=AuditAction.SUGGESTION_FAILED,
        suggestion_id="sg1",
        user_id="secretaria",
        message="Suggestion could not be accepted",
        details={"code": "invalid_suggestion_state"},
        success=False,
        error_message="Suggestion sg1 is already rejected",
    )


class TestSummary:
    def test_counts_by_action_and_error_code(self, audit):
        audit.log(link_applied())
        audit.log(AuditEntry(action=AuditAction.SUGGESTION_ACCEPTED, user_id="tesoureiro"))
        audit.log(AuditEntry(action=AuditAction.SUGGESTION_REJECTED, user_id="tesoureiro"))
        audit.log(accept_failed())

        summary = audit.summary()

        assert summary["total_entries"] == 4
        assert summary["error_count"] == 1
        assert summary["links_applied"] == 1
        assert summary["suggestions_decided"] == 2
        assert summary["error_codes"] == {"invalid_suggestion_state": 1}
        assert summary["users"] == ["secretaria", "tesoureiro"]
        assert summary["unexported"] == 4

    def test_empty_trail(self, audit):
        summary = audit.summary()

        assert summary["total_entries"] == 0
        assert summary["action_counts"] == {}
        assert summary["users"] == []


class TestExport:
    def test_writes_report_under_reports_dir(self, audit, tmp_path):
        audit.log(link_applied())
        audit.log(accept_failed())

        path = audit.export_to_file()

        assert path.parent == tmp_path / "reports"
        assert path.name.startswith(f"audit_{TENANT}_")
        report = json.loads(path.read_text(encoding="utf-8"))
        assert report["tenant_id"] == TENANT
        assert [e["action"] for e in report["entries"]] == [
            "link_applied",
            "suggestion_failed",
        ]
        assert report["summary"]["error_count"] == 1

    def test_exports_are_incremental(self, audit, tmp_path):
        audit.log(link_applied())
        first = audit.export_to_file(tmp_path / "first.json")
        audit.log(accept_failed())

        second = audit.export_to_file(tmp_path / "second.json")

        entries = json.loads(second.read_text(encoding="utf-8"))["entries"]
        assert first != second
        assert [e["suggestion_id"] for e in entries] == ["sg1"]
        assert audit.summary()["unexported"] == 0

    def test_nothing_new_writes_nothing(self, audit, tmp_path):
        assert audit.export_to_file() is None
        assert not (tmp_path / "reports").exists()
