"""
Audit logging for reconciliation decisions.
"""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog

from ..config import get_settings
from ..models import AuditAction, AuditEntry

logger = structlog.get_logger()

_DECISIONS = (AuditAction.SUGGESTION_ACCEPTED, AuditAction.SUGGESTION_REJECTED)


class AuditLogger:
    """
    Audit trail of links, ignores and suggestion decisions for one tenant.

    Entries are kept in memory and mirrored to structlog. Exports are
    incremental: each file holds only the entries logged since the previous
    export, so a shutdown flush never duplicates an earlier manual one.
    """

    def __init__(self, tenant_id: str, reports_dir: Optional[Path] = None):
        self.tenant_id = tenant_id
        self.entries: List[AuditEntry] = []
        self.reports_dir = reports_dir or get_settings().reports_dir
        self._exported = 0

    def log(self, entry: AuditEntry) -> None:
        """Add an audit entry."""
        self.entries.append(entry)

        log = logger.info if entry.success else logger.warning
        log(
            entry.message,
            action=entry.action.value,
            statement_item_ids=entry.statement_item_ids,
            transaction_ids=entry.transaction_ids,
            suggestion_id=entry.suggestion_id,
            user_id=entry.user_id,
            success=entry.success,
            error=entry.error_message,
        )

    def get_entries(
        self,
        action_filter: Optional[str] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Get filtered audit entries."""
        entries = self.entries

        if action_filter:
            entries = [e for e in entries if e.action.value == action_filter]

        if success_only:
            entries = [e for e in entries if e.success]

        return entries

    @property
    def unexported(self) -> List[AuditEntry]:
        return self.entries[self._exported:]

    def export_to_file(self, output_path: Optional[Path] = None) -> Optional[Path]:
        """
        Write the entries logged since the last export to a JSON report.
        Returns None when there is nothing new to write.
        """
        batch = self.unexported
        if not batch:
            return None

        if output_path is None:
            stamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")
            output_path = self.reports_dir / f"audit_{self.tenant_id}_{stamp}.json"
        output_path.parent.mkdir(parents=True, exist_ok=True)

        report = {
            "tenant_id": self.tenant_id,
            "exported_at": datetime.utcnow().isoformat(),
            "first_entry_at": batch[0].timestamp.isoformat(),
            "last_entry_at": batch[-1].timestamp.isoformat(),
            "summary": self._summarize(batch),
            "entries": [e.to_dict() for e in batch],
        }
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, ensure_ascii=False, default=str)

        self._exported += len(batch)
        logger.info("Audit log exported", path=str(output_path), entries=len(batch))
        return output_path

    def summary(self) -> dict:
        """Counts over the whole trail, for the back-office dashboard."""
        summary = self._summarize(self.entries)
        summary["unexported"] = len(self.unexported)
        return summary

    @staticmethod
    def _summarize(entries: List[AuditEntry]) -> dict:
        action_counts = Counter(e.action.value for e in entries)
        failures = [e for e in entries if not e.success]
        return {
            "total_entries": len(entries),
            "error_count": len(failures),
            "action_counts": dict(action_counts),
            "links_applied": action_counts.get(AuditAction.LINK_APPLIED.value, 0),
            "suggestions_decided": sum(action_counts.get(a.value, 0) for a in _DECISIONS),
            "error_codes": dict(Counter(e.details.get("code", "unknown") for e in failures)),
            "users": sorted({e.user_id for e in entries if e.user_id}),
        }
