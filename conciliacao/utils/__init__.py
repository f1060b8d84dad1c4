"""Utility modules."""

from .audit_logger import AuditLogger
from .text_search import filter_by_description, matches_search

__all__ = ["AuditLogger", "filter_by_description", "matches_search"]
