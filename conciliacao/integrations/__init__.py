"""External integrations for the reconciliation engine."""

from .rest_client import RestClient
from .rest_store import RestEntityStore
from .suggestion_service import RestSuggestionService

__all__ = ["RestClient", "RestEntityStore", "RestSuggestionService"]
