"""Store gateways: contracts and the in-memory reference implementation."""

from .base import EntityStore, SuggestionService
from .memory import InMemoryEntityStore, InMemorySuggestionService

__all__ = [
    "EntityStore",
    "SuggestionService",
    "InMemoryEntityStore",
    "InMemorySuggestionService",
]
