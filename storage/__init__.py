"""Session storage."""

from storage.gateway import PersistenceGateway, SessionConflictError
from storage.sessions import InMemorySessionGateway, SessionNotFoundError, get_storage

__all__ = [
    "PersistenceGateway",
    "InMemorySessionGateway",
    "SessionConflictError",
    "SessionNotFoundError",
    "get_storage",
]
