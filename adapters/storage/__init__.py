"""Key-value store implementations."""

from .memory import InMemoryStore
from .sqlalchemy_store import KVEntry, SqlAlchemyStore

__all__ = ["InMemoryStore", "KVEntry", "SqlAlchemyStore"]
