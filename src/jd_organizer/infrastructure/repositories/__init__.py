"""Repository implementations."""

from .memory_repository import InMemoryRepository
from .sqlite_repository import SQLiteRepository

__all__ = ["InMemoryRepository", "SQLiteRepository"]
