"""
Position and fill persistence

Backends:
- InMemoryStore: Dict-backed, for tests and single-process use
- DatabaseStore: SQLAlchemy async engine with UNIQUE/FOREIGN KEY constraints

Usage:
    store = DatabaseStore("sqlite+aiosqlite:///./data/perpledger.db")
    position = await store.ensure_position(position)
    result = await store.upsert_fill(fill)
"""

from .base import Store, UpsertResult, fill_changes
from .memory import InMemoryStore
from .database import DatabaseStore

__all__ = [
    "Store",
    "UpsertResult",
    "fill_changes",
    "InMemoryStore",
    "DatabaseStore",
]
