"""
Storage managers for the data manager.

This module handles:
- JSON document files with record/property primitives
- SQLite databases with cached in-memory handles

Invariants:
    - Every mutating operation persists before returning
    - Writes are atomic (temp file + rename)
    - Neither store depends on the other
"""

from .document_store import DocumentStore
from .relational_store import ColumnDef, RelationalStore

__all__ = [
    "ColumnDef",
    "DocumentStore",
    "RelationalStore",
]
