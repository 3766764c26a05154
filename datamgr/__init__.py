"""
Data Manager - REST-managed JSON documents and SQLite databases.

This package implements a small data-editing service built on:
- A document store: named JSON files holding lists of records
- A relational store: named SQLite databases cached in memory and
  written back to disk after every mutation
- A FastAPI application mapping REST endpoints onto store operations

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────┐
    │   Browser   │────▶│  FastAPI    │────▶│  DocumentStore   │──▶ <name>.json
    │   editor    │     │  routers    │     └──────────────────┘
    └─────────────┘     │ /api/json   │     ┌──────────────────┐
                        │ /api/sqlite │────▶│  RelationalStore │──▶ <name>.db
                        └─────────────┘     └──────────────────┘

Invariants:
    - Disk state reflects every mutation once the call returns
    - The two stores are independent; neither calls the other
    - Failures raise DataManagerError subclasses, never partial writes

How to change safely:
    - Keep routers thin: one store call per endpoint
    - Keep the on-disk formats (pretty JSON, native SQLite) stable
"""

from ._version import __version__

__all__ = ["__version__"]
