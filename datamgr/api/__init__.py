"""
HTTP API for the data manager.

Exposes both stores over REST:
1. /api/json for JSON documents
2. /api/sqlite for SQLite databases
"""

from .app import create_app

__all__ = ["create_app"]
