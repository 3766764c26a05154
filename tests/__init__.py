"""
Data Manager Test Suite.

This package contains:
- unit/: Unit tests for the stores and shared helpers (temp directories only)
- integration/: REST API tests (FastAPI app in-process via TestClient)
"""
