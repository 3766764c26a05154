"""
Error types for the data manager.

This module defines all exception types raised by the storage managers:
- DataManagerError: Base exception
- NotFoundError: Document, database or table does not exist
- AlreadyExistsError: Create/import collided with an existing name
- TypeMismatchError: Record operation on a document that is not a list
- IndexOutOfRangeError: Record index outside the current bounds
- SqlError: SQLite rejected a statement
- DecodeError: Malformed import payload (base64 or JSON text)
- InvalidNameError: Document or database name is not usable as a file name

Invariants:
    - All errors inherit from DataManagerError
    - Every error carries a stable code for the HTTP layer
    - Messages are human-readable and safe to show in the UI
"""

from __future__ import annotations

from typing import Any


class DataManagerError(Exception):
    """Base exception for all data manager errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DATAMGR_ERROR"
        self.details = details or {}


class NotFoundError(DataManagerError):
    """Resource not found.

    Raised when:
    - Document file doesn't exist
    - Table doesn't exist in a database
    """

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class AlreadyExistsError(DataManagerError):
    """Create or import target name is already taken."""

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            code="ALREADY_EXISTS",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class TypeMismatchError(DataManagerError):
    """Record-level operation on content that is not a list of records."""

    def __init__(self, message: str, document: str) -> None:
        super().__init__(message, code="TYPE_MISMATCH", details={"document": document})
        self.document = document


class IndexOutOfRangeError(DataManagerError):
    """Record index is outside [0, length)."""

    def __init__(self, document: str, index: int, length: int) -> None:
        super().__init__(
            f"Index {index} out of bounds for {document} (length {length})",
            code="INDEX_OUT_OF_RANGE",
            details={"document": document, "index": index, "length": length},
        )
        self.index = index
        self.length = length


class SqlError(DataManagerError):
    """SQLite rejected a statement.

    Raised for syntax errors, constraint violations, unknown tables or
    columns, and unsupported parameter types.
    """

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message, code="SQL_ERROR", details={"sql": sql})
        self.sql = sql


class DecodeError(DataManagerError):
    """Import payload could not be decoded."""

    def __init__(self, message: str, encoding: str) -> None:
        super().__init__(message, code="DECODE_ERROR", details={"encoding": encoding})
        self.encoding = encoding


class InvalidNameError(DataManagerError):
    """Name cannot be mapped to a file inside the store directory."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Invalid name: {name!r}",
            code="INVALID_NAME",
            details={"name": name},
        )
        self.name = name
