"""
Shared record types and helpers for both stores.

Records coming from JSON documents and rows coming from SQLite are untyped:
their key sets are defined by the caller at runtime and change as properties
and columns are added. They are represented as plain insertion-ordered dicts
(DynamicRecord) rather than declared models.

Invariants:
    - Row shaping preserves column order as key order
    - RawSql is the only way caller SQL text reaches a statement unbound
    - Values are never interpolated; they are always bound parameters
"""

from __future__ import annotations

import json
import os
import re
import stat
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import InvalidNameError

DynamicRecord = dict[str, Any]

_NAME_RE = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_\-.]*$")

# os.umask() can only be read by setting it
_umask_lock = threading.Lock()


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a mutating store operation.

    Attributes:
        success: Always True; failures raise instead
        message: Human-readable summary
        data: Optional payload (affected record, row count, ...)
    """

    message: str
    data: Any = None
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to the response envelope."""
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass(frozen=True)
class RawSql:
    """Caller-trusted SQL fragment, interpolated into a statement verbatim.

    Used for WHERE filters, LIMIT expressions and column DEFAULT
    expressions. Whoever constructs one vouches for its contents; the
    stores do not escape or validate it.

    Example:
        >>> await store.select_records("shop", "users", where=RawSql("age > 30"))
    """

    sql: str

    def __str__(self) -> str:
        return self.sql

    @classmethod
    def wrap(cls, fragment: RawSql | str | int | None) -> RawSql | None:
        """Normalize an optional fragment to RawSql; blank text counts as absent."""
        if isinstance(fragment, RawSql):
            fragment = fragment.sql
        if fragment is None or not str(fragment).strip():
            return None
        return cls(str(fragment))


def rows_to_records(columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> list[DynamicRecord]:
    """Zip column names with each row tuple into one ordered dict per row."""
    return [dict(zip(columns, row)) for row in rows]


def to_sql_value(value: Any) -> Any:
    """Marshal a JSON value into something sqlite3 can bind.

    Nested lists and objects are stored as JSON text.
    """
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def quote_identifier(name: str) -> str:
    """Quote a table or column name for interpolation."""
    return '"' + name.replace('"', '""') + '"'


def safe_path(directory: Path, name: str, suffix: str) -> Path:
    """Resolve a stored object's file path, rejecting traversal.

    Raises:
        InvalidNameError: If the name has path separators or a leading dot
    """
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise InvalidNameError(name)
    return directory / f"{name}{suffix}"


def _default_file_mode() -> int:
    with _umask_lock:
        umask = os.umask(0)
        os.umask(umask)
    return 0o666 & ~umask


def replace_file(tmp_name: str, path: Path) -> None:
    """Move a finished temp file over path.

    Temp files are created owner-only; the result takes the mode of the
    file it replaces, or the umask-derived default for a new file.
    """
    try:
        mode = stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        mode = _default_file_mode()
    os.chmod(tmp_name, mode)
    os.replace(tmp_name, path)
