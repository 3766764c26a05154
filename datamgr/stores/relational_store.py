"""
SQLite database store for the data manager.

This module manages a directory of named SQLite database files. Each
database is loaded into an in-memory connection on first access, mutated
there, and written back to `<name>.db` after every mutating operation.

Invariants:
    - One cached in-memory connection per database name, owned by the store
    - Disk reflects memory after every mutating call returns
    - Reads (list_tables, select_records, SELECT queries) never persist
    - Values are always bound parameters; only RawSql fragments and quoted
      identifiers are interpolated
    - Operations on the same database never interleave (per-database lock)

How to change safely:
    - New mutating operations must call _persist() before releasing the lock
    - Keep _persist() atomic (backup to temp file, then rename)
    - Wrap every engine call with _execute() so failures surface as SqlError
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import sqlite3
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import AlreadyExistsError, DecodeError, NotFoundError, SqlError
from ..records import (
    DynamicRecord,
    OperationResult,
    RawSql,
    quote_identifier,
    replace_file,
    rows_to_records,
    safe_path,
    to_sql_value,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnDef:
    """Column definition for create_table.

    Attributes:
        name: Column name
        type: Declared SQLite type (TEXT when empty)
        primary_key: Emit PRIMARY KEY
        auto_increment: Emit AUTOINCREMENT (only valid on INTEGER PRIMARY KEY)
        not_null: Emit NOT NULL
        unique: Emit UNIQUE
        default: DEFAULT expression, passed through verbatim
    """

    name: str
    type: str = "TEXT"
    primary_key: bool = False
    auto_increment: bool = False
    not_null: bool = False
    unique: bool = False
    default: RawSql | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ColumnDef:
        """Create from the boundary shape {name, type, primaryKey, ...}."""
        return cls(
            name=data["name"],
            type=data.get("type") or "TEXT",
            primary_key=bool(data.get("primaryKey", False)),
            auto_increment=bool(data.get("autoIncrement", False)),
            not_null=bool(data.get("notNull", False)),
            unique=bool(data.get("unique", False)),
            default=RawSql.wrap(data.get("default")),
        )

    def to_sql(self) -> str:
        """Render the column-definition clause."""
        parts = [quote_identifier(self.name), self.type or "TEXT"]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        if self.auto_increment:
            parts.append("AUTOINCREMENT")
        if self.not_null:
            parts.append("NOT NULL")
        if self.unique:
            parts.append("UNIQUE")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


def _execute(
    conn: sqlite3.Connection,
    sql: str,
    params: Sequence[Any] | Mapping[str, Any] = (),
    prefix: str = "",
) -> sqlite3.Cursor:
    """Run one statement, re-raising engine failures as SqlError."""
    try:
        return conn.execute(sql, params)
    except (sqlite3.Error, sqlite3.Warning, OverflowError) as e:
        raise SqlError(f"{prefix}{e}", sql) from e


def _fetch_records(cursor: sqlite3.Cursor) -> list[DynamicRecord]:
    columns = [d[0] for d in cursor.description or ()]
    return rows_to_records(columns, cursor.fetchall())


def _require_where(where: RawSql | str | None) -> RawSql:
    # Empty filters would otherwise touch every row
    fragment = RawSql.wrap(where)
    if fragment is None:
        raise SqlError("A WHERE filter is required")
    return fragment


def _bind(params: Sequence[Any] | Mapping[str, Any] | None) -> Sequence[Any] | Mapping[str, Any]:
    if params is None:
        return ()
    if isinstance(params, Mapping):
        return {k: to_sql_value(v) for k, v in params.items()}
    return [to_sql_value(v) for v in params]


class RelationalStore:
    """Directory-backed store of SQLite databases with cached handles.

    Handle lifecycle:
        get_handle() loads `<name>.db` into a fresh in-memory connection (or
        starts an empty one when no file exists) and caches it. The handle
        stays cached until delete_database() or close_all().

    Thread safety:
        All coroutines must run on one event loop. Each database has its
        own asyncio.Lock guarding the mutate-then-persist sequence.

    Example:
        >>> store = RelationalStore("./data/sqlite")
        >>> await store.create_database("shop")
        >>> await store.create_table("shop", "users", [
        ...     ColumnDef("id", "INTEGER", primary_key=True, auto_increment=True),
        ...     ColumnDef("name", "TEXT", not_null=True),
        ... ])
        >>> await store.insert_record("shop", "users", {"name": "Alice"})
        >>> await store.select_records("shop", "users")
        [{'id': 1, 'name': 'Alice'}]
    """

    SUFFIX = ".db"

    def __init__(self, data_dir: str) -> None:
        """Initialize the store, creating the directory if needed.

        Args:
            data_dir: Directory for SQLite database files
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._handles: dict[str, sqlite3.Connection] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_path(self, db_name: str) -> Path:
        return safe_path(self.data_dir, db_name, self.SUFFIX)

    def _lock(self, db_name: str) -> asyncio.Lock:
        # Validate first so rejected names never get a lock entry
        self._get_path(db_name)
        return self._locks.setdefault(db_name, asyncio.Lock())

    @staticmethod
    def _connect_memory() -> sqlite3.Connection:
        # Autocommit; the handle is shared across requests on the loop thread
        return sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)

    def _load(self, path: Path) -> sqlite3.Connection:
        """Copy a database file into a new in-memory connection."""
        handle = self._connect_memory()
        source = sqlite3.connect(str(path))
        try:
            source.backup(handle)
        except sqlite3.Error:
            handle.close()
            raise
        finally:
            source.close()
        return handle

    def get_handle(self, db_name: str) -> sqlite3.Connection:
        """Get the cached connection for a database, loading it on first use.

        Args:
            db_name: Database name

        Returns:
            In-memory SQLite connection

        Raises:
            SqlError: If the file exists but isn't a readable database
        """
        handle = self._handles.get(db_name)
        if handle is not None:
            return handle

        path = self._get_path(db_name)
        if path.exists():
            try:
                handle = self._load(path)
            except sqlite3.Error as e:
                raise SqlError(f"Cannot load database {db_name}: {e}") from e
            logger.debug(f"Loaded database from disk: {db_name}")
        else:
            handle = self._connect_memory()

        self._handles[db_name] = handle
        return handle

    def _persist(self, db_name: str) -> None:
        """Write the cached database to disk atomically."""
        handle = self._handles.get(db_name)
        if handle is None:
            return

        path = self._get_path(db_name)
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{db_name}.", suffix=".tmp")
        os.close(fd)
        try:
            dest = sqlite3.connect(tmp_name)
            try:
                handle.backup(dest)
            finally:
                dest.close()
            replace_file(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    # --- Databases ---

    def list_databases(self) -> list[str]:
        """List database names."""
        return sorted(p.stem for p in self.data_dir.glob(f"*{self.SUFFIX}") if p.is_file())

    async def create_database(self, db_name: str) -> OperationResult:
        """Create an empty database file.

        Raises:
            AlreadyExistsError: If the database file exists
        """
        path = self._get_path(db_name)
        async with self._lock(db_name):
            if path.exists():
                raise AlreadyExistsError(f"Database {db_name} already exists", "database", db_name)
            self.get_handle(db_name)
            self._persist(db_name)

        logger.info(f"Created database: {db_name}")
        return OperationResult(f"Database {db_name} created")

    async def import_database(self, db_name: str, encoded: str | bytes) -> OperationResult:
        """Create a database from base64-encoded SQLite file bytes.

        The bytes are checked by loading them before the file is put in
        place, so a bad upload leaves nothing behind.

        Raises:
            AlreadyExistsError: If the database file exists
            DecodeError: If the payload isn't base64 or isn't a SQLite database
        """
        path = self._get_path(db_name)
        if isinstance(encoded, str):
            encoded = "".join(encoded.split())
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid base64 data: {e}", "base64") from e

        async with self._lock(db_name):
            if path.exists():
                raise AlreadyExistsError(
                    f"Database {db_name} already exists. "
                    "Please delete it first or choose a different name.",
                    "database",
                    db_name,
                )

            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{db_name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(raw)
                try:
                    handle = self._load(Path(tmp_name))
                except sqlite3.Error as e:
                    raise DecodeError(f"Not a SQLite database: {e}", "sqlite") from e
                replace_file(tmp_name, path)
            finally:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)

            stale = self._handles.pop(db_name, None)
            if stale is not None:
                stale.close()
            self._handles[db_name] = handle

        logger.info(f"Imported database: {db_name}", extra={"size_bytes": len(raw)})
        return OperationResult(f"Database {db_name} imported successfully")

    async def delete_database(self, db_name: str) -> OperationResult:
        """Close the cached handle and remove the file.

        Missing handle and missing file are each tolerated.
        """
        path = self._get_path(db_name)
        async with self._lock(db_name):
            handle = self._handles.pop(db_name, None)
            if handle is not None:
                handle.close()
            if path.exists():
                path.unlink()
        self._locks.pop(db_name, None)

        logger.info(f"Deleted database: {db_name}")
        return OperationResult(f"Database {db_name} deleted")

    # --- Tables ---

    async def list_tables(self, db_name: str) -> list[str]:
        """List user tables, excluding SQLite's internal ones."""
        async with self._lock(db_name):
            conn = self.get_handle(db_name)
            cursor = _execute(
                conn,
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'",
            )
            return [row[0] for row in cursor.fetchall()]

    async def create_table(
        self,
        db_name: str,
        table_name: str,
        columns: Sequence[ColumnDef | Mapping[str, Any]],
    ) -> OperationResult:
        """Create a table if it doesn't exist.

        Args:
            db_name: Database name
            table_name: Table name
            columns: Column definitions, as ColumnDef or boundary-shaped dicts
        """
        defs = [c if isinstance(c, ColumnDef) else ColumnDef.from_dict(c) for c in columns]
        column_sql = ", ".join(d.to_sql() for d in defs)
        sql = f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} ({column_sql})"

        async with self._lock(db_name):
            _execute(self.get_handle(db_name), sql)
            self._persist(db_name)

        logger.info(f"Created table {table_name} in {db_name}", extra={"columns": len(defs)})
        return OperationResult(f"Table {table_name} created")

    async def drop_table(self, db_name: str, table_name: str) -> OperationResult:
        """Drop a table; absent tables are not an error."""
        async with self._lock(db_name):
            _execute(self.get_handle(db_name), f"DROP TABLE IF EXISTS {quote_identifier(table_name)}")
            self._persist(db_name)

        logger.info(f"Dropped table {table_name} in {db_name}")
        return OperationResult(f"Table {table_name} dropped")

    async def get_table_schema(self, db_name: str, table_name: str) -> list[DynamicRecord]:
        """Get column introspection rows (cid, name, type, notnull, dflt_value, pk).

        Raises:
            NotFoundError: If the table doesn't exist
        """
        async with self._lock(db_name):
            conn = self.get_handle(db_name)
            cursor = _execute(conn, f"PRAGMA table_info({quote_identifier(table_name)})")
            schema = _fetch_records(cursor)

        if not schema:
            raise NotFoundError(f"Table {table_name} not found in {db_name}", "table", table_name)
        return schema

    async def add_column(
        self,
        db_name: str,
        table_name: str,
        column_name: str,
        column_type: str = "TEXT",
        default: RawSql | str | int | float | None = None,
    ) -> OperationResult:
        """Append a column to an existing table."""
        sql = (
            f"ALTER TABLE {quote_identifier(table_name)} "
            f"ADD COLUMN {quote_identifier(column_name)} {column_type or 'TEXT'}"
        )
        fragment = RawSql.wrap(default)
        if fragment is not None:
            sql += f" DEFAULT {fragment}"

        async with self._lock(db_name):
            _execute(self.get_handle(db_name), sql)
            self._persist(db_name)

        return OperationResult(f"Column {column_name} added")

    # --- Records ---

    async def insert_record(
        self,
        db_name: str,
        table_name: str,
        record: DynamicRecord,
    ) -> OperationResult:
        """Insert one row; column order follows the record's key order.

        Returns:
            OperationResult whose data holds the new row's rowid
        """
        table = quote_identifier(table_name)
        if record:
            columns = ", ".join(quote_identifier(k) for k in record)
            placeholders = ", ".join("?" for _ in record)
            sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"

        async with self._lock(db_name):
            cursor = _execute(self.get_handle(db_name), sql, _bind(list(record.values())))
            rowid = cursor.lastrowid
            self._persist(db_name)

        logger.debug("Inserted row", extra={"database": db_name, "table": table_name})
        return OperationResult("Record inserted", data={"lastInsertRowid": rowid})

    async def select_records(
        self,
        db_name: str,
        table_name: str,
        where: RawSql | str | None = None,
        limit: RawSql | str | int | None = None,
    ) -> list[DynamicRecord]:
        """Select rows, optionally filtered and limited.

        Args:
            db_name: Database name
            table_name: Table name
            where: Raw WHERE filter, e.g. RawSql("age > 30")
            limit: Raw LIMIT expression

        Returns:
            Rows as ordered column -> value dicts
        """
        sql = f"SELECT * FROM {quote_identifier(table_name)}"
        where = RawSql.wrap(where)
        limit = RawSql.wrap(limit)
        if where is not None:
            sql += f" WHERE {where}"
        if limit is not None:
            sql += f" LIMIT {limit}"

        async with self._lock(db_name):
            return _fetch_records(_execute(self.get_handle(db_name), sql))

    async def update_records(
        self,
        db_name: str,
        table_name: str,
        updates: DynamicRecord,
        where: RawSql | str,
    ) -> OperationResult:
        """Update every row matching where; zero matches is a no-op.

        Returns:
            OperationResult whose data holds the affected row count
        """
        if not updates:
            raise SqlError("No columns to update")
        set_clause = ", ".join(f"{quote_identifier(k)} = ?" for k in updates)
        sql = f"UPDATE {quote_identifier(table_name)} SET {set_clause} WHERE {_require_where(where)}"

        async with self._lock(db_name):
            cursor = _execute(self.get_handle(db_name), sql, _bind(list(updates.values())))
            changes = cursor.rowcount
            self._persist(db_name)

        logger.debug(
            "Updated rows",
            extra={"database": db_name, "table": table_name, "changes": changes},
        )
        return OperationResult("Record(s) updated", data={"changes": changes})

    async def delete_records(
        self,
        db_name: str,
        table_name: str,
        where: RawSql | str,
    ) -> OperationResult:
        """Delete every row matching where.

        Returns:
            OperationResult whose data holds the affected row count
        """
        sql = f"DELETE FROM {quote_identifier(table_name)} WHERE {_require_where(where)}"

        async with self._lock(db_name):
            cursor = _execute(self.get_handle(db_name), sql)
            changes = cursor.rowcount
            self._persist(db_name)

        logger.debug(
            "Deleted rows",
            extra={"database": db_name, "table": table_name, "changes": changes},
        )
        return OperationResult("Record(s) deleted", data={"changes": changes})

    # --- Raw queries ---

    async def execute_query(
        self,
        db_name: str,
        sql: str,
        params: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> list[DynamicRecord] | OperationResult:
        """Execute caller SQL.

        Statements starting with SELECT return rows and never persist.
        Anything else is treated as a mutation and persisted once.

        Raises:
            SqlError: With message "SQL Error: <engine message>"
        """
        is_select = sql.lstrip().upper().startswith("SELECT")

        async with self._lock(db_name):
            conn = self.get_handle(db_name)
            cursor = _execute(conn, sql, _bind(params), prefix="SQL Error: ")
            if is_select:
                return _fetch_records(cursor)
            changes = cursor.rowcount
            self._persist(db_name)

        return OperationResult("Query executed", data={"changes": changes})

    def close_all(self) -> None:
        """Persist and close every cached handle, then clear the cache.

        Every handle is closed even if persisting one fails; the first
        failure is re-raised afterwards.
        """
        failures: list[Exception] = []
        for db_name, handle in self._handles.items():
            try:
                self._persist(db_name)
            except (OSError, sqlite3.Error) as e:
                logger.error(f"Failed to persist database {db_name}: {e}", exc_info=True)
                failures.append(e)
            finally:
                handle.close()
        self._handles.clear()

        logger.info("Closed all database handles")
        if failures:
            raise failures[0]
