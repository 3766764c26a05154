"""
Unit tests for the SQLite database store.

Tests cover:
- Database create/import/delete and handle caching
- Table DDL generation and schema introspection
- Parameterized record insert/select/update/delete
- Raw query dispatch (SELECT vs mutation)
- Persistence after every mutation
"""

import base64
import os
import sqlite3
import stat
import tempfile

import pytest
import pytest_asyncio

from datamgr.errors import (
    AlreadyExistsError,
    DecodeError,
    InvalidNameError,
    NotFoundError,
    SqlError,
)
from datamgr.records import OperationResult, RawSql
from datamgr.stores.relational_store import ColumnDef, RelationalStore

USER_COLUMNS = [
    {"name": "id", "type": "INTEGER", "primaryKey": True, "autoIncrement": True},
    {"name": "name", "type": "TEXT", "notNull": True},
]


class TestColumnDef:
    """Tests for column clause rendering."""

    def test_defaults_to_text(self):
        """Missing type renders as TEXT."""
        assert ColumnDef.from_dict({"name": "note"}).to_sql() == '"note" TEXT'

    def test_constraint_order(self):
        """Constraints render in a fixed order."""
        col = ColumnDef.from_dict(
            {
                "name": "id",
                "type": "INTEGER",
                "primaryKey": True,
                "autoIncrement": True,
                "notNull": True,
                "unique": True,
                "default": "0",
            }
        )
        assert col.to_sql() == '"id" INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL UNIQUE DEFAULT 0'

    def test_default_passed_through_verbatim(self):
        """Default expressions are not escaped."""
        col = ColumnDef("status", default=RawSql("'n/a'"))
        assert col.to_sql() == "\"status\" TEXT DEFAULT 'n/a'"

    def test_blank_default_ignored(self):
        """An empty default string means no DEFAULT clause."""
        assert ColumnDef.from_dict({"name": "x", "default": ""}).to_sql() == '"x" TEXT'


class TestRelationalStore:
    """Tests for RelationalStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        """Create store over the temp directory."""
        store = RelationalStore(data_dir)
        yield store
        store.close_all()

    @pytest.fixture
    def reopen(self, data_dir):
        """Open a fresh store on the same directory, as after a restart."""
        opened = []

        def _reopen():
            fresh = RelationalStore(data_dir)
            opened.append(fresh)
            return fresh

        yield _reopen
        for fresh in opened:
            fresh.close_all()

    @pytest_asyncio.fixture
    async def shop(self, store):
        """Database with a users table."""
        await store.create_database("shop")
        await store.create_table("shop", "users", USER_COLUMNS)
        return "shop"

    @pytest.fixture
    def persist_calls(self, store, shop, monkeypatch):
        """Record every persist call made after the shop fixture is set up."""
        calls = []
        original = store._persist

        def counting(db_name):
            calls.append(db_name)
            original(db_name)

        monkeypatch.setattr(store, "_persist", counting)
        return calls

    @pytest.mark.asyncio
    async def test_create_database_writes_file(self, store, data_dir):
        """Create materializes <name>.db on disk."""
        result = await store.create_database("shop")

        assert result.success is True
        assert os.path.exists(os.path.join(data_dir, "shop.db"))
        assert store.list_databases() == ["shop"]

    @pytest.mark.asyncio
    async def test_create_database_existing(self, store):
        """Create on an existing file raises AlreadyExistsError."""
        await store.create_database("shop")
        with pytest.raises(AlreadyExistsError):
            await store.create_database("shop")

    @pytest.mark.asyncio
    async def test_invalid_database_name(self, store):
        """Names with path separators are rejected."""
        with pytest.raises(InvalidNameError):
            await store.create_database("../outside")

    @pytest.mark.asyncio
    async def test_get_handle_is_cached(self, store, shop):
        """Repeated lookups return the same connection."""
        assert store.get_handle(shop) is store.get_handle(shop)

    @pytest.mark.asyncio
    async def test_autoincrement_insert_and_select(self, store, shop):
        """Auto-increment id is assigned on insert."""
        result = await store.insert_record(shop, "users", {"name": "Alice"})

        rows = await store.select_records(shop, "users")

        assert rows == [{"id": 1, "name": "Alice"}]
        assert result.data == {"lastInsertRowid": 1}

    @pytest.mark.asyncio
    async def test_row_keys_follow_column_order(self, store, shop):
        """Row dicts iterate in column order."""
        await store.insert_record(shop, "users", {"name": "Alice", "id": 7})

        rows = await store.select_records(shop, "users")

        assert list(rows[0]) == ["id", "name"]

    @pytest.mark.asyncio
    async def test_insert_values_are_bound(self, store, shop):
        """Values containing SQL are stored literally."""
        nasty = "x'); DROP TABLE users; --"
        await store.insert_record(shop, "users", {"name": nasty})

        rows = await store.select_records(shop, "users")

        assert rows[0]["name"] == nasty
        assert await store.list_tables(shop) == ["users"]

    @pytest.mark.asyncio
    async def test_insert_nested_values_as_json(self, store, shop):
        """Lists and objects are stored as JSON text."""
        await store.insert_record(shop, "users", {"name": {"first": "Al"}})

        rows = await store.select_records(shop, "users")

        assert rows[0]["name"] == '{"first": "Al"}'

    @pytest.mark.asyncio
    async def test_insert_constraint_violation(self, store, shop):
        """Engine rejections surface as SqlError."""
        with pytest.raises(SqlError):
            await store.insert_record(shop, "users", {"id": 1})

    @pytest.mark.asyncio
    async def test_select_where_and_limit(self, store, shop):
        """Raw WHERE and LIMIT fragments are applied."""
        for name in ("Alice", "Bob", "Carol"):
            await store.insert_record(shop, "users", {"name": name})

        filtered = await store.select_records(shop, "users", where=RawSql("id > 1"))
        limited = await store.select_records(shop, "users", limit=1)

        assert [r["name"] for r in filtered] == ["Bob", "Carol"]
        assert len(limited) == 1

    @pytest.mark.asyncio
    async def test_select_missing_table(self, store, shop):
        """Selecting from an unknown table raises SqlError."""
        with pytest.raises(SqlError):
            await store.select_records(shop, "ghosts")

    @pytest.mark.asyncio
    async def test_update_records_matches_many(self, store, shop):
        """Update applies to every matching row."""
        for name in ("Alice", "Bob", "Carol"):
            await store.insert_record(shop, "users", {"name": name})

        result = await store.update_records(shop, "users", {"name": "X"}, "id >= 2")

        rows = await store.select_records(shop, "users")
        assert [r["name"] for r in rows] == ["Alice", "X", "X"]
        assert result.data == {"changes": 2}

    @pytest.mark.asyncio
    async def test_update_records_zero_matches(self, store, shop):
        """A filter matching nothing is a no-op, not an error."""
        result = await store.update_records(shop, "users", {"name": "X"}, RawSql("id = 99"))
        assert result.data == {"changes": 0}

    @pytest.mark.asyncio
    async def test_update_requires_where(self, store, shop):
        """Blank filters are refused."""
        with pytest.raises(SqlError):
            await store.update_records(shop, "users", {"name": "X"}, "")

    @pytest.mark.asyncio
    async def test_delete_records(self, store, shop):
        """Delete removes matching rows."""
        for name in ("Alice", "Bob"):
            await store.insert_record(shop, "users", {"name": name})

        result = await store.delete_records(shop, "users", "name = 'Alice'")

        assert await store.select_records(shop, "users") == [{"id": 2, "name": "Bob"}]
        assert result.data == {"changes": 1}

    @pytest.mark.asyncio
    async def test_list_tables_excludes_internal(self, store, shop):
        """sqlite_sequence from AUTOINCREMENT is not listed."""
        await store.insert_record(shop, "users", {"name": "Alice"})
        assert await store.list_tables(shop) == ["users"]

    @pytest.mark.asyncio
    async def test_create_table_if_absent(self, store, shop):
        """Creating an existing table is a no-op."""
        await store.create_table(shop, "users", [{"name": "other"}])

        schema = await store.get_table_schema(shop, "users")

        assert [c["name"] for c in schema] == ["id", "name"]

    @pytest.mark.asyncio
    async def test_get_table_schema(self, store, shop):
        """Schema reports declared types and flags."""
        schema = await store.get_table_schema(shop, "users")

        by_name = {c["name"]: c for c in schema}
        assert by_name["id"]["type"] == "INTEGER"
        assert by_name["id"]["pk"] == 1
        assert by_name["name"]["notnull"] == 1

    @pytest.mark.asyncio
    async def test_get_table_schema_missing(self, store, shop):
        """Unknown table raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.get_table_schema(shop, "ghosts")

    @pytest.mark.asyncio
    async def test_drop_table_absent_ok(self, store, shop):
        """Dropping an absent table succeeds."""
        await store.drop_table(shop, "users")
        await store.drop_table(shop, "users")

        assert await store.list_tables(shop) == []

    @pytest.mark.asyncio
    async def test_add_column_with_default(self, store, shop):
        """Added columns apply their default to existing rows."""
        await store.insert_record(shop, "users", {"name": "Alice"})

        await store.add_column(shop, "users", "status", "TEXT", RawSql("'active'"))

        rows = await store.select_records(shop, "users")
        assert rows == [{"id": 1, "name": "Alice", "status": "active"}]

    @pytest.mark.asyncio
    async def test_add_column_defaults_to_text(self, store, shop):
        """Column type defaults to TEXT."""
        await store.add_column(shop, "users", "note")

        schema = await store.get_table_schema(shop, "users")

        assert schema[-1]["name"] == "note"
        assert schema[-1]["type"] == "TEXT"

    @pytest.mark.asyncio
    async def test_execute_query_select(self, store, shop):
        """SELECT statements return rows."""
        await store.insert_record(shop, "users", {"name": "Alice"})

        rows = await store.execute_query(shop, "  select name from users where id = ?", [1])

        assert rows == [{"name": "Alice"}]

    @pytest.mark.asyncio
    async def test_execute_query_mutation(self, store, shop):
        """Non-SELECT statements return a success result."""
        result = await store.execute_query(
            shop, "INSERT INTO users (name) VALUES (:name)", {"name": "Bob"}
        )

        assert isinstance(result, OperationResult)
        assert result.data == {"changes": 1}
        assert await store.select_records(shop, "users") == [{"id": 1, "name": "Bob"}]

    @pytest.mark.asyncio
    async def test_execute_query_error(self, store, shop):
        """Engine errors carry an "SQL Error:" prefix."""
        with pytest.raises(SqlError, match="^SQL Error: "):
            await store.execute_query(shop, "SELEC nonsense")

    @pytest.mark.asyncio
    async def test_execute_select_never_persists(self, store, shop, persist_calls):
        """SELECT does not write to disk."""
        await store.execute_query(shop, "SELECT * FROM users")
        assert persist_calls == []

    @pytest.mark.asyncio
    async def test_execute_mutation_persists_once(self, store, shop, persist_calls):
        """A mutating statement persists exactly once."""
        await store.execute_query(shop, "INSERT INTO users (name) VALUES ('Zed')")
        assert persist_calls == [shop]

    @pytest.mark.asyncio
    async def test_failed_mutation_does_not_persist(self, store, shop, persist_calls):
        """A rejected statement leaves disk untouched."""
        with pytest.raises(SqlError):
            await store.execute_query(shop, "INSERT INTO ghosts VALUES (1)")
        assert persist_calls == []

    @pytest.mark.asyncio
    async def test_reads_never_persist(self, store, shop, persist_calls):
        """List, schema and select operations are read-only."""
        await store.list_tables(shop)
        await store.get_table_schema(shop, "users")
        await store.select_records(shop, "users")
        assert persist_calls == []

    @pytest.mark.asyncio
    async def test_mutations_survive_restart(self, store, shop, reopen):
        """Every mutating operation is visible from a fresh handle."""
        await store.insert_record(shop, "users", {"name": "Alice"})
        await store.insert_record(shop, "users", {"name": "Bob"})
        await store.update_records(shop, "users", {"name": "Alicia"}, "id = 1")
        await store.delete_records(shop, "users", "id = 2")
        await store.add_column(shop, "users", "age", "INTEGER")
        await store.create_table(shop, "orders", [{"name": "total", "type": "REAL"}])
        await store.execute_query(shop, "INSERT INTO orders (total) VALUES (9.5)")

        fresh = reopen()

        assert await fresh.select_records(shop, "users") == [{"id": 1, "name": "Alicia", "age": None}]
        assert await fresh.select_records(shop, "orders") == [{"total": 9.5}]
        assert sorted(await fresh.list_tables(shop)) == ["orders", "users"]

    @pytest.mark.asyncio
    async def test_drop_table_survives_restart(self, store, shop, reopen):
        """Dropped tables stay dropped."""
        await store.drop_table(shop, "users")

        assert await reopen().list_tables(shop) == []

    @pytest.mark.asyncio
    async def test_delete_database(self, store, shop, data_dir):
        """Delete closes the handle and removes the file."""
        await store.delete_database(shop)

        assert not os.path.exists(os.path.join(data_dir, "shop.db"))
        assert store.list_databases() == []
        # A later access starts from an empty database
        assert await store.list_tables(shop) == []

    @pytest.mark.asyncio
    async def test_delete_database_nothing_there(self, store):
        """Delete with no handle and no file is a no-op."""
        result = await store.delete_database("ghost")
        assert result.success is True

    @pytest.mark.asyncio
    async def test_import_database(self, store, data_dir):
        """Imported bytes become a usable database."""
        source = os.path.join(data_dir, "source.sqlite")
        conn = sqlite3.connect(source)
        conn.execute("CREATE TABLE items (sku TEXT)")
        conn.execute("INSERT INTO items VALUES ('A-1')")
        conn.commit()
        conn.close()
        with open(source, "rb") as f:
            encoded = base64.b64encode(f.read()).decode("ascii")

        await store.import_database("imported", encoded)

        assert "imported" in store.list_databases()
        assert await store.select_records("imported", "items") == [{"sku": "A-1"}]

    @pytest.mark.asyncio
    async def test_import_database_existing(self, store, shop):
        """Import refuses to overwrite."""
        with pytest.raises(AlreadyExistsError):
            await store.import_database(shop, base64.b64encode(b"").decode("ascii"))

    @pytest.mark.asyncio
    async def test_import_invalid_base64(self, store):
        """Malformed base64 raises DecodeError."""
        with pytest.raises(DecodeError):
            await store.import_database("bad", "not*base64!")
        assert store.list_databases() == []

    @pytest.mark.asyncio
    async def test_import_not_a_database(self, store, data_dir):
        """Bytes that aren't SQLite raise DecodeError and leave no file."""
        garbage = base64.b64encode(b"this is definitely not a sqlite file" * 100).decode("ascii")

        with pytest.raises(DecodeError):
            await store.import_database("bad", garbage)

        assert store.list_databases() == []
        assert os.listdir(data_dir) == []

    @pytest.mark.asyncio
    async def test_close_all_persists_and_clears(self, store, shop, reopen):
        """close_all flushes every handle and empties the cache."""
        store.close_all()

        assert store._handles == {}
        assert await reopen().list_tables(shop) == ["users"]

    @pytest.fixture
    def umask_022(self):
        """Run with a conventional umask."""
        previous = os.umask(0o022)
        yield
        os.umask(previous)

    @pytest.mark.asyncio
    async def test_new_database_mode_follows_umask(self, store, data_dir, umask_022):
        """New database files get the umask-derived mode, not owner-only."""
        await store.create_database("shop")

        assert stat.S_IMODE(os.stat(os.path.join(data_dir, "shop.db")).st_mode) == 0o644

    @pytest.mark.asyncio
    async def test_persist_keeps_existing_mode(self, store, shop, data_dir):
        """Persisting over a database file keeps its mode."""
        path = os.path.join(data_dir, "shop.db")
        os.chmod(path, 0o640)

        await store.insert_record(shop, "users", {"name": "Alice"})

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o640

    @pytest.mark.asyncio
    async def test_invalid_name_takes_no_lock(self, store):
        """Rejected names leave no lock entry behind."""
        for i in range(5):
            with pytest.raises(InvalidNameError):
                await store.list_tables(f"../bad{i}")

        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_delete_database_drops_lock(self, store, shop):
        """Deleting a database forgets its lock."""
        await store.list_tables(shop)
        assert shop in store._locks

        await store.delete_database(shop)

        assert shop not in store._locks
