"""
API routes for SQLite databases.

Each endpoint maps onto exactly one RelationalStore call. WHERE filters,
LIMITs and column defaults arrive as caller-trusted SQL text and are
wrapped in RawSql here, at the boundary; record values are always bound.
"""

import base64
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel, Field

from ..records import DynamicRecord, OperationResult, RawSql
from ..stores import ColumnDef, RelationalStore

router = APIRouter(tags=["SQLite Databases"])


# --- Request Models ---


class CreateDatabaseRequest(BaseModel):
    """Request to create a database."""

    db_name: str = Field(..., alias="dbName")


class ImportDatabaseRequest(BaseModel):
    """Request to import a database file."""

    db_name: str = Field(..., alias="dbName")
    data: str = Field(..., description="Base64-encoded SQLite file")


class ColumnRequest(BaseModel):
    """Column definition for table creation."""

    name: str
    type: str | None = "TEXT"
    primary_key: bool = Field(False, alias="primaryKey")
    auto_increment: bool = Field(False, alias="autoIncrement")
    not_null: bool = Field(False, alias="notNull")
    unique: bool = False
    default: str | int | float | None = Field(
        None, description="Raw SQL DEFAULT expression, e.g. 'n/a' quoted or CURRENT_TIMESTAMP"
    )

    def to_column_def(self) -> ColumnDef:
        return ColumnDef(
            name=self.name,
            type=self.type or "TEXT",
            primary_key=self.primary_key,
            auto_increment=self.auto_increment,
            not_null=self.not_null,
            unique=self.unique,
            default=RawSql.wrap(self.default),
        )


class CreateTableRequest(BaseModel):
    """Request to create a table."""

    table_name: str = Field(..., alias="tableName")
    columns: list[ColumnRequest] = Field(..., min_length=1)


class UpdateRecordsRequest(BaseModel):
    """Request to update rows matching a filter."""

    updates: dict[str, Any]
    where: str = Field(..., description="Raw SQL WHERE filter")


class DeleteRecordsRequest(BaseModel):
    """Request to delete rows matching a filter."""

    where: str = Field(..., description="Raw SQL WHERE filter")


class AddColumnRequest(BaseModel):
    """Request to add a column."""

    column_name: str = Field(..., alias="columnName")
    column_type: str | None = Field("TEXT", alias="columnType")
    default_value: str | int | float | None = Field(None, alias="defaultValue")


class QueryRequest(BaseModel):
    """Request to run caller SQL."""

    sql: str
    params: list[Any] | dict[str, Any] | None = None


# --- Dependencies ---


def get_relational_store(request: Request) -> RelationalStore:
    """Get the relational store from app state."""
    return request.app.state.relational_store


# --- Database Routes ---


@router.get("/databases")
async def list_databases(store: RelationalStore = Depends(get_relational_store)):
    """List all SQLite databases."""
    return {"success": True, "databases": store.list_databases()}


@router.post("/database")
async def create_database(
    request: CreateDatabaseRequest,
    store: RelationalStore = Depends(get_relational_store),
):
    """Create a new database."""
    result = await store.create_database(request.db_name)
    return result.to_dict()


@router.post("/import")
async def import_database(
    request: ImportDatabaseRequest,
    store: RelationalStore = Depends(get_relational_store),
):
    """Import a database from base64."""
    result = await store.import_database(request.db_name, request.data)
    return result.to_dict()


@router.delete("/database/{db_name}")
async def delete_database(db_name: str, store: RelationalStore = Depends(get_relational_store)):
    """Delete a database."""
    result = await store.delete_database(db_name)
    return result.to_dict()


# --- Table Routes ---


@router.get("/tables/{db_name}")
async def list_tables(db_name: str, store: RelationalStore = Depends(get_relational_store)):
    """List all tables in a database."""
    return {"success": True, "tables": await store.list_tables(db_name)}


@router.post("/table/{db_name}")
async def create_table(
    db_name: str,
    request: CreateTableRequest,
    store: RelationalStore = Depends(get_relational_store),
):
    """Create a new table."""
    columns = [c.to_column_def() for c in request.columns]
    result = await store.create_table(db_name, request.table_name, columns)
    return result.to_dict()


@router.delete("/table/{db_name}/{table_name}")
async def drop_table(
    db_name: str,
    table_name: str,
    store: RelationalStore = Depends(get_relational_store),
):
    """Drop a table."""
    result = await store.drop_table(db_name, table_name)
    return result.to_dict()


@router.get("/schema/{db_name}/{table_name}")
async def get_table_schema(
    db_name: str,
    table_name: str,
    store: RelationalStore = Depends(get_relational_store),
):
    """Get table schema/structure."""
    return {"success": True, "schema": await store.get_table_schema(db_name, table_name)}


@router.post("/column/{db_name}/{table_name}")
async def add_column(
    db_name: str,
    table_name: str,
    request: AddColumnRequest,
    store: RelationalStore = Depends(get_relational_store),
):
    """Add a column to a table."""
    result = await store.add_column(
        db_name,
        table_name,
        request.column_name,
        request.column_type or "TEXT",
        RawSql.wrap(request.default_value),
    )
    return result.to_dict()


# --- Record Routes ---


@router.post("/record/{db_name}/{table_name}")
async def insert_record(
    db_name: str,
    table_name: str,
    record: dict[str, Any] = Body(...),
    store: RelationalStore = Depends(get_relational_store),
):
    """Insert a record into a table."""
    result = await store.insert_record(db_name, table_name, record)
    return result.to_dict()


@router.get("/records/{db_name}/{table_name}")
async def select_records(
    db_name: str,
    table_name: str,
    where: str | None = Query(None, description="Raw SQL WHERE filter, e.g. id=1"),
    limit: int | None = Query(None, ge=0, description="Maximum rows"),
    store: RelationalStore = Depends(get_relational_store),
):
    """Select records from a table."""
    rows = await store.select_records(db_name, table_name, where=RawSql.wrap(where), limit=limit)
    return {"success": True, "records": _jsonable(rows)}


@router.put("/records/{db_name}/{table_name}")
async def update_records(
    db_name: str,
    table_name: str,
    request: UpdateRecordsRequest,
    store: RelationalStore = Depends(get_relational_store),
):
    """Update records matching a filter."""
    result = await store.update_records(
        db_name, table_name, request.updates, RawSql.wrap(request.where)
    )
    return result.to_dict()


@router.delete("/records/{db_name}/{table_name}")
async def delete_records(
    db_name: str,
    table_name: str,
    request: DeleteRecordsRequest,
    store: RelationalStore = Depends(get_relational_store),
):
    """Delete records matching a filter."""
    result = await store.delete_records(db_name, table_name, RawSql.wrap(request.where))
    return result.to_dict()


# --- Query Routes ---


@router.post("/query/{db_name}")
async def execute_query(
    db_name: str,
    request: QueryRequest,
    store: RelationalStore = Depends(get_relational_store),
):
    """Execute a custom SQL query."""
    result = await store.execute_query(db_name, request.sql, request.params)
    if isinstance(result, OperationResult):
        return {"success": True, "result": result.to_dict()}
    return {"success": True, "result": _jsonable(result)}


# --- Helpers ---


def _jsonable(rows: list[DynamicRecord]) -> list[DynamicRecord]:
    """Base64-encode BLOB values so rows serialize as JSON."""
    return [
        {k: base64.b64encode(v).decode("ascii") if isinstance(v, bytes) else v for k, v in row.items()}
        for row in rows
    ]
