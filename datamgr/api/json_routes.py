"""
API routes for JSON documents.

Each endpoint maps onto exactly one DocumentStore call. Store errors are
turned into failure envelopes by the handlers registered in app.py.

Endpoints are plain functions; FastAPI runs them in its thread pool since
document I/O is blocking.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response
from pydantic import BaseModel, Field

from ..stores import DocumentStore


router = APIRouter(tags=["JSON Documents"])


# --- Request Models ---


class CreateDocumentRequest(BaseModel):
    """Request to create a document."""

    filename: str = Field(..., description="Document name (without .json)")
    data: Any = Field(None, description="Initial content, defaults to []")


class UpdateDocumentRequest(BaseModel):
    """Request to replace a document's content."""

    data: Any = Field(..., description="New content")


class AddPropertyRequest(BaseModel):
    """Request to add a property to all records."""

    property_name: str = Field(..., alias="propertyName")
    default_value: Any = Field(None, alias="defaultValue")


class RemovePropertyRequest(BaseModel):
    """Request to remove a property from all records."""

    property_name: str = Field(..., alias="propertyName")


class RenamePropertyRequest(BaseModel):
    """Request to rename a property in all records."""

    old_name: str = Field(..., alias="oldName")
    new_name: str = Field(..., alias="newName")


class ImportDocumentRequest(BaseModel):
    """Request to import a document from a structure or JSON text."""

    filename: str = Field(..., description="Document name (without .json)")
    data: Any = Field(..., description="JSON structure or serialized JSON string")


# --- Dependencies ---


def get_document_store(request: Request) -> DocumentStore:
    """Get the document store from app state."""
    return request.app.state.document_store


# --- Document Routes ---


@router.get("/list")
def list_documents(store: DocumentStore = Depends(get_document_store)):
    """List all JSON documents."""
    return {"success": True, "files": store.list()}


@router.post("/create")
def create_document(
    request: CreateDocumentRequest,
    store: DocumentStore = Depends(get_document_store),
):
    """Create a new JSON document."""
    return store.create(request.filename, request.data).to_dict()


@router.get("/read/{filename}")
def read_document(filename: str, store: DocumentStore = Depends(get_document_store)):
    """Read a JSON document."""
    return {"success": True, "data": store.read(filename)}


@router.put("/update/{filename}")
def update_document(
    filename: str,
    request: UpdateDocumentRequest,
    store: DocumentStore = Depends(get_document_store),
):
    """Replace a document's entire content."""
    return store.update(filename, request.data).to_dict()


@router.delete("/delete/{filename}")
def delete_document(filename: str, store: DocumentStore = Depends(get_document_store)):
    """Delete a JSON document."""
    return store.delete(filename).to_dict()


# --- Record Routes ---


@router.post("/record/{filename}")
def insert_record(
    filename: str,
    record: dict[str, Any] = Body(...),
    store: DocumentStore = Depends(get_document_store),
):
    """Append a record to a document."""
    return store.insert_record(filename, record).to_dict()


@router.put("/record/{filename}/{index}")
def update_record(
    filename: str,
    index: int,
    updates: dict[str, Any] = Body(...),
    store: DocumentStore = Depends(get_document_store),
):
    """Merge fields into the record at index."""
    return store.update_record(filename, index, updates).to_dict()


@router.delete("/record/{filename}/{index}")
def delete_record(
    filename: str,
    index: int,
    store: DocumentStore = Depends(get_document_store),
):
    """Delete the record at index."""
    return store.delete_record(filename, index).to_dict()


# --- Property Routes ---


@router.post("/property/add/{filename}")
def add_property(
    filename: str,
    request: AddPropertyRequest,
    store: DocumentStore = Depends(get_document_store),
):
    """Add a property to every record lacking it."""
    return store.add_property(filename, request.property_name, request.default_value).to_dict()


@router.delete("/property/remove/{filename}")
def remove_property(
    filename: str,
    request: RemovePropertyRequest,
    store: DocumentStore = Depends(get_document_store),
):
    """Remove a property from all records."""
    return store.remove_property(filename, request.property_name).to_dict()


@router.put("/property/rename/{filename}")
def rename_property(
    filename: str,
    request: RenamePropertyRequest,
    store: DocumentStore = Depends(get_document_store),
):
    """Rename a property in all records."""
    return store.rename_property(filename, request.old_name, request.new_name).to_dict()


# --- Import / Export ---


@router.post("/import")
def import_document(
    request: ImportDocumentRequest,
    store: DocumentStore = Depends(get_document_store),
):
    """Import JSON data from a structure or text."""
    return store.import_document(request.filename, request.data).to_dict()


@router.get("/export/{filename}")
def export_document(filename: str, store: DocumentStore = Depends(get_document_store)):
    """Export a document as a JSON file download."""
    return Response(
        content=store.export(filename),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename={filename}.json"},
    )
