"""
JSON document store for the data manager.

This module manages a directory of named JSON documents. Each document is
one file, `<name>.json`, holding an arbitrary JSON value; by convention a
list of record objects that the record/property operations work on.

Invariants:
    - `<name>.json` exists iff the document was created and not deleted
    - Every mutation rewrites the whole file (read, mutate, write back)
    - Writes go through a temp file + rename, never a partial overwrite
    - Record positions are contiguous from 0; deletes shift later records down

How to change safely:
    - Keep the 2-space pretty-printed on-disk format; exports depend on it
    - Any new record-level primitive must go through _read_records()
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from ..errors import (
    AlreadyExistsError,
    DecodeError,
    IndexOutOfRangeError,
    NotFoundError,
    TypeMismatchError,
)
from ..records import DynamicRecord, OperationResult, replace_file, safe_path

logger = logging.getLogger(__name__)


class DocumentStore:
    """Directory-backed store of JSON documents.

    Thread safety:
        No locking. Concurrent writers to the same document resolve as
        last-write-wins on the whole file.

    Example:
        >>> store = DocumentStore("./data/json")
        >>> store.create("users", [{"id": 1, "name": "Bob"}])
        >>> store.update_record("users", 0, {"email": "b@x.com"})
        >>> store.read("users")
        [{'id': 1, 'name': 'Bob', 'email': 'b@x.com'}]
    """

    SUFFIX = ".json"

    def __init__(self, data_dir: str) -> None:
        """Initialize the store, creating the directory if needed.

        Args:
            data_dir: Directory for JSON documents
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, name: str) -> Path:
        return safe_path(self.data_dir, name, self.SUFFIX)

    def _require(self, name: str) -> Path:
        path = self._get_path(name)
        if not path.exists():
            raise NotFoundError(f"File {name} not found", "document", name)
        return path

    def _write(self, path: Path, content: Any) -> None:
        """Serialize content and atomically replace the file."""
        text = json.dumps(content, indent=2, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            replace_file(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read_records(self, name: str) -> list[Any]:
        """Read a document that must hold a list."""
        content = self.read(name)
        if not isinstance(content, list):
            raise TypeMismatchError(f"Document {name} must be an array to hold records", name)
        return content

    def list(self) -> list[str]:
        """List document names."""
        return sorted(p.stem for p in self.data_dir.glob(f"*{self.SUFFIX}") if p.is_file())

    def create(self, name: str, content: Any = None) -> OperationResult:
        """Create a new document.

        Args:
            name: Document name
            content: Initial JSON content (defaults to an empty list)

        Raises:
            AlreadyExistsError: If the document exists
        """
        path = self._get_path(name)
        if path.exists():
            raise AlreadyExistsError(f"File {name} already exists", "document", name)

        self._write(path, [] if content is None else content)
        logger.info(f"Created document: {name}")
        return OperationResult(f"Created {name}")

    def read(self, name: str) -> Any:
        """Read and parse a document.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        path = self._require(name)
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def update(self, name: str, content: Any) -> OperationResult:
        """Replace a document's entire content.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        path = self._require(name)
        self._write(path, content)
        return OperationResult(f"Updated {name}")

    def delete(self, name: str) -> OperationResult:
        """Delete a document's backing file.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        path = self._require(name)
        path.unlink()
        logger.info(f"Deleted document: {name}")
        return OperationResult(f"Deleted {name}")

    def insert_record(self, name: str, record: DynamicRecord) -> OperationResult:
        """Append a record to a list document.

        Returns:
            OperationResult whose data is the inserted record
        """
        records = self._read_records(name)
        records.append(record)
        self.update(name, records)

        logger.debug("Inserted record", extra={"document": name, "index": len(records) - 1})
        return OperationResult("Record inserted", data=record)

    def _check_index(self, name: str, records: list[Any], index: int) -> None:
        if index < 0 or index >= len(records):
            raise IndexOutOfRangeError(name, index, len(records))

    def update_record(self, name: str, index: int, updates: DynamicRecord) -> OperationResult:
        """Shallow-merge updates into the record at index.

        New keys are added, existing keys are overwritten.

        Returns:
            OperationResult whose data is the merged record

        Raises:
            TypeMismatchError: If the document (or the element) isn't an object list
            IndexOutOfRangeError: If index is outside [0, length)
        """
        records = self._read_records(name)
        self._check_index(name, records, index)

        current = records[index]
        if not isinstance(current, dict):
            raise TypeMismatchError(f"Record {index} of {name} is not an object", name)
        records[index] = {**current, **updates}
        self.update(name, records)

        logger.debug("Updated record", extra={"document": name, "index": index})
        return OperationResult("Record updated", data=records[index])

    def delete_record(self, name: str, index: int) -> OperationResult:
        """Remove the record at index, shifting later records down.

        Returns:
            OperationResult whose data is the removed record
        """
        records = self._read_records(name)
        self._check_index(name, records, index)

        removed = records.pop(index)
        self.update(name, records)

        logger.debug("Deleted record", extra={"document": name, "index": index})
        return OperationResult("Record deleted", data=removed)

    def add_property(self, name: str, property_name: str, default: Any = None) -> OperationResult:
        """Set property_name to default on every record lacking it.

        Records that already have the property are untouched, so applying
        this twice is the same as applying it once.
        """
        records = self._read_records(name)
        for record in records:
            if isinstance(record, dict) and property_name not in record:
                record[property_name] = default
        self.update(name, records)
        return OperationResult(f"Property {property_name} added")

    def remove_property(self, name: str, property_name: str) -> OperationResult:
        """Remove property_name from every record that has it."""
        records = self._read_records(name)
        for record in records:
            if isinstance(record, dict):
                record.pop(property_name, None)
        self.update(name, records)
        return OperationResult(f"Property {property_name} removed")

    def rename_property(self, name: str, old_name: str, new_name: str) -> OperationResult:
        """Move old_name's value to new_name in every record having old_name.

        An existing new_name on such a record is overwritten. Records
        without old_name are left exactly as they were.
        """
        records = self._read_records(name)
        for record in records:
            if isinstance(record, dict) and old_name in record:
                record[new_name] = record.pop(old_name)
        self.update(name, records)
        return OperationResult(f"Property renamed from {old_name} to {new_name}")

    def import_document(self, name: str, data: Any) -> OperationResult:
        """Create a document from a structure or serialized JSON text.

        Raises:
            DecodeError: If data is text that isn't valid JSON
            AlreadyExistsError: If the document exists
        """
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise DecodeError(f"Invalid JSON: {e}", "json") from e

        self.create(name, data)
        return OperationResult(f"Imported {name}")

    def export(self, name: str) -> str:
        """Serialize a document as pretty-printed JSON text."""
        return json.dumps(self.read(name), indent=2, ensure_ascii=False)
