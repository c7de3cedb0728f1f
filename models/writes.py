"""Store writes computed by the engine and applied by the session hub."""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class WriteKind(str, Enum):
    """How a write lands on its document."""
    PATCH = "patch"                 # Set the listed dotted field paths
    REPLACE = "replace"             # Overwrite the whole document
    DELETE = "delete"               # Remove the document


class _DeleteField:
    """Patch value that removes the field instead of setting it."""

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


class Write(BaseModel):
    """A single-document write. Writes never span documents."""
    collection: str
    doc_id: str
    kind: WriteKind
    fields: dict[str, Any] = {}

    @classmethod
    def patch(cls, collection: str, doc_id: str, fields: dict[str, Any]) -> "Write":
        return cls(collection=collection, doc_id=doc_id, kind=WriteKind.PATCH, fields=fields)

    @classmethod
    def replace(cls, collection: str, doc_id: str, document: dict[str, Any]) -> "Write":
        return cls(collection=collection, doc_id=doc_id, kind=WriteKind.REPLACE, fields=document)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "Write":
        return cls(collection=collection, doc_id=doc_id, kind=WriteKind.DELETE)
