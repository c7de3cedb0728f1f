"""Shared document store contract.

A store holds collections of JSON-like documents. Clients subscribe to a
collection and receive the full result set after every change, including
changes they wrote themselves. Writes to different documents are
independent; concurrent writes to the same field land last-write-wins.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any, Callable

from models.writes import DELETE_FIELD, Write, WriteKind

SnapshotCallback = Callable[[str, dict[str, dict[str, Any]]], None]


class StoreError(Exception):
    """Base class for store failures."""


class StoreUnavailableError(StoreError):
    """The store could not be reached. Recoverable; the caller may retry."""


class DocumentNotFound(StoreError):
    """A patch addressed a document that does not exist."""


class Subscription:
    """Handle returned by ``DocumentStore.subscribe``."""

    def __init__(self, store: DocumentStore, collection: str, callback: SnapshotCallback) -> None:
        self.store = store
        self.collection = collection
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.store._remove_subscription(self)
            self.active = False


def clean_document(obj: Any) -> Any:
    """Recursively drop ``None`` values so absent fields stay absent."""
    if isinstance(obj, dict):
        return {k: clean_document(v) for k, v in obj.items() if v is not None}
    if isinstance(obj, list):
        return [clean_document(v) for v in obj if v is not None]
    return obj


def apply_patch(document: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``document`` with dotted field paths set.

    Missing intermediate maps are created. ``DELETE_FIELD`` removes the
    addressed field.
    """
    result = copy.deepcopy(document)
    for path, value in fields.items():
        parts = path.split(".")
        target = result
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                if value is DELETE_FIELD:
                    break
                child = {}
                target[part] = child
            target = child
        else:
            if value is DELETE_FIELD:
                target.pop(parts[-1], None)
            else:
                target[parts[-1]] = clean_document(copy.deepcopy(value))
    return result


class DocumentStore(ABC):
    """Per-collection document store with real-time fan-out."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Read one document, or None if it does not exist."""

    @abstractmethod
    def query(self, collection: str) -> dict[str, dict[str, Any]]:
        """Read every document in a collection, keyed by document id."""

    @abstractmethod
    def replace(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        """Create or overwrite a document."""

    @abstractmethod
    def patch(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Set dotted field paths on an existing document.

        Raises:
            DocumentNotFound: If the document does not exist.
        """

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document. Deleting a missing document is a no-op."""

    @abstractmethod
    def subscribe(self, collection: str, callback: SnapshotCallback) -> Subscription:
        """Push the collection's full result set now and after every change."""

    @abstractmethod
    def _remove_subscription(self, subscription: Subscription) -> None:
        """Stop delivering to a subscription."""

    def apply(self, write: Write) -> None:
        """Dispatch an engine write to the matching store call."""
        if write.kind == WriteKind.PATCH:
            self.patch(write.collection, write.doc_id, write.fields)
        elif write.kind == WriteKind.REPLACE:
            self.replace(write.collection, write.doc_id, write.fields)
        elif write.kind == WriteKind.DELETE:
            self.delete(write.collection, write.doc_id)
        else:
            raise ValueError(f"Unknown write kind: {write.kind}")
