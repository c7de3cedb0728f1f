"""In-process document store with synchronous snapshot fan-out."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

from store.base import (
    DocumentNotFound,
    DocumentStore,
    SnapshotCallback,
    StoreUnavailableError,
    Subscription,
    apply_patch,
    clean_document,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Collections held in a dict; every write notifies that collection's subscribers.

    ``available`` can be switched off to simulate an unreachable backend:
    every call then raises ``StoreUnavailableError`` and nothing changes.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._subscriptions: list[Subscription] = []
        self._lock = threading.RLock()
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("Document store is unavailable")

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self._check_available()
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def query(self, collection: str) -> dict[str, dict[str, Any]]:
        self._check_available()
        with self._lock:
            return copy.deepcopy(self._collections.get(collection, {}))

    def replace(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        self._check_available()
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = clean_document(
                copy.deepcopy(document)
            )
            self._committed(collection)

    def patch(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._check_available()
        with self._lock:
            docs = self._collections.get(collection, {})
            if doc_id not in docs:
                raise DocumentNotFound(f"{collection}/{doc_id} does not exist")
            docs[doc_id] = apply_patch(docs[doc_id], fields)
            self._committed(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        self._check_available()
        with self._lock:
            docs = self._collections.get(collection, {})
            if docs.pop(doc_id, None) is not None:
                self._committed(collection)

    def subscribe(self, collection: str, callback: SnapshotCallback) -> Subscription:
        self._check_available()
        subscription = Subscription(self, collection, callback)
        with self._lock:
            self._subscriptions.append(subscription)
            snapshot = copy.deepcopy(self._collections.get(collection, {}))
        self._deliver(subscription, snapshot)
        return subscription

    def _remove_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _committed(self, collection: str) -> None:
        """Hook run after every successful write, with the lock held."""
        self._notify(collection)

    def _notify(self, collection: str) -> None:
        snapshot = self._collections.get(collection, {})
        for subscription in list(self._subscriptions):
            if subscription.collection == collection:
                self._deliver(subscription, copy.deepcopy(snapshot))

    def _deliver(self, subscription: Subscription, snapshot: dict[str, dict[str, Any]]) -> None:
        try:
            subscription.callback(subscription.collection, snapshot)
        except Exception:
            logger.exception(
                f"Subscriber on '{subscription.collection}' failed; dropping it"
            )
            subscription.unsubscribe()
