"""Document store persisted to a single JSON file."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from store.base import StoreUnavailableError
from store.memory import InMemoryDocumentStore

logger = logging.getLogger(__name__)


class JsonFileDocumentStore(InMemoryDocumentStore):
    """In-memory store that rewrites its JSON file after every write.

    The file is written to a temporary path first, then renamed for
    atomicity. A write that cannot be persisted is rolled back and
    surfaces as ``StoreUnavailableError``.
    """

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path
        self._load()

    def _load(self) -> None:
        if not Path(self.path).exists():
            return
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Cannot read store file {self.path}: {e}") from e
        self._collections = {
            name: dict(docs) for name, docs in data.items() if isinstance(docs, dict)
        }
        logger.info(f"Loaded {len(self._collections)} collections from {self.path}")

    def _committed(self, collection: str) -> None:
        try:
            self._save()
        except OSError as e:
            logger.error(f"Failed to persist store to {self.path}: {e}")
            self._rollback()
            raise StoreUnavailableError(f"Cannot write store file {self.path}: {e}") from e
        self._notify(collection)

    def _save(self) -> None:
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(self._collections, f, default=str)
        os.replace(tmp_path, self.path)

    def _rollback(self) -> None:
        """Restore the in-memory collections from the last persisted file."""
        self._collections = {}
        if Path(self.path).exists():
            with open(self.path) as f:
                self._collections = json.load(f)
