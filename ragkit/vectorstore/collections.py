from __future__ import annotations

"""Named collections, each backed by its own document store."""

import logging
import threading
from dataclasses import dataclass, field

from ragkit.rag.errors import NotFound, ValidationError
from ragkit.vectorstore.inmemory import InMemoryDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class CollectionRegistry:
    """Thread-safe map of collection name to document store."""
    dimension: int | None = None
    _stores: dict[str, InMemoryDocumentStore] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def get_or_create(self, name: str) -> InMemoryDocumentStore:
        """Return the store for ``name``, creating an empty one if needed."""
        key = _normalize_name(name)
        with self._lock:
            store = self._stores.get(key)
            if store is None:
                store = InMemoryDocumentStore(dimension=self.dimension, name=key)
                self._stores[key] = store
                logger.info("collection_created", extra={"collection": key})
            return store

    def get(self, name: str) -> InMemoryDocumentStore:
        key = _normalize_name(name)
        store = self._stores.get(key)
        if store is None:
            raise NotFound(key, kind="collection")
        return store

    def drop(self, name: str) -> None:
        key = _normalize_name(name)
        with self._lock:
            if self._stores.pop(key, None) is None:
                raise NotFound(key, kind="collection")
        logger.info("collection_dropped", extra={"collection": key})

    def reset(self, name: str) -> InMemoryDocumentStore:
        """Empty the named collection in place, creating it if missing."""
        store = self.get_or_create(name)
        removed = store.clear(reset_dimension=True)
        logger.info("collection_reset", extra={"collection": store.name, "removed": removed})
        return store

    def names(self) -> list[str]:
        return sorted(self._stores)


def _normalize_name(name: str) -> str:
    key = name.strip()
    if not key:
        raise ValidationError("Collection name must be non-empty")
    return key
