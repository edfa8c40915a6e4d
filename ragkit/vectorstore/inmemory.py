from __future__ import annotations

"""In-memory document store holding embedded documents keyed by id."""

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from ragkit.rag.errors import DimensionMismatch, MissingEmbedding, NotFound, ValidationError
from ragkit.rag.types import Document
from ragkit.rag.vectors import validate_vector

logger = logging.getLogger(__name__)


@dataclass
class InMemoryDocumentStore:
    """Document store with a fixed embedding dimension and upsert semantics.

    Writers replace the id->document mapping wholesale under a lock, so a
    reader that grabbed ``snapshot()`` keeps a consistent view for as long as
    it holds the reference.
    """
    dimension: int | None = None
    name: str = "default"
    _documents: Mapping[str, Document] = field(
        default_factory=lambda: MappingProxyType({}), init=False, repr=False
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _configured_dimension: int | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.dimension is not None and self.dimension <= 0:
            raise ValidationError("Store dimension must be a positive integer")
        self._configured_dimension = self.dimension

    def upsert(self, documents: Iterable[Document]) -> int:
        """Validate and store documents, replacing any with the same id."""
        batch = list(documents)
        if not batch:
            return 0
        with self._lock:
            dimension = self.dimension
            prepared: dict[str, Document] = {}
            for document in batch:
                if not document.doc_id:
                    raise ValidationError("Document id must be non-empty")
                if not document.content or not document.content.strip():
                    raise ValidationError(f"Document {document.doc_id} has empty content")
                if document.embedding is None:
                    raise MissingEmbedding(document.doc_id)
                if dimension is None:
                    dimension = len(document.embedding)
                    if dimension == 0:
                        raise ValidationError(f"Document {document.doc_id} has an empty embedding")
                if len(document.embedding) != dimension:
                    raise DimensionMismatch(
                        expected=dimension,
                        actual=len(document.embedding),
                        doc_id=document.doc_id,
                    )
                vector = validate_vector(document.embedding, dimension)
                prepared[document.doc_id] = Document(
                    doc_id=document.doc_id,
                    content=document.content,
                    metadata=dict(document.metadata),
                    embedding=tuple(vector),
                )
            updated = dict(self._documents)
            updated.update(prepared)
            self._documents = MappingProxyType(updated)
            if self.dimension is None:
                self.dimension = dimension
                logger.info(
                    "store_dimension_established",
                    extra={"store": self.name, "dimension": dimension},
                )
        logger.debug(
            "store_upsert",
            extra={"store": self.name, "documents": len(prepared), "size": len(updated)},
        )
        return len(prepared)

    def get(self, doc_id: str) -> Document:
        """Return a copy of the stored document or raise NotFound."""
        document = self._documents.get(doc_id)
        if document is None:
            raise NotFound(doc_id)
        return document.copy()

    def delete(self, doc_id: str) -> None:
        """Remove a document by id or raise NotFound."""
        with self._lock:
            if doc_id not in self._documents:
                raise NotFound(doc_id)
            updated = dict(self._documents)
            del updated[doc_id]
            self._documents = MappingProxyType(updated)

    def clear(self, reset_dimension: bool = False) -> int:
        """Drop every document, optionally forgetting a learned dimension."""
        with self._lock:
            removed = len(self._documents)
            self._documents = MappingProxyType({})
            if reset_dimension:
                self.dimension = self._configured_dimension
        return removed

    def snapshot(self) -> Mapping[str, Document]:
        """Return the current read-only id->document mapping."""
        return self._documents

    def all(self) -> Iterator[Document]:
        """Iterate documents as they were when this method was called."""
        snapshot = self._documents
        return (document.copy() for document in snapshot.values())

    def size(self) -> int:
        """Return the number of stored documents."""
        return len(self._documents)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._documents

    def stats(self) -> dict[str, int | str | None]:
        """Return basic stats for the store."""
        return {
            "backend": "memory",
            "collection": self.name,
            "document_count": self.size(),
            "embedding_dimension": self.dimension,
        }

    def health(self) -> dict[str, str | bool]:
        """Return health information for the store."""
        return {
            "backend": "memory",
            "collection": self.name,
            "ok": True,
        }
