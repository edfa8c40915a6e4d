from __future__ import annotations

"""Core data types for documents, retrieval and generation."""

from dataclasses import dataclass, field, replace
from typing import Any, Sequence


@dataclass(frozen=True)
class Document:
    """Document chunk with metadata and an optional embedding."""
    doc_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: tuple[float, ...] | None = None

    def with_embedding(self, vector: Sequence[float]) -> Document:
        """Return a copy of the document carrying the given embedding."""
        return replace(self, embedding=tuple(float(value) for value in vector))

    def copy(self) -> Document:
        """Return a copy that shares no mutable state with this document."""
        return replace(self, metadata=dict(self.metadata))

    def to_dict(self, include_embedding: bool = False) -> dict[str, Any]:
        """Serialize the document for JSON responses."""
        payload: dict[str, Any] = {
            "doc_id": self.doc_id,
            "content": self.content,
            "metadata": dict(self.metadata),
        }
        if include_embedding:
            payload["embedding"] = list(self.embedding) if self.embedding else None
        return payload


@dataclass(frozen=True)
class SearchResult:
    """Search result with cosine similarity score."""
    document: Document
    score: float


@dataclass(frozen=True)
class ChatMessage:
    """Single conversation turn passed to the generation capability."""
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerationResult:
    """Text returned by a generation capability plus provider metadata."""
    text: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


@dataclass
class RAGResponse:
    """Answer produced by the pipeline for a single query."""
    text: str
    source_documents: list[Document]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "source_documents": [doc.to_dict() for doc in self.source_documents],
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class IngestReport:
    """Summary of a completed ingestion run."""
    ingested: int
    embedded: int
    batches: int
