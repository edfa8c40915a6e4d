from __future__ import annotations

"""Text normalization and character-based chunking for ingestion."""

import re

from ragkit.rag.types import Document

_WHITESPACE_RE = re.compile(r"\s+")

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


def normalize_text(text: str) -> str:
    """Collapse newlines and runs of whitespace into single spaces."""
    return _WHITESPACE_RE.sub(" ", text.replace("\r\n", "\n")).strip()


def chunk_text(
    text: str,
    max_chars: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into overlapping character-based chunks."""
    cleaned = normalize_text(text)
    if not cleaned:
        return []
    if max_chars <= 0:
        return [cleaned]
    if overlap >= max_chars:
        overlap = max(0, max_chars // 4)
    overlap = max(0, overlap)

    chunks: list[str] = []
    start = 0
    length = len(cleaned)
    while start < length:
        end = min(length, start + max_chars)
        chunk = cleaned[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= length:
            break
        start = end - overlap
    return chunks


def chunk_document(
    document: Document,
    max_chars: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[Document]:
    """Chunk a document into multiple Document records with metadata."""
    chunks = chunk_text(document.content, max_chars=max_chars, overlap=overlap)
    if not chunks:
        return []
    if len(chunks) == 1:
        return [Document(doc_id=document.doc_id, content=chunks[0], metadata=dict(document.metadata))]

    total = len(chunks)
    documents: list[Document] = []
    for idx, chunk in enumerate(chunks, start=1):
        metadata = dict(document.metadata)
        metadata.update({"chunk_index": idx, "chunk_count": total})
        documents.append(
            Document(
                doc_id=f"{document.doc_id}-{idx}",
                content=chunk,
                metadata=metadata,
            )
        )
    return documents
