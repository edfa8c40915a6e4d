from __future__ import annotations

"""Chunking behavior tests."""

from ragkit.loaders.chunking import chunk_document, chunk_text, normalize_text
from ragkit.rag.types import Document


def test_chunk_document_splits_and_adds_metadata() -> None:
    """Ensure chunking splits and annotates metadata."""
    content = "word " * 300
    document = Document(doc_id="policy", content=content, metadata={"source": "policy.txt"})

    chunks = chunk_document(document, max_chars=200, overlap=20)

    assert len(chunks) > 1
    assert chunks[0].doc_id == "policy-1"
    assert chunks[0].metadata["chunk_index"] == 1
    assert chunks[0].metadata["chunk_count"] == len(chunks)
    assert chunks[0].metadata["source"] == "policy.txt"
    assert all(chunk.embedding is None for chunk in chunks)


def test_short_document_keeps_its_id() -> None:
    document = Document(doc_id="memo", content="Short\n\nmemo.")

    chunks = chunk_document(document, max_chars=200, overlap=20)

    assert [chunk.doc_id for chunk in chunks] == ["memo"]
    assert chunks[0].content == "Short memo."


def test_chunks_overlap() -> None:
    text = "".join(chr(ord("a") + idx % 26) for idx in range(50))

    chunks = chunk_text(text, max_chars=20, overlap=5)

    assert chunks[0][-5:] == chunks[1][:5]
    assert chunks[-1].endswith(text[-1])


def test_normalize_text_collapses_whitespace() -> None:
    assert normalize_text("  a\r\nb\t\tc  ") == "a b c"
    assert chunk_text("   ") == []
