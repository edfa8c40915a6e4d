from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    collection: str | None = None
    top_k: int | None = Field(default=None, ge=1, le=100)
    chat_history: list[ChatMessage] = Field(default_factory=list)


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    collection: str | None = None
    top_k: int | None = Field(default=None, ge=1, le=100)


class SourceDocument(BaseModel):
    doc_id: str
    content: str
    metadata: dict[str, Any]
    score: float | None = None


class QueryResponse(BaseModel):
    text: str
    source_documents: list[SourceDocument]
    metadata: dict[str, Any]
    request_id: str


class IngestDocument(BaseModel):
    doc_id: str | None = None
    content: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = None


class IngestRequest(BaseModel):
    documents: list[IngestDocument] = Field(min_length=1)
    chunk: bool = False


class IngestResponse(BaseModel):
    collection: str
    ingested: int
    embedded: int
    batches: int


class DocumentResponse(BaseModel):
    doc_id: str
    content: str
    metadata: dict[str, Any]
    embedding: list[float] | None = None


class DeleteResponse(BaseModel):
    collection: str
    doc_id: str
    deleted: bool


class CollectionResponse(BaseModel):
    collection: str
    document_count: int
    message: str


class CollectionsResponse(BaseModel):
    collections: list[str]


class StatsResponse(BaseModel):
    backend: str
    collection: str
    document_count: int
    embedding_dimension: int | None = None


class StatsHealthResponse(BaseModel):
    backend: str
    collection: str
    ok: bool
    detail: str | None = None


class EmbeddingHealthResponse(BaseModel):
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None = None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


class ErrorResponse(BaseModel):
    error: str
    detail: str
    stage: str | None = None
