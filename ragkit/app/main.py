from __future__ import annotations

"""FastAPI application exposing ingestion, retrieval and generation."""

import json
import logging
import uuid
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ragkit.app.dependencies import (
    get_embedding_config_report,
    get_pipeline,
    get_registry,
)
from ragkit.app.metrics import metrics_middleware, metrics_response, record_failure, record_ingested
from ragkit.app.schemas import (
    ChatRequest,
    CollectionResponse,
    CollectionsResponse,
    DeleteResponse,
    DocumentResponse,
    EmbeddingHealthResponse,
    ErrorResponse,
    IngestRequest,
    IngestResponse,
    QueryRequest,
    QueryResponse,
    SourceDocument,
    StatsHealthResponse,
    StatsResponse,
)
from ragkit.app.settings import settings
from ragkit.loaders.chunking import chunk_document
from ragkit.rag.errors import (
    CapabilityFailure,
    DimensionMismatch,
    EmptyStore,
    IngestionFailure,
    MissingEmbedding,
    NotFound,
    RAGError,
    ValidationError,
)
from ragkit.rag.pipeline import RAGPipeline
from ragkit.rag.types import ChatMessage, Document

logger = logging.getLogger(__name__)

app = FastAPI(title="ragkit", version="0.1.0")

ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 404, 409, 502, 504)
}


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _status_for(exc: RAGError) -> int:
    """Map a typed pipeline error onto an HTTP status code."""
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, EmptyStore):
        return 409
    if isinstance(exc, (ValidationError, DimensionMismatch, MissingEmbedding)):
        return 400
    if isinstance(exc, CapabilityFailure):
        return 504 if exc.timeout else 502
    if isinstance(exc, IngestionFailure):
        if isinstance(exc.cause, CapabilityFailure):
            return 504 if exc.cause.timeout else 502
        return 400
    return 500


@app.exception_handler(RAGError)
async def rag_error_handler(request: Request, exc: RAGError) -> JSONResponse:
    status_code = _status_for(exc)
    record_failure(type(exc).__name__, exc.stage)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "request_failed",
        extra={
            "path": request.url.path,
            "error": type(exc).__name__,
            "stage": exc.stage,
            "status": status_code,
        },
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.get("/stats", response_model=StatsResponse, responses=ERROR_RESPONSES)
async def stats(collection: str | None = None) -> StatsResponse:
    """Return document store stats for a collection."""
    pipeline = get_pipeline(collection, create=False)
    return StatsResponse(**pipeline.stats())


@app.get("/stats/health", response_model=StatsHealthResponse, responses=ERROR_RESPONSES)
async def stats_health(collection: str | None = None) -> StatsHealthResponse:
    """Return document store health for a collection."""
    pipeline = get_pipeline(collection, create=False)
    return StatsHealthResponse(**pipeline.store.health())


@app.get("/stats/embedding", response_model=EmbeddingHealthResponse)
async def embedding_health() -> EmbeddingHealthResponse:
    """Return embedding configuration health checks."""
    report = get_embedding_config_report()
    return EmbeddingHealthResponse(**report.__dict__)


@app.get("/collections", response_model=CollectionsResponse)
async def list_collections() -> CollectionsResponse:
    registry = get_registry()
    registry.get_or_create(settings.default_collection)
    return CollectionsResponse(collections=registry.names())


def _to_documents(request: IngestRequest, collection: str) -> list[Document]:
    """Convert request payloads into documents, chunking raw text when asked."""
    documents: list[Document] = []
    for idx, item in enumerate(request.documents, start=1):
        metadata = dict(item.metadata)
        metadata.setdefault("collection", collection)
        document = Document(
            doc_id=item.doc_id or f"doc-{uuid.uuid4().hex[:12]}-{idx}",
            content=item.content,
            metadata=metadata,
            embedding=tuple(item.embedding) if item.embedding is not None else None,
        )
        if request.chunk and document.embedding is None:
            chunks = chunk_document(
                document,
                max_chars=settings.chunk_size,
                overlap=settings.chunk_overlap,
            )
            if not chunks:
                raise ValidationError(f"Document {document.doc_id} has no text to chunk")
            documents.extend(chunks)
        else:
            documents.append(document)
    if not documents:
        raise ValidationError("No documents provided")
    return documents


async def _ingest(pipeline: RAGPipeline, request: IngestRequest) -> IngestResponse:
    collection = pipeline.store.name
    documents = _to_documents(request, collection)
    try:
        report = await pipeline.add_documents(documents)
    except IngestionFailure as exc:
        record_ingested(collection, exc.committed)
        raise
    record_ingested(collection, report.ingested)
    logger.info(
        "ingest_request_complete",
        extra={"collection": collection, "ingested": report.ingested, "batches": report.batches},
    )
    return IngestResponse(
        collection=collection,
        ingested=report.ingested,
        embedded=report.embedded,
        batches=report.batches,
    )


@app.post(
    "/collections/{name}/documents",
    response_model=IngestResponse,
    responses=ERROR_RESPONSES,
)
async def add_documents(name: str, request: IngestRequest) -> IngestResponse:
    """Upsert documents into a collection, embedding those without vectors."""
    return await _ingest(get_pipeline(name), request)


@app.get(
    "/collections/{name}/documents/{doc_id}",
    response_model=DocumentResponse,
    responses=ERROR_RESPONSES,
)
async def get_document(name: str, doc_id: str, include_embedding: bool = False) -> DocumentResponse:
    pipeline = get_pipeline(name, create=False)
    document = pipeline.get(doc_id)
    return DocumentResponse(**document.to_dict(include_embedding=include_embedding))


@app.delete(
    "/collections/{name}/documents/{doc_id}",
    response_model=DeleteResponse,
    responses=ERROR_RESPONSES,
)
async def delete_document(name: str, doc_id: str) -> DeleteResponse:
    pipeline = get_pipeline(name, create=False)
    pipeline.delete(doc_id)
    return DeleteResponse(collection=pipeline.store.name, doc_id=doc_id, deleted=True)


@app.post(
    "/collections/{name}/reset",
    response_model=CollectionResponse,
    responses=ERROR_RESPONSES,
)
async def reset_collection(name: str) -> CollectionResponse:
    """Empty a collection, creating it if it does not exist."""
    store = get_registry().reset(name)
    return CollectionResponse(
        collection=store.name,
        document_count=store.size(),
        message=f"Collection '{store.name}' reset successfully.",
    )


@app.post("/collections/{name}/seed", response_model=CollectionResponse, responses=ERROR_RESPONSES)
async def seed_collection(name: str, request: IngestRequest) -> CollectionResponse:
    """Reset a collection and ingest the provided documents into it."""
    store = get_registry().reset(name)
    result = await _ingest(get_pipeline(store.name), request)
    return CollectionResponse(
        collection=result.collection,
        document_count=store.size(),
        message=f"Collection '{result.collection}' seeded successfully.",
    )


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or str(uuid.uuid4())


def _history(messages: list) -> list[ChatMessage]:
    return [ChatMessage(role=message.role, content=message.content) for message in messages]


async def _answer(
    pipeline: RAGPipeline,
    question: str,
    history: list[ChatMessage],
    top_k: int | None,
    request_id: str,
) -> QueryResponse:
    response = await pipeline.query(question, history=history, top_k=top_k)
    scores = response.metadata.get("scores", [])
    sources = [
        SourceDocument(
            doc_id=document.doc_id,
            content=document.content,
            metadata=document.metadata,
            score=scores[idx] if idx < len(scores) else None,
        )
        for idx, document in enumerate(response.source_documents)
    ]
    logger.info(
        "query_complete",
        extra={
            "request_id": request_id,
            "collection": pipeline.store.name,
            "sources": len(sources),
        },
    )
    return QueryResponse(
        text=response.text,
        source_documents=sources,
        metadata={**response.metadata, "collection": pipeline.store.name},
        request_id=request_id,
    )


@app.post("/query", response_model=QueryResponse, responses=ERROR_RESPONSES)
async def query(request: QueryRequest, http_request: Request) -> QueryResponse:
    """Answer a question from the retrieved context of a collection."""
    pipeline = get_pipeline(request.collection, create=False)
    return await _answer(
        pipeline,
        request.query,
        _history(request.chat_history),
        request.top_k,
        _request_id(http_request),
    )


@app.post("/chat", response_model=QueryResponse, responses=ERROR_RESPONSES)
async def chat(request: ChatRequest, http_request: Request) -> QueryResponse:
    """Multi-turn variant of /query: the last user message is the question."""
    messages = list(request.messages)
    if messages[-1].role != "user":
        raise ValidationError("The last chat message must come from the user")
    question = messages.pop().content
    pipeline = get_pipeline(request.collection, create=False)
    return await _answer(
        pipeline, question, _history(messages), request.top_k, _request_id(http_request)
    )


@app.post("/query/stream", responses=ERROR_RESPONSES)
async def query_stream(request: QueryRequest, http_request: Request) -> StreamingResponse:
    """Stream the answer as plain text fragments.

    Retrieval and the first fragment are produced before the response starts
    so that their failures map to a status code; later failures end the body.
    """
    request_id = _request_id(http_request)
    pipeline = get_pipeline(request.collection, create=False)
    stream = pipeline.query_stream(
        request.query, history=_history(request.chat_history), top_k=request.top_k
    )
    await stream.prepare()
    fragments = aiter(stream)
    first = await anext(fragments)

    async def _body() -> AsyncIterator[str]:
        try:
            yield first
            async for fragment in fragments:
                yield fragment
        except RAGError as exc:
            record_failure(type(exc).__name__, exc.stage)
            logger.error(
                "stream_failed",
                extra={"request_id": request_id, "error": type(exc).__name__, "stage": exc.stage},
            )
        finally:
            await stream.aclose()

    headers = {
        "X-Request-ID": request_id,
        "X-Source-Document-Ids": json.dumps([doc.doc_id for doc in stream.source_documents]),
        "X-Source-Scores": json.dumps([round(score, 6) for score in stream.scores]),
    }
    return StreamingResponse(_body(), media_type="text/plain; charset=utf-8", headers=headers)
