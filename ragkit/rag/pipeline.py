from __future__ import annotations

"""Ingestion and question answering on top of the retriever and document store."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence, Union

from ragkit.rag.config import PipelineConfig
from ragkit.rag.embeddings import EmbeddingProvider
from ragkit.rag.errors import (
    GenerationFailure,
    IngestionFailure,
    RAGError,
    ValidationError,
)
from ragkit.rag.llm import GenerationProvider
from ragkit.rag.prompts import NO_CONTEXT_MESSAGE, build_system_prompt
from ragkit.rag.retriever import Retriever, embed_with_timeout
from ragkit.rag.types import (
    ChatMessage,
    Document,
    GenerationResult,
    IngestReport,
    RAGResponse,
    SearchResult,
)
from ragkit.vectorstore.index import SimilarityIndex
from ragkit.vectorstore.inmemory import InMemoryDocumentStore

logger = logging.getLogger(__name__)

HistoryItem = Union[ChatMessage, Mapping[str, str]]

_ROLES = {"user", "assistant"}


class QueryStage(str, Enum):
    RECEIVED = "received"
    EMBEDDING = "embedding"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class QueryTrace:
    """Tracks the stage a query is in and how long each stage took."""
    stage: QueryStage = QueryStage.RECEIVED
    failed_stage: QueryStage | None = None
    timings_ms: dict[str, float] = field(default_factory=dict)
    _entered: float = field(default_factory=time.perf_counter, repr=False)

    def enter(self, stage: QueryStage) -> None:
        now = time.perf_counter()
        self.timings_ms[self.stage.value] = round((now - self._entered) * 1000, 3)
        self.stage = stage
        self._entered = now

    def fail(self, exc: RAGError) -> RAGError:
        """Record the failing stage on both the trace and the error."""
        self.failed_stage = self.stage
        if exc.stage is None:
            exc.stage = self.stage.value
        self.stage = QueryStage.FAILED
        logger.warning(
            "query_failed",
            extra={"stage": self.failed_stage.value, "error": type(exc).__name__},
        )
        return exc


def normalize_history(history: Iterable[HistoryItem] | None, max_turns: int) -> list[ChatMessage]:
    """Validate conversation turns and keep the most recent ``max_turns``."""
    messages: list[ChatMessage] = []
    for item in history or []:
        if isinstance(item, ChatMessage):
            message = item
        else:
            message = ChatMessage(role=str(item.get("role", "")), content=str(item.get("content", "")))
        if message.role not in _ROLES:
            raise ValidationError(f"Unsupported chat role: {message.role!r}")
        messages.append(message)
    if max_turns == 0:
        return []
    return messages[-max_turns:]


def _validate_question(text: str) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Query must be a non-empty string")
    return text.strip()


@dataclass
class _PreparedQuery:
    question: str
    results: list[SearchResult]
    system_prompt: str
    messages: list[ChatMessage]
    top_k: int


@dataclass
class RAGPipeline:
    """Retrieval-augmented generation over a single document store."""
    store: InMemoryDocumentStore
    retriever: Retriever
    generator: GenerationProvider
    config: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def build(
        cls,
        store: InMemoryDocumentStore,
        embedder: EmbeddingProvider,
        generator: GenerationProvider,
        config: PipelineConfig | None = None,
    ) -> RAGPipeline:
        """Wire a retriever and similarity index around the given store."""
        resolved = config or PipelineConfig()
        retriever = Retriever(
            embedder=embedder,
            index=SimilarityIndex(store),
            top_k=resolved.top_k,
            timeout=resolved.embed_timeout,
        )
        return cls(store=store, retriever=retriever, generator=generator, config=resolved)

    @property
    def embedder(self) -> EmbeddingProvider:
        return self.retriever.embedder

    async def add_documents(self, documents: Iterable[Document]) -> IngestReport:
        """Embed documents lacking vectors in batches and upsert each batch.

        Batches that finished before a failure stay committed; the failure is
        reported as IngestionFailure carrying the lowest failing batch index.
        """
        items = list(documents)
        for document in items:
            if not document.doc_id:
                raise ValidationError("Document id must be non-empty")
            if not document.content or not document.content.strip():
                raise ValidationError(f"Document {document.doc_id} has empty content")
        size = self.config.batch_size
        batches = [items[start : start + size] for start in range(0, len(items), size)]
        semaphore = asyncio.Semaphore(self.config.ingest_concurrency)
        failures: dict[int, BaseException] = {}
        committed: dict[int, tuple[int, int]] = {}

        async def _run(index: int, batch: list[Document]) -> None:
            async with semaphore:
                if failures:
                    return
                try:
                    committed[index] = await self._ingest_batch(index, batch)
                except RAGError as exc:
                    failures[index] = exc
                    logger.error(
                        "ingest_batch_failed",
                        extra={"batch_index": index, "error": type(exc).__name__},
                    )

        await asyncio.gather(*(_run(index, batch) for index, batch in enumerate(batches)))
        ingested = sum(count for count, _ in committed.values())
        if failures:
            first = min(failures)
            raise IngestionFailure(batch_index=first, cause=failures[first], committed=ingested)
        embedded = sum(count for _, count in committed.values())
        logger.info(
            "ingest_complete",
            extra={"ingested": ingested, "embedded": embedded, "batches": len(batches)},
        )
        return IngestReport(ingested=ingested, embedded=embedded, batches=len(batches))

    async def _ingest_batch(self, index: int, batch: list[Document]) -> tuple[int, int]:
        pending = [position for position, document in enumerate(batch) if document.embedding is None]
        prepared = list(batch)
        if pending:
            texts = [batch[position].content for position in pending]
            dimension = self.store.dimension
            vectors = await embed_with_timeout(
                self.embedder,
                texts,
                self.config.embed_timeout,
                stage="ingestion",
                dimension=self.embedder.dimension if dimension is None else dimension,
            )
            for position, vector in zip(pending, vectors):
                prepared[position] = batch[position].with_embedding(vector)
        stored = self.store.upsert(prepared)
        logger.debug(
            "ingest_batch_committed",
            extra={"batch_index": index, "documents": stored, "embedded": len(pending)},
        )
        return stored, len(pending)

    def get(self, doc_id: str) -> Document:
        return self.store.get(doc_id)

    def delete(self, doc_id: str) -> None:
        self.store.delete(doc_id)

    def stats(self) -> dict[str, Any]:
        return self.store.stats()

    async def _prepare(
        self,
        text: str,
        history: Iterable[HistoryItem] | None,
        top_k: int | None,
        trace: QueryTrace,
    ) -> _PreparedQuery:
        try:
            question = _validate_question(text)
            messages = normalize_history(history, self.config.chat_history_turns)
            limit = self.config.top_k if top_k is None else top_k
            trace.enter(QueryStage.EMBEDDING)
            vector = await self.retriever.embed_query(question)
            trace.enter(QueryStage.RETRIEVING)
            results = self.retriever.search(vector, top_k=limit)
        except RAGError as exc:
            trace.fail(exc)
            raise
        context = self.retriever.format_context([result.document for result in results])
        system_prompt = build_system_prompt(context or NO_CONTEXT_MESSAGE, question)
        messages.append(ChatMessage(role="user", content=question))
        logger.info(
            "retrieval_complete",
            extra={
                "results": len(results),
                "query_length": len(question),
                "top_score": results[0].score if results else None,
            },
        )
        return _PreparedQuery(
            question=question,
            results=results,
            system_prompt=system_prompt,
            messages=messages,
            top_k=limit,
        )

    async def query(
        self,
        text: str,
        history: Iterable[HistoryItem] | None = None,
        top_k: int | None = None,
    ) -> RAGResponse:
        """Retrieve context for the question and generate a grounded answer."""
        trace = QueryTrace()
        prepared = await self._prepare(text, history, top_k, trace)
        trace.enter(QueryStage.GENERATING)
        try:
            result = await self._generate(prepared)
        except RAGError as exc:
            trace.fail(exc)
            raise
        trace.enter(QueryStage.COMPLETED)
        return RAGResponse(
            text=result.text,
            source_documents=[item.document for item in prepared.results],
            metadata={
                "stage": trace.stage.value,
                "top_k": prepared.top_k,
                "scores": [round(item.score, 6) for item in prepared.results],
                "context_empty": not prepared.results,
                "finish_reason": result.finish_reason,
                "usage": dict(result.usage),
                "timings_ms": dict(trace.timings_ms),
            },
        )

    async def _generate(self, prepared: _PreparedQuery) -> GenerationResult:
        timeout = self.config.generate_timeout
        try:
            result = await asyncio.wait_for(
                self.generator.generate(
                    prepared.system_prompt,
                    prepared.messages,
                    self.config.max_tokens,
                    self.config.temperature,
                ),
                timeout=timeout,
            )
        except GenerationFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise GenerationFailure(
                f"Generation timed out after {timeout}s", cause=exc, timeout=True
            ) from exc
        except Exception as exc:
            raise GenerationFailure(str(exc) or type(exc).__name__, cause=exc) from exc
        if not result.text:
            raise GenerationFailure("Generation returned an empty answer")
        return result

    def query_stream(
        self,
        text: str,
        history: Iterable[HistoryItem] | None = None,
        top_k: int | None = None,
    ) -> QueryStream:
        """Return a single-use async iterator over answer fragments."""
        _validate_question(text)
        return QueryStream(pipeline=self, text=text, history=list(history or []), top_k=top_k)


class QueryStream:
    """Forward-only, single-consumer stream of generated text fragments.

    Retrieval runs when iteration starts. Closing the stream, leaving an
    ``async with`` block, or cancelling the task consuming it closes the
    underlying generation call. Empty fragments are dropped; a stream that
    yields no text fails with GenerationFailure.
    """

    def __init__(
        self,
        pipeline: RAGPipeline,
        text: str,
        history: Sequence[HistoryItem],
        top_k: int | None,
    ) -> None:
        self._pipeline = pipeline
        self._text = text
        self._history = history
        self._top_k = top_k
        self._iterator: AsyncIterator[str] | None = None
        self._prepared: _PreparedQuery | None = None
        self._consumed = False
        self.trace = QueryTrace()
        self.source_documents: list[Document] = []
        self.scores: list[float] = []

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise ValidationError("Query stream can only be consumed once")
        self._consumed = True
        self._iterator = self._run(self._prepared)
        return self._iterator

    async def prepare(self) -> None:
        """Run embedding and retrieval ahead of iteration."""
        if self._consumed or self._prepared is not None:
            raise ValidationError("Query stream has already started")
        self._prepared = await self._pipeline._prepare(
            self._text, self._history, self._top_k, self.trace
        )
        self._publish_sources(self._prepared)

    async def _run(self, prepared: _PreparedQuery | None = None) -> AsyncIterator[str]:
        pipeline = self._pipeline
        if prepared is None:
            prepared = await pipeline._prepare(self._text, self._history, self._top_k, self.trace)
        self._publish_sources(prepared)
        self.trace.enter(QueryStage.GENERATING)
        timeout = pipeline.config.generate_timeout
        fragments = pipeline.generator.stream(
            prepared.system_prompt,
            prepared.messages,
            pipeline.config.max_tokens,
            pipeline.config.temperature,
        )
        produced = False
        try:
            while True:
                try:
                    async with asyncio.timeout(timeout):
                        fragment = await anext(fragments)
                except StopAsyncIteration:
                    break
                except GenerationFailure as exc:
                    self.trace.fail(exc)
                    raise
                except TimeoutError as exc:
                    failure = GenerationFailure(
                        f"Generation stalled for {timeout}s", cause=exc, timeout=True
                    )
                    raise self.trace.fail(failure) from exc
                except Exception as exc:
                    failure = GenerationFailure(str(exc) or type(exc).__name__, cause=exc)
                    raise self.trace.fail(failure) from exc
                if not fragment:
                    continue
                produced = True
                yield fragment
            if not produced:
                raise self.trace.fail(GenerationFailure("Generation returned an empty answer"))
            self.trace.enter(QueryStage.COMPLETED)
        finally:
            close = getattr(fragments, "aclose", None)
            if close is not None:
                await close()

    def _publish_sources(self, prepared: _PreparedQuery) -> None:
        self.source_documents = [item.document for item in prepared.results]
        self.scores = [item.score for item in prepared.results]

    async def aclose(self) -> None:
        """Stop consumption and release the generation call."""
        close = getattr(self._iterator, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> QueryStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
