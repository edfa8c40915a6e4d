from __future__ import annotations

import json
import os

import httpx
import pytest

os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIMENSION"] = "64"
os.environ["RAG_LLM_PROVIDER"] = "extractive"
os.environ["RAG_CHUNK_SIZE"] = "200"
os.environ["RAG_CHUNK_OVERLAP"] = "20"

from ragkit.app import dependencies
from ragkit.app.dependencies import reset_pipeline_cache
from ragkit.app.main import app
from ragkit.tests.fakes import MalformedEmbedder, ScriptedGenerator

pytestmark = pytest.mark.anyio

SALES = {
    "doc_id": "sales",
    "content": "Q4 sales were 100 units in North India.",
    "metadata": {"source": "report"},
}
HR = {
    "doc_id": "hr",
    "content": "Employees joined after June 2023: Alice, Bob.",
    "metadata": {"source": "hr"},
}


def get_client() -> httpx.AsyncClient:
    reset_pipeline_cache()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


async def test_health_endpoint() -> None:
    async with get_client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_ingest_and_query() -> None:
    async with get_client() as client:
        ingest_response = await client.post(
            "/collections/default/documents", json={"documents": [SALES, HR]}
        )
        assert ingest_response.status_code == 200
        assert ingest_response.json() == {
            "collection": "default",
            "ingested": 2,
            "embedded": 2,
            "batches": 1,
        }

        query_response = await client.post(
            "/query", json={"query": "What were Q4 sales in North India?"}
        )
    assert query_response.status_code == 200
    payload = query_response.json()
    assert "Q4 sales were 100 units" in payload["text"]
    assert payload["source_documents"][0]["doc_id"] == "sales"
    assert payload["source_documents"][0]["score"] > 0
    assert payload["metadata"]["collection"] == "default"
    assert payload["request_id"]


async def test_query_refuses_without_context() -> None:
    async with get_client() as client:
        response = await client.post("/query", json={"query": "What is the travel policy?"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["text"].startswith("I don't know")
    assert payload["source_documents"] == []
    assert payload["metadata"]["context_empty"] is True


async def test_request_id_is_echoed() -> None:
    async with get_client() as client:
        response = await client.post(
            "/query", json={"query": "anything"}, headers={"X-Request-ID": "req-123"}
        )
    assert response.json()["request_id"] == "req-123"


async def test_chat_uses_last_user_message() -> None:
    async with get_client() as client:
        await client.post("/collections/default/documents", json={"documents": [SALES, HR]})
        response = await client.post(
            "/chat",
            json={
                "messages": [
                    {"role": "user", "content": "Hi"},
                    {"role": "assistant", "content": "Hello, how can I help?"},
                    {"role": "user", "content": "Who joined after June 2023?"},
                ]
            },
        )
    assert response.status_code == 200
    assert "Alice, Bob" in response.json()["text"]


async def test_chat_must_end_with_user_message() -> None:
    async with get_client() as client:
        response = await client.post(
            "/chat", json={"messages": [{"role": "assistant", "content": "Hello"}]}
        )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


async def test_blank_query_is_rejected() -> None:
    async with get_client() as client:
        empty = await client.post("/query", json={"query": ""})
        blank = await client.post("/query", json={"query": "   "})
    assert empty.status_code == 422
    assert blank.status_code == 400


async def test_unknown_collection_returns_not_found() -> None:
    async with get_client() as client:
        response = await client.post("/query", json={"query": "x", "collection": "missing"})
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


async def test_get_and_delete_document() -> None:
    async with get_client() as client:
        await client.post("/collections/hr/documents", json={"documents": [HR]})

        fetched = await client.get("/collections/hr/documents/hr", params={"include_embedding": True})
        deleted = await client.delete("/collections/hr/documents/hr")
        missing = await client.get("/collections/hr/documents/hr")

    assert fetched.status_code == 200
    assert fetched.json()["metadata"] == {"source": "hr", "collection": "hr"}
    assert len(fetched.json()["embedding"]) == 64
    assert deleted.json() == {"collection": "hr", "doc_id": "hr", "deleted": True}
    assert missing.status_code == 404


async def test_dimension_mismatch_is_a_client_error() -> None:
    async with get_client() as client:
        response = await client.post(
            "/collections/default/documents",
            json={"documents": [{"doc_id": "bad", "content": "text", "embedding": [1.0, 0.0]}]},
        )
    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "IngestionFailure"
    assert payload["batch_index"] == 0
    assert payload["cause"] == "DimensionMismatch"


async def test_ingest_with_chunking() -> None:
    async with get_client() as client:
        response = await client.post(
            "/collections/policies/documents",
            json={"documents": [{"doc_id": "policy", "content": "word " * 200}], "chunk": True},
        )
        stats = await client.get("/stats", params={"collection": "policies"})
    assert response.status_code == 200
    assert response.json()["ingested"] > 1
    assert stats.json()["document_count"] == response.json()["ingested"]
    assert stats.json()["embedding_dimension"] == 64


async def test_reset_and_seed_collection() -> None:
    async with get_client() as client:
        await client.post("/collections/ops/documents", json={"documents": [SALES, HR]})
        seeded = await client.post("/collections/ops/seed", json={"documents": [HR]})
        collections = await client.get("/collections")
        reset = await client.post("/collections/ops/reset")
        stats = await client.get("/stats", params={"collection": "ops"})

    assert seeded.json()["document_count"] == 1
    assert collections.json()["collections"] == ["default", "ops"]
    assert reset.json()["document_count"] == 0
    assert stats.json()["document_count"] == 0


async def test_stream_query() -> None:
    async with get_client() as client:
        await client.post("/collections/default/documents", json={"documents": [SALES, HR]})
        response = await client.post(
            "/query/stream", json={"query": "What were Q4 sales in North India?"}
        )
    assert response.status_code == 200
    assert response.text.startswith("Based on the provided context: Q4 sales were 100 units")
    assert response.headers["x-source-document-ids"].startswith('["sales"')
    assert len(json.loads(response.headers["x-source-scores"])) == 2
    assert response.headers["x-request-id"]


async def test_stream_unknown_collection_fails_before_streaming() -> None:
    async with get_client() as client:
        response = await client.post(
            "/query/stream", json={"query": "x", "collection": "missing"}
        )
    assert response.status_code == 404


async def test_embedding_health_and_metrics() -> None:
    async with get_client() as client:
        await client.get("/health")
        health = await client.get("/stats/embedding")
        metrics = await client.get("/metrics")
    assert health.json()["provider"] == "hash"
    assert health.json()["ok"] is True
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text


async def test_stream_without_text_is_a_gateway_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client = get_client()
    monkeypatch.setattr(dependencies, "get_generator", lambda: ScriptedGenerator(fragments=[]))
    async with client:
        response = await client.post("/query/stream", json={"query": "anything"})
    assert response.status_code == 502
    assert response.json()["error"] == "GenerationFailure"
    assert response.json()["stage"] == "generating"


async def test_malformed_embeddings_are_a_gateway_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client = get_client()
    monkeypatch.setattr(dependencies, "get_embedder", lambda: MalformedEmbedder())
    async with client:
        ingest = await client.post("/collections/default/documents", json={"documents": [SALES]})
        query = await client.post("/query", json={"query": "Q4 sales?"})
    assert ingest.status_code == 502
    assert ingest.json()["cause"] == "EmbeddingFailure"
    assert query.status_code == 502
    assert query.json()["error"] == "EmbeddingFailure"


async def test_chunked_blank_document_is_rejected() -> None:
    async with get_client() as client:
        response = await client.post(
            "/collections/default/documents",
            json={"documents": [{"doc_id": "blank", "content": "   \n  "}], "chunk": True},
        )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


async def test_store_health() -> None:
    async with get_client() as client:
        health = await client.get("/stats/health")
        missing = await client.get("/stats/health", params={"collection": "missing"})
    assert health.json() == {"backend": "memory", "collection": "default", "ok": True, "detail": None}
    assert missing.status_code == 404


async def test_error_bodies_are_documented() -> None:
    async with get_client() as client:
        response = await client.get("/openapi.json")
    schema = response.json()
    assert "ErrorResponse" in schema["components"]["schemas"]
    assert "404" in schema["paths"]["/query"]["post"]["responses"]
