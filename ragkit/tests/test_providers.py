from __future__ import annotations

"""Embedding and generation adapters against mocked HTTP APIs."""

import json

import httpx
import pytest

from ragkit.rag.answerer import DEFAULT_REFUSAL, ExtractiveGenerator
from ragkit.rag.config import (
    ExtractiveLLMConfig,
    HashEmbeddingConfig,
    OllamaLLMConfig,
    OpenAIEmbeddingConfig,
    PipelineConfig,
)
from ragkit.rag.embeddings import (
    HashEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    build_embedder,
    build_embedding_config_report,
)
from ragkit.rag.errors import ConfigError, EmbeddingFailure, GenerationFailure
from ragkit.rag.llm import OllamaChatGenerator, OpenAIChatGenerator, build_generator
from ragkit.rag.prompts import NO_CONTEXT_MESSAGE, build_system_prompt
from ragkit.rag.types import ChatMessage

pytestmark = pytest.mark.anyio

HISTORY = [ChatMessage(role="user", content="What were Q4 sales?")]


async def test_hash_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashEmbedder(dimension=32)

    first, second = await embedder.embed(["Q4 sales", "q4 SALES"])

    assert first == second
    assert len(first) == 32
    assert sum(value * value for value in first) == pytest.approx(1.0)


async def test_openai_embedder_orders_vectors_by_index() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ]
            },
        )

    embedder = OpenAIEmbedder(
        api_key="sk-test",
        model="custom",
        dimension=2,
        base_url="https://llm.internal/v1/",
        transport=httpx.MockTransport(handler),
    )

    vectors = await embedder.embed(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen["url"] == "https://llm.internal/v1/embeddings"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {"model": "custom", "input": ["first", "second"]}


async def test_openai_embedder_rejects_wrong_count() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0, 0.0]}]})
    )
    embedder = OpenAIEmbedder(api_key="k", model="m", dimension=2, transport=transport)

    with pytest.raises(EmbeddingFailure):
        await embedder.embed(["a", "b"])


async def test_ollama_embedder_maps_http_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "down"}))
    embedder = OllamaEmbedder(model="nomic-embed-text", dimension=2, transport=transport)

    with pytest.raises(EmbeddingFailure) as excinfo:
        await embedder.embed(["a"])
    assert isinstance(excinfo.value.cause, httpx.HTTPStatusError)


async def test_ollama_embedder_checks_dimension() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"embeddings": [[1.0, 0.0, 0.0]]})
    )
    embedder = OllamaEmbedder(model="nomic-embed-text", dimension=2, transport=transport)

    with pytest.raises(EmbeddingFailure):
        await embedder.embed(["a"])


async def test_embedder_timeout_is_flagged() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    embedder = OllamaEmbedder(model="m", dimension=2, transport=httpx.MockTransport(handler))

    with pytest.raises(EmbeddingFailure) as excinfo:
        await embedder.embed(["a"])
    assert excinfo.value.timeout


async def test_openai_generate_sends_system_prompt_first() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": " 100 units. "}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
            },
        )

    generator = OpenAIChatGenerator(api_key="k", model="gpt-4o-mini", transport=httpx.MockTransport(handler))

    result = await generator.generate("system prompt", HISTORY, max_tokens=64, temperature=0.0)

    assert result.text == "100 units."
    assert result.finish_reason == "stop"
    assert result.usage["total_tokens"] == 15
    assert seen["body"]["messages"][0] == {"role": "system", "content": "system prompt"}
    assert seen["body"]["messages"][1] == {"role": "user", "content": "What were Q4 sales?"}
    assert seen["body"]["max_tokens"] == 64
    assert seen["body"]["stream"] is False


async def test_openai_stream_parses_server_sent_events() -> None:
    events = [
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": "100 "}}]},
        {"choices": [{"delta": {"content": "units"}}]},
    ]
    body = "".join(f"data: {json.dumps(event)}\n\n" for event in events) + "data: [DONE]\n\n"
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})
    )
    generator = OpenAIChatGenerator(api_key="k", model="m", transport=transport)

    fragments = [fragment async for fragment in generator.stream("s", HISTORY, 64, 0.0)]

    assert fragments == ["100 ", "units"]


async def test_openai_generate_maps_http_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(429, json={"error": "rate"}))
    generator = OpenAIChatGenerator(api_key="k", model="m", transport=transport)

    with pytest.raises(GenerationFailure) as excinfo:
        await generator.generate("s", HISTORY, 64, 0.0)
    assert not excinfo.value.timeout


async def test_ollama_generate_collects_usage() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            200,
            json={
                "message": {"role": "assistant", "content": "Alice and Bob."},
                "done": True,
                "done_reason": "stop",
                "prompt_eval_count": 20,
                "eval_count": 5,
            },
        )
    )
    generator = OllamaChatGenerator(model="llama3", transport=transport)

    result = await generator.generate("s", HISTORY, 64, 0.2)

    assert result.text == "Alice and Bob."
    assert result.usage == {"prompt_tokens": 20, "completion_tokens": 5, "total_tokens": 25}


async def test_ollama_stream_parses_json_lines() -> None:
    lines = [
        {"message": {"content": "Alice"}, "done": False},
        {"message": {"content": " and Bob"}, "done": False},
        {"message": {"content": ""}, "done": True},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\n"
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text=body))
    generator = OllamaChatGenerator(model="llama3", transport=transport)

    fragments = [fragment async for fragment in generator.stream("s", HISTORY, 64, 0.2)]

    assert fragments == ["Alice", " and Bob"]


async def test_ollama_stream_surfaces_inline_errors() -> None:
    body = json.dumps({"error": "model not found"}) + "\n"
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text=body))
    generator = OllamaChatGenerator(model="missing", transport=transport)

    with pytest.raises(GenerationFailure, match="model not found"):
        async for _fragment in generator.stream("s", HISTORY, 64, 0.2):
            pass


async def test_extractive_generator_answers_from_first_context_block() -> None:
    generator = ExtractiveGenerator(max_chars=40)
    system = build_system_prompt("Q4 sales were 100 units.\n\n---\n\nOther block.", "Q4?")

    result = await generator.generate(system, HISTORY, 64, 0.0)
    streamed = "".join([fragment async for fragment in generator.stream(system, HISTORY, 64, 0.0)])

    assert result.text == "Based on the provided context: Q4 sales were 100 units."
    assert streamed == result.text


async def test_extractive_generator_refuses_without_context() -> None:
    generator = ExtractiveGenerator()
    system = build_system_prompt(NO_CONTEXT_MESSAGE, "Anything?")

    result = await generator.generate(system, HISTORY, 64, 0.0)

    assert result.text == DEFAULT_REFUSAL


def test_openai_embedding_config_resolves_dimension() -> None:
    config = OpenAIEmbeddingConfig(api_key="k", model="text-embedding-3-large")

    assert config.dimension == 3072
    with pytest.raises(ConfigError):
        OpenAIEmbeddingConfig(api_key="k", model="text-embedding-3-small", dimension=10)
    with pytest.raises(ConfigError):
        OpenAIEmbeddingConfig(api_key="", model="text-embedding-3-small")


def test_invalid_pipeline_config_is_rejected() -> None:
    with pytest.raises(ConfigError):
        PipelineConfig(top_k=0)
    with pytest.raises(ConfigError):
        PipelineConfig(temperature=3.0)
    with pytest.raises(ConfigError):
        OllamaLLMConfig(model="")


def test_factories_follow_config_variant() -> None:
    assert isinstance(build_embedder(HashEmbeddingConfig(dimension=8)), HashEmbedder)
    assert isinstance(build_generator(ExtractiveLLMConfig()), ExtractiveGenerator)
    assert isinstance(build_generator(OllamaLLMConfig(model="llama3")), OllamaChatGenerator)


def test_embedding_config_report_flags_mismatch() -> None:
    report = build_embedding_config_report("openai", "text-embedding-3-small", 768)

    assert report.ok is False
    assert report.expected_dimension == 1536
    assert report.action == "Set EMBEDDING_DIMENSION to 1536."

    assert build_embedding_config_report("hash", None, 256).status == "ok"
    assert build_embedding_config_report("ollama", "nomic-embed-text", 768).status == "warning"
    assert build_embedding_config_report("cohere", None, 256).ok is False
