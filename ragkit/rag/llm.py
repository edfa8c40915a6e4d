from __future__ import annotations

"""Chat generation providers backed by OpenAI-compatible and Ollama APIs."""

from dataclasses import dataclass, field
import json
from typing import Any, AsyncIterator, Protocol, Sequence

import httpx

from ragkit.rag.answerer import ExtractiveGenerator
from ragkit.rag.config import ExtractiveLLMConfig, LLMConfig, OllamaLLMConfig, OpenAILLMConfig
from ragkit.rag.errors import ConfigError, GenerationFailure
from ragkit.rag.types import ChatMessage, GenerationResult


class GenerationProvider(Protocol):
    """Protocol for generation capabilities."""

    async def generate(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> GenerationResult:
        """Return a complete answer."""
        raise NotImplementedError

    def stream(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]:
        """Return an async iterator of answer fragments."""
        raise NotImplementedError


def build_messages(system: str, history: Sequence[ChatMessage]) -> list[dict[str, str]]:
    """Build the chat message list: system prompt first, then the conversation."""
    messages = [{"role": "system", "content": system}]
    messages.extend(message.to_dict() for message in history)
    return messages


def _failure(provider: str, exc: Exception) -> GenerationFailure:
    if isinstance(exc, httpx.TimeoutException):
        return GenerationFailure(f"{provider} request timed out", cause=exc, timeout=True)
    return GenerationFailure(str(exc) or type(exc).__name__, cause=exc)


def _usage(raw: Any) -> dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    return {key: value for key, value in raw.items() if isinstance(value, int)}


@dataclass
class OpenAIChatGenerator:
    """Generation provider backed by OpenAI chat completions."""
    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 60.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    def _payload(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
        stream: bool,
    ) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": build_messages(system, history),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }

    @property
    def _url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def generate(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> GenerationResult:
        """Generate an answer using OpenAI chat completions."""
        payload = self._payload(system, history, max_tokens, temperature, stream=False)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self._url, json=payload, headers=self._headers)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise _failure("OpenAI", exc) from exc

        choices = data.get("choices") or []
        if not choices:
            raise GenerationFailure("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise GenerationFailure("Invalid OpenAI response content")
        return GenerationResult(
            text=content.strip(),
            finish_reason=choices[0].get("finish_reason"),
            usage=_usage(data.get("usage")),
        )

    async def stream(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]:
        """Stream answer fragments from server-sent events."""
        payload = self._payload(system, history, max_tokens, temperature, stream=True)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async with client.stream(
                    "POST", self._url, json=payload, headers=self._headers
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        chunk = json.loads(data)
                        choices = chunk.get("choices") or []
                        if not choices:
                            continue
                        delta = (choices[0].get("delta") or {}).get("content")
                        if delta:
                            yield delta
        except (httpx.HTTPError, ValueError) as exc:
            raise _failure("OpenAI", exc) from exc


@dataclass
class OllamaChatGenerator:
    """Generation provider backed by the Ollama chat API."""
    model: str
    base_url: str = "http://localhost:11434"
    timeout: float = 60.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    def _payload(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
        stream: bool,
    ) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": build_messages(system, history),
            "stream": stream,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

    @property
    def _url(self) -> str:
        return f"{self.base_url.rstrip('/')}/api/chat"

    async def generate(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> GenerationResult:
        """Generate an answer using Ollama."""
        payload = self._payload(system, history, max_tokens, temperature, stream=False)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise _failure("Ollama", exc) from exc
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise GenerationFailure("Invalid LLM response")
        usage: dict[str, int] = {}
        if isinstance(data.get("prompt_eval_count"), int):
            usage["prompt_tokens"] = data["prompt_eval_count"]
        if isinstance(data.get("eval_count"), int):
            usage["completion_tokens"] = data["eval_count"]
        if usage:
            usage["total_tokens"] = sum(usage.values())
        return GenerationResult(
            text=content.strip(),
            finish_reason=data.get("done_reason"),
            usage=usage,
        )

    async def stream(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]:
        """Stream answer fragments from newline-delimited JSON."""
        payload = self._payload(system, history, max_tokens, temperature, stream=True)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async with client.stream("POST", self._url, json=payload) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        chunk = json.loads(line)
                        if chunk.get("error"):
                            raise GenerationFailure(str(chunk["error"]))
                        content = (chunk.get("message") or {}).get("content")
                        if content:
                            yield content
                        if chunk.get("done"):
                            break
        except (httpx.HTTPError, ValueError) as exc:
            raise _failure("Ollama", exc) from exc


def build_generator(config: LLMConfig) -> GenerationProvider:
    """Factory for generation providers based on the configured variant."""
    if isinstance(config, ExtractiveLLMConfig):
        return ExtractiveGenerator(max_chars=config.max_chars)
    if isinstance(config, OpenAILLMConfig):
        return OpenAIChatGenerator(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            timeout=config.timeout,
        )
    if isinstance(config, OllamaLLMConfig):
        return OllamaChatGenerator(
            model=config.model,
            base_url=config.base_url,
            timeout=config.timeout,
        )
    raise ConfigError(f"Unsupported LLM configuration: {type(config).__name__}")
