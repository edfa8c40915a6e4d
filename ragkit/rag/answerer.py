from __future__ import annotations

"""Offline extractive generator used when no LLM provider is configured."""

from dataclasses import dataclass
from typing import AsyncIterator, Sequence

from ragkit.rag.prompts import CONTEXT_SEPARATOR, NO_CONTEXT_MESSAGE, extract_context
from ragkit.rag.types import ChatMessage, GenerationResult

DEFAULT_REFUSAL = "I don't know based on the provided context."


@dataclass
class ExtractiveGenerator:
    """Return a short extract from the top-ranked context block."""
    max_chars: int = 480

    async def generate(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> GenerationResult:
        """Generate an extractive answer from the context in the system prompt."""
        text = self._answer(system)
        return GenerationResult(text=text, finish_reason="stop")

    async def stream(
        self,
        system: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]:
        """Yield the extractive answer word by word."""
        words = self._answer(system).split(" ")
        for idx, word in enumerate(words):
            yield word if idx == len(words) - 1 else f"{word} "

    def _answer(self, system: str) -> str:
        context = extract_context(system)
        best = context.split(CONTEXT_SEPARATOR, 1)[0].strip()
        if not best or best == NO_CONTEXT_MESSAGE:
            return DEFAULT_REFUSAL
        return f"Based on the provided context: {self._truncate(best)}"

    def _truncate(self, text: str) -> str:
        """Trim text to the max character budget without cutting words."""
        if len(text) <= self.max_chars:
            return text
        return text[: self.max_chars].rsplit(" ", 1)[0] + "..."
