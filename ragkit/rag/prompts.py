from __future__ import annotations

"""Prompt construction for grounded generation."""

CONTEXT_SEPARATOR = "\n\n---\n\n"

NO_CONTEXT_MESSAGE = "No relevant documents found in the knowledge base."

_CONTEXT_HEADER = "Context:\n"
_QUESTION_HEADER = "\n\nQuestion: "

_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. "
    "Answer the user's question based on the following context. "
    "If the context doesn't provide enough information, say so. "
    "Do not make up information not found in the context."
)


def base_system_prompt() -> str:
    """Return the instruction preamble used for answer generation."""
    return _SYSTEM_PROMPT


def build_system_prompt(context: str, question: str) -> str:
    """Embed formatted context and the literal question into the system prompt."""
    return f"{base_system_prompt()}\n\n{_CONTEXT_HEADER}{context}{_QUESTION_HEADER}{question}"


def extract_context(system_prompt: str) -> str:
    """Return the context section of a prompt built by build_system_prompt."""
    _, header, rest = system_prompt.partition(_CONTEXT_HEADER)
    if not header:
        return ""
    context, _, _ = rest.rpartition(_QUESTION_HEADER)
    return context.strip()
