from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from ragkit.rag.config import (
    EmbeddingConfig,
    ExtractiveLLMConfig,
    HashEmbeddingConfig,
    LLMConfig,
    OllamaEmbeddingConfig,
    OllamaLLMConfig,
    OpenAIEmbeddingConfig,
    OpenAILLMConfig,
    PipelineConfig,
)
from ragkit.rag.errors import ConfigError

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("RAG_LOG_LEVEL", "INFO")
    default_collection: str = os.getenv("RAG_DEFAULT_COLLECTION", "default")
    top_k: int = int(os.getenv("RAG_TOP_K", "5"))
    embed_batch_size: int = int(os.getenv("RAG_EMBED_BATCH_SIZE", "100"))
    ingest_concurrency: int = int(os.getenv("RAG_INGEST_CONCURRENCY", "1"))
    embed_timeout: float = float(os.getenv("RAG_EMBED_TIMEOUT", "30"))
    generate_timeout: float = float(os.getenv("RAG_GENERATE_TIMEOUT", "60"))
    max_tokens: int = int(os.getenv("RAG_MAX_TOKENS", "512"))
    temperature: float = float(os.getenv("RAG_TEMPERATURE", "0.1"))
    chat_history_turns: int = int(os.getenv("RAG_CHAT_HISTORY_TURNS", "6"))
    chunk_size: int = int(os.getenv("RAG_CHUNK_SIZE", "1000"))
    chunk_overlap: int = int(os.getenv("RAG_CHUNK_OVERLAP", "200"))
    metrics_enabled: bool = _env_bool("RAG_METRICS_ENABLED", "true")
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "256"))
    llm_provider: str = os.getenv("RAG_LLM_PROVIDER", "extractive")
    extractive_max_chars: int = int(os.getenv("RAG_EXTRACTIVE_MAX_CHARS", "480"))
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_embedding_model: str | None = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    openai_chat_model: str | None = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    openai_timeout: float = float(os.getenv("OPENAI_TIMEOUT", "60"))
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    ollama_embedding_model: str | None = os.getenv("OLLAMA_EMBEDDING_MODEL", "nomic-embed-text")
    ollama_timeout: float = float(os.getenv("OLLAMA_TIMEOUT", "60"))

    @property
    def embedding_model(self) -> str | None:
        provider = self.embedding_provider.lower().strip()
        if provider == "openai":
            return self.openai_embedding_model
        if provider == "ollama":
            return self.ollama_embedding_model
        return None

    def embedding_config(self) -> EmbeddingConfig:
        provider = self.embedding_provider.lower().strip()
        if provider in {"", "hash"}:
            return HashEmbeddingConfig(dimension=self.embedding_dimension)
        if provider == "openai":
            return OpenAIEmbeddingConfig(
                api_key=self.openai_api_key or "",
                model=self.openai_embedding_model or "",
                dimension=self.embedding_dimension,
                base_url=self.openai_base_url,
                timeout=self.openai_timeout,
            )
        if provider == "ollama":
            return OllamaEmbeddingConfig(
                model=self.ollama_embedding_model or "",
                dimension=self.embedding_dimension,
                base_url=self.ollama_base_url,
                timeout=self.ollama_timeout,
            )
        raise ConfigError(f"Unsupported embedding provider: {provider}")

    def llm_config(self) -> LLMConfig:
        provider = self.llm_provider.lower().strip()
        if provider in {"", "extractive"}:
            return ExtractiveLLMConfig(max_chars=self.extractive_max_chars)
        if provider == "openai":
            return OpenAILLMConfig(
                api_key=self.openai_api_key or "",
                model=self.openai_chat_model or "",
                base_url=self.openai_base_url,
                timeout=self.openai_timeout,
            )
        if provider == "ollama":
            return OllamaLLMConfig(
                model=self.ollama_model,
                base_url=self.ollama_base_url,
                timeout=self.ollama_timeout,
            )
        raise ConfigError(f"Unsupported LLM provider: {provider}")

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            top_k=self.top_k,
            batch_size=self.embed_batch_size,
            ingest_concurrency=self.ingest_concurrency,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            embed_timeout=self.embed_timeout,
            generate_timeout=self.generate_timeout,
            chat_history_turns=self.chat_history_turns,
        )


settings = Settings()
