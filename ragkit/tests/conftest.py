from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIMENSION"] = "64"
os.environ["RAG_LLM_PROVIDER"] = "extractive"
os.environ["RAG_DEFAULT_COLLECTION"] = "default"
os.environ.setdefault("RAG_LOG_LEVEL", "WARNING")
os.environ.pop("OPENAI_API_KEY", None)

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
