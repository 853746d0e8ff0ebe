"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Engine tests run against a deterministic keyword embedding instead of a
  downloaded model
- Core tests can use a recording stub engine
"""

from __future__ import annotations

import asyncio
import re
import sys
import zlib
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from semantic_search_mcp.config import ServerConfig  # noqa: E402
from semantic_search_mcp.handlers import SemanticTools  # noqa: E402
from semantic_search_mcp.metrics import MetricsAccumulator  # noqa: E402
from semantic_search_mcp.op_queue import OperationQueue  # noqa: E402
from vector_backend.index import EngineConfig, SemanticSearchEngine  # noqa: E402
from vector_backend.models import Document, SearchResult  # noqa: E402

# Words sharing an axis are treated as synonyms by the keyword embedding.
CONCEPT_AXES: dict[str, int] = {
    "rate": 0,
    "limiting": 0,
    "limit": 0,
    "throttling": 0,
    "throttle": 0,
    "requests": 0,
    "sliding": 1,
    "window": 1,
    "auth": 2,
    "authentication": 2,
    "jwt": 2,
    "token": 2,
    "login": 2,
    "database": 3,
    "db": 3,
    "postgres": 3,
    "migration": 3,
    "cache": 4,
    "redis": 4,
    "caching": 4,
}
NOISE_AXES = 3
DIMENSIONS = 5 + NOISE_AXES


class KeywordEmbedding:
    """Deterministic bag-of-concepts embedding for tests."""

    def __init__(self, fail_loads: int = 0) -> None:
        self.fail_loads = fail_loads
        self.load_calls = 0
        self.batches: list[list[str]] = []

    async def load(self) -> None:
        self.load_calls += 1
        if self.load_calls <= self.fail_loads:
            raise ConnectionError("model download failed")

    def vector(self, text: str) -> list[float]:
        vector = [0.0] * DIMENSIONS
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            axis = CONCEPT_AXES.get(word)
            if axis is None:
                axis = 5 + zlib.crc32(word.encode()) % NOISE_AXES
            vector[axis] += 1.0
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        return [self.vector(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]


class RecordingEngine:
    """In-memory stub of the engine contract that records call overlap.

    Every call appends ("enter", name) and ("exit", name) to `events` and yields
    to the event loop in between, so any missing serialization shows up as
    interleaved events.
    """

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.events: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        self.events.append(("enter", name))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    def _exit(self, name: str) -> None:
        self.active -= 1
        self.events.append(("exit", name))
        if name in self.fail_on:
            raise RuntimeError(f"{name} exploded")

    async def initialize(self) -> None:
        return None

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        min_similarity: float | None = None,
        filter: Any = None,
    ) -> list[SearchResult]:
        await self._enter("search")
        words = set(query.lower().split())
        results = [
            SearchResult(id=doc.id, text=doc.text, similarity=0.9, metadata=doc.metadata or {})
            for doc in self.documents.values()
            if words & set(doc.text.lower().split())
            and (filter is None or filter(doc.metadata or {}))
        ]
        self._exit("search")
        return results[:limit]

    async def add_document(self, document: Document) -> bool:
        await self._enter("add_document")
        self.documents[document.id] = document
        self._exit("add_document")
        return True

    async def add_documents(self, documents: Sequence[Document]) -> int:
        await self._enter("add_documents")
        for document in documents:
            self.documents[document.id] = document
        self._exit("add_documents")
        return len(documents)

    def remove(self, doc_id: str) -> bool:
        self.calls.append("remove")
        if "remove" in self.fail_on:
            raise RuntimeError("remove exploded")
        return self.documents.pop(doc_id, None) is not None

    def size(self) -> int:
        return len(self.documents)

    def clear(self) -> int:
        self.calls.append("clear")
        count = len(self.documents)
        self.documents.clear()
        return count


@pytest.fixture
def keyword_embedding() -> KeywordEmbedding:
    return KeywordEmbedding()


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(
        store_path=tmp_path / "store.json",
        min_similarity=0.6,
        auto_chunk=False,
        deduplicate_exact=True,
        deduplicate_similarity=0.0,
        temporal_boost=False,
    )


@pytest.fixture
def engine(engine_config: EngineConfig, keyword_embedding: KeywordEmbedding) -> SemanticSearchEngine:
    return SemanticSearchEngine(engine_config, embedder=keyword_embedding)


@pytest.fixture
def server_config(tmp_path: Path) -> ServerConfig:
    return ServerConfig(store_path=tmp_path / "store.json", init_retry_delay=0.0)


@pytest.fixture
def recording_engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture
def metrics() -> MetricsAccumulator:
    return MetricsAccumulator()


@pytest.fixture
def stub_tools(
    recording_engine: RecordingEngine, metrics: MetricsAccumulator, server_config: ServerConfig
) -> SemanticTools:
    """Tool handlers wired to the recording stub engine."""
    return SemanticTools(recording_engine, OperationQueue(metrics), metrics, server_config)


@pytest.fixture
def make_embedding() -> type[KeywordEmbedding]:
    """Factory for keyword embeddings with custom failure behaviour."""
    return KeywordEmbedding
