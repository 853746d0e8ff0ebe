"""In-memory semantic index with JSON persistence.

Provides the engine consumed by the MCP server:
- Model loading and store restore on `initialize()`
- Token-aware auto-chunking of long documents
- Exact and near-duplicate detection on insert
- Cosine-similarity search with threshold, metadata predicate and temporal boost
- Write-through persistence after every mutation

The engine is not safe for concurrent use. Callers serialize access (the MCP
server routes every call through its operation queue).
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import numpy as np
from loguru import logger
from pydantic import BaseModel, Field

from vector_backend.chunking import Chunker, RecursiveTokenChunker
from vector_backend.embedding import EmbeddingClient, EmbeddingConfig, create_embedding_client
from vector_backend.models import (
    Document,
    Metadata,
    SearchResult,
    StoreSnapshot,
    StoredChunk,
    StoredDocument,
    parse_timestamp,
)
from vector_backend.persistence import JsonStore

MetadataPredicate = Callable[[Metadata], bool]

TEMPORAL_BOOST_WEIGHT = 0.1
TEMPORAL_HALF_LIFE_DAYS = 30.0


class EngineError(Exception):
    """Raised when the engine is used incorrectly or cannot complete an operation."""


class EngineConfig(BaseModel):
    """Engine configuration.

    Attributes:
        store_path: JSON file holding the persisted index
        min_similarity: Default similarity threshold for searches
        embedding: Embedding model configuration
        auto_chunk: Split long documents into token-bounded chunks
        deduplicate_exact: Skip documents whose text already exists under another ID
        deduplicate_similarity: Skip documents at least this similar to an existing one (0 disables)
        temporal_boost: Favour recent documents that carry a `timestamp`
        auto_save: Persist after every mutation
    """

    store_path: Path
    min_similarity: float = Field(default=0.6, ge=0.0, le=1.0)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    auto_chunk: bool = True
    deduplicate_exact: bool = True
    deduplicate_similarity: float = Field(default=0.95, ge=0.0, le=1.0)
    temporal_boost: bool = True
    auto_save: bool = True


class SearchEngine(Protocol):
    """Capability contract between the MCP server and the index."""

    async def initialize(self) -> None:
        """Make the engine ready; must succeed before any other call."""
        ...

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        min_similarity: float | None = None,
        filter: MetadataPredicate | None = None,
    ) -> list[SearchResult]:
        """Return documents ranked by descending similarity, at most `limit`."""
        ...

    async def add_document(self, document: Document) -> bool:
        """Index one document. Returns False if it was skipped as a duplicate."""
        ...

    async def add_documents(self, documents: Sequence[Document]) -> int:
        """Index many documents in one pass. Returns how many were stored."""
        ...

    def remove(self, doc_id: str) -> bool:
        """Delete a document. Returns True iff it existed."""
        ...

    def size(self) -> int:
        """Number of indexed documents."""
        ...

    def clear(self) -> int:
        """Delete every document. Returns how many were removed."""
        ...


def _normalize(vector: Sequence[float]) -> list[float]:
    array = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(array))
    if norm == 0.0:
        return array.tolist()
    return (array / norm).tolist()


def _content_hash(text: str) -> str:
    canonical = " ".join(text.split()).lower()
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _document_vector(document: StoredDocument) -> np.ndarray:
    mean = np.mean([chunk.vector for chunk in document.chunks], axis=0)
    norm = float(np.linalg.norm(mean))
    return mean / norm if norm else mean


def temporal_boost(score: float, metadata: Metadata, now: datetime | None = None) -> float:
    """Raise the score of recent documents, decaying with a 30-day half-life."""
    timestamp = parse_timestamp(metadata.get("timestamp"))
    if timestamp is None:
        return score
    now = now or datetime.now(UTC)
    age_days = max((now - timestamp).total_seconds() / 86400.0, 0.0)
    boost = 1.0 + TEMPORAL_BOOST_WEIGHT * 0.5 ** (age_days / TEMPORAL_HALF_LIFE_DAYS)
    return min(1.0, score * boost)


class SemanticSearchEngine:
    """Embedding-backed document index held in memory and persisted to JSON."""

    def __init__(
        self,
        config: EngineConfig,
        embedder: EmbeddingClient | None = None,
        chunker: Chunker | None = None,
        store: JsonStore | None = None,
    ) -> None:
        self.config = config
        self.embedder = embedder or create_embedding_client(config.embedding)
        self._chunker = chunker
        self.store = store or JsonStore(config.store_path)
        self._documents: dict[str, StoredDocument] = {}
        self._matrix: np.ndarray | None = None
        self._owners: list[str] = []
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def chunker(self) -> Chunker:
        if self._chunker is None:
            self._chunker = RecursiveTokenChunker()
        return self._chunker

    async def initialize(self) -> None:
        if self._ready:
            return

        await self.embedder.load()

        snapshot = self.store.load()
        if snapshot is not None:
            if snapshot.model == self.config.embedding.model:
                self._documents = {doc.id: doc for doc in snapshot.documents}
            else:
                logger.warning(
                    f"Store {self.store.path} was built with {snapshot.model}; "
                    f"re-embedding {len(snapshot.documents)} documents with "
                    f"{self.config.embedding.model}"
                )
                rebuilt = await self._prepare(
                    [
                        Document(id=doc.id, text=doc.text, metadata=doc.metadata or None)
                        for doc in snapshot.documents
                    ]
                )
                self._documents = {doc.id: doc for doc in rebuilt}
                self._save()

        self._invalidate()
        self._ready = True
        logger.debug(f"Engine ready with {len(self._documents)} documents")

    def _require_ready(self) -> None:
        if not self._ready:
            raise EngineError("Engine not initialized; call initialize() first")

    def _invalidate(self) -> None:
        self._matrix = None
        self._owners = []

    def _index_matrix(self) -> tuple[np.ndarray, list[str]]:
        if self._matrix is None:
            vectors: list[list[float]] = []
            owners: list[str] = []
            for doc in self._documents.values():
                for chunk in doc.chunks:
                    vectors.append(chunk.vector)
                    owners.append(doc.id)
            self._matrix = np.asarray(vectors, dtype=np.float32)
            self._owners = owners
        return self._matrix, self._owners

    def _save(self) -> None:
        if not self.config.auto_save:
            return
        snapshot = StoreSnapshot(
            model=self.config.embedding.model, documents=list(self._documents.values())
        )
        self.store.save(snapshot)

    def _commit(self, previous: dict[str, StoredDocument]) -> None:
        """Persist the current documents, restoring `previous` if the save fails."""
        self._invalidate()
        try:
            self._save()
        except Exception:
            self._documents = previous
            self._invalidate()
            raise

    def _split(self, text: str) -> list[str]:
        if not self.config.auto_chunk:
            return [text]
        return [chunk.text for chunk in self.chunker.chunk(text)]

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        batch_size = self.config.embedding.batch_size
        vectors: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            vectors.extend(await self.embedder.embed_batch(texts[start : start + batch_size]))
        return [_normalize(vector) for vector in vectors]

    async def _prepare(self, documents: Sequence[Document]) -> list[StoredDocument]:
        """Chunk and embed documents with a single batched embedding pass."""
        pieces = [self._split(doc.text) for doc in documents]
        flat = [text for chunk_texts in pieces for text in chunk_texts]
        vectors = await self._embed(flat)

        prepared: list[StoredDocument] = []
        offset = 0
        for doc, chunk_texts in zip(documents, pieces, strict=True):
            chunks = [
                StoredChunk(doc_id=doc.id, chunk_index=i, text=text, vector=vectors[offset + i])
                for i, text in enumerate(chunk_texts)
            ]
            offset += len(chunk_texts)
            prepared.append(
                StoredDocument(
                    id=doc.id,
                    text=doc.text,
                    metadata=dict(doc.metadata or {}),
                    content_hash=_content_hash(doc.text),
                    chunks=chunks,
                )
            )
        return prepared

    def _duplicate_of(self, candidate: StoredDocument) -> str | None:
        """Return the ID of an existing document that makes `candidate` redundant."""
        others = [doc for doc in self._documents.values() if doc.id != candidate.id]
        if not others:
            return None

        if self.config.deduplicate_exact:
            for doc in others:
                if doc.content_hash == candidate.content_hash:
                    return doc.id

        threshold = self.config.deduplicate_similarity
        if threshold > 0:
            vector = _document_vector(candidate)
            for doc in others:
                if float(np.dot(_document_vector(doc), vector)) >= threshold:
                    return doc.id

        return None

    async def add_document(self, document: Document) -> bool:
        return await self.add_documents([document]) == 1

    async def add_documents(self, documents: Sequence[Document]) -> int:
        self._require_ready()
        if not documents:
            return 0

        prepared = await self._prepare(documents)
        previous = dict(self._documents)
        stored = 0
        for candidate in prepared:
            duplicate = self._duplicate_of(candidate)
            if duplicate is not None:
                logger.info(f"Skipped {candidate.id!r}: duplicate of {duplicate!r}")
                continue
            self._documents[candidate.id] = candidate
            stored += 1

        if stored:
            self._commit(previous)
        return stored

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        min_similarity: float | None = None,
        filter: MetadataPredicate | None = None,
    ) -> list[SearchResult]:
        """Rank documents against a query.

        The threshold and the metadata predicate are applied to every document
        before the ranked list is truncated to `limit`, so a filtered search
        returns up to `limit` matching documents.

        Args:
            query: Natural language query
            limit: Maximum number of results
            min_similarity: Threshold override (defaults to the configured value)
            filter: Predicate over document metadata

        Returns:
            Results in descending similarity order, ranks starting at 1
        """
        self._require_ready()
        if limit <= 0 or not self._documents:
            return []

        threshold = self.config.min_similarity if min_similarity is None else min_similarity
        query_vector = np.asarray((await self._embed([query]))[0], dtype=np.float32)
        matrix, owners = self._index_matrix()
        scores = matrix @ query_vector

        best: dict[str, float] = {}
        for owner, score in zip(owners, scores.tolist(), strict=True):
            if score > best.get(owner, -1.0):
                best[owner] = score

        now = datetime.now(UTC)
        ranked: list[tuple[float, StoredDocument]] = []
        for doc_id, raw_score in best.items():
            doc = self._documents[doc_id]
            # Clamp to [0, 1]; float error can push cosine slightly past 1
            score = min(1.0, max(0.0, raw_score))
            if self.config.temporal_boost:
                score = temporal_boost(score, doc.metadata, now)
            if score < threshold:
                continue
            if filter is not None and not filter(doc.metadata):
                continue
            ranked.append((score, doc))

        ranked.sort(key=lambda item: item[0], reverse=True)
        return [
            SearchResult(id=doc.id, text=doc.text, similarity=score, metadata=doc.metadata, rank=i)
            for i, (score, doc) in enumerate(ranked[:limit], start=1)
        ]

    def remove(self, doc_id: str) -> bool:
        self._require_ready()
        if doc_id not in self._documents:
            return False
        previous = dict(self._documents)
        del self._documents[doc_id]
        self._commit(previous)
        return True

    def size(self) -> int:
        self._require_ready()
        return len(self._documents)

    def clear(self) -> int:
        self._require_ready()
        previous = self._documents
        count = len(previous)
        self._documents = {}
        self._commit(previous)
        return count
