"""Tool handlers: one queued engine operation per call, rendered as text.

Handlers never touch the engine outside a queued task. Input that fails
validation is answered directly without reaching the queue and is not
counted as an error; failures of queued work are counted by the queue and
returned to the caller as a failure message.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

from loguru import logger
from pydantic import ValidationError

from vector_backend.index import SearchEngine
from vector_backend.models import Document, Metadata, SearchResult

from . import formatting
from .config import ServerConfig
from .filters import QueryFilterSpec
from .metrics import MetricsAccumulator
from .op_queue import OperationQueue

HEALTH_PROBE_QUERY = "test"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _validation_message(error: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or 'input'}: {item['msg']}"
        for item in error.errors()
    )
    return f"⚠️ Invalid input: {problems}"


class SemanticTools:
    """The operations exposed to MCP clients, independent of the transport."""

    def __init__(
        self,
        engine: SearchEngine,
        queue: OperationQueue,
        metrics: MetricsAccumulator,
        config: ServerConfig,
    ) -> None:
        self.engine = engine
        self.queue = queue
        self.metrics = metrics
        self.config = config

    async def health(self) -> str:
        """Probe the engine with a real query and report metrics and configuration."""
        logger.info("semantic_health called")

        async def probe() -> int:
            await self.engine.search(HEALTH_PROBE_QUERY, limit=1)
            self.metrics.record_search()
            return self.engine.size()

        try:
            documents = await self.queue.run(probe, "health probe")
        except Exception as exc:
            return formatting.format_unhealthy(exc)
        return formatting.format_health(documents, self.metrics.snapshot(), self.config)

    async def search(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float | None = None,
        kind: str | None = None,
        tags: Sequence[str] | None = None,
        since: str | None = None,
    ) -> str:
        logger.info(f"semantic_search called: query={query!r}, limit={limit}")
        try:
            spec = QueryFilterSpec(kind=kind, tags=tags, since=since)
        except ValidationError as exc:
            return _validation_message(exc)

        predicate = None if spec.is_empty else spec.matches

        async def operation() -> tuple[list[SearchResult], int]:
            started = time.perf_counter()
            results = await self.engine.search(
                query, limit=limit, min_similarity=min_similarity, filter=predicate
            )
            self.metrics.record_search()
            return results, _elapsed_ms(started)

        try:
            results, elapsed = await self.queue.run(operation, "search")
        except Exception as exc:
            return formatting.format_failure("Search", exc)

        logger.success(f"Search returned {len(results)} results in {elapsed}ms")
        return formatting.format_search(query, results, elapsed)

    async def index_document(self, id: str, text: str, metadata: Metadata | None = None) -> str:
        logger.info(f"semantic_index called: id={id!r}")
        try:
            document = Document(id=id, text=text, metadata=metadata)
        except ValidationError as exc:
            return _validation_message(exc)

        async def operation() -> tuple[int, int]:
            started = time.perf_counter()
            await self.engine.add_document(document)
            self.metrics.record_added()
            return self.engine.size(), _elapsed_ms(started)

        try:
            total, elapsed = await self.queue.run(operation, f"index {id!r}")
        except Exception as exc:
            return formatting.format_failure(f'Indexing "{id}"', exc)

        logger.success(f"Indexed {id!r} in {elapsed}ms")
        return formatting.format_indexed(id, total, elapsed, self.config)

    async def index_batch(self, documents: Sequence[dict[str, Any] | Document]) -> str:
        logger.info(f"semantic_index_batch called with {len(documents)} documents")
        if not documents:
            return formatting.EMPTY_BATCH
        try:
            batch = [Document.model_validate(doc) for doc in documents]
        except ValidationError as exc:
            return _validation_message(exc)

        async def operation() -> tuple[int, int]:
            started = time.perf_counter()
            await self.engine.add_documents(batch)
            self.metrics.record_added(len(batch))
            return self.engine.size(), _elapsed_ms(started)

        try:
            total, elapsed = await self.queue.run(operation, f"batch of {len(batch)}")
        except Exception as exc:
            return formatting.format_failure("Batch indexing", exc)

        logger.success(f"Indexed batch of {len(batch)} in {elapsed}ms")
        return formatting.format_batch_indexed(len(batch), total, elapsed)

    async def remove(self, id: str) -> str:
        logger.info(f"semantic_remove called: id={id!r}")

        async def operation() -> tuple[bool, int]:
            removed = self.engine.remove(id)
            if removed:
                self.metrics.record_removed()
            return removed, self.engine.size()

        try:
            removed, remaining = await self.queue.run(operation, f"remove {id!r}")
        except Exception as exc:
            return formatting.format_failure(f'Removing "{id}"', exc)
        return formatting.format_removed(id, removed, remaining)

    async def stats(self) -> str:
        logger.info("semantic_stats called")

        async def operation() -> int:
            return self.engine.size()

        try:
            documents = await self.queue.run(operation, "stats")
        except Exception as exc:
            return formatting.format_failure("Stats", exc)
        return formatting.format_stats(documents, self.metrics.snapshot(), self.config)

    async def clear(self, confirm: bool = False) -> str:
        logger.info(f"semantic_clear called: confirm={confirm}")
        if confirm is not True:
            return formatting.CLEAR_CANCELLED

        async def operation() -> int:
            return self.engine.clear()

        try:
            count = await self.queue.run(operation, "clear")
        except Exception as exc:
            return formatting.format_failure("Clear", exc)

        logger.success(f"Cleared {count} documents")
        return formatting.format_cleared(count, self.config)
