"""Vector search backend for the semantic memory server.

This package provides embedding, chunking, indexing and persistence
independent of the MCP server interface. The MCP server in
`semantic_search_mcp` consumes this backend through the `SearchEngine`
protocol.

Architecture:
    - chunking: Token-aware text splitting for long memories
    - embedding: Model-agnostic embedding client (sentence-transformers, OpenAI)
    - index: In-memory cosine-similarity index with deduplication and temporal boost
    - persistence: Locked, atomic JSON store
    - models: Pydantic schemas for documents, stored chunks and search results

Usage:
    >>> from vector_backend import EngineConfig, SemanticSearchEngine
    >>> engine = SemanticSearchEngine(EngineConfig(store_path=".semantic-store.json"))
    >>> await engine.initialize()
    >>> results = await engine.search("rate limiting", limit=5)
"""

__version__ = "0.2.0"

from vector_backend.index import EngineConfig, EngineError, SearchEngine, SemanticSearchEngine
from vector_backend.models import Document, SearchResult

__all__ = [
    "Document",
    "EngineConfig",
    "EngineError",
    "SearchEngine",
    "SearchResult",
    "SemanticSearchEngine",
]
