"""MCP server entry point for the semantic memory index."""

from __future__ import annotations

import asyncio
import inspect
import sys
from collections.abc import Callable, Coroutine, Sequence
from importlib import metadata
from typing import Any, cast

from loguru import logger

from vector_backend.index import SearchEngine, SemanticSearchEngine
from vector_backend.models import Document, MetadataValue

from .config import ServerConfig, load_config
from .errors import ConfigurationError, InitializationError
from .handlers import SemanticTools
from .initializer import RetryingInitializer
from .metrics import MetricsAccumulator
from .op_queue import OperationQueue

FastMCP: type[Any] | None = None

__all__ = [
    "run_server",
    "run",
    "main",
    "register_tools",
    "configure_logging",
    "__version__",
    "FastMCP",
]


def _resolve_version() -> str:
    """Return the installed distribution version or fall back to the project default."""

    try:
        return metadata.version("semantic-search-mcp")
    except metadata.PackageNotFoundError:
        return "0.2.0"


__version__ = _resolve_version()


def _import_fastmcp() -> type[Any]:
    """Import FastMCP lazily so tests can stub the implementation."""

    global FastMCP
    if FastMCP is not None:
        return FastMCP

    try:
        import fastmcp
        from fastmcp import FastMCP as FastMCPClass

        # Disable banner for stdio transport compatibility
        fastmcp.settings.show_cli_banner = False
    except ModuleNotFoundError as exc:  # pragma: no cover - exercised in tests
        raise ImportError(
            "FastMCP is required to run the semantic search MCP server. "
            "Install `fastmcp` to proceed."
        ) from exc

    FastMCP = cast(type[Any], FastMCPClass)
    return FastMCP


def configure_logging(verbose: bool) -> None:
    """Send all log output to stderr; stdout belongs to the stdio transport."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="{time:HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
        backtrace=verbose,
        diagnose=False,
    )


def register_tools(server: Any, tools: SemanticTools) -> None:
    """Expose every `SemanticTools` operation as an MCP tool."""

    @server.tool()  # type: ignore[misc]
    async def semantic_health() -> str:
        """Server status, metrics, and configuration.

        Runs a one-result probe search through the operation queue to confirm the
        index is responsive.
        """
        return await tools.health()

    @server.tool()  # type: ignore[misc]
    async def semantic_search(
        query: str,
        limit: int = 5,
        min_similarity: float | None = None,
        kind: str | None = None,
        tags: list[str] | None = None,
        since: str | None = None,
    ) -> str:
        """Search stored memories by meaning with optional metadata filters.

        Args:
            query: Natural language search query
            limit: Maximum number of results (default 5)
            min_similarity: Minimum similarity score between 0 and 1
            kind: Only return memories whose metadata.kind equals this value
            tags: Only return memories sharing at least one of these metadata.tags
            since: Only return memories with metadata.timestamp at or after this ISO date
        """
        return await tools.search(
            query,
            limit=limit,
            min_similarity=min_similarity,
            kind=kind,
            tags=tags,
            since=since,
        )

    @server.tool()  # type: ignore[misc]
    async def semantic_index(
        id: str, text: str, metadata: dict[str, MetadataValue] | None = None
    ) -> str:
        """Add a document to the search index (auto-chunks, deduplicates, persists).

        Args:
            id: Unique ID (e.g., "auth-pattern", "adr-012"); re-using an ID replaces it
            text: Content to index
            metadata: Optional metadata such as kind, tags and timestamp
        """
        return await tools.index_document(id, text, metadata)

    @server.tool()  # type: ignore[misc]
    async def semantic_index_batch(documents: list[Document]) -> str:
        """Add multiple documents at once.

        Args:
            documents: Documents with id, text and optional metadata
        """
        return await tools.index_batch(documents)

    @server.tool()  # type: ignore[misc]
    async def semantic_remove(id: str) -> str:
        """Delete a document by ID."""
        return await tools.remove(id)

    @server.tool()  # type: ignore[misc]
    async def semantic_stats() -> str:
        """Detailed index information and usage counters."""
        return await tools.stats()

    @server.tool()  # type: ignore[misc]
    async def semantic_clear(confirm: bool = False) -> str:
        """Remove all documents (irreversible).

        Args:
            confirm: Must be true to proceed
        """
        return await tools.clear(confirm)


async def run_server(
    config: ServerConfig | None = None, engine: SearchEngine | None = None
) -> None:
    """Initialize the engine, then serve MCP tools over stdio until shutdown.

    Raises:
        InitializationError: If the engine is not ready within the retry budget
    """
    config = config or load_config(sys.argv[1:])
    configure_logging(config.verbose)
    metrics = MetricsAccumulator()
    fastmcp_class = _import_fastmcp()

    engine = engine or SemanticSearchEngine(config.to_engine_config())
    await RetryingInitializer(engine.initialize, config.retry_policy()).run()
    logger.info(f"Loaded {engine.size()} documents from {config.store_path}")

    queue = OperationQueue(metrics)
    tools = SemanticTools(engine, queue, metrics, config)

    server = _instantiate_fastmcp(
        fastmcp_class,
        name="mcp-semantic-search",
        version=__version__,
        instructions=(
            "Persistent semantic memory. Store short notes with semantic_index and "
            "retrieve them by meaning with semantic_search."
        ),
    )
    register_tools(server, tools)

    logger.debug("[Server] Ready")
    try:
        await server.run_async()
    finally:
        await queue.close()


def run(main: Callable[[], Coroutine[Any, Any, None]] | None = None) -> None:
    """Synchronous helper for CLI entry points."""
    entry = main or run_server
    try:
        asyncio.run(entry())
    except KeyboardInterrupt:
        logger.warning("MCP server interrupted by user.")
    except InitializationError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled MCP server failure: {}", exc)
        raise


def main(argv: Sequence[str] | None = None) -> None:
    """Console script: parse configuration, run the server, map failures to exit codes."""
    try:
        config = load_config(sys.argv[1:] if argv is None else argv)
    except ConfigurationError as exc:
        logger.error(str(exc))
        raise SystemExit(2) from exc

    try:
        run(lambda: run_server(config))
    except InitializationError as exc:
        raise SystemExit(1) from exc


def _instantiate_fastmcp(class_: type[Any], **metadata: Any) -> Any:
    signature = inspect.signature(class_.__init__)
    parameters = signature.parameters

    filtered: dict[str, Any] = {key: value for key, value in metadata.items() if key in parameters}

    if not filtered and any(
        param.kind == inspect.Parameter.VAR_KEYWORD for param in parameters.values()
    ):
        filtered = metadata

    return class_(**filtered)
