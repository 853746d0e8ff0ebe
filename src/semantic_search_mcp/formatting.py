"""Plain-text rendering of tool responses."""

from __future__ import annotations

import json
from collections.abc import Sequence

from vector_backend.models import SearchResult

from .config import ServerConfig
from .metrics import MetricsSnapshot

PREVIEW_CHARS = 200


def format_uptime(seconds: float) -> str:
    """Render uptime as `Ns`, `Nm` or `Nh Mm`."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m"
    return f"{total // 3600}h {(total % 3600) // 60}m"


def format_health(documents: int, metrics: MetricsSnapshot, config: ServerConfig) -> str:
    return "\n".join(
        [
            "✅ Healthy",
            "",
            "📊 Metrics:",
            f"   Documents: {documents}",
            f"   Searches: {metrics.searches}",
            f"   Added: {metrics.documents_added}",
            f"   Removed: {metrics.documents_removed}",
            f"   Errors: {metrics.errors}",
            f"   Uptime: {format_uptime(metrics.uptime_seconds)}",
            "",
            "⚙️ Config:",
            f"   Model: {config.model}",
            f"   Store: {config.store_path}",
            f"   Min similarity: {config.min_similarity}",
            f"   Auto-chunk: {config.auto_chunk}",
            f"   Dedup: exact={config.deduplicate_exact}, fuzzy={config.deduplicate_similarity}",
            f"   Temporal boost: {config.temporal_boost}",
        ]
    )


def format_unhealthy(error: BaseException) -> str:
    return f"❌ Unhealthy: {error}"


def _format_result(index: int, result: SearchResult) -> str:
    preview = result.text[:PREVIEW_CHARS] + ("..." if len(result.text) > PREVIEW_CHARS else "")
    line = f"{index}. [{result.similarity * 100:.0f}%] {preview}"
    if result.metadata:
        line += f"\n   📎 {json.dumps(result.metadata, ensure_ascii=False)}"
    return line


def format_search(query: str, results: Sequence[SearchResult], elapsed_ms: int) -> str:
    if not results:
        return f'🔍 No results for "{query}" ({elapsed_ms}ms)'
    formatted = "\n\n".join(_format_result(i, r) for i, r in enumerate(results, start=1))
    return f"🔍 Found {len(results)} in {elapsed_ms}ms:\n\n{formatted}"


def format_indexed(doc_id: str, total: int, elapsed_ms: int, config: ServerConfig) -> str:
    return "\n".join(
        [
            f'✅ Indexed "{doc_id}" ({elapsed_ms}ms)',
            f"📊 {total} documents total",
            f"💾 Saved to {config.store_path}",
            f'🔍 Test: semantic_search("{doc_id}")',
        ]
    )


def format_batch_indexed(count: int, total: int, elapsed_ms: int) -> str:
    rate = round(count / max(elapsed_ms / 1000, 0.001))
    return "\n".join(
        [
            f"✅ Indexed {count} documents ({elapsed_ms}ms)",
            f"   {rate}/sec",
            f"📊 {total} documents total",
        ]
    )


def format_removed(doc_id: str, removed: bool, remaining: int) -> str:
    if removed:
        return f'✅ Removed "{doc_id}"\n📊 {remaining} remaining'
    return f'⚠️ "{doc_id}" not found'


def format_stats(documents: int, metrics: MetricsSnapshot, config: ServerConfig) -> str:
    fuzzy = config.deduplicate_similarity if config.deduplicate_similarity > 0 else "off"
    return "\n".join(
        [
            "📊 Index Stats",
            "",
            f"Documents: {documents}",
            f"Store: {config.store_path}",
            f"Model: {config.model}",
            f"Min similarity: {config.min_similarity}",
            "",
            "Features:",
            f"   Auto-chunk: {config.auto_chunk}",
            f"   Dedup (exact): {config.deduplicate_exact}",
            f"   Dedup (fuzzy): {fuzzy}",
            f"   Temporal boost: {config.temporal_boost}",
            "",
            "Usage:",
            f"   Searches: {metrics.searches}",
            f"   Added: {metrics.documents_added}",
            f"   Removed: {metrics.documents_removed}",
            f"   Errors: {metrics.errors}",
            f"   Uptime: {format_uptime(metrics.uptime_seconds)}",
        ]
    )


def format_cleared(count: int, config: ServerConfig) -> str:
    return f"✅ Cleared {count} documents\n💾 Saved to {config.store_path}"


CLEAR_CANCELLED = "⚠️ Cancelled. Set confirm: true to proceed"
EMPTY_BATCH = "⚠️ No documents supplied. Pass at least one {id, text} entry"


def format_failure(operation: str, error: BaseException) -> str:
    return f"❌ {operation} failed: {error}"
