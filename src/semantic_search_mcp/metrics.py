"""Process-lifetime usage counters for the health and stats tools."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import BaseModel, Field


class MetricsSnapshot(BaseModel):
    """Point-in-time copy of the counters."""

    searches: int = Field(ge=0)
    documents_added: int = Field(ge=0)
    documents_removed: int = Field(ge=0)
    errors: int = Field(ge=0)
    started_at: datetime
    uptime_seconds: float = Field(ge=0.0)


class MetricsAccumulator:
    """Monotonic counters shared by the tool handlers and the operation queue.

    Counters only ever grow; there is no reset short of a process restart.
    Mutation happens on the event loop thread, so no locking is needed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._start = clock()
        self.started_at = datetime.now(UTC)
        self.searches = 0
        self.documents_added = 0
        self.documents_removed = 0
        self.errors = 0

    def record_search(self) -> None:
        self.searches += 1

    def record_added(self, count: int = 1) -> None:
        """Count added documents; a batch counts its full size."""
        if count < 0:
            raise ValueError(f"count must be non-negative, got {count}")
        self.documents_added += count

    def record_removed(self) -> None:
        self.documents_removed += 1

    def record_error(self) -> None:
        self.errors += 1

    def uptime_seconds(self) -> float:
        return max(self._clock() - self._start, 0.0)

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            searches=self.searches,
            documents_added=self.documents_added,
            documents_removed=self.documents_removed,
            errors=self.errors,
            started_at=self.started_at,
            uptime_seconds=self.uptime_seconds(),
        )
