"""Metadata constraints applied to search candidates."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from vector_backend.models import parse_timestamp


class QueryFilterSpec(BaseModel):
    """Caller-supplied constraints for one search.

    Attributes:
        kind: Exact, case-sensitive match on `metadata.kind`
        tags: At least one of these must appear in `metadata.tags`
        since: `metadata.timestamp` must not be earlier than this instant
    """

    model_config = ConfigDict(frozen=True)

    kind: str | None = None
    tags: frozenset[str] | None = None
    since: datetime | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def empty_tags_mean_unset(cls, v: Any) -> Any:
        if v is not None and len(v) == 0:
            return None
        return v

    @field_validator("since", mode="before")
    @classmethod
    def parse_since(cls, v: Any) -> datetime | None:
        if v is None or v == "":
            return None
        parsed = parse_timestamp(v)
        if parsed is None:
            raise ValueError(f"since must be an ISO-8601 timestamp, got {v!r}")
        return parsed

    @property
    def is_empty(self) -> bool:
        return self.kind is None and self.tags is None and self.since is None

    def matches(self, metadata: Mapping[str, Any] | None) -> bool:
        return matches(metadata, self)


def _candidate_tags(value: Any) -> set[str] | None:
    if isinstance(value, str):
        return {value}
    if isinstance(value, list | tuple | set | frozenset):
        return {str(tag) for tag in value}
    return None


def matches(metadata: Mapping[str, Any] | None, spec: QueryFilterSpec) -> bool:
    """Return True iff the candidate satisfies every supplied constraint.

    A supplied constraint whose field is missing from the candidate rejects it.
    """
    metadata = metadata or {}

    if spec.kind is not None and metadata.get("kind") != spec.kind:
        return False

    if spec.tags is not None:
        tags = _candidate_tags(metadata.get("tags"))
        if not tags or tags.isdisjoint(spec.tags):
            return False

    if spec.since is not None:
        timestamp = parse_timestamp(metadata.get("timestamp"))
        if timestamp is None or timestamp < spec.since:
            return False

    return True
