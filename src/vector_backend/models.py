"""Pydantic models for the semantic memory store.

All data flowing through the vector backend is validated against these schemas.
This ensures fail-fast behavior and type safety throughout the pipeline.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

MetadataValue = str | int | float | bool | list[str]
Metadata = dict[str, MetadataValue]


class Document(BaseModel):
    """A single memory to be indexed.

    Attributes:
        id: Caller-assigned unique identifier (e.g., "auth-pattern", "adr-012")
        text: Content to embed and search
        metadata: Optional structured metadata used for filtering and display
    """

    id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    metadata: Metadata | None = None

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Reject whitespace-only text."""
        if not v.strip():
            raise ValueError("text cannot be blank")
        return v


class StoredChunk(BaseModel):
    """An embedded slice of a document as held by the index.

    Attributes:
        doc_id: ID of the owning document
        chunk_index: 0-indexed position within the document
        text: Chunk text that was embedded
        vector: L2-normalised embedding vector
    """

    doc_id: str
    chunk_index: int = Field(ge=0)
    text: str = Field(min_length=1)
    vector: list[float] = Field(min_length=1)


class StoredDocument(BaseModel):
    """A document together with its embedded chunks."""

    id: str
    text: str
    metadata: Metadata = Field(default_factory=dict)
    content_hash: str
    chunks: list[StoredChunk] = Field(min_length=1)
    added_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StoreSnapshot(BaseModel):
    """On-disk representation of the whole index.

    Attributes:
        version: Store schema version
        model: Embedding model the vectors were produced with
        documents: All indexed documents in insertion order
    """

    version: int = 1
    model: str
    documents: list[StoredDocument] = Field(default_factory=list)


class SearchResult(BaseModel):
    """A single search result with similarity score.

    Attributes:
        id: ID of the matched document
        text: Full document text
        similarity: Similarity score (0.0-1.0, higher is better)
        metadata: Metadata of the matched document
        rank: Result rank in the returned list (1-indexed)
    """

    id: str
    text: str
    similarity: float = Field(ge=0.0, le=1.0)
    metadata: Metadata = Field(default_factory=dict)
    rank: int = Field(default=1, ge=1)


def parse_timestamp(value: object) -> datetime | None:
    """Interpret a metadata timestamp.

    Numbers are epoch milliseconds; strings are ISO-8601. Naive values are UTC.
    Anything else, including unparseable strings, yields None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return None
