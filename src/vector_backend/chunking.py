"""Text chunking for long memories.

Implements token-aware splitting with boundary preservation.
All chunking is deterministic: same input + config -> same chunks.
"""

from dataclasses import dataclass
from typing import Protocol

import tiktoken
from langchain_text_splitters import RecursiveCharacterTextSplitter


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size: Target chunk size in tokens (MiniLM-class models truncate at 256)
        overlap: Number of overlapping tokens between chunks
        tokenizer: Tokenizer name (tiktoken encoding, e.g., "cl100k_base")
        preserve_boundaries: If True, prefer paragraph and sentence ends as split points
    """

    chunk_size: int = 200
    overlap: int = 20
    tokenizer: str = "cl100k_base"
    preserve_boundaries: bool = True

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.overlap < 0:
            raise ValueError(f"overlap must be non-negative, got {self.overlap}")
        if self.overlap >= self.chunk_size:
            raise ValueError(
                f"overlap ({self.overlap}) must be less than chunk_size ({self.chunk_size})"
            )


@dataclass(frozen=True)
class Chunk:
    """A single text chunk with position information.

    Attributes:
        text: Chunk text content
        start: Starting character offset in original text
        end: Ending character offset in original text
        token_count: Number of tokens in this chunk
        chunk_index: 0-indexed position in the list of chunks
    """

    text: str
    start: int
    end: int
    token_count: int
    chunk_index: int

    def __post_init__(self) -> None:
        if not self.text:
            raise ValueError("Chunk text cannot be empty")
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"Invalid offsets: start={self.start}, end={self.end}")
        if self.token_count <= 0:
            raise ValueError(f"token_count must be positive, got {self.token_count}")
        if self.chunk_index < 0:
            raise ValueError(f"chunk_index must be non-negative, got {self.chunk_index}")


class Chunker(Protocol):
    """Protocol for text chunking implementations."""

    def chunk(self, text: str) -> list[Chunk]:
        """Split text into overlapping chunks."""
        ...


class RecursiveTokenChunker:
    """Token-aware recursive text chunker.

    Uses langchain's RecursiveCharacterTextSplitter with tiktoken for accurate
    token counting. Texts that fit in one chunk are returned whole.
    """

    def __init__(self, config: ChunkingConfig | None = None):
        self.config = config or ChunkingConfig()
        self.encoding = tiktoken.get_encoding(self.config.tokenizer)

        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.overlap,
            length_function=self.count_tokens,
            separators=["\n\n", "\n", ". ", " ", ""] if self.config.preserve_boundaries else None,
        )

    def count_tokens(self, text: str) -> int:
        return len(self.encoding.encode(text, disallowed_special=()))

    def chunk(self, text: str) -> list[Chunk]:
        """Split text into overlapping chunks.

        Args:
            text: Input text to chunk

        Returns:
            List of Chunk objects in order

        Raises:
            ValueError: If input text is empty
        """
        if not text or not text.strip():
            raise ValueError("Input text cannot be empty")

        token_count = self.count_tokens(text)
        if token_count <= self.config.chunk_size:
            return [Chunk(text=text, start=0, end=len(text), token_count=token_count, chunk_index=0)]

        chunks: list[Chunk] = []
        current_pos = 0

        for chunk_text in self.splitter.split_text(text):
            start_char = text.find(chunk_text, current_pos)
            if start_char == -1:
                # Splitter may strip whitespace; fall back to the running position
                start_char = max(0, current_pos)

            end_char = start_char + len(chunk_text)
            if end_char > len(text):
                continue

            chunks.append(
                Chunk(
                    text=chunk_text,
                    start=start_char,
                    end=end_char,
                    token_count=self.count_tokens(chunk_text),
                    chunk_index=len(chunks),
                )
            )
            current_pos = max(0, end_char - self.config.overlap)

        return chunks
