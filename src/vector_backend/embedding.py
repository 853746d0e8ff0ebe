"""Embedding client abstraction for model-agnostic vector generation.

Supports local sentence-transformers models (the default) and the OpenAI API.
All embedding calls are batched for efficiency; remote calls include retry logic.
"""

import asyncio
from pathlib import Path
from typing import Any, Protocol

import httpx
from loguru import logger
from openai import APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, Field


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Model identifier (e.g., "sentence-transformers/all-MiniLM-L6-v2",
            "openai/text-embedding-3-small")
        dimensions: Expected embedding dimensionality (None to accept the model's own)
        batch_size: Number of texts to embed per call
        max_retries: Maximum retry attempts for transient API failures
        timeout_seconds: API request timeout
        cache_dir: Directory where downloaded local models are cached
        api_key: API key for external services (set via env var)
    """

    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimensions: int | None = Field(default=None, ge=16, le=4096)
    batch_size: int = Field(default=64, ge=1, le=500)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    cache_dir: str | None = None
    api_key: str | None = None


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    async def load(self) -> None:
        """Prepare the client (download or open the model).

        Raises:
            Exception: Any failure to make the model usable
        """
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            texts: List of input texts (max batch_size)

        Returns:
            List of embedding vectors (same order as inputs)
        """
        ...

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        ...


def _check_dimensions(embeddings: list[list[float]], expected: int | None) -> None:
    if expected is None:
        return
    for i, emb in enumerate(embeddings):
        if len(emb) != expected:
            raise ValueError(f"Expected {expected} dimensions, got {len(emb)} for text {i}")


class OpenAIEmbedding:
    """OpenAI embedding client with retry logic and batching."""

    def __init__(self, config: EmbeddingConfig):
        """Initialize OpenAI client.

        Args:
            config: Embedding configuration with API key
        """
        self.config = config
        # Retries are handled here, not by the SDK
        self.client = AsyncOpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds, max_retries=0
        )
        self.model_name = config.model.removeprefix("openai/")

    async def load(self) -> None:
        """Nothing to load for a hosted model."""
        logger.debug(f"Using hosted embedding model {self.model_name}")

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts with retry logic.

        Args:
            texts: List of input texts (max batch_size)

        Returns:
            List of embedding vectors (same order as inputs)

        Raises:
            ValueError: If batch size exceeds config limit
            openai.APIError: For API failures after all retries
        """
        if len(texts) > self.config.batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.config.batch_size}")

        if not texts:
            return []

        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.embeddings.create(model=self.model_name, input=texts)
                embeddings = [item.embedding for item in response.data]
                _check_dimensions(embeddings, self.config.dimensions)

                logger.debug(
                    f"Embedded {len(texts)} texts with {self.model_name} "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )
                return embeddings

            except (httpx.TimeoutException, APITimeoutError) as e:
                logger.warning(
                    f"Timeout embedding batch "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2**attempt)
                else:
                    raise

            except RateLimitError as e:
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2 ** (attempt + 1))
                else:
                    raise

            except APIStatusError as e:
                # Non-retryable HTTP error
                logger.error(f"HTTP error embedding batch: {e}")
                raise

        raise RuntimeError("Exhausted all retry attempts")

    async def embed_single(self, text: str) -> list[float]:
        embeddings = await self.embed_batch([text])
        return embeddings[0]


class LocalEmbedding:
    """sentence-transformers model run in a worker thread.

    The model is loaded by `load()`; the first run downloads it into
    `cache_dir`, which is why server startup retries initialization.
    """

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.model_name = config.model.removeprefix("local/")
        self._model: Any = None

    def _load_model(self) -> Any:
        from sentence_transformers import SentenceTransformer

        cache_folder = str(Path(self.config.cache_dir).expanduser()) if self.config.cache_dir else None
        return SentenceTransformer(self.model_name, cache_folder=cache_folder)

    async def load(self) -> None:
        if self._model is not None:
            return
        logger.debug(f"Loading embedding model {self.model_name}")
        self._model = await asyncio.to_thread(self._load_model)

    def _encode(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            texts, batch_size=self.config.batch_size, convert_to_numpy=True
        )
        return [vector.tolist() for vector in vectors]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self._model is None:
            raise RuntimeError("Embedding model not loaded; call load() first")
        if not texts:
            return []

        embeddings = await asyncio.to_thread(self._encode, texts)
        _check_dimensions(embeddings, self.config.dimensions)
        return embeddings

    async def embed_single(self, text: str) -> list[float]:
        embeddings = await self.embed_batch([text])
        return embeddings[0]


def create_embedding_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Factory function to create embedding client based on model config.

    Args:
        config: Embedding configuration

    Returns:
        Embedding client implementation

    Example:
        >>> config = EmbeddingConfig(model="openai/text-embedding-3-small", api_key="sk-...")
        >>> client = create_embedding_client(config)
    """
    if config.model.startswith("openai/"):
        return OpenAIEmbedding(config)
    return LocalEmbedding(config)
