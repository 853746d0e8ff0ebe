"""Unit tests for embedding generation."""

import numpy as np
import pytest
import respx
from httpx import Response
from openai import BadRequestError, RateLimitError

from vector_backend.embedding import (
    EmbeddingConfig,
    LocalEmbedding,
    OpenAIEmbedding,
    create_embedding_client,
)

EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    """Standard hosted embedding configuration for tests."""
    return EmbeddingConfig(
        model="openai/text-embedding-3-small",
        dimensions=1536,
        batch_size=100,
        max_retries=3,
        timeout_seconds=10.0,
        api_key="sk-test-key",
    )


@pytest.fixture
def no_backoff(monkeypatch):
    """Record retry delays instead of sleeping."""
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("vector_backend.embedding.asyncio.sleep", fake_sleep)
    return delays


def _embedding_response(*vectors: list[float]) -> Response:
    return Response(
        200,
        json={
            "object": "list",
            "data": [
                {"object": "embedding", "embedding": vector, "index": i}
                for i, vector in enumerate(vectors)
            ],
            "model": "text-embedding-3-small",
            "usage": {"prompt_tokens": 5, "total_tokens": 5},
        },
    )


class TestEmbeddingConfig:
    """Tests for EmbeddingConfig validation."""

    def test_defaults_to_local_model(self):
        config = EmbeddingConfig()
        assert config.model == "sentence-transformers/all-MiniLM-L6-v2"
        assert config.dimensions is None

    def test_invalid_dimensions(self):
        """Dimensions must be in valid range."""
        with pytest.raises(ValueError):
            EmbeddingConfig(dimensions=8)

        with pytest.raises(ValueError):
            EmbeddingConfig(dimensions=5000)

    def test_invalid_batch_size(self):
        """Batch size must be positive and reasonable."""
        with pytest.raises(ValueError):
            EmbeddingConfig(batch_size=0)

        with pytest.raises(ValueError):
            EmbeddingConfig(batch_size=1000)


class TestOpenAIEmbedding:
    """Tests for OpenAI embedding client."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_embed_batch_success(self, embedding_config):
        """Batch of texts should embed in order."""
        respx.post(EMBEDDINGS_URL).mock(
            return_value=_embedding_response([0.1] * 1536, [0.2] * 1536, [0.3] * 1536)
        )

        client = OpenAIEmbedding(embedding_config)
        await client.load()
        vectors = await client.embed_batch(["Text 1", "Text 2", "Text 3"])

        assert len(vectors) == 3
        assert all(len(v) == 1536 for v in vectors)
        assert vectors[0] != vectors[1]
        assert client.model_name == "text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_batch_size_exceeded(self, embedding_config):
        """Batch size over limit should raise ValueError."""
        client = OpenAIEmbedding(embedding_config)

        with pytest.raises(ValueError, match="Batch size .* exceeds limit"):
            await client.embed_batch(["text"] * 101)

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_rate_limit(self, embedding_config, no_backoff):
        """Rate limit (429) should trigger retry with backoff."""
        route = respx.post(EMBEDDINGS_URL).mock(
            side_effect=[
                Response(429, json={"error": {"message": "Rate limit exceeded"}}),
                _embedding_response([0.1] * 1536),
            ]
        )

        client = OpenAIEmbedding(embedding_config)
        vector = await client.embed_single("Test")

        assert len(vector) == 1536
        assert route.call_count == 2
        assert no_backoff == [2]

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_raises(self, embedding_config, no_backoff):
        route = respx.post(EMBEDDINGS_URL).mock(
            return_value=Response(429, json={"error": {"message": "Rate limit exceeded"}})
        )

        client = OpenAIEmbedding(embedding_config.model_copy(update={"max_retries": 2}))

        with pytest.raises(RateLimitError):
            await client.embed_single("Test")
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_is_not_retried(self, embedding_config, no_backoff):
        route = respx.post(EMBEDDINGS_URL).mock(
            return_value=Response(400, json={"error": {"message": "bad input"}})
        )

        client = OpenAIEmbedding(embedding_config)

        with pytest.raises(BadRequestError):
            await client.embed_single("Test")
        assert route.call_count == 1
        assert no_backoff == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_dimension_mismatch_raises(self, embedding_config):
        respx.post(EMBEDDINGS_URL).mock(return_value=_embedding_response([0.1] * 768))

        client = OpenAIEmbedding(embedding_config)

        with pytest.raises(ValueError, match="Expected 1536 dimensions"):
            await client.embed_single("Test")

    @pytest.mark.asyncio
    async def test_empty_batch_returns_empty(self, embedding_config):
        """Empty batch should return empty list without API call."""
        client = OpenAIEmbedding(embedding_config)
        assert await client.embed_batch([]) == []


class FakeSentenceModel:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def encode(self, texts, batch_size, convert_to_numpy):
        self.calls.append(list(texts))
        return np.array([[float(len(text)), 1.0, 0.0] for text in texts])


class TestLocalEmbedding:
    @pytest.mark.asyncio
    async def test_embed_requires_load(self):
        client = LocalEmbedding(EmbeddingConfig())

        with pytest.raises(RuntimeError, match="not loaded"):
            await client.embed_single("text")

    @pytest.mark.asyncio
    async def test_load_once_then_encode(self, monkeypatch):
        model = FakeSentenceModel()
        loads: list[int] = []

        def fake_load(self):
            loads.append(1)
            return model

        monkeypatch.setattr(LocalEmbedding, "_load_model", fake_load)
        client = LocalEmbedding(EmbeddingConfig())

        await client.load()
        await client.load()
        vectors = await client.embed_batch(["ab", "abcd"])

        assert loads == [1]
        assert vectors == [[2.0, 1.0, 0.0], [4.0, 1.0, 0.0]]
        assert model.calls == [["ab", "abcd"]]

    @pytest.mark.asyncio
    async def test_load_failure_propagates(self, monkeypatch):
        def failing_load(self):
            raise OSError("cannot download model")

        monkeypatch.setattr(LocalEmbedding, "_load_model", failing_load)
        client = LocalEmbedding(EmbeddingConfig())

        with pytest.raises(OSError, match="cannot download"):
            await client.load()


class TestCreateEmbeddingClient:
    """Tests for factory function."""

    def test_create_openai_client(self):
        """OpenAI model prefix should create OpenAI client."""
        config = EmbeddingConfig(model="openai/text-embedding-3-small", api_key="test")
        assert isinstance(create_embedding_client(config), OpenAIEmbedding)

    def test_other_models_are_local(self):
        config = EmbeddingConfig(model="sentence-transformers/all-MiniLM-L6-v2")
        client = create_embedding_client(config)

        assert isinstance(client, LocalEmbedding)
        assert client.model_name == "sentence-transformers/all-MiniLM-L6-v2"
