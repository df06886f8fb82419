"""Pytest configuration and shared fixtures."""

import re
import zlib
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from vecstore.api.app import create_app
from vecstore.embeddings.models import EmbeddingResult
from vecstore.embeddings.service import EmbeddingService
from vecstore.vectorstore.memory_store import InMemoryBackend, InMemoryVectorStore
from vecstore.vectorstore.models import InMemoryConfig

DIMENSIONS = 8


class FakeEmbeddingService(EmbeddingService):
    """Deterministic bag-of-words embeddings.

    Each word is hashed into one of ``dimensions`` buckets, so texts sharing
    words have high cosine similarity. Every call is recorded.
    """

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self._dimensions = dimensions
        self.calls: list[list[str]] = []

    @property
    def model_name(self) -> str:
        return "fake-embedding"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector(self, text: str) -> list[float]:
        vector = [0.0] * self._dimensions
        for word in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(word.encode()) % self._dimensions] += 1.0
        return vector

    def _result(self, text: str) -> EmbeddingResult:
        embedding = self.vector(text)
        return EmbeddingResult(
            text=text,
            embedding=embedding,
            model=self.model_name,
            dimensions=len(embedding),
        )

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls.append([text])
        return self._result(text)

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        self.calls.append(list(texts))
        return [self._result(text) for text in texts]


@pytest.fixture
def embedding_service() -> FakeEmbeddingService:
    """Deterministic embedding service with 8 dimensions."""
    return FakeEmbeddingService()


@pytest.fixture
def memory_backend() -> InMemoryBackend:
    """Fresh in-memory backend."""
    return InMemoryBackend()


@pytest.fixture
async def memory_store(
    memory_backend: InMemoryBackend,
    embedding_service: FakeEmbeddingService,
) -> InMemoryVectorStore:
    """Initialized in-memory store over the shared backend."""
    config = InMemoryConfig(dimensions=DIMENSIONS, initialize_schema=True)
    return await InMemoryVectorStore.create(memory_backend, embedding_service, config)


@pytest.fixture
async def client(memory_store: InMemoryVectorStore) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client for an app serving the in-memory store.

    Yields:
        AsyncClient configured for testing.
    """
    transport = ASGITransport(app=create_app(vector_store=memory_store))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def unconfigured_client() -> AsyncGenerator[AsyncClient, None]:
    """Async test client for an app without a vector store."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
