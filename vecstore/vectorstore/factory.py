"""Open a configured vector store together with its backend connection."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from neo4j import AsyncGraphDatabase
from psycopg import AsyncConnection
from qdrant_client import AsyncQdrantClient

from vecstore.config import BackendType, Settings
from vecstore.embeddings.service import EmbeddingService
from vecstore.exceptions import ConfigurationError
from vecstore.logging_config import get_logger
from vecstore.observability.observation import ObservationRecorder
from vecstore.vectorstore.memory_store import InMemoryBackend, InMemoryVectorStore
from vecstore.vectorstore.models import (
    InMemoryConfig,
    Neo4jConfig,
    PgVectorConfig,
    QdrantConfig,
)
from vecstore.vectorstore.neo4j_store import Neo4jVectorStore
from vecstore.vectorstore.observed import ObservedVectorStore
from vecstore.vectorstore.pgvector_store import PgVectorStore
from vecstore.vectorstore.qdrant_store import QdrantVectorStore
from vecstore.vectorstore.service import VectorStore

logger = get_logger(__name__)


@asynccontextmanager
async def open_vector_store(
    settings: Settings,
    embedding_service: EmbeddingService,
    recorder: ObservationRecorder | None = None,
) -> AsyncIterator[VectorStore]:
    """Connect to the configured backend and yield an initialized store.

    The connection is owned by this context manager and closed on exit; the
    store itself never closes it.

    Raises:
        ConfigurationError: If no backend is configured.
    """
    backend = settings.vectorstore.backend
    if backend is None:
        raise ConfigurationError(
            "No vector store backend configured",
            details={"setting": "VECTORSTORE_BACKEND"},
        )
    metadata_mode = settings.embedding.metadata_mode
    logger.info(f"Opening {backend.value} vector store")

    def observed(store: VectorStore) -> VectorStore:
        return ObservedVectorStore(store, recorder) if recorder is not None else store

    if backend == BackendType.MEMORY:
        memory = InMemoryBackend()
        try:
            yield observed(
                await InMemoryVectorStore.create(
                    memory,
                    embedding_service,
                    InMemoryConfig.from_settings(settings.vectorstore),
                    metadata_mode,
                )
            )
        finally:
            memory.close()

    elif backend == BackendType.PGVECTOR:
        async with await AsyncConnection.connect(
            settings.postgres.dsn.get_secret_value(), autocommit=True
        ) as connection:
            yield observed(
                await PgVectorStore.create(
                    connection,
                    embedding_service,
                    PgVectorConfig.from_settings(settings.vectorstore),
                    metadata_mode,
                )
            )

    elif backend == BackendType.NEO4J:
        async with AsyncGraphDatabase.driver(
            settings.neo4j.uri,
            auth=(settings.neo4j.username, settings.neo4j.password.get_secret_value()),
        ) as driver:
            yield observed(
                await Neo4jVectorStore.create(
                    driver,
                    embedding_service,
                    Neo4jConfig.from_settings(settings.vectorstore),
                    metadata_mode,
                )
            )

    else:
        api_key = settings.qdrant.api_key
        client = AsyncQdrantClient(
            url=settings.qdrant.url,
            api_key=api_key.get_secret_value() if api_key else None,
        )
        try:
            yield observed(
                await QdrantVectorStore.create(
                    client,
                    embedding_service,
                    QdrantConfig.from_settings(settings.vectorstore),
                    metadata_mode,
                )
            )
        finally:
            await client.close()
