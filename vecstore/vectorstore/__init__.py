"""Vector store module."""

from vecstore.vectorstore.memory_store import InMemoryBackend, InMemoryVectorStore
from vecstore.vectorstore.models import (
    Document,
    InMemoryConfig,
    Neo4jConfig,
    PgVectorConfig,
    QdrantConfig,
    SearchRequest,
    SearchResult,
    StoreConfig,
    StoreDescriptor,
)
from vecstore.vectorstore.neo4j_store import Neo4jVectorStore
from vecstore.vectorstore.observed import ObservedVectorStore
from vecstore.vectorstore.pgvector_store import PgVectorStore
from vecstore.vectorstore.qdrant_store import QdrantVectorStore
from vecstore.vectorstore.schema import SchemaInitializer
from vecstore.vectorstore.service import StoreState, VectorStore

__all__ = [
    "Document",
    "InMemoryBackend",
    "InMemoryConfig",
    "InMemoryVectorStore",
    "Neo4jConfig",
    "Neo4jVectorStore",
    "ObservedVectorStore",
    "PgVectorConfig",
    "PgVectorStore",
    "QdrantConfig",
    "QdrantVectorStore",
    "SchemaInitializer",
    "SearchRequest",
    "SearchResult",
    "StoreConfig",
    "StoreDescriptor",
    "StoreState",
    "VectorStore",
]
