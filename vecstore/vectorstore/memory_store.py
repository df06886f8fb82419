"""In-memory vector store.

``InMemoryBackend`` plays the role of a database server: it holds named
collections and can be shared by several stores. Scores are computed with
numpy over the whole collection.
"""

import threading
from dataclasses import dataclass, field

from vecstore.config import DistanceType, MetadataMode
from vecstore.embeddings.service import EmbeddingService
from vecstore.exceptions import (
    ConnectionClosedError,
    SchemaConflictError,
    SchemaNotFoundError,
)
from vecstore.filters.evaluator import InMemoryFilterTranslator, matches
from vecstore.logging_config import get_logger
from vecstore.vectorstore.models import (
    Document,
    InMemoryConfig,
    SearchRequest,
    SearchResult,
    StoreDescriptor,
)
from vecstore.vectorstore.schema import SchemaInitializer
from vecstore.vectorstore.service import (
    DocumentEmbedder,
    ReadyGuard,
    StoreState,
    VectorStore,
    rank_results,
)
from vecstore.vectorstore.similarity import score_vectors

logger = get_logger(__name__)

DB_SYSTEM = "in_memory"


@dataclass
class MemoryCollection:
    """Documents of one collection, keyed by id."""

    dimensions: int
    distance_type: DistanceType
    documents: dict[str, Document] = field(default_factory=dict)


class InMemoryBackend:
    """Process-local collection registry."""

    def __init__(self) -> None:
        self._collections: dict[str, MemoryCollection] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Drop all collections and reject further use."""
        with self._lock:
            self._collections.clear()
            self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise ConnectionClosedError(details={"db_system": DB_SYSTEM})

    def create_collection(
        self, name: str, dimensions: int, distance_type: DistanceType
    ) -> MemoryCollection:
        """Return the named collection, creating it when absent."""
        with self._lock:
            self._check_open()
            collection = self._collections.get(name)
            if collection is None:
                collection = MemoryCollection(dimensions, distance_type)
                self._collections[name] = collection
            return collection

    def get_collection(self, name: str) -> MemoryCollection | None:
        with self._lock:
            self._check_open()
            return self._collections.get(name)

    def drop_collection(self, name: str) -> None:
        with self._lock:
            self._check_open()
            self._collections.pop(name, None)

    def upsert(self, name: str, documents: list[Document]) -> None:
        with self._lock:
            self._check_open()
            collection = self._require(name)
            for document in documents:
                collection.documents[document.id] = document

    def remove(self, name: str, ids: list[str]) -> None:
        with self._lock:
            self._check_open()
            collection = self._require(name)
            for doc_id in ids:
                collection.documents.pop(doc_id, None)

    def snapshot(self, name: str) -> list[Document]:
        """Consistent copy of a collection's documents."""
        with self._lock:
            self._check_open()
            return list(self._require(name).documents.values())

    def _require(self, name: str) -> MemoryCollection:
        collection = self._collections.get(name)
        if collection is None:
            raise SchemaNotFoundError(
                f"Collection not found: {name}",
                details={"collection": name},
            )
        return collection


class InMemorySchemaInitializer(SchemaInitializer):
    """Creates and checks a collection in an InMemoryBackend."""

    def __init__(self, backend: InMemoryBackend, config: InMemoryConfig) -> None:
        self._backend = backend
        self._config = config

    async def ensure_schema(self) -> None:
        collection = self._backend.create_collection(
            self._config.collection_name,
            self._config.dimensions,
            self._config.distance_type,
        )
        self._check_compatible(collection)

    async def validate_schema(self) -> None:
        collection = self._backend.get_collection(self._config.collection_name)
        if collection is None:
            raise SchemaNotFoundError(
                f"Collection not found: {self._config.collection_name}",
                details={"collection": self._config.collection_name},
            )
        self._check_compatible(collection)

    def _check_compatible(self, collection: MemoryCollection) -> None:
        if (
            collection.dimensions != self._config.dimensions
            or collection.distance_type != self._config.distance_type
        ):
            raise SchemaConflictError(
                f"Collection {self._config.collection_name} has "
                f"{collection.dimensions} dimensions ({collection.distance_type.value}), "
                f"store expects {self._config.dimensions} ({self._config.distance_type.value})",
                details={
                    "collection": self._config.collection_name,
                    "existing_dimensions": collection.dimensions,
                    "existing_distance": collection.distance_type.value,
                },
            )


class InMemoryVectorStore(VectorStore):
    """Vector store backed by an InMemoryBackend collection."""

    def __init__(
        self,
        backend: InMemoryBackend,
        embedding_service: EmbeddingService,
        config: InMemoryConfig | None = None,
        metadata_mode: MetadataMode = MetadataMode.EMBED,
    ) -> None:
        self._backend = backend
        self._config = config or InMemoryConfig()
        self._embedder = DocumentEmbedder(
            embedding_service, self._config.dimensions, metadata_mode
        )
        self._translator = InMemoryFilterTranslator()
        self._guard = ReadyGuard("InMemoryVectorStore")
        self.schema = InMemorySchemaInitializer(backend, self._config)

    @property
    def descriptor(self) -> StoreDescriptor:
        return StoreDescriptor(
            db_system=DB_SYSTEM,
            collection_name=self._config.collection_name,
            dimensions=self._config.dimensions,
            distance_type=self._config.distance_type,
            field_name="embedding",
        )

    @property
    def state(self) -> StoreState:
        return self._guard.state

    async def initialize(self) -> None:
        await self.schema.prepare(self._config.initialize_schema)
        self._guard.mark_ready()

    async def add(self, documents: list[Document]) -> int:
        self._guard.require_ready("add")
        if not documents:
            return 0
        embedded = await self._embedder.embed_documents(documents)
        self._backend.upsert(self._config.collection_name, embedded)
        logger.debug(
            f"Upserted {len(embedded)} documents",
            extra={"collection": self._config.collection_name},
        )
        return len(embedded)

    async def delete(self, ids: list[str]) -> None:
        self._guard.require_ready("delete")
        if ids:
            self._backend.remove(self._config.collection_name, ids)

    async def similarity_search(self, request: SearchRequest) -> list[SearchResult]:
        self._guard.require_ready("similarity_search")
        predicate = (
            self._translator.translate(request.filter_expression)
            if request.filter_expression is not None
            else None
        )
        vector = await self._embedder.embed_query(request)

        candidates = [
            document
            for document in self._backend.snapshot(self._config.collection_name)
            if predicate is None or matches(predicate, document.metadata)
        ]
        scores = score_vectors(
            self._config.distance_type,
            [document.embedding or [] for document in candidates],
            vector,
        )
        results = [
            SearchResult(
                document=document.model_copy(update={"embedding": None}),
                score=score,
            )
            for document, score in zip(candidates, scores, strict=True)
        ]
        return rank_results(results, request)
