"""Qdrant vector store.

Qdrant point ids must be UUIDs or unsigned integers, so each document id is
mapped to a deterministic UUID5 and the original id is kept in the payload
under ``doc_id``.
"""

from uuid import NAMESPACE_URL, uuid5

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import Distance, PointIdsList, PointStruct, VectorParams

from vecstore.config import DistanceType, MetadataMode
from vecstore.embeddings.service import EmbeddingService
from vecstore.exceptions import SchemaConflictError, SchemaNotFoundError
from vecstore.filters.qdrant import QdrantFilterTranslator
from vecstore.logging_config import get_logger
from vecstore.vectorstore.models import (
    Document,
    QdrantConfig,
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
    backend_errors,
    rank_results,
)
from vecstore.vectorstore.similarity import (
    cosine_similarity_to_score,
    dot_product_to_score,
    euclidean_distance_to_score,
)

logger = get_logger(__name__)

DB_SYSTEM = "qdrant"
PAYLOAD_ID = "doc_id"
PAYLOAD_CONTENT = "content"
PAYLOAD_METADATA = "metadata"

_DISTANCES = {
    DistanceType.COSINE: Distance.COSINE,
    DistanceType.EUCLIDEAN: Distance.EUCLID,
    DistanceType.DOT: Distance.DOT,
}


def point_id(document_id: str) -> str:
    """Deterministic Qdrant point id for a document id."""
    return str(uuid5(NAMESPACE_URL, document_id))


def point_score_to_score(distance_type: DistanceType, score: float) -> float:
    """Normalize a Qdrant point score.

    Qdrant reports cosine similarity, the raw dot product, or the euclidean
    distance itself depending on the collection's metric.
    """
    if distance_type == DistanceType.EUCLIDEAN:
        return euclidean_distance_to_score(score)
    if distance_type == DistanceType.DOT:
        return dot_product_to_score(score)
    return cosine_similarity_to_score(score)


def _is_closed(exc: Exception) -> bool:
    # httpx refuses requests on a closed client before anything is sent
    return (
        isinstance(exc, ResponseHandlingException)
        and isinstance(exc.source, RuntimeError)
        and "closed" in str(exc.source)
    )


class QdrantSchemaInitializer(SchemaInitializer):
    """Creates and checks a Qdrant collection."""

    def __init__(self, client: AsyncQdrantClient, config: QdrantConfig) -> None:
        self._client = client
        self._config = config

    async def ensure_schema(self) -> None:
        name = self._config.collection_name
        if not await self._client.collection_exists(name):
            try:
                await self._client.create_collection(
                    collection_name=name,
                    vectors_config=VectorParams(
                        size=self._config.dimensions,
                        distance=_DISTANCES[self._config.distance_type],
                    ),
                )
                logger.info(
                    f"Created collection: {name}",
                    extra={"dimensions": self._config.dimensions},
                )
            except UnexpectedResponse as e:
                if e.status_code != 409:
                    raise
                logger.debug(f"Collection created concurrently: {name}")
        await self.validate_schema()

    async def validate_schema(self) -> None:
        name = self._config.collection_name
        if not await self._client.collection_exists(name):
            raise SchemaNotFoundError(
                f"Collection not found: {name}",
                details={"collection": name},
            )

        info = await self._client.get_collection(name)
        params = info.config.params.vectors
        expected = _DISTANCES[self._config.distance_type]
        if not isinstance(params, VectorParams):
            raise SchemaConflictError(
                f"Collection {name} uses named vectors",
                details={"collection": name},
            )
        if params.size != self._config.dimensions or params.distance != expected:
            raise SchemaConflictError(
                f"Collection {name} has {params.size} dimensions ({params.distance}), "
                f"store expects {self._config.dimensions} ({expected})",
                details={
                    "collection": name,
                    "existing_dimensions": params.size,
                    "existing_distance": str(params.distance),
                },
            )


class QdrantVectorStore(VectorStore):
    """Qdrant vector store implementation."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        embedding_service: EmbeddingService,
        config: QdrantConfig | None = None,
        metadata_mode: MetadataMode = MetadataMode.EMBED,
    ) -> None:
        self._client = client
        self._config = config or QdrantConfig()
        self._embedder = DocumentEmbedder(
            embedding_service, self._config.dimensions, metadata_mode
        )
        self._translator = QdrantFilterTranslator(payload_key=PAYLOAD_METADATA)
        self._guard = ReadyGuard("QdrantVectorStore")
        self.schema = QdrantSchemaInitializer(client, self._config)

    @property
    def descriptor(self) -> StoreDescriptor:
        return StoreDescriptor(
            db_system=DB_SYSTEM,
            collection_name=self._config.collection_name,
            dimensions=self._config.dimensions,
            distance_type=self._config.distance_type,
            field_name="vector",
        )

    @property
    def state(self) -> StoreState:
        return self._guard.state

    async def initialize(self) -> None:
        with backend_errors("initialize", self._config.collection_name, _is_closed):
            await self.schema.prepare(self._config.initialize_schema)
        self._guard.mark_ready()

    async def add(self, documents: list[Document]) -> int:
        self._guard.require_ready("add")
        if not documents:
            return 0
        embedded = await self._embedder.embed_documents(documents)

        points = [
            PointStruct(
                id=point_id(document.id),
                vector=document.embedding or [],
                payload={
                    PAYLOAD_ID: document.id,
                    PAYLOAD_CONTENT: document.content,
                    PAYLOAD_METADATA: document.metadata,
                },
            )
            for document in embedded
        ]

        with backend_errors("add", self._config.collection_name, _is_closed):
            await self._client.upsert(
                collection_name=self._config.collection_name,
                points=points,
                wait=True,
            )

        logger.debug(
            f"Upserted {len(points)} documents",
            extra={"collection": self._config.collection_name},
        )
        return len(points)

    async def delete(self, ids: list[str]) -> None:
        self._guard.require_ready("delete")
        if not ids:
            return
        with backend_errors("delete", self._config.collection_name, _is_closed):
            await self._client.delete(
                collection_name=self._config.collection_name,
                points_selector=PointIdsList(points=[point_id(i) for i in ids]),
                wait=True,
            )

    async def similarity_search(self, request: SearchRequest) -> list[SearchResult]:
        self._guard.require_ready("similarity_search")
        query_filter = (
            self._translator.to_filter(self._translator.translate(request.filter_expression))
            if request.filter_expression is not None
            else None
        )
        vector = await self._embedder.embed_query(request)

        with backend_errors("similarity_search", self._config.collection_name, _is_closed):
            response = await self._client.query_points(
                collection_name=self._config.collection_name,
                query=vector,
                limit=request.top_k,
                query_filter=query_filter,
                with_payload=True,
            )

        results = []
        for point in response.points:
            payload = dict(point.payload or {})
            results.append(
                SearchResult(
                    document=Document(
                        id=str(payload.get(PAYLOAD_ID, point.id)),
                        content=payload.get(PAYLOAD_CONTENT) or "",
                        metadata=payload.get(PAYLOAD_METADATA) or {},
                    ),
                    score=point_score_to_score(
                        self._config.distance_type,
                        point.score if point.score is not None else 0.0,
                    ),
                )
            )
        return rank_results(results, request)
