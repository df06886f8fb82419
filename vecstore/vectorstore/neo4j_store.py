"""Neo4j vector store.

Documents are nodes with a configurable label. Metadata entries become node
properties prefixed with ``metadata.``; the embedding is set through
``db.create.setNodeVectorProperty`` so it is stored as a vector. Search uses
``db.index.vector.queryNodes`` and applies the metadata filter to the
index hits.
"""

import math
from typing import Any

from neo4j import AsyncDriver, RoutingControl
from neo4j.exceptions import ClientError, DriverError, ServiceUnavailable, SessionExpired

from vecstore.config import DistanceType, MetadataMode
from vecstore.embeddings.service import EmbeddingService
from vecstore.exceptions import SchemaConflictError, SchemaNotFoundError
from vecstore.filters.cypher import CypherFilterTranslator, quote_name
from vecstore.logging_config import get_logger
from vecstore.vectorstore.models import (
    Document,
    Neo4jConfig,
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
from vecstore.vectorstore.similarity import euclidean_distance_to_score

logger = get_logger(__name__)

DB_SYSTEM = "neo4j"
METADATA_PREFIX = "metadata."

_SIMILARITY_FUNCTIONS = {
    DistanceType.COSINE: "cosine",
    DistanceType.EUCLIDEAN: "euclidean",
}

_ALREADY_EXISTS_CODES = frozenset(
    {
        "Neo.ClientError.Schema.EquivalentSchemaRuleAlreadyExists",
        "Neo.ClientError.Schema.IndexAlreadyExists",
        "Neo.ClientError.Schema.ConstraintAlreadyExists",
    }
)


def index_score_to_score(distance_type: DistanceType, score: float) -> float:
    """Normalize a Neo4j vector index score.

    Cosine index scores are already ``(1 + cos) / 2``. Euclidean index
    scores are ``1 / (1 + d^2)`` and are mapped to ``1 / (1 + d)``.
    """
    if distance_type == DistanceType.EUCLIDEAN:
        if score <= 0.0:
            return 0.0
        return euclidean_distance_to_score(math.sqrt(max(0.0, 1.0 / score - 1.0)))
    return min(1.0, max(0.0, score))


class Neo4jSchemaInitializer(SchemaInitializer):
    """Creates and checks the id constraint and vector index."""

    def __init__(self, driver: AsyncDriver, config: Neo4jConfig) -> None:
        self._driver = driver
        self._config = config

    async def _run(self, query: str, **params: Any) -> list[Any]:
        result = await self._driver.execute_query(
            query,
            parameters_=params,
            database_=self._config.database_name,
        )
        return list(result.records)

    async def _run_ddl(self, query: str, **params: Any) -> None:
        try:
            await self._run(query, **params)
        except ClientError as e:
            if e.code not in _ALREADY_EXISTS_CODES:
                raise
            logger.debug(f"Schema rule created concurrently: {e.code}")

    async def ensure_schema(self) -> None:
        config = self._config
        label = quote_name(config.label)
        await self._run_ddl(
            f"CREATE CONSTRAINT {quote_name(config.constraint_name)} IF NOT EXISTS "
            f"FOR (n:{label}) REQUIRE n.{quote_name(config.id_property)} IS UNIQUE"
        )
        await self._run_ddl(
            f"CREATE VECTOR INDEX {quote_name(config.index_name)} IF NOT EXISTS "
            f"FOR (n:{label}) ON (n.{quote_name(config.embedding_property)}) "
            "OPTIONS {indexConfig: {"
            f"`vector.dimensions`: {int(config.dimensions)}, "
            f"`vector.similarity_function`: '{_SIMILARITY_FUNCTIONS[config.distance_type]}'"
            "}}"
        )
        await self._run("CALL db.awaitIndex($name)", name=config.index_name)
        await self.validate_schema()
        logger.info(
            f"Schema ready: index {config.index_name}",
            extra={"label": config.label, "dimensions": config.dimensions},
        )

    async def validate_schema(self) -> None:
        config = self._config
        records = await self._run(
            "SHOW INDEXES YIELD name, type, options WHERE name = $name RETURN type, options",
            name=config.index_name,
        )
        if not records:
            raise SchemaNotFoundError(
                f"Vector index not found: {config.index_name}",
                details={"index": config.index_name},
            )

        record = records[0]
        if record["type"] != "VECTOR":
            raise SchemaConflictError(
                f"Index {config.index_name} is a {record['type']} index, not a vector index",
                details={"index": config.index_name, "type": record["type"]},
            )
        index_config = (record["options"] or {}).get("indexConfig", {})
        dimensions = index_config.get("vector.dimensions")
        similarity = str(index_config.get("vector.similarity_function", "")).lower()
        expected_similarity = _SIMILARITY_FUNCTIONS[config.distance_type]
        if dimensions != config.dimensions or similarity != expected_similarity:
            raise SchemaConflictError(
                f"Index {config.index_name} has {dimensions} dimensions ({similarity}), "
                f"store expects {config.dimensions} ({expected_similarity})",
                details={
                    "index": config.index_name,
                    "existing_dimensions": dimensions,
                    "existing_similarity": similarity,
                },
            )


class Neo4jVectorStore(VectorStore):
    """Vector store on a Neo4j vector index."""

    def __init__(
        self,
        driver: AsyncDriver,
        embedding_service: EmbeddingService,
        config: Neo4jConfig | None = None,
        metadata_mode: MetadataMode = MetadataMode.EMBED,
    ) -> None:
        self._driver = driver
        self._config = config or Neo4jConfig()
        self._embedder = DocumentEmbedder(
            embedding_service, self._config.dimensions, metadata_mode
        )
        self._translator = CypherFilterTranslator(
            variable="node", property_prefix=METADATA_PREFIX
        )
        self._guard = ReadyGuard("Neo4jVectorStore")
        self.schema = Neo4jSchemaInitializer(driver, self._config)

    @property
    def descriptor(self) -> StoreDescriptor:
        return StoreDescriptor(
            db_system=DB_SYSTEM,
            collection_name=self._config.index_name,
            namespace=self._config.database_name,
            dimensions=self._config.dimensions,
            distance_type=self._config.distance_type,
            field_name=self._config.embedding_property,
        )

    @property
    def state(self) -> StoreState:
        return self._guard.state

    def _is_closed(self, exc: Exception) -> bool:
        # outages, not a closed driver
        if not isinstance(exc, DriverError) or isinstance(
            exc, (ServiceUnavailable, SessionExpired)
        ):
            return False
        return getattr(self._driver, "_closed", False) is True or "closed" in str(exc).lower()

    async def initialize(self) -> None:
        with backend_errors("initialize", self._config.index_name, self._is_closed):
            await self.schema.prepare(self._config.initialize_schema)
        self._guard.mark_ready()

    def _node_properties(self, document: Document) -> dict[str, Any]:
        properties: dict[str, Any] = {
            METADATA_PREFIX + key: value for key, value in document.metadata.items()
        }
        properties[self._config.id_property] = document.id
        properties[self._config.content_property] = document.content
        return properties

    async def add(self, documents: list[Document]) -> int:
        self._guard.require_ready("add")
        if not documents:
            return 0
        embedded = await self._embedder.embed_documents(documents)

        config = self._config
        query = (
            "UNWIND $rows AS row "
            f"MERGE (n:{quote_name(config.label)} {{{quote_name(config.id_property)}: row.id}}) "
            "SET n = row.properties "
            "WITH n, row "
            "CALL db.create.setNodeVectorProperty(n, $embedding_property, row.embedding)"
        )
        rows = [
            {
                "id": document.id,
                "properties": self._node_properties(document),
                "embedding": document.embedding,
            }
            for document in embedded
        ]

        with backend_errors("add", config.index_name, self._is_closed):
            await self._driver.execute_query(
                query,
                parameters_={"rows": rows, "embedding_property": config.embedding_property},
                database_=config.database_name,
            )

        logger.debug(
            f"Upserted {len(rows)} documents",
            extra={"label": config.label},
        )
        return len(rows)

    async def delete(self, ids: list[str]) -> None:
        self._guard.require_ready("delete")
        if not ids:
            return
        config = self._config
        query = (
            f"MATCH (n:{quote_name(config.label)}) "
            f"WHERE n.{quote_name(config.id_property)} IN $ids "
            "DETACH DELETE n"
        )
        with backend_errors("delete", config.index_name, self._is_closed):
            await self._driver.execute_query(
                query,
                parameters_={"ids": list(ids)},
                database_=config.database_name,
            )

    async def similarity_search(self, request: SearchRequest) -> list[SearchResult]:
        self._guard.require_ready("similarity_search")
        clause = (
            self._translator.translate(request.filter_expression)
            if request.filter_expression is not None
            else None
        )
        vector = await self._embedder.embed_query(request)

        config = self._config
        where = f"WHERE {clause.text} " if clause else ""
        query = (
            "CALL db.index.vector.queryNodes($index_name, $top_k, $embedding) "
            "YIELD node, score "
            f"{where}"
            "RETURN properties(node) AS properties, score "
            "ORDER BY score DESC"
        )
        params: dict[str, Any] = {
            "index_name": config.index_name,
            "top_k": request.top_k,
            "embedding": vector,
            **(clause.params if clause else {}),
        }

        with backend_errors("similarity_search", config.index_name, self._is_closed):
            result = await self._driver.execute_query(
                query,
                parameters_=params,
                database_=config.database_name,
                routing_=RoutingControl.READ,
            )

        results = [
            SearchResult(
                document=self._to_document(dict(record["properties"])),
                score=index_score_to_score(config.distance_type, float(record["score"])),
            )
            for record in result.records
        ]
        return rank_results(results, request)

    def _to_document(self, properties: dict[str, Any]) -> Document:
        config = self._config
        metadata = {
            key[len(METADATA_PREFIX) :]: value
            for key, value in properties.items()
            if key.startswith(METADATA_PREFIX)
        }
        return Document(
            id=str(properties.get(config.id_property, "")),
            content=properties.get(config.content_property) or "",
            metadata=metadata,
        )
