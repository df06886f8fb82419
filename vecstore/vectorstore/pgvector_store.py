"""PostgreSQL + pgvector vector store.

Documents live in one table ``(id text primary key, content text, metadata
jsonb, embedding vector(N))``. The caller owns the ``psycopg.AsyncConnection``;
the store registers the pgvector types on it during ``initialize()``.
"""

import math
import re
from typing import Any

import numpy as np
from pgvector.psycopg import register_vector_async
from psycopg import AsyncConnection, errors, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from vecstore.config import DistanceType, IndexType, MetadataMode
from vecstore.embeddings.service import EmbeddingService
from vecstore.exceptions import (
    ConnectionClosedError,
    SchemaConflictError,
    SchemaNotFoundError,
)
from vecstore.filters.sql import SqlFilterTranslator
from vecstore.logging_config import get_logger
from vecstore.vectorstore.models import (
    Document,
    PgVectorConfig,
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
    cosine_distance_to_score,
    dot_product_to_score,
    euclidean_distance_to_score,
    score_to_cosine_distance,
    score_to_dot_product,
    score_to_euclidean_distance,
)

logger = get_logger(__name__)

DB_SYSTEM = "pg_vector"

# distance operator, index operator class
_DISTANCE_OPS = {
    DistanceType.COSINE: ("<=>", "vector_cosine_ops"),
    DistanceType.EUCLIDEAN: ("<->", "vector_l2_ops"),
    DistanceType.DOT: ("<#>", "vector_ip_ops"),
}

_DUPLICATE_ERRORS = (
    errors.DuplicateObject,
    errors.DuplicateTable,
    errors.DuplicateSchema,
    errors.UniqueViolation,
)

_VECTOR_TYPE = re.compile(r"vector\((\d+)\)")

_THRESHOLD_SLACK = 1e-9


def distance_to_score(distance_type: DistanceType, distance: float) -> float:
    """Normalize a pgvector distance operator result."""
    if distance_type == DistanceType.EUCLIDEAN:
        return euclidean_distance_to_score(distance)
    if distance_type == DistanceType.DOT:
        # <#> returns the negative inner product
        return dot_product_to_score(-distance)
    return cosine_distance_to_score(distance)


def max_distance(distance_type: DistanceType, threshold: float) -> float | None:
    """Largest operator result that can still reach ``threshold``.

    None when the threshold excludes nothing. The bound is widened by
    ``_THRESHOLD_SLACK`` so rounding never drops a row at the threshold;
    the exact cut happens on the normalized score.
    """
    if threshold <= 0.0:
        return None
    if distance_type == DistanceType.EUCLIDEAN:
        bound = score_to_euclidean_distance(threshold)
    elif distance_type == DistanceType.DOT:
        bound = -score_to_dot_product(threshold)
    else:
        bound = score_to_cosine_distance(threshold)
    if not math.isfinite(bound):
        return None
    return bound + _THRESHOLD_SLACK


class PgVectorSchemaInitializer(SchemaInitializer):
    """Creates and checks the pgvector extension, schema, table and index."""

    def __init__(self, connection: AsyncConnection, config: PgVectorConfig) -> None:
        self._conn = connection
        self._config = config

    @property
    def _table(self) -> sql.Identifier:
        return sql.Identifier(self._config.schema_name, self._config.table_name)

    async def _execute_ddl(self, statement: sql.Composable) -> None:
        try:
            async with self._conn.transaction():
                async with self._conn.cursor() as cur:
                    await cur.execute(statement)
        except _DUPLICATE_ERRORS as e:
            logger.debug(
                f"Structure created concurrently: {e}",
                extra={"table": self._config.table_name},
            )

    async def _fetchone(self, query: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        async with self._conn.transaction():
            async with self._conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    async def ensure_schema(self) -> None:
        config = self._config
        if config.remove_existing:
            logger.info(f"Dropping existing table {config.schema_name}.{config.table_name}")
            await self._execute_ddl(sql.SQL("DROP TABLE IF EXISTS {}").format(self._table))

        await self._execute_ddl(sql.SQL("CREATE EXTENSION IF NOT EXISTS vector"))
        await self._execute_ddl(
            sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(config.schema_name))
        )
        await self._execute_ddl(
            sql.SQL(
                "CREATE TABLE IF NOT EXISTS {table} ("
                "id text PRIMARY KEY, "
                "content text, "
                "metadata jsonb, "
                "embedding vector({dimensions}))"
            ).format(table=self._table, dimensions=sql.Literal(config.dimensions))
        )
        if config.index_type != IndexType.NONE:
            _, opclass = _DISTANCE_OPS[config.distance_type]
            await self._execute_ddl(
                sql.SQL(
                    "CREATE INDEX IF NOT EXISTS {index} ON {table} "
                    "USING {method} (embedding {opclass})"
                ).format(
                    index=sql.Identifier(config.index_name),
                    table=self._table,
                    method=sql.SQL(config.index_type.value),
                    opclass=sql.SQL(opclass),
                )
            )
        await self.validate_schema()
        logger.info(
            f"Schema ready: {config.schema_name}.{config.table_name}",
            extra={"dimensions": config.dimensions, "index_type": config.index_type.value},
        )

    async def validate_schema(self) -> None:
        config = self._config
        details = {"schema": config.schema_name, "table": config.table_name}

        row = await self._fetchone(
            "SELECT format_type(a.atttypid, a.atttypmod) AS column_type "
            "FROM pg_attribute a "
            "WHERE a.attrelid = to_regclass(quote_ident(%s) || '.' || quote_ident(%s)) "
            "AND a.attname = 'embedding' AND NOT a.attisdropped",
            (config.schema_name, config.table_name),
        )
        if row is None:
            raise SchemaNotFoundError(
                f"Table {config.schema_name}.{config.table_name} with an embedding column "
                "does not exist",
                details=details,
            )

        match = _VECTOR_TYPE.fullmatch(row["column_type"])
        existing = int(match.group(1)) if match else None
        if existing != config.dimensions:
            raise SchemaConflictError(
                f"Column embedding is {row['column_type']}, store expects "
                f"vector({config.dimensions})",
                details={**details, "column_type": row["column_type"]},
            )

        if config.index_type == IndexType.NONE:
            return
        index = await self._fetchone(
            "SELECT indexdef FROM pg_indexes WHERE schemaname = %s AND indexname = %s",
            (config.schema_name, config.index_name),
        )
        if index is None:
            logger.warning(
                f"Index {config.index_name} not found; searches fall back to a sequential scan",
                extra=details,
            )
            return
        _, opclass = _DISTANCE_OPS[config.distance_type]
        if opclass not in index["indexdef"]:
            raise SchemaConflictError(
                f"Index {config.index_name} does not use {opclass}",
                details={**details, "indexdef": index["indexdef"]},
            )


class PgVectorStore(VectorStore):
    """Vector store on PostgreSQL with the pgvector extension."""

    def __init__(
        self,
        connection: AsyncConnection,
        embedding_service: EmbeddingService,
        config: PgVectorConfig | None = None,
        metadata_mode: MetadataMode = MetadataMode.EMBED,
    ) -> None:
        self._conn = connection
        self._config = config or PgVectorConfig()
        self._embedder = DocumentEmbedder(
            embedding_service, self._config.dimensions, metadata_mode
        )
        self._translator = SqlFilterTranslator()
        self._guard = ReadyGuard("PgVectorStore")
        self.schema = PgVectorSchemaInitializer(connection, self._config)

    @property
    def descriptor(self) -> StoreDescriptor:
        return StoreDescriptor(
            db_system=DB_SYSTEM,
            collection_name=self._config.table_name,
            namespace=self._config.schema_name,
            dimensions=self._config.dimensions,
            distance_type=self._config.distance_type,
        )

    @property
    def state(self) -> StoreState:
        return self._guard.state

    @property
    def _table(self) -> sql.Identifier:
        return sql.Identifier(self._config.schema_name, self._config.table_name)

    def _is_closed(self, _: Exception) -> bool:
        return bool(self._conn.closed)

    def _check_open(self) -> None:
        if self._conn.closed:
            raise ConnectionClosedError(details={"db_system": DB_SYSTEM})

    async def initialize(self) -> None:
        self._check_open()
        with backend_errors("initialize", self._config.table_name, self._is_closed):
            await self.schema.prepare(self._config.initialize_schema)
            async with self._conn.transaction():
                await register_vector_async(self._conn)
        self._guard.mark_ready()

    async def add(self, documents: list[Document]) -> int:
        self._guard.require_ready("add")
        if not documents:
            return 0
        embedded = await self._embedder.embed_documents(documents)
        self._check_open()

        query = sql.SQL(
            "INSERT INTO {table} (id, content, metadata, embedding) "
            "VALUES (%s, %s, %s, %s) "
            "ON CONFLICT (id) DO UPDATE SET "
            "content = EXCLUDED.content, "
            "metadata = EXCLUDED.metadata, "
            "embedding = EXCLUDED.embedding"
        ).format(table=self._table)
        rows = [
            (
                document.id,
                document.content,
                Jsonb(document.metadata),
                np.asarray(document.embedding, dtype=np.float32),
            )
            for document in embedded
        ]

        with backend_errors("add", self._config.table_name, self._is_closed):
            async with self._conn.transaction():
                async with self._conn.cursor() as cur:
                    await cur.executemany(query, rows)

        logger.debug(
            f"Upserted {len(rows)} documents",
            extra={"table": self._config.table_name},
        )
        return len(rows)

    async def delete(self, ids: list[str]) -> None:
        self._guard.require_ready("delete")
        if not ids:
            return
        self._check_open()
        query = sql.SQL("DELETE FROM {table} WHERE id = ANY(%s)").format(table=self._table)
        with backend_errors("delete", self._config.table_name, self._is_closed):
            async with self._conn.transaction():
                async with self._conn.cursor() as cur:
                    await cur.execute(query, (list(ids),))

    async def similarity_search(self, request: SearchRequest) -> list[SearchResult]:
        self._guard.require_ready("similarity_search")
        clause = (
            self._translator.translate(request.filter_expression)
            if request.filter_expression is not None
            else None
        )
        vector = await self._embedder.embed_query(request)
        self._check_open()

        operator, _ = _DISTANCE_OPS[self._config.distance_type]
        embedding = np.asarray(vector, dtype=np.float32)
        conditions: list[sql.Composable] = []
        params: list[Any] = [embedding]
        if clause:
            conditions.append(sql.SQL(clause.text))
            params.extend(clause.params)
        bound = max_distance(self._config.distance_type, request.similarity_threshold)
        if bound is not None:
            conditions.append(sql.SQL(f"embedding {operator} %s <= %s"))
            params.extend((embedding, bound))
        params.append(request.top_k)

        where = (
            sql.SQL("WHERE {} ").format(sql.SQL(" AND ").join(conditions))
            if conditions
            else sql.SQL("")
        )
        query = sql.SQL(
            "SELECT id, content, metadata, embedding {operator} %s AS distance "
            "FROM {table} {where}"
            "ORDER BY distance, id LIMIT %s"
        ).format(operator=sql.SQL(operator), table=self._table, where=where)

        with backend_errors("similarity_search", self._config.table_name, self._is_closed):
            async with self._conn.transaction():
                async with self._conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, tuple(params))
                    rows = await cur.fetchall()

        results = [
            SearchResult(
                document=Document(
                    id=row["id"],
                    content=row["content"] or "",
                    metadata=row["metadata"] or {},
                ),
                score=distance_to_score(self._config.distance_type, float(row["distance"])),
            )
            for row in rows
        ]
        return rank_results(results, request)
