"""Tests for the pgvector store."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest
from psycopg import errors

from vecstore.config import DistanceType, IndexType
from vecstore.exceptions import (
    BackendError,
    ConnectionClosedError,
    SchemaConflictError,
    SchemaNotFoundError,
)
from vecstore.vectorstore import Document, PgVectorConfig, PgVectorStore, SearchRequest, StoreState
from vecstore.vectorstore.pgvector_store import distance_to_score, max_distance
from vecstore.vectorstore.similarity import dot_product_to_score

COLUMN_ROW = {"column_type": "vector(8)"}
INDEX_ROW = {
    "indexdef": "CREATE INDEX vector_store_embedding_idx USING hnsw (embedding vector_cosine_ops)"
}


@pytest.fixture
def cursor() -> MagicMock:
    """Mock psycopg cursor."""
    cur = MagicMock()
    cur.execute = AsyncMock()
    cur.executemany = AsyncMock()
    cur.fetchone = AsyncMock(side_effect=[COLUMN_ROW, INDEX_ROW])
    cur.fetchall = AsyncMock(return_value=[])
    return cur


@pytest.fixture
def connection(cursor: MagicMock) -> MagicMock:
    """Mock open psycopg AsyncConnection."""
    conn = MagicMock()
    conn.closed = False
    conn.cursor.return_value.__aenter__.return_value = cursor
    return conn


@pytest.fixture
def register_vector():
    """Patch pgvector type registration."""
    with patch(
        "vecstore.vectorstore.pgvector_store.register_vector_async",
        new_callable=AsyncMock,
    ) as mock:
        yield mock


@pytest.fixture
async def store(connection, embedding_service, register_vector) -> PgVectorStore:
    """Initialized store over a validated schema."""
    return await PgVectorStore.create(connection, embedding_service, PgVectorConfig(dimensions=8))


class TestDistanceToScore:
    """Tests for pgvector score normalization."""

    def test_cosine(self) -> None:
        """Cosine distance 0 is a perfect match."""
        assert distance_to_score(DistanceType.COSINE, 0.0) == 1.0
        assert distance_to_score(DistanceType.COSINE, 1.0) == 0.5

    def test_euclidean(self) -> None:
        """L2 distance maps to 1 / (1 + d)."""
        assert distance_to_score(DistanceType.EUCLIDEAN, 1.0) == 0.5

    def test_dot_sign(self) -> None:
        """The <#> operator returns the negative inner product."""
        assert distance_to_score(DistanceType.DOT, -2.0) == dot_product_to_score(2.0)


class TestMaxDistance:
    """Tests for the threshold bound passed to SQL."""

    def test_no_threshold(self) -> None:
        """A zero threshold adds no condition."""
        assert max_distance(DistanceType.COSINE, 0.0) is None

    def test_bounds_invert_scores(self) -> None:
        """Bounds are the operator results that score exactly the threshold."""
        assert max_distance(DistanceType.COSINE, 0.75) == pytest.approx(0.5)
        assert max_distance(DistanceType.EUCLIDEAN, 0.5) == pytest.approx(1.0)
        assert max_distance(DistanceType.DOT, 0.5) == pytest.approx(0.0, abs=1e-6)

    def test_bound_admits_threshold_row(self) -> None:
        """A row scoring exactly the threshold stays inside the bound."""
        bound = max_distance(DistanceType.COSINE, 0.75)
        assert bound > 0.5
        assert distance_to_score(DistanceType.COSINE, 0.5) == 0.75

    def test_unbounded_threshold(self) -> None:
        """A dot-product threshold of 1 has no finite bound."""
        assert max_distance(DistanceType.DOT, 1.0) is None


class TestSchema:
    """Tests for schema creation and validation."""

    async def test_initialize_validates(self, store, cursor, register_vector) -> None:
        """Without initialize_schema only validation queries run."""
        assert store.state == StoreState.READY
        assert cursor.execute.await_count == 2
        assert cursor.execute.await_args_list[0].args[1] == ("public", "vector_store")
        register_vector.assert_awaited_once()

    async def test_ensure_schema_creates_structures(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """Extension, schema, table and index are created, then validated."""
        config = PgVectorConfig(dimensions=8, initialize_schema=True)
        await PgVectorStore.create(connection, embedding_service, config)

        statements = [repr(call.args[0]) for call in cursor.execute.await_args_list]
        assert len(statements) == 6
        assert "CREATE EXTENSION IF NOT EXISTS vector" in statements[0]
        assert "CREATE SCHEMA IF NOT EXISTS" in statements[1]
        assert "CREATE TABLE IF NOT EXISTS" in statements[2]
        assert "Literal(8)" in statements[2]
        assert "vector_cosine_ops" in statements[3]
        assert "hnsw" in statements[3]

    async def test_remove_existing_drops_first(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """remove_existing issues DROP TABLE before creating."""
        config = PgVectorConfig(dimensions=8, initialize_schema=True, remove_existing=True)
        await PgVectorStore.create(connection, embedding_service, config)
        assert "DROP TABLE IF EXISTS" in repr(cursor.execute.await_args_list[0].args[0])

    async def test_no_index(self, connection, cursor, embedding_service, register_vector) -> None:
        """IndexType.NONE skips index creation and index validation."""
        cursor.fetchone = AsyncMock(return_value=COLUMN_ROW)
        config = PgVectorConfig(dimensions=8, initialize_schema=True, index_type=IndexType.NONE)
        await PgVectorStore.create(connection, embedding_service, config)
        assert cursor.execute.await_count == 4

    async def test_concurrent_creation_tolerated(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """Duplicate-object errors from a racing initializer are ignored."""
        cursor.execute.side_effect = [errors.DuplicateObject("exists")] + [None] * 5
        config = PgVectorConfig(dimensions=8, initialize_schema=True)
        store = await PgVectorStore.create(connection, embedding_service, config)
        assert store.state == StoreState.READY

    async def test_missing_table(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """No embedding column means the schema is absent."""
        cursor.fetchone = AsyncMock(return_value=None)
        store = PgVectorStore(connection, embedding_service, PgVectorConfig(dimensions=8))
        with pytest.raises(SchemaNotFoundError):
            await store.initialize()
        assert store.state == StoreState.UNINITIALIZED

    async def test_dimension_conflict(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """A vector column of another size is a conflict."""
        cursor.fetchone = AsyncMock(return_value={"column_type": "vector(4)"})
        store = PgVectorStore(connection, embedding_service, PgVectorConfig(dimensions=8))
        with pytest.raises(SchemaConflictError):
            await store.initialize()

    async def test_index_opclass_conflict(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """An index built for another metric is a conflict."""
        config = PgVectorConfig(dimensions=8, distance_type=DistanceType.EUCLIDEAN)
        store = PgVectorStore(connection, embedding_service, config)
        with pytest.raises(SchemaConflictError):
            await store.initialize()

    async def test_missing_index_only_warns(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """A missing index does not block initialization."""
        cursor.fetchone = AsyncMock(side_effect=[COLUMN_ROW, None])
        store = await PgVectorStore.create(
            connection, embedding_service, PgVectorConfig(dimensions=8)
        )
        assert store.state == StoreState.READY

    async def test_closed_connection(self, connection, embedding_service, register_vector) -> None:
        """A closed connection fails initialize() immediately."""
        connection.closed = True
        store = PgVectorStore(connection, embedding_service, PgVectorConfig(dimensions=8))
        with pytest.raises(ConnectionClosedError):
            await store.initialize()


class TestPgVectorStore:
    """Tests for add, delete and search."""

    async def test_add_upserts_rows(self, store, cursor) -> None:
        """Rows carry id, content, JSONB metadata and a float32 vector."""
        added = await store.add([Document(id="d1", content="hello", metadata={"a": 1})])
        assert added == 1

        query, rows = cursor.executemany.await_args.args
        assert "ON CONFLICT (id) DO UPDATE" in repr(query)
        doc_id, content, metadata, embedding = rows[0]
        assert (doc_id, content) == ("d1", "hello")
        assert metadata.obj == {"a": 1}
        assert embedding.dtype == np.float32
        assert embedding.shape == (8,)

    async def test_delete(self, store, cursor) -> None:
        """Ids are bound as one array parameter."""
        await store.delete(["a", "b"])
        query, params = cursor.execute.await_args.args
        assert "DELETE FROM" in repr(query)
        assert params == (["a", "b"],)

    async def test_delete_nothing(self, store, cursor) -> None:
        """An empty id list issues no statement."""
        calls = cursor.execute.await_count
        await store.delete([])
        assert cursor.execute.await_count == calls

    async def test_search(self, store, cursor) -> None:
        """Rows become scored documents in descending order."""
        cursor.fetchall = AsyncMock(
            return_value=[
                {"id": "near", "content": "a", "metadata": {"k": "v"}, "distance": 0.0},
                {"id": "far", "content": "b", "metadata": None, "distance": 1.0},
            ]
        )
        results = await store.similarity_search(SearchRequest(vector=[1.0] + [0.0] * 7, top_k=2))

        assert [r.id for r in results] == ["near", "far"]
        assert [r.score for r in results] == [1.0, 0.5]
        assert results[0].document.metadata == {"k": "v"}
        assert results[1].document.metadata == {}

        query, params = cursor.execute.await_args.args
        assert "<=>" in repr(query)
        assert "ORDER BY distance, id LIMIT" in repr(query)
        assert params[-1] == 2
        assert len(params) == 2

    async def test_search_with_filter(self, store, cursor) -> None:
        """Filter parameters sit between the vector and the limit."""
        await store.similarity_search(
            SearchRequest(query="hello", filter_expression="country == 'BG'")
        )
        query, params = cursor.execute.await_args.args
        assert "WHERE " in repr(query)
        assert "((metadata -> %s) = %s)" in repr(query)
        assert params[1] == "country"
        assert params[2].obj == "BG"
        assert params[3] == 4

    async def test_backend_failure(self, store, cursor) -> None:
        """Driver errors become BackendError."""
        cursor.execute.side_effect = RuntimeError("syntax error")
        with pytest.raises(BackendError) as exc_info:
            await store.similarity_search(SearchRequest(vector=[0.0] * 8))
        assert exc_info.value.details["operation"] == "similarity_search"
        assert exc_info.value.details["collection"] == "vector_store"

    async def test_failure_on_closed_connection(self, store, connection, cursor) -> None:
        """A failure after the connection closed is reported as closed."""

        async def close_and_fail(*args):
            connection.closed = True
            raise RuntimeError("connection lost")

        cursor.execute.side_effect = close_and_fail
        with pytest.raises(ConnectionClosedError):
            await store.delete(["a"])

    async def test_closed_before_search(self, store, connection, cursor) -> None:
        """A closed connection fails without issuing a query."""
        connection.closed = True
        calls = cursor.execute.await_count
        with pytest.raises(ConnectionClosedError):
            await store.similarity_search(SearchRequest(vector=[0.0] * 8))
        assert cursor.execute.await_count == calls

    async def test_descriptor(self, store) -> None:
        """Descriptor names the table and schema."""
        descriptor = store.descriptor
        assert descriptor.db_system == "pg_vector"
        assert descriptor.collection_name == "vector_store"
        assert descriptor.namespace == "public"
        assert descriptor.field_name is None

    async def test_threshold_pushed_down(self, store, cursor) -> None:
        """A positive threshold bounds the distance in SQL."""
        await store.similarity_search(
            SearchRequest(vector=[1.0] + [0.0] * 7, top_k=3, similarity_threshold=0.75)
        )
        query, params = cursor.execute.await_args.args
        assert "embedding <=> %s <= %s" in repr(query)
        assert len(params) == 4
        assert params[2] == pytest.approx(0.5)
        assert params[3] == 3

    async def test_threshold_after_filter(self, store, cursor) -> None:
        """Filter and threshold conditions are joined with AND."""
        await store.similarity_search(
            SearchRequest(query="hello", filter_expression="a == 1", similarity_threshold=0.5)
        )
        query, params = cursor.execute.await_args.args
        assert "' AND '" in repr(query)
        assert params[1] == "a"
        assert params[4] == pytest.approx(1.0)


class TestTransactions:
    """Statements on connections without autocommit."""

    async def test_every_statement_in_transaction(
        self, connection, cursor, embedding_service, register_vector
    ) -> None:
        """Reads are wrapped too, so no implicit transaction is left open."""
        connection.autocommit = False
        depth = 0
        outside = []

        @asynccontextmanager
        async def transaction():
            nonlocal depth
            depth += 1
            try:
                yield
            finally:
                depth -= 1

        async def record(*args):
            if depth == 0:
                outside.append(args)

        connection.transaction.side_effect = transaction
        cursor.execute.side_effect = record
        cursor.executemany.side_effect = record
        register_vector.side_effect = record

        store = await PgVectorStore.create(
            connection, embedding_service, PgVectorConfig(dimensions=8)
        )
        await store.add([Document(id="d1", content="hello")])
        await store.similarity_search(SearchRequest(vector=[0.0] * 8))
        await store.delete(["d1"])

        assert cursor.execute.await_count == 4
        assert register_vector.await_count == 1
        assert outside == []
        assert depth == 0
