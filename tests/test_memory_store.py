"""Tests for the in-memory vector store."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from vecstore.config import DistanceType, MetadataMode
from vecstore.exceptions import (
    ConnectionClosedError,
    DimensionMismatchError,
    EmbeddingError,
    ErrorCode,
    SchemaConflictError,
    SchemaNotFoundError,
    VectorStoreError,
)
from vecstore.vectorstore import (
    Document,
    InMemoryBackend,
    InMemoryConfig,
    InMemoryVectorStore,
    SearchRequest,
    StoreState,
)


def unit(index: int, dimensions: int = 8) -> list[float]:
    """One-hot vector."""
    vector = [0.0] * dimensions
    vector[index] = 1.0
    return vector


class TestLifecycle:
    """Tests for initialization and readiness."""

    async def test_operations_require_initialize(self, memory_backend, embedding_service) -> None:
        """Every operation fails with STORE_NOT_READY before initialize()."""
        store = InMemoryVectorStore(memory_backend, embedding_service, InMemoryConfig(dimensions=8))
        assert store.state == StoreState.UNINITIALIZED

        with pytest.raises(VectorStoreError) as exc_info:
            await store.add([Document(content="x")])
        assert exc_info.value.code == ErrorCode.STORE_NOT_READY
        with pytest.raises(VectorStoreError):
            await store.delete(["x"])
        with pytest.raises(VectorStoreError):
            await store.similarity_search(SearchRequest(query="x"))
        assert embedding_service.calls == []

    async def test_create_initializes(self, memory_store) -> None:
        """create() returns a Ready store."""
        assert memory_store.state == StoreState.READY

    async def test_missing_collection_without_initialize_schema(
        self, memory_backend, embedding_service
    ) -> None:
        """Validation fails when the collection does not exist."""
        store = InMemoryVectorStore(memory_backend, embedding_service, InMemoryConfig(dimensions=8))
        with pytest.raises(SchemaNotFoundError):
            await store.initialize()
        assert store.state == StoreState.UNINITIALIZED

    async def test_existing_collection_validates(self, memory_backend, embedding_service) -> None:
        """A store without initialize_schema accepts a compatible collection."""
        memory_backend.create_collection("Document", 8, DistanceType.COSINE)
        store = await InMemoryVectorStore.create(
            memory_backend, embedding_service, InMemoryConfig(dimensions=8)
        )
        assert store.state == StoreState.READY

    async def test_ensure_schema_is_idempotent(self, memory_store) -> None:
        """Repeated ensure_schema() calls leave data intact."""
        await memory_store.add([Document(id="a", content="alpha", embedding=unit(0))])
        await memory_store.schema.ensure_schema()
        await memory_store.schema.ensure_schema()
        results = await memory_store.similarity_search(SearchRequest(vector=unit(0)))
        assert [r.id for r in results] == ["a"]

    async def test_conflicting_dimensions(self, memory_backend, embedding_service) -> None:
        """An existing collection with other dimensions is a conflict."""
        memory_backend.create_collection("Document", 4, DistanceType.COSINE)
        store = InMemoryVectorStore(
            memory_backend,
            embedding_service,
            InMemoryConfig(dimensions=8, initialize_schema=True),
        )
        with pytest.raises(SchemaConflictError) as exc_info:
            await store.initialize()
        assert exc_info.value.details["existing_dimensions"] == 4

    async def test_conflicting_distance(self, memory_backend, embedding_service) -> None:
        """An existing collection with another metric is a conflict."""
        memory_backend.create_collection("Document", 8, DistanceType.EUCLIDEAN)
        store = InMemoryVectorStore(memory_backend, embedding_service, InMemoryConfig(dimensions=8))
        with pytest.raises(SchemaConflictError):
            await store.initialize()

    async def test_descriptor(self, memory_store) -> None:
        """Descriptor reports the in-memory system."""
        descriptor = memory_store.descriptor
        assert descriptor.db_system == "in_memory"
        assert descriptor.collection_name == "Document"
        assert descriptor.dimensions == 8
        assert descriptor.namespace is None


class TestAdd:
    """Tests for adding documents."""

    async def test_embeds_missing_in_one_batch(self, memory_store, embedding_service) -> None:
        """Documents without embeddings are embedded in a single call."""
        added = await memory_store.add(
            [
                Document(id="a", content="alpha"),
                Document(id="b", content="beta", embedding=unit(1)),
                Document(id="c", content="gamma"),
            ]
        )
        assert added == 3
        assert embedding_service.calls == [["alpha", "gamma"]]

    async def test_pre_embedded_documents_skip_embedding(
        self, memory_store, embedding_service
    ) -> None:
        """Supplied embeddings are stored as-is."""
        await memory_store.add([Document(id="a", content="alpha", embedding=unit(2))])
        assert embedding_service.calls == []
        results = await memory_store.similarity_search(SearchRequest(vector=unit(2)))
        assert results[0].score == pytest.approx(1.0)

    async def test_caller_documents_not_mutated(self, memory_store) -> None:
        """The store fills embeddings on copies."""
        document = Document(id="a", content="alpha")
        await memory_store.add([document])
        assert document.embedding is None

    async def test_metadata_is_embedded(self, memory_store, embedding_service) -> None:
        """Metadata is part of the embedded text in EMBED mode."""
        await memory_store.add([Document(content="alpha", metadata={"meta1": "meta1"})])
        assert embedding_service.calls[0][0] == "meta1: meta1\n\nalpha"

    async def test_metadata_mode_none(self, memory_backend, embedding_service) -> None:
        """Only content is embedded in NONE mode."""
        store = await InMemoryVectorStore.create(
            memory_backend,
            embedding_service,
            InMemoryConfig(dimensions=8, initialize_schema=True),
            metadata_mode=MetadataMode.NONE,
        )
        await store.add([Document(content="alpha", metadata={"meta1": "meta1"})])
        assert embedding_service.calls == [["alpha"]]

    async def test_empty_add(self, memory_store, embedding_service) -> None:
        """Adding nothing writes nothing."""
        assert await memory_store.add([]) == 0
        assert embedding_service.calls == []

    async def test_wrong_supplied_dimensions(
        self, memory_store, memory_backend, embedding_service
    ) -> None:
        """A bad supplied embedding fails before embedding or writing."""
        with pytest.raises(DimensionMismatchError) as exc_info:
            await memory_store.add(
                [
                    Document(id="a", content="alpha"),
                    Document(id="b", content="beta", embedding=[1.0, 0.0, 0.0]),
                ]
            )
        assert exc_info.value.details["document_id"] == "b"
        assert embedding_service.calls == []
        assert memory_backend.snapshot("Document") == []

    async def test_upsert_replaces(self, memory_store) -> None:
        """Adding an existing id replaces the stored document."""
        await memory_store.add([Document(id="a", content="old", embedding=unit(0))])
        await memory_store.add([Document(id="a", content="new", embedding=unit(0))])
        results = await memory_store.similarity_search(SearchRequest(vector=unit(0)))
        assert len(results) == 1
        assert results[0].document.content == "new"

    async def test_embedding_service_failure(self, memory_backend) -> None:
        """Provider errors are wrapped in EmbeddingError."""
        service = MagicMock()
        service.model_name = "broken"
        service.embed_batch = AsyncMock(side_effect=RuntimeError("boom"))
        store = await InMemoryVectorStore.create(
            memory_backend, service, InMemoryConfig(dimensions=8, initialize_schema=True)
        )
        with pytest.raises(EmbeddingError) as exc_info:
            await store.add([Document(content="alpha")])
        assert exc_info.value.code == ErrorCode.EMBEDDING_SERVICE_ERROR
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    async def test_provider_dimension_mismatch(self, memory_backend, embedding_service) -> None:
        """Provider vectors of the wrong size are rejected."""
        store = await InMemoryVectorStore.create(
            memory_backend,
            embedding_service,
            InMemoryConfig(dimensions=4, initialize_schema=True, collection_name="small"),
        )
        with pytest.raises(EmbeddingError) as exc_info:
            await store.add([Document(content="alpha")])
        assert exc_info.value.code == ErrorCode.EMBEDDING_SERVICE_ERROR
        assert exc_info.value.details["expected"] == 4
        assert exc_info.value.details["actual"] == 8
        assert not isinstance(exc_info.value, DimensionMismatchError)

    def test_model_size_mismatch_warns(self, memory_backend, embedding_service, caplog) -> None:
        """A model whose vectors do not fit the store is flagged up front."""
        with caplog.at_level(logging.WARNING, logger="vecstore.vectorstore.service"):
            InMemoryVectorStore(memory_backend, embedding_service, InMemoryConfig(dimensions=4))
        assert "produces 8 dimensions, store expects 4" in caplog.text

    def test_matching_model_is_quiet(self, memory_backend, embedding_service, caplog) -> None:
        """No warning when the model and store agree."""
        with caplog.at_level(logging.WARNING, logger="vecstore.vectorstore.service"):
            InMemoryVectorStore(memory_backend, embedding_service, InMemoryConfig(dimensions=8))
        assert "produces" not in caplog.text


class TestSimilaritySearch:
    """Tests for similarity search."""

    async def test_finds_relevant_document(self, memory_backend, embedding_service) -> None:
        """The closest document comes first with a positive score."""
        store = await InMemoryVectorStore.create(
            memory_backend,
            embedding_service,
            InMemoryConfig(dimensions=8, initialize_schema=True),
            metadata_mode=MetadataMode.NONE,
        )
        await store.add(
            [
                Document(id="doc-a", content="Great Depression Great Depression"),
                Document(id="doc-b", content="Spring AI rocks!! Spring AI rocks!!"),
                Document(id="doc-c", content="Hello World Hello World"),
            ]
        )
        results = await store.similarity_search(
            SearchRequest(query="Great Depression Great Depression", top_k=1)
        )
        assert len(results) == 1
        assert results[0].id == "doc-a"
        assert results[0].score == pytest.approx(1.0)
        assert results[0].document.embedding is None

    async def test_ordering_and_top_k(self, memory_store) -> None:
        """Results sort by score, then id, and stop at top_k."""
        await memory_store.add(
            [
                Document(id="far", content="x", embedding=unit(1)),
                Document(id="b", content="x", embedding=unit(0)),
                Document(id="a", content="x", embedding=unit(0)),
            ]
        )
        results = await memory_store.similarity_search(SearchRequest(vector=unit(0), top_k=2))
        assert [r.id for r in results] == ["a", "b"]
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    async def test_threshold(self, memory_store) -> None:
        """Results below the threshold are dropped."""
        await memory_store.add(
            [
                Document(id="same", content="x", embedding=unit(0)),
                Document(id="orthogonal", content="x", embedding=unit(1)),
            ]
        )
        results = await memory_store.similarity_search(
            SearchRequest(vector=unit(0), similarity_threshold=0.9)
        )
        assert [r.id for r in results] == ["same"]
        assert all(0.9 <= r.score <= 1.0 for r in results)

    async def test_filter(self, memory_store) -> None:
        """Only documents matching the filter are returned."""
        metadata = {
            "bg1": {"country": "BG", "year": 2020},
            "bg2": {"country": "BG", "year": 2018},
            "nl": {"country": "NL", "year": 2021},
            "none": {},
        }
        await memory_store.add(
            [
                Document(id=doc_id, content="x", metadata=meta, embedding=unit(0))
                for doc_id, meta in metadata.items()
            ]
        )
        results = await memory_store.similarity_search(
            SearchRequest(vector=unit(0), filter_expression="country == 'BG' && year >= 2020")
        )
        assert [r.id for r in results] == ["bg1"]

        results = await memory_store.similarity_search(
            SearchRequest(vector=unit(0), filter_expression="NOT (country == 'BG')")
        )
        assert [r.id for r in results] == ["nl"]

    async def test_wrong_query_dimensions(self, memory_store) -> None:
        """A query vector of the wrong length is rejected."""
        with pytest.raises(DimensionMismatchError) as exc_info:
            await memory_store.similarity_search(SearchRequest(vector=[1.0, 0.0]))
        assert exc_info.value.details["source"] == "query"

    async def test_empty_collection(self, memory_store) -> None:
        """Searching an empty collection returns nothing."""
        assert await memory_store.similarity_search(SearchRequest(query="anything")) == []

    async def test_closed_backend(self, memory_store, memory_backend) -> None:
        """Use after the backend closes raises ConnectionClosedError."""
        memory_backend.close()
        with pytest.raises(ConnectionClosedError):
            await memory_store.similarity_search(SearchRequest(vector=unit(0)))
        with pytest.raises(ConnectionClosedError):
            await memory_store.add([Document(content="x", embedding=unit(0))])


class TestDelete:
    """Tests for deleting documents."""

    async def test_delete_removes_documents(self, memory_store) -> None:
        """Deleted ids no longer appear in results."""
        await memory_store.add(
            [
                Document(id="a", content="x", embedding=unit(0)),
                Document(id="b", content="x", embedding=unit(0)),
            ]
        )
        await memory_store.delete(["a"])
        results = await memory_store.similarity_search(SearchRequest(vector=unit(0)))
        assert [r.id for r in results] == ["b"]

    async def test_delete_is_idempotent(self, memory_store) -> None:
        """Unknown and repeated ids are ignored."""
        await memory_store.add([Document(id="a", content="x", embedding=unit(0))])
        await memory_store.delete(["a", "missing"])
        await memory_store.delete(["a"])
        await memory_store.delete([])
        assert await memory_store.similarity_search(SearchRequest(vector=unit(0))) == []

    async def test_shared_backend(self, memory_store, memory_backend, embedding_service) -> None:
        """Two stores over one collection see each other's writes."""
        other = await InMemoryVectorStore.create(
            memory_backend, embedding_service, InMemoryConfig(dimensions=8)
        )
        await memory_store.add([Document(id="a", content="x", embedding=unit(0))])
        results = await other.similarity_search(SearchRequest(vector=unit(0)))
        assert [r.id for r in results] == ["a"]


class TestInMemoryBackend:
    """Tests for the backend registry."""

    def test_missing_collection(self) -> None:
        """Operations on an unknown collection raise SchemaNotFoundError."""
        backend = InMemoryBackend()
        with pytest.raises(SchemaNotFoundError):
            backend.snapshot("nope")

    def test_drop_collection(self) -> None:
        """Dropped collections are gone."""
        backend = InMemoryBackend()
        backend.create_collection("c", 3, DistanceType.COSINE)
        backend.drop_collection("c")
        assert backend.get_collection("c") is None

    def test_close(self) -> None:
        """A closed backend rejects every call."""
        backend = InMemoryBackend()
        backend.close()
        assert backend.closed
        with pytest.raises(ConnectionClosedError):
            backend.create_collection("c", 3, DistanceType.COSINE)
