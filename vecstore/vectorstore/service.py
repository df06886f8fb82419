"""Vector store interface and the helpers every backend shares."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, Self

from vecstore.config import MetadataMode
from vecstore.embeddings.service import EmbeddingService
from vecstore.exceptions import (
    BackendError,
    ConnectionClosedError,
    DimensionMismatchError,
    EmbeddingError,
    ErrorCode,
    VecstoreError,
    VectorStoreError,
)
from vecstore.logging_config import get_logger
from vecstore.vectorstore.models import (
    Document,
    SearchRequest,
    SearchResult,
    StoreDescriptor,
)

logger = get_logger(__name__)


class StoreState(str, Enum):
    """Store lifecycle states."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"


class VectorStore(ABC):
    """Abstract base class for vector stores.

    A store is constructed Uninitialized and becomes Ready after
    ``initialize()``. Connection handles are owned by the caller.
    """

    @classmethod
    async def create(cls, *args: Any, **kwargs: Any) -> Self:
        """Construct and initialize a store in one step."""
        store = cls(*args, **kwargs)
        await store.initialize()
        return store

    @property
    @abstractmethod
    def descriptor(self) -> StoreDescriptor:
        """Backend identity used for observations."""
        ...

    @property
    @abstractmethod
    def state(self) -> StoreState:
        """Current lifecycle state."""
        ...

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare or validate the backend schema and mark the store Ready.

        Raises:
            SchemaNotFoundError: If the schema is absent and creation is disabled.
            SchemaConflictError: If an existing schema is incompatible.
        """
        ...

    @abstractmethod
    async def add(self, documents: list[Document]) -> int:
        """Embed (where needed) and upsert documents.

        Args:
            documents: Documents to store. Caller instances are not mutated.

        Returns:
            Number of documents written.

        Raises:
            DimensionMismatchError: If a supplied embedding has the wrong length.
            EmbeddingError: If embedding fails.
            VectorStoreError: If the write fails.
        """
        ...

    @abstractmethod
    async def delete(self, ids: list[str]) -> None:
        """Delete documents by id. Unknown ids are ignored.

        Raises:
            VectorStoreError: If deletion fails.
        """
        ...

    @abstractmethod
    async def similarity_search(self, request: SearchRequest) -> list[SearchResult]:
        """Find the documents nearest to the request's query.

        Returns:
            At most ``top_k`` results scoring at least the threshold, sorted by
            descending score with ties broken by ascending id.

        Raises:
            DimensionMismatchError: If the query vector has the wrong length.
            UnsupportedOperatorError: If the filter cannot be expressed.
            EmbeddingError: If query embedding fails.
            VectorStoreError: If the search fails.
        """
        ...


class ReadyGuard:
    """Lifecycle flag shared by store implementations."""

    def __init__(self, store_name: str) -> None:
        self._store_name = store_name
        self.state = StoreState.UNINITIALIZED

    def mark_ready(self) -> None:
        self.state = StoreState.READY

    def require_ready(self, operation: str) -> None:
        """Raise STORE_NOT_READY unless initialize() has completed."""
        if self.state != StoreState.READY:
            raise VectorStoreError(
                f"{self._store_name} is not initialized; call initialize() before {operation}",
                code=ErrorCode.STORE_NOT_READY,
                details={"operation": operation},
            )


def check_dimensions(vector: list[float], expected: int, **details: Any) -> None:
    """Raise DimensionMismatchError unless ``vector`` has ``expected`` entries."""
    if len(vector) != expected:
        raise DimensionMismatchError(expected, len(vector), details=details or None)


def rank_results(results: Iterable[SearchResult], request: SearchRequest) -> list[SearchResult]:
    """Threshold, sort (score desc, id asc) and truncate to ``top_k``."""
    kept = [r for r in results if r.score >= request.similarity_threshold]
    kept.sort(key=lambda r: (-r.score, r.id))
    return kept[: request.top_k]


class DocumentEmbedder:
    """Fills in missing document embeddings and resolves query vectors."""

    def __init__(
        self,
        service: EmbeddingService,
        dimensions: int,
        metadata_mode: MetadataMode = MetadataMode.EMBED,
    ) -> None:
        self._service = service
        self._dimensions = dimensions
        self._metadata_mode = metadata_mode
        if service.dimensions != dimensions:
            logger.warning(
                f"Embedding model {service.model_name} produces {service.dimensions} "
                f"dimensions, store expects {dimensions}",
                extra={"model": service.model_name},
            )

    async def embed_documents(self, documents: list[Document]) -> list[Document]:
        """Return copies of ``documents`` that all carry an embedding.

        Documents that already have an embedding are never sent to the
        embedding service. The rest go out in a single batch call.
        """
        for document in documents:
            if document.embedding is not None:
                check_dimensions(document.embedding, self._dimensions, document_id=document.id)

        missing = [d for d in documents if d.embedding is None]
        vectors: list[list[float]] = []
        if missing:
            texts = [d.formatted_content(self._metadata_mode) for d in missing]
            try:
                results = await self._service.embed_batch(texts)
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(
                    f"Embedding provider failed: {e}",
                    details={"model": self._service.model_name, "error": str(e)},
                ) from e

            if len(results) != len(missing):
                raise EmbeddingError(
                    f"Embedding provider returned {len(results)} vectors "
                    f"for {len(missing)} documents",
                    details={"expected": len(missing), "actual": len(results)},
                )
            for document, result in zip(missing, results, strict=True):
                if len(result.embedding) != self._dimensions:
                    raise EmbeddingError(
                        f"Embedding provider returned {len(result.embedding)} dimensions, "
                        f"store expects {self._dimensions}",
                        details={
                            "document_id": document.id,
                            "model": self._service.model_name,
                            "expected": self._dimensions,
                            "actual": len(result.embedding),
                        },
                    )
                vectors.append(list(result.embedding))

        fresh = iter(vectors)
        return [
            d.model_copy(deep=True)
            if d.embedding is not None
            else d.model_copy(update={"embedding": next(fresh)}, deep=True)
            for d in documents
        ]

    async def embed_query(self, request: SearchRequest) -> list[float]:
        """Query vector for a request, embedding the query text if needed."""
        if request.vector is not None:
            vector = list(request.vector)
        else:
            try:
                result = await self._service.embed(request.query or "")
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(
                    f"Embedding provider failed: {e}",
                    details={"model": self._service.model_name, "error": str(e)},
                ) from e
            vector = list(result.embedding)
        check_dimensions(vector, self._dimensions, source="query")
        return vector


@contextmanager
def backend_errors(
    operation: str,
    collection: str,
    is_closed: Callable[[Exception], bool] = lambda _: False,
) -> Iterator[None]:
    """Wrap unexpected backend exceptions in BackendError.

    vecstore errors pass through unchanged. Failures that ``is_closed``
    attributes to a closed connection become ConnectionClosedError.
    """
    try:
        yield
    except VecstoreError:
        raise
    except Exception as e:
        details = {"operation": operation, "collection": collection, "error": str(e)}
        if is_closed(e):
            raise ConnectionClosedError(details=details) from e
        logger.error(
            f"Vector store {operation} failed: {e}",
            extra={"operation": operation, "collection": collection},
        )
        raise BackendError(f"Failed to {operation} on {collection}: {e}", details=details) from e
