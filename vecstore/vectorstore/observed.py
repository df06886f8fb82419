"""Observation decorator for vector stores."""

from vecstore.filters.expression import to_text
from vecstore.observability.observation import (
    NONE_VALUE,
    OBSERVATION_NAME,
    VECTOR_STORE_KIND,
    HighCardinalityKey,
    LowCardinalityKey,
    ObservationRecorder,
)
from vecstore.vectorstore.models import (
    Document,
    SearchRequest,
    SearchResult,
    StoreDescriptor,
)
from vecstore.vectorstore.service import StoreState, VectorStore

OPERATION_ADD = "add"
OPERATION_DELETE = "delete"
OPERATION_QUERY = "query"


class ObservedVectorStore(VectorStore):
    """Wraps any VectorStore and records one observation per call."""

    def __init__(self, delegate: VectorStore, recorder: ObservationRecorder) -> None:
        self._delegate = delegate
        self._recorder = recorder

    @property
    def delegate(self) -> VectorStore:
        return self._delegate

    @property
    def descriptor(self) -> StoreDescriptor:
        return self._delegate.descriptor

    @property
    def state(self) -> StoreState:
        return self._delegate.state

    async def initialize(self) -> None:
        await self._delegate.initialize()

    def _keys(
        self, operation: str, request: SearchRequest | None = None
    ) -> tuple[str, dict[str, str], dict[str, str]]:
        descriptor = self._delegate.descriptor
        contextual_name = f"{VECTOR_STORE_KIND} {descriptor.db_system} {operation}"
        low = {
            LowCardinalityKey.DB_OPERATION_NAME.value: operation,
            LowCardinalityKey.DB_SYSTEM.value: descriptor.db_system,
            LowCardinalityKey.KIND.value: VECTOR_STORE_KIND,
        }
        high = {
            HighCardinalityKey.QUERY_CONTENT.value: NONE_VALUE,
            HighCardinalityKey.DIMENSION_COUNT.value: str(descriptor.dimensions),
            HighCardinalityKey.COLLECTION_NAME.value: descriptor.collection_name,
            HighCardinalityKey.NAMESPACE.value: descriptor.namespace or NONE_VALUE,
            HighCardinalityKey.FIELD_NAME.value: descriptor.field_name or NONE_VALUE,
            HighCardinalityKey.SIMILARITY_METRIC.value: descriptor.distance_type.value,
            HighCardinalityKey.TOP_K.value: NONE_VALUE,
            HighCardinalityKey.FILTER.value: NONE_VALUE,
        }
        if request is not None:
            if request.query is not None:
                high[HighCardinalityKey.QUERY_CONTENT.value] = request.query
            high[HighCardinalityKey.TOP_K.value] = str(request.top_k)
            if request.filter_expression is not None:
                high[HighCardinalityKey.FILTER.value] = to_text(request.filter_expression)
        return contextual_name, low, high

    async def add(self, documents: list[Document]) -> int:
        contextual_name, low, high = self._keys(OPERATION_ADD)
        with self._recorder.observe(OBSERVATION_NAME, contextual_name, low, high):
            return await self._delegate.add(documents)

    async def delete(self, ids: list[str]) -> None:
        contextual_name, low, high = self._keys(OPERATION_DELETE)
        with self._recorder.observe(OBSERVATION_NAME, contextual_name, low, high):
            await self._delegate.delete(ids)

    async def similarity_search(self, request: SearchRequest) -> list[SearchResult]:
        contextual_name, low, high = self._keys(OPERATION_QUERY, request)
        with self._recorder.observe(OBSERVATION_NAME, contextual_name, low, high) as observation:
            results = await self._delegate.similarity_search(request)
            observation.result_count = len(results)
            return results
