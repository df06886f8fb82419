"""Observations for vector store calls.

An observation is a named, timed span with low-cardinality keys (safe as
metric labels) and high-cardinality keys (per-call detail). The recorder
tracks the current observation in a context variable, so observations
opened inside another one get its id as ``parent_id``, including across
awaits within the same task.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from vecstore.logging_config import get_logger
from vecstore.observability.metrics import track_vectorstore_operation

logger = get_logger(__name__)

OBSERVATION_NAME = "db.vector.client.operation"
VECTOR_STORE_KIND = "vector_store"
NONE_VALUE = "none"


class LowCardinalityKey(str, Enum):
    """Keys with a small, fixed set of values."""

    DB_OPERATION_NAME = "db.operation.name"
    DB_SYSTEM = "db.system"
    KIND = "vecstore.kind"


class HighCardinalityKey(str, Enum):
    """Per-call keys."""

    QUERY_CONTENT = "db.vector.query.content"
    DIMENSION_COUNT = "db.vector.dimension_count"
    COLLECTION_NAME = "db.collection.name"
    NAMESPACE = "db.namespace"
    FIELD_NAME = "db.vector.field_name"
    SIMILARITY_METRIC = "db.vector.similarity_metric"
    TOP_K = "db.vector.query.top_k"
    FILTER = "db.vector.query.filter"


class Observation(BaseModel):
    """One recorded operation.

    Attributes:
        name: Technical name shared by all observations of a kind.
        contextual_name: Human-readable name, e.g. "vector_store pg_vector add".
        low_cardinality: Keys suitable for metric labels.
        high_cardinality: Detailed per-call keys.
        parent_id: Id of the enclosing observation, if any.
        duration: Seconds between start and stop.
        error: Message of the exception that ended the observation.
        result_count: Number of results, for queries.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    contextual_name: str
    low_cardinality: dict[str, str] = Field(default_factory=dict)
    high_cardinality: dict[str, str] = Field(default_factory=dict)
    parent_id: str | None = None
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    duration: float | None = None
    error: str | None = None
    error_type: str | None = None
    result_count: int | None = None

    @property
    def stopped(self) -> bool:
        return self.stopped_at is not None

    @property
    def succeeded(self) -> bool:
        return self.stopped and self.error is None

    def value(self, key: str) -> str | None:
        """Look up a key in either cardinality set."""
        if key in self.low_cardinality:
            return self.low_cardinality[key]
        return self.high_cardinality.get(key)


class ObservationHandler(ABC):
    """Receives observation lifecycle events."""

    def on_start(self, observation: Observation) -> None:
        """Called when an observation opens. No-op by default."""

    @abstractmethod
    def on_stop(self, observation: Observation) -> None:
        ...


class InMemoryObservationHandler(ObservationHandler):
    """Collects stopped observations, mainly for tests."""

    def __init__(self) -> None:
        self.observations: list[Observation] = []

    def on_stop(self, observation: Observation) -> None:
        self.observations.append(observation)

    def clear(self) -> None:
        self.observations.clear()

    def by_contextual_name(self, contextual_name: str) -> list[Observation]:
        return [o for o in self.observations if o.contextual_name == contextual_name]


class LoggingObservationHandler(ObservationHandler):
    """Logs each observation with its keys as structured extras."""

    def on_start(self, observation: Observation) -> None:
        logger.debug(
            f"Observation started: {observation.contextual_name}",
            extra={"observation_id": observation.id, "parent_id": observation.parent_id},
        )

    def on_stop(self, observation: Observation) -> None:
        extra = {
            "observation_id": observation.id,
            "parent_id": observation.parent_id,
            "duration_ms": round((observation.duration or 0.0) * 1000, 3),
            "keys": {**observation.low_cardinality, **observation.high_cardinality},
        }
        if observation.error is not None:
            logger.warning(
                f"Observation failed: {observation.contextual_name}: {observation.error}",
                extra={**extra, "error_type": observation.error_type},
            )
        else:
            logger.info(f"Observation completed: {observation.contextual_name}", extra=extra)


class PrometheusObservationHandler(ObservationHandler):
    """Feeds vector store observations into the Prometheus collectors."""

    def on_stop(self, observation: Observation) -> None:
        if observation.name != OBSERVATION_NAME:
            return
        labels = observation.low_cardinality
        track_vectorstore_operation(
            operation=labels.get(LowCardinalityKey.DB_OPERATION_NAME.value, "unknown"),
            db_system=labels.get(LowCardinalityKey.DB_SYSTEM.value, "unknown"),
            duration=observation.duration or 0.0,
            success=observation.error is None,
            results_returned=observation.result_count,
        )


_current: ContextVar[Observation | None] = ContextVar("vecstore_observation", default=None)


class ObservationRecorder:
    """Opens, stops and dispatches observations."""

    def __init__(self, handlers: Iterable[ObservationHandler] | None = None) -> None:
        self._handlers: list[ObservationHandler] = list(handlers or [])

    def add_handler(self, handler: ObservationHandler) -> None:
        self._handlers.append(handler)

    @property
    def current(self) -> Observation | None:
        """The innermost open observation in this context."""
        return _current.get()

    @contextmanager
    def observe(
        self,
        name: str,
        contextual_name: str,
        low_cardinality: Mapping[str, str] | None = None,
        high_cardinality: Mapping[str, str] | None = None,
    ) -> Iterator[Observation]:
        """Record one observation around the ``with`` block.

        The observation is always stopped. An exception raised in the block is
        recorded on the observation and re-raised.
        """
        parent = _current.get()
        observation = Observation(
            name=name,
            contextual_name=contextual_name,
            low_cardinality=dict(low_cardinality or {}),
            high_cardinality=dict(high_cardinality or {}),
            parent_id=parent.id if parent is not None else None,
            started_at=datetime.now(UTC),
        )
        for handler in self._handlers:
            handler.on_start(observation)

        start = time.perf_counter()
        token = _current.set(observation)
        try:
            yield observation
        except BaseException as e:
            observation.error = str(e) or type(e).__name__
            observation.error_type = type(e).__name__
            raise
        finally:
            _current.reset(token)
            observation.duration = time.perf_counter() - start
            observation.stopped_at = datetime.now(UTC)
            for handler in self._handlers:
                handler.on_stop(observation)
