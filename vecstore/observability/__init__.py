"""Observability module: observations and Prometheus metrics."""

from vecstore.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    normalize_endpoint,
    track_embedding_request,
    track_vectorstore_operation,
)
from vecstore.observability.observation import (
    InMemoryObservationHandler,
    LoggingObservationHandler,
    Observation,
    ObservationHandler,
    ObservationRecorder,
    PrometheusObservationHandler,
)

__all__ = [
    "InMemoryObservationHandler",
    "LoggingObservationHandler",
    "MetricsMiddleware",
    "Observation",
    "ObservationHandler",
    "ObservationRecorder",
    "PrometheusObservationHandler",
    "get_metrics",
    "normalize_endpoint",
    "track_embedding_request",
    "track_vectorstore_operation",
]
