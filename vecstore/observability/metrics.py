"""Prometheus metrics for vecstore.

Provides metrics instrumentation for:
- HTTP request latency and counts
- Vector store operation latency, counts and result sizes
- Embedding request latency
"""

import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

from vecstore.logging_config import get_logger

logger = get_logger(__name__)

# HTTP Request Metrics
HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUEST_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

# Embedding Metrics
EMBEDDING_REQUEST_DURATION = Histogram(
    "embedding_request_duration_seconds",
    "Embedding request duration in seconds",
    ["model", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

EMBEDDING_REQUEST_TOTAL = Counter(
    "embedding_requests_total",
    "Total embedding requests",
    ["model", "status"],
)

EMBEDDING_BATCH_SIZE = Histogram(
    "embedding_batch_size",
    "Embedding batch size",
    ["model"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
)

# Vector Store Metrics
VECTORSTORE_OPERATION_DURATION = Histogram(
    "vectorstore_operation_duration_seconds",
    "Vector store operation duration",
    ["operation", "db_system", "status"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)

VECTORSTORE_OPERATION_TOTAL = Counter(
    "vectorstore_operations_total",
    "Total vector store operations",
    ["operation", "db_system", "status"],
)

VECTORSTORE_RESULTS_RETURNED = Histogram(
    "vectorstore_results_returned",
    "Number of results returned per similarity search",
    ["db_system"],
    buckets=[0, 1, 2, 3, 5, 10, 20, 50],
)


# Routed API resources; any other path is labelled "other".
_API_RESOURCES = ("/api/v1/documents", "/api/v1/search")


def normalize_endpoint(path: str) -> str:
    """Collapse a request path into a low-cardinality endpoint label."""
    if path.startswith("/health"):
        return "/health"
    for resource in _API_RESOURCES:
        if path == resource or path.startswith(resource + "/"):
            return resource
    return "other"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records latency and count of every HTTP request except scrapes.

    Requests that raise are counted with status 500.
    """


    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            labels = {
                "method": request.method,
                "endpoint": normalize_endpoint(request.url.path),
                "status_code": status_code,
            }
            HTTP_REQUEST_DURATION.labels(**labels).observe(time.perf_counter() - start_time)
            HTTP_REQUEST_TOTAL.labels(**labels).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for metrics response."""
    return CONTENT_TYPE_LATEST


def track_embedding_request(
    model: str,
    duration: float,
    batch_size: int,
    success: bool = True,
) -> None:
    """Track embedding request metrics.

    Args:
        model: Embedding model name.
        duration: Request duration in seconds.
        batch_size: Number of texts in the batch.
        success: Whether the request succeeded.
    """
    status = "success" if success else "error"

    EMBEDDING_REQUEST_DURATION.labels(model=model, status=status).observe(duration)
    EMBEDDING_REQUEST_TOTAL.labels(model=model, status=status).inc()
    EMBEDDING_BATCH_SIZE.labels(model=model).observe(batch_size)


def track_vectorstore_operation(
    operation: str,
    db_system: str,
    duration: float,
    success: bool = True,
    results_returned: int | None = None,
) -> None:
    """Track one vector store call.

    Args:
        operation: add, delete or query.
        db_system: Backend identifier such as pg_vector.
        duration: Call duration in seconds.
        success: Whether the call succeeded.
        results_returned: Result count for queries.
    """
    status = "success" if success else "error"

    VECTORSTORE_OPERATION_DURATION.labels(
        operation=operation, db_system=db_system, status=status
    ).observe(duration)
    VECTORSTORE_OPERATION_TOTAL.labels(
        operation=operation, db_system=db_system, status=status
    ).inc()

    if results_returned is not None:
        VECTORSTORE_RESULTS_RETURNED.labels(db_system=db_system).observe(results_returned)
