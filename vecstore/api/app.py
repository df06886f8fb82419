"""FastAPI application entry point.

Configures the application with logging, exception handling, metrics and
health checks. A vector store can be injected for embedding or tests;
otherwise one is opened from settings when ``VECTORSTORE_BACKEND`` is set.
"""

from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from vecstore import __version__
from vecstore.api.routes import router
from vecstore.config import get_settings
from vecstore.embeddings.service import HTTPEmbeddingService
from vecstore.exceptions import ErrorCode, VecstoreError
from vecstore.logging_config import get_logger, setup_logging
from vecstore.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    get_metrics_content_type,
)
from vecstore.observability.observation import (
    LoggingObservationHandler,
    ObservationRecorder,
    PrometheusObservationHandler,
)
from vecstore.vectorstore.factory import open_vector_store
from vecstore.vectorstore.service import StoreState, VectorStore

logger = get_logger(__name__)

_STATUS_CODES = {
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_EXPRESSION: 400,
    ErrorCode.UNSUPPORTED_OPERATOR: 400,
    ErrorCode.DIMENSION_MISMATCH: 400,
    ErrorCode.EMBEDDING_SERVICE_ERROR: 502,
    ErrorCode.SCHEMA_NOT_FOUND: 404,
    ErrorCode.SCHEMA_CONFLICT: 409,
    ErrorCode.CONNECTION_CLOSED: 503,
    ErrorCode.STORE_NOT_READY: 503,
    ErrorCode.BACKEND_ERROR: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Opens the configured vector store when none was injected and closes its
    connection on shutdown.
    """
    settings = get_settings()
    setup_logging(level=settings.log_level)
    logger.info(
        "Starting vecstore",
        extra={
            "version": __version__,
            "environment": settings.environment.value,
        },
    )

    async with AsyncExitStack() as stack:
        if app.state.vector_store is None and settings.vectorstore.backend is not None:
            embedding_service = HTTPEmbeddingService(settings.embedding)
            stack.push_async_callback(embedding_service.close)
            app.state.vector_store = await stack.enter_async_context(
                open_vector_store(
                    settings,
                    embedding_service,
                    ObservationRecorder(
                        [LoggingObservationHandler(), PrometheusObservationHandler()]
                    ),
                )
            )
        yield

    logger.info("Shutting down vecstore")


def create_app(vector_store: VectorStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        vector_store: Store to serve. Opened from settings at startup when omitted.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="vecstore",
        description="Portable vector store with metadata filtering",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.vector_store = vector_store

    app.add_middleware(MetricsMiddleware)
    app.add_exception_handler(VecstoreError, vecstore_exception_handler)

    app.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/health/ready", readiness_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/health/live", liveness_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/metrics", metrics, methods=["GET"], tags=["Metrics"])
    app.include_router(router)

    return app


async def vecstore_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Convert VecstoreError exceptions to structured JSON responses."""
    if not isinstance(exc, VecstoreError):
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": ErrorCode.INTERNAL_ERROR.value,
                    "message": str(exc),
                    "details": {},
                }
            },
        )

    logger.error(
        f"Request failed: {exc.message}",
        extra={
            "error_code": exc.code.value,
            "path": request.url.path,
            "details": exc.details,
        },
    )

    return JSONResponse(
        status_code=_STATUS_CODES.get(exc.code, 500),
        content=exc.to_dict(),
    )


async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def readiness_check(request: Request) -> dict[str, Any]:
    """Readiness probe: ready once a vector store is initialized."""
    store: VectorStore | None = request.app.state.vector_store
    checks: dict[str, str] = {"config": "ok"}
    if store is None:
        checks["vector_store"] = "not_configured"
    elif store.state != StoreState.READY:
        checks["vector_store"] = store.state.value
    else:
        checks["vector_store"] = "ok"

    all_ok = all(v == "ok" for v in checks.values())

    return {
        "status": "ready" if all_ok else "not_ready",
        "checks": checks,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def liveness_check() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}


async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# Create the application instance
app = create_app()
