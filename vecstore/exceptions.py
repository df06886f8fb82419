"""Vecstore exception hierarchy.

All custom exceptions inherit from VecstoreError.
Each exception has an error code for structured error handling.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "VEC-1000"
    CONFIGURATION_ERROR = "VEC-1001"
    VALIDATION_ERROR = "VEC-1002"

    # Filter expression errors (2xxx)
    INVALID_EXPRESSION = "VEC-2000"
    UNSUPPORTED_OPERATOR = "VEC-2001"

    # Embedding errors (3xxx)
    EMBEDDING_SERVICE_ERROR = "VEC-3000"
    DIMENSION_MISMATCH = "VEC-3001"

    # Vector store errors (4xxx)
    VECTOR_STORE_ERROR = "VEC-4000"
    SCHEMA_NOT_FOUND = "VEC-4001"
    SCHEMA_CONFLICT = "VEC-4002"
    CONNECTION_CLOSED = "VEC-4003"
    BACKEND_ERROR = "VEC-4004"
    STORE_NOT_READY = "VEC-4005"


class VecstoreError(Exception):
    """Base exception for all vecstore errors.

    Attributes:
        message: Human-readable error message.
        code: Structured error code.
        details: Additional error context.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(VecstoreError):
    """Configuration or environment error."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class ValidationError(VecstoreError):
    """Input validation error."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class InvalidExpressionError(VecstoreError):
    """Malformed filter expression, built or parsed."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.INVALID_EXPRESSION, details)


class UnsupportedOperatorError(VecstoreError):
    """A backend cannot express an operator/value combination."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.UNSUPPORTED_OPERATOR, details)


class EmbeddingError(VecstoreError):
    """Embedding service error."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EMBEDDING_SERVICE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class DimensionMismatchError(VecstoreError):
    """Vector length differs from the store's configured dimensions."""

    def __init__(
        self,
        expected: int,
        actual: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector has {actual} dimensions, store expects {expected}",
            ErrorCode.DIMENSION_MISMATCH,
            {"expected": expected, "actual": actual, **(details or {})},
        )


class VectorStoreError(VecstoreError):
    """Vector store operation error."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VECTOR_STORE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class SchemaNotFoundError(VectorStoreError):
    """Required index, table or collection does not exist."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.SCHEMA_NOT_FOUND, details)


class SchemaConflictError(VectorStoreError):
    """Existing structure is incompatible with the store configuration."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.SCHEMA_CONFLICT, details)


class ConnectionClosedError(VectorStoreError):
    """Backend connection was closed by its owner."""

    def __init__(
        self,
        message: str = "Backend connection is closed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.CONNECTION_CLOSED, details)


class BackendError(VectorStoreError):
    """Opaque failure reported by the underlying store."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.BACKEND_ERROR, details)
