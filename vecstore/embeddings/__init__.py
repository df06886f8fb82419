"""Embedding service module."""

from vecstore.embeddings.models import EmbeddingResult
from vecstore.embeddings.service import EmbeddingService, HTTPEmbeddingService

__all__ = [
    "EmbeddingResult",
    "EmbeddingService",
    "HTTPEmbeddingService",
]
