"""Embedding service interface and implementations."""

import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from vecstore.config import EmbeddingSettings, get_settings
from vecstore.embeddings.models import EmbeddingResult
from vecstore.exceptions import EmbeddingError, ErrorCode
from vecstore.logging_config import get_logger
from vecstore.observability.metrics import track_embedding_request

logger = get_logger(__name__)


class EmbeddingService(ABC):
    """Turns text into fixed-length vectors for a vector store.

    Stores call ``embed_batch`` once per ``add`` and ``embed`` for query
    text; implementations handle any provider-side batching themselves.
    """

    @abstractmethod
    async def embed(self, text: str) -> EmbeddingResult:
        """Embed one text.

        Raises:
            EmbeddingError: If the provider fails.
        """
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed many texts, returning exactly one result per text in input order.

        Raises:
            EmbeddingError: If the provider fails or answers with the wrong count.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str: ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Length of the vectors this service produces."""
        ...


class HTTPEmbeddingService(EmbeddingService):
    """Embeddings from an OpenAI-compatible ``POST /embeddings`` endpoint.

    Works against hosted APIs (bearer token from ``EMBEDDING_API_KEY``) and
    self-hosted text-embeddings-inference servers. Inputs are sent in chunks
    of ``batch_size``; every chunk is timed into the embedding metrics.
    """

    # Published output sizes, used until a response reveals the real one.
    MODEL_DIMENSIONS = {
        "BAAI/bge-large-en-v1.5": 1024,
        "BAAI/bge-base-en-v1.5": 768,
        "BAAI/bge-small-en-v1.5": 384,
        "text-embedding-ada-002": 1536,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "embo-01": 1536,
    }
    DEFAULT_DIMENSIONS = 1536

    def __init__(
        self,
        settings: EmbeddingSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create the service.

        Args:
            settings: Embedding configuration, from the environment when omitted.
            client: Shared HTTP client. When omitted the service creates one
                lazily and closes it in ``close()``.
        """
        self._settings = settings or get_settings().embedding
        self._client = client
        self._owns_client = client is None
        self._learned_dimensions: int | None = None

    @property
    def model_name(self) -> str:
        return self._settings.model

    @property
    def dimensions(self) -> int:
        if self._learned_dimensions is not None:
            return self._learned_dimensions
        return self.MODEL_DIMENSIONS.get(self._settings.model, self.DEFAULT_DIMENSIONS)

    @property
    def endpoint(self) -> str:
        return f"{self._settings.base_url.rstrip('/')}/embeddings"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client, unless it was supplied by the caller."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def embed(self, text: str) -> EmbeddingResult:
        (result,) = await self.embed_batch([text])
        return result

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        if not texts:
            return []

        client = await self._get_client()
        size = self._settings.batch_size
        results: list[EmbeddingResult] = []
        for offset in range(0, len(texts), size):
            chunk = texts[offset : offset + size]
            start = time.perf_counter()
            try:
                payload = await self._post(client, chunk)
                results.extend(self._parse(chunk, payload))
            except EmbeddingError:
                track_embedding_request(
                    self.model_name, time.perf_counter() - start, len(chunk), success=False
                )
                raise
            track_embedding_request(self.model_name, time.perf_counter() - start, len(chunk))
        return results

    async def _post(self, client: httpx.AsyncClient, texts: list[str]) -> Any:
        """Send one chunk and return the decoded JSON body."""
        headers: dict[str, str] = {}
        if self._settings.api_key is not None:
            headers["Authorization"] = f"Bearer {self._settings.api_key.get_secret_value()}"

        try:
            response = await client.post(
                self.endpoint,
                json={"input": texts, "model": self._settings.model},
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(
                f"Embedding request failed: {status_code}",
                extra={"url": self.endpoint, "status": status_code, "model": self.model_name},
            )
            raise EmbeddingError(
                f"Embedding service returned {status_code}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"status_code": status_code},
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Embedding request error: {e}", extra={"url": self.endpoint})
            raise EmbeddingError(
                f"Failed to connect to embedding service: {e}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"url": self.endpoint},
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingError(
                f"Invalid response from embedding service: {e}",
                details={"error": str(e)},
            ) from e

    def _parse(self, texts: list[str], payload: Any) -> list[EmbeddingResult]:
        """Pair each input text with its vector from ``payload["data"]``.

        Items carrying an ``index`` are put back in request order first.
        """
        try:
            items = list(payload["data"])
            if all("index" in item for item in items):
                items.sort(key=lambda item: item["index"])
            vectors = [[float(x) for x in item["embedding"]] for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingError(
                f"Invalid response from embedding service: {e}",
                details={"error": str(e)},
            ) from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts",
                details={"expected": len(texts), "actual": len(vectors)},
            )
        if self._learned_dimensions is None and vectors and vectors[0]:
            self._learned_dimensions = len(vectors[0])

        return [
            EmbeddingResult(
                text=text,
                embedding=vector,
                model=self.model_name,
                dimensions=len(vector),
            )
            for text, vector in zip(texts, vectors, strict=True)
        ]
