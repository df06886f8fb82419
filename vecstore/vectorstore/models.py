"""Vector store data models and immutable store configurations."""

from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vecstore.config import DistanceType, IndexType, MetadataMode, VectorStoreSettings
from vecstore.exceptions import ConfigurationError
from vecstore.filters.expression import FilterExpression
from vecstore.filters.parser import parse_filter
from vecstore.filters.sql import SQL_IDENTIFIER

DEFAULT_TOP_K = 4
SIMILARITY_THRESHOLD_ACCEPT_ALL = 0.0


class Document(BaseModel):
    """A piece of text with metadata and an optional embedding.

    Attributes:
        id: Unique identifier, random UUID when not supplied.
        content: Text content.
        metadata: Scalar or list values keyed by name.
        embedding: Pre-computed vector; the store embeds the content when absent.
    """

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        min_length=1,
        description="Unique document identifier",
    )
    content: str = Field(description="Text content")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Metadata keyed by name",
    )
    embedding: list[float] | None = Field(
        default=None,
        description="Embedding vector",
    )

    def formatted_content(self, mode: MetadataMode = MetadataMode.EMBED) -> str:
        """Text sent to the embedding model.

        With MetadataMode.EMBED the metadata is rendered as ``key: value``
        lines ahead of the content.
        """
        if mode == MetadataMode.NONE or not self.metadata:
            return self.content
        header = "\n".join(f"{key}: {value}" for key, value in sorted(self.metadata.items()))
        return f"{header}\n\n{self.content}"


class SearchRequest(BaseModel):
    """Similarity search parameters.

    Exactly one of ``query`` and ``vector`` is required. ``filter_expression``
    accepts a built expression or portable filter text.
    """

    model_config = ConfigDict(frozen=True)

    query: str | None = Field(default=None, description="Query text to embed")
    vector: list[float] | None = Field(default=None, description="Query vector")
    top_k: int = Field(default=DEFAULT_TOP_K, gt=0, description="Maximum results")
    similarity_threshold: float = Field(
        default=SIMILARITY_THRESHOLD_ACCEPT_ALL,
        ge=0.0,
        le=1.0,
        description="Minimum normalized similarity",
    )
    filter_expression: FilterExpression | None = Field(
        default=None,
        description="Metadata filter",
    )

    @field_validator("filter_expression", mode="before")
    @classmethod
    def _parse_filter_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_filter(value)
        return value

    @model_validator(mode="after")
    def _require_one_query(self) -> "SearchRequest":
        if (self.query is None) == (self.vector is None):
            raise ValueError("Exactly one of query or vector is required")
        return self


class SearchResult(BaseModel):
    """A document returned by similarity search.

    Attributes:
        document: Matched document (embedding omitted).
        score: Normalized similarity in [0, 1], higher is more similar.
    """

    document: Document = Field(description="Matched document")
    score: float = Field(description="Normalized similarity score")

    @property
    def id(self) -> str:
        """Identifier of the matched document."""
        return self.document.id


class StoreDescriptor(BaseModel):
    """Backend identity reported with every observation."""

    model_config = ConfigDict(frozen=True)

    db_system: str
    collection_name: str
    namespace: str | None = None
    dimensions: int
    distance_type: DistanceType
    field_name: str | None = None


# ---------------------------------------------------------------------------
# Store configurations
# ---------------------------------------------------------------------------


class StoreConfig(BaseModel):
    """Options shared by every backend, fixed at construction."""

    model_config = ConfigDict(frozen=True)

    dimensions: int = Field(default=1536, gt=0, description="Vector dimensionality")
    distance_type: DistanceType = Field(
        default=DistanceType.COSINE,
        description="Distance metric",
    )
    initialize_schema: bool = Field(
        default=False,
        description="Create missing structures on initialize()",
    )


class InMemoryConfig(StoreConfig):
    """In-memory backend options."""

    collection_name: str = Field(default="Document", min_length=1)

    @classmethod
    def from_settings(cls, settings: VectorStoreSettings) -> "InMemoryConfig":
        return cls(
            dimensions=settings.embedding_dimension,
            distance_type=settings.distance_type,
            initialize_schema=settings.initialize_schema,
            collection_name=settings.collection_name,
        )


class PgVectorConfig(StoreConfig):
    """PostgreSQL + pgvector options."""

    schema_name: str = Field(default="public")
    table_name: str = Field(default="vector_store")
    index_type: IndexType = Field(default=IndexType.HNSW)
    remove_existing: bool = Field(
        default=False,
        description="Drop the table before creating it",
    )

    @field_validator("schema_name", "table_name")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not SQL_IDENTIFIER.match(value):
            raise ConfigurationError(
                f"Invalid SQL identifier: {value!r}",
                details={"identifier": value},
            )
        return value

    @property
    def index_name(self) -> str:
        """Name of the approximate nearest-neighbour index."""
        return f"{self.table_name}_embedding_idx"

    @classmethod
    def from_settings(cls, settings: VectorStoreSettings) -> "PgVectorConfig":
        return cls(
            dimensions=settings.embedding_dimension,
            distance_type=settings.distance_type,
            initialize_schema=settings.initialize_schema,
            schema_name=settings.schema_name,
            table_name=settings.table_name,
            index_type=settings.index_type,
            remove_existing=settings.remove_existing,
        )


class Neo4jConfig(StoreConfig):
    """Neo4j options. Neo4j vector indexes support cosine and euclidean only."""

    index_name: str = Field(default="spring-ai-document-index", min_length=1)
    label: str = Field(default="Document", min_length=1)
    embedding_property: str = Field(default="embedding", min_length=1)
    id_property: str = Field(default="id", min_length=1)
    content_property: str = Field(default="text", min_length=1)
    database_name: str | None = Field(default=None)

    @field_validator("distance_type")
    @classmethod
    def _check_distance(cls, value: DistanceType) -> DistanceType:
        if value == DistanceType.DOT:
            raise ConfigurationError(
                "Neo4j vector indexes support cosine and euclidean distance only",
                details={"distance_type": value.value},
            )
        return value

    @property
    def constraint_name(self) -> str:
        """Name of the uniqueness constraint on the id property."""
        return f"{self.label}_{self.id_property}_unique"

    @classmethod
    def from_settings(cls, settings: VectorStoreSettings) -> "Neo4jConfig":
        return cls(
            dimensions=settings.embedding_dimension,
            distance_type=settings.distance_type,
            initialize_schema=settings.initialize_schema,
            index_name=settings.index_name,
            label=settings.label,
            embedding_property=settings.embedding_property,
            database_name=settings.database_name,
        )


class QdrantConfig(StoreConfig):
    """Qdrant options."""

    collection_name: str = Field(default="Document", min_length=1)

    @classmethod
    def from_settings(cls, settings: VectorStoreSettings) -> "QdrantConfig":
        return cls(
            dimensions=settings.embedding_dimension,
            distance_type=settings.distance_type,
            initialize_schema=settings.initialize_schema,
            collection_name=settings.collection_name,
        )
