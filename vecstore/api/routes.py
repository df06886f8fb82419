"""API routes for document storage and similarity search."""

from typing import Annotated, Any

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from vecstore.exceptions import ValidationError
from vecstore.logging_config import get_logger
from vecstore.vectorstore.models import DEFAULT_TOP_K, Document, SearchRequest
from vecstore.vectorstore.service import VectorStore

logger = get_logger(__name__)


router = APIRouter(prefix="/api/v1", tags=["Vector Store"])


class DocumentIn(BaseModel):
    """Document supplied by an API client."""

    id: str | None = Field(default=None, description="Document id, generated when omitted")
    content: str = Field(description="Text content")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Metadata")
    embedding: list[float] | None = Field(default=None, description="Pre-computed embedding")

    def to_document(self) -> Document:
        values = self.model_dump(exclude_none=True)
        return Document(**values)


class AddDocumentsRequest(BaseModel):
    """Request body for adding documents."""

    documents: list[DocumentIn] = Field(min_length=1, description="Documents to store")


class AddDocumentsResponse(BaseModel):
    """Response from adding documents."""

    added: int = Field(description="Number of documents written")
    ids: list[str] = Field(description="Ids of the written documents")


class SearchBody(BaseModel):
    """Request body for similarity search."""

    query: str | None = Field(default=None, description="Query text")
    vector: list[float] | None = Field(default=None, description="Query vector")
    top_k: int = Field(default=DEFAULT_TOP_K, ge=1, le=100, description="Maximum results")
    similarity_threshold: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Minimum normalized similarity",
    )
    filter: str | None = Field(default=None, description="Portable filter expression")


class SearchHit(BaseModel):
    """One search result."""

    id: str
    content: str
    metadata: dict[str, Any]
    score: float


class SearchResponse(BaseModel):
    """Response from similarity search."""

    results: list[SearchHit]


def get_vector_store(request: Request) -> VectorStore:
    """Resolve the application's vector store or answer 503."""
    store: VectorStore | None = getattr(request.app.state, "vector_store", None)
    if store is None:
        logger.warning("Vector store not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "Vector store not configured",
                "message": "Set VECTORSTORE_BACKEND or inject a store into create_app()",
            },
        )
    return store


StoreDep = Annotated[VectorStore, Depends(get_vector_store)]


@router.post("/documents", response_model=AddDocumentsResponse)
async def add_documents(body: AddDocumentsRequest, store: StoreDep) -> AddDocumentsResponse:
    """Embed and store documents."""
    documents = [item.to_document() for item in body.documents]
    added = await store.add(documents)
    return AddDocumentsResponse(added=added, ids=[d.id for d in documents])


@router.delete("/documents", status_code=status.HTTP_204_NO_CONTENT)
async def delete_documents(
    store: StoreDep,
    ids: Annotated[list[str], Query(min_length=1)],
) -> None:
    """Delete documents by id. Unknown ids are ignored."""
    await store.delete(ids)


@router.post("/search", response_model=SearchResponse)
async def search(body: SearchBody, store: StoreDep) -> SearchResponse:
    """Similarity search with an optional portable filter."""
    try:
        request = SearchRequest(
            query=body.query,
            vector=body.vector,
            top_k=body.top_k,
            similarity_threshold=body.similarity_threshold,
            filter_expression=body.filter,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid search request",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    results = await store.similarity_search(request)
    return SearchResponse(
        results=[
            SearchHit(
                id=r.id,
                content=r.document.content,
                metadata=r.document.metadata,
                score=r.score,
            )
            for r in results
        ]
    )
