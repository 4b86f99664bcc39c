"""API router exposing search, suggestions and index maintenance."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from smartstudy.errors import DocumentNotFoundError, IndexUnavailableError
from smartstudy.search.index import DEFAULT_MAX_RESULTS, DEFAULT_MAX_SUGGESTIONS, SearchIndex, SearchResult

from .dependencies import get_search_index

router = APIRouter(prefix="/api/search", tags=["search"])


class SearchResultItem(BaseModel):
    document_id: int
    content_id: int
    filename: str
    content: str
    topic: str
    section_title: str
    page_number: Optional[int] = None
    slide_number: Optional[int] = None
    location: str
    score: float


class SearchResponse(BaseModel):
    query: str
    total: int
    results: list[SearchResultItem]


class ReindexResponse(BaseModel):
    status: str
    entries: int
    document_id: Optional[int] = None


def _serialize_result(result: SearchResult) -> SearchResultItem:
    return SearchResultItem(
        document_id=result.document_id,
        content_id=result.content_id,
        filename=result.filename,
        content=result.content,
        topic=result.topic,
        section_title=result.section_title,
        page_number=result.page_number,
        slide_number=result.slide_number,
        location=result.location,
        score=result.score,
    )


@router.get("", response_model=SearchResponse)
def search(
    q: str = "",
    max_results: int = Query(DEFAULT_MAX_RESULTS, alias="maxResults", ge=0, le=10_000),
    index: SearchIndex = Depends(get_search_index),
) -> SearchResponse:
    """Search all content; an empty query lists every indexed chunk."""

    results = index.search(q, max_results)
    return SearchResponse(query=q, total=len(results), results=[_serialize_result(item) for item in results])


@router.get("/advanced", response_model=SearchResponse)
def advanced_search(
    q: str = "",
    filename: Optional[str] = None,
    topic: Optional[str] = None,
    max_results: int = Query(DEFAULT_MAX_RESULTS, alias="maxResults", ge=0, le=10_000),
    index: SearchIndex = Depends(get_search_index),
) -> SearchResponse:
    results = index.search_with_filters(q, filename=filename, topic=topic, max_results=max_results)
    return SearchResponse(query=q, total=len(results), results=[_serialize_result(item) for item in results])


@router.get("/suggestions", response_model=list[str])
def suggestions(
    q: str = "",
    max_suggestions: int = Query(DEFAULT_MAX_SUGGESTIONS, alias="maxSuggestions", ge=0, le=100),
    index: SearchIndex = Depends(get_search_index),
) -> list[str]:
    return index.suggestions(q, max_suggestions)


@router.get("/stats")
def search_stats(index: SearchIndex = Depends(get_search_index)) -> dict[str, Any]:
    return index.get_stats()


@router.post("/reindex", response_model=ReindexResponse)
def reindex_all(index: SearchIndex = Depends(get_search_index)) -> ReindexResponse:
    """Rebuild the index from every completed document."""

    try:
        entries = index.rebuild_all()
    except IndexUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ReindexResponse(status="ok", entries=entries)


@router.post("/reindex/{document_id}", response_model=ReindexResponse)
def reindex_document(document_id: int, index: SearchIndex = Depends(get_search_index)) -> ReindexResponse:
    try:
        entries = index.reindex_document(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IndexUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ReindexResponse(status="ok", entries=entries, document_id=document_id)


@router.get("/health")
def search_health(index: SearchIndex = Depends(get_search_index)) -> dict[str, Any]:
    """Readiness of the search index."""

    stats = index.get_stats()
    return {"status": "UP", "total_entries": stats["total_entries"]}
