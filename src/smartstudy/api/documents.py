"""API router for uploading and managing documents."""
from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from smartstudy.db.models import ContentChunk, Document, DocumentStatus
from smartstudy.documents import DocumentService
from smartstudy.errors import DocumentNotFoundError, InvalidUploadError

from .dependencies import get_document_service

router = APIRouter(prefix="/api/documents", tags=["documents"])


class DocumentResponse(BaseModel):
    """Public view of a stored document."""

    id: int
    filename: str
    original_filename: str
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    status: DocumentStatus
    upload_date: Optional[dt.datetime] = None
    content_summary: Optional[str] = None


class ChunkResponse(BaseModel):
    id: int
    document_id: int
    page_number: Optional[int] = None
    slide_number: Optional[int] = None
    location: str
    topic: Optional[str] = None
    section_title: Optional[str] = None
    content: str
    word_count: int = 0


class DocumentStatsResponse(BaseModel):
    total_documents: int
    completed_documents: int
    processing_documents: int
    failed_documents: int
    total_size_bytes: int
    recent_uploads: int = Field(..., description="Documents uploaded in the last seven days.")


class DeleteResponse(BaseModel):
    status: str
    deleted: int


def _serialize_document(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        filename=document.filename,
        original_filename=document.original_filename,
        file_size=document.file_size,
        file_type=document.file_type,
        status=document.status,
        upload_date=document.upload_date,
        content_summary=document.content_summary,
    )


def _serialize_chunk(chunk: ContentChunk) -> ChunkResponse:
    return ChunkResponse(
        id=chunk.id,
        document_id=chunk.document_id,
        page_number=chunk.page_number,
        slide_number=chunk.slide_number,
        location=chunk.location,
        topic=chunk.topic,
        section_title=chunk.section_title,
        content=chunk.content,
        word_count=chunk.word_count or 0,
    )


@router.post("/upload", response_model=DocumentResponse, status_code=202)
def upload_document(
    file: UploadFile = File(...),
    service: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    """Store an upload and queue it for background ingestion."""

    try:
        document = service.register_upload(file.filename, file.file)
    except InvalidUploadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_document(document)


@router.get("", response_model=list[DocumentResponse])
def list_documents(
    status: Optional[DocumentStatus] = None,
    service: DocumentService = Depends(get_document_service),
) -> list[DocumentResponse]:
    return [_serialize_document(document) for document in service.list_documents(status)]


@router.get("/stats", response_model=DocumentStatsResponse)
def document_stats(service: DocumentService = Depends(get_document_service)) -> DocumentStatsResponse:
    return DocumentStatsResponse(**service.get_document_stats().to_dict())


@router.delete("", response_model=DeleteResponse)
def delete_all_documents(service: DocumentService = Depends(get_document_service)) -> DeleteResponse:
    return DeleteResponse(status="deleted", deleted=service.delete_all_documents())


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: int,
    service: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    try:
        return _serialize_document(service.get_document(document_id))
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/{document_id}/content", response_model=list[ChunkResponse])
def get_document_content(
    document_id: int,
    service: DocumentService = Depends(get_document_service),
) -> list[ChunkResponse]:
    """Return the document's chunks in page/slide order."""

    try:
        chunks = service.get_document_content(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [_serialize_chunk(chunk) for chunk in chunks]


@router.delete("/{document_id}", response_model=DeleteResponse)
def delete_document(
    document_id: int,
    service: DocumentService = Depends(get_document_service),
) -> DeleteResponse:
    try:
        service.delete_document(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return DeleteResponse(status="deleted", deleted=1)
