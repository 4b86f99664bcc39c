"""Persistence helpers for documents and content chunks."""
from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import create_engine, func
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from smartstudy.ingest.models import ExtractedContent

from .models import Base, ContentChunk, Document, DocumentStatus

LOGGER = logging.getLogger(__name__)


def create_session_factory(database_url: str) -> sessionmaker:
    """Create the engine and schema for ``database_url`` and return a session factory."""

    engine_kwargs: dict = {"future": True}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            engine_kwargs["poolclass"] = StaticPool
        else:
            db_path = database_url.split("///", 1)[-1]
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, **engine_kwargs)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def _chunk_order():
    return (
        func.coalesce(ContentChunk.page_number, 0),
        func.coalesce(ContentChunk.slide_number, 0),
        ContentChunk.id,
    )


class DocumentRepository:
    """Create/find/update/delete access to documents and their chunks."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def session(self) -> Session:
        return self._session_factory()

    # documents -------------------------------------------------------------------
    def create_document(
        self,
        *,
        filename: str,
        original_filename: str,
        file_path: str,
        file_size: int,
        file_type: str,
        status: DocumentStatus = DocumentStatus.PROCESSING,
    ) -> Document:
        document = Document(
            filename=filename,
            original_filename=original_filename,
            file_path=file_path,
            file_size=file_size,
            file_type=file_type,
            status=status,
            upload_date=dt.datetime.utcnow(),
        )
        with self.session() as s:
            s.add(document)
            s.commit()
        return document

    def get_document(self, document_id: int) -> Optional[Document]:
        with self.session() as s:
            return s.get(Document, document_id)

    def list_documents(self, status: DocumentStatus | None = None) -> List[Document]:
        with self.session() as s:
            query = s.query(Document)
            if status is not None:
                query = query.filter(Document.status == status)
            return list(query.order_by(Document.id).all())

    def update_status(self, document_id: int, status: DocumentStatus) -> Optional[Document]:
        with self.session() as s:
            document = s.get(Document, document_id)
            if document is None:
                return None
            document.status = status
            s.commit()
            return document

    def delete_document(self, document_id: int) -> bool:
        with self.session() as s:
            document = s.get(Document, document_id)
            if document is None:
                return False
            s.query(ContentChunk).filter(ContentChunk.document_id == document_id).delete(
                synchronize_session=False
            )
            s.delete(document)
            s.commit()
            return True

    def delete_all(self) -> int:
        with self.session() as s:
            s.query(ContentChunk).delete(synchronize_session=False)
            deleted = s.query(Document).delete(synchronize_session=False)
            s.commit()
            return deleted

    # chunks ----------------------------------------------------------------------
    def add_chunks(self, document_id: int, fragments: Iterable[ExtractedContent]) -> List[ContentChunk]:
        """Persist ``fragments`` for a document in a single transaction."""

        chunks = [
            ContentChunk(
                document_id=document_id,
                content=fragment.text,
                page_number=fragment.page_number,
                slide_number=fragment.slide_number,
                topic=fragment.topic,
                section_title=fragment.section_title,
            )
            for fragment in fragments
        ]
        with self.session() as s:
            try:
                s.add_all(chunks)
                s.commit()
            except Exception:
                s.rollback()
                raise
        return chunks

    def list_chunks(self, document_id: int) -> List[ContentChunk]:
        with self.session() as s:
            return list(
                s.query(ContentChunk)
                .filter(ContentChunk.document_id == document_id)
                .order_by(*_chunk_order())
                .all()
            )

    def delete_chunks(self, document_id: int) -> int:
        with self.session() as s:
            deleted = (
                s.query(ContentChunk)
                .filter(ContentChunk.document_id == document_id)
                .delete(synchronize_session=False)
            )
            s.commit()
            return deleted

    def iter_completed_with_chunks(self) -> Iterator[Tuple[Document, Sequence[ContentChunk]]]:
        """Yield every COMPLETED document (ascending id) with its ordered chunks."""

        for document in self.list_documents(DocumentStatus.COMPLETED):
            yield document, self.list_chunks(document.id)

    # statistics ------------------------------------------------------------------
    def count_by_status(self) -> dict[DocumentStatus, int]:
        with self.session() as s:
            rows = s.query(Document.status, func.count(Document.id)).group_by(Document.status).all()
        counts = {status: 0 for status in DocumentStatus}
        for status, count in rows:
            counts[DocumentStatus(status)] = count
        return counts

    def total_completed_size(self) -> int:
        with self.session() as s:
            total = (
                s.query(func.sum(Document.file_size))
                .filter(Document.status == DocumentStatus.COMPLETED)
                .scalar()
            )
        return int(total or 0)

    def count_uploaded_since(self, since: dt.datetime) -> int:
        with self.session() as s:
            return s.query(func.count(Document.id)).filter(Document.upload_date >= since).scalar() or 0
