"""Upload registration, document lifecycle operations and statistics."""
from __future__ import annotations

import datetime as dt
import io
import logging
import re
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Final, List, Optional
from uuid import uuid4

from smartstudy.config import Settings
from smartstudy.db.models import ContentChunk, Document, DocumentStatus
from smartstudy.db.repository import DocumentRepository
from smartstudy.errors import DocumentNotFoundError, IndexUnavailableError, InvalidUploadError
from smartstudy.ingest.format_detection import file_extension, is_accepted_upload
from smartstudy.ingest.pipeline import IngestionPipeline, IngestionResult
from smartstudy.search.index import SearchIndex

LOGGER = logging.getLogger(__name__)

_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")
_COPY_BUFFER_SIZE: Final[int] = 64 * 1024
RECENT_UPLOAD_WINDOW = dt.timedelta(days=7)


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""

    if not filename:
        filename = "upload"
    sanitized = Path(filename.replace("\\", "/")).name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    sanitized = sanitized.strip("._") or "upload"
    return sanitized


def _unique_name(sanitized_name: str) -> str:
    base = Path(sanitized_name).stem or "upload"
    suffix = Path(sanitized_name).suffix.lower()
    return f"{base}-{uuid4().hex}{suffix}" if suffix else f"{base}-{uuid4().hex}"


@dataclass(slots=True)
class DocumentStats:
    total_documents: int
    completed_documents: int
    processing_documents: int
    failed_documents: int
    total_size_bytes: int
    recent_uploads: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_documents": self.total_documents,
            "completed_documents": self.completed_documents,
            "processing_documents": self.processing_documents,
            "failed_documents": self.failed_documents,
            "total_size_bytes": self.total_size_bytes,
            "recent_uploads": self.recent_uploads,
        }


class DocumentService:
    """Stores uploads, schedules their ingestion and manages stored documents."""

    def __init__(
        self,
        repository: DocumentRepository,
        index: SearchIndex,
        pipeline: IngestionPipeline,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository = repository
        self.index = index
        self.pipeline = pipeline
        self.settings = settings or Settings()
        self._futures: Dict[int, Future] = {}
        self._futures_lock = threading.Lock()

    # uploads ----------------------------------------------------------------------
    def register_upload(self, filename: Optional[str], data: bytes | BinaryIO) -> Document:
        """Validate and store an upload, create its document and queue ingestion."""

        if not filename or not filename.strip():
            raise InvalidUploadError("File name is required")
        original_name = Path(filename.replace("\\", "/")).name
        if not is_accepted_upload(original_name):
            raise InvalidUploadError(
                f"Unsupported file type: {file_extension(original_name) or original_name}"
            )

        stream = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data
        self.settings.upload_dir.mkdir(parents=True, exist_ok=True)
        destination = self.settings.upload_dir / _unique_name(sanitize_filename(original_name))
        size = self._write_limited(stream, destination)

        document = self.repository.create_document(
            filename=destination.name,
            original_filename=original_name,
            file_path=str(destination.resolve()),
            file_size=size,
            file_type=file_extension(original_name),
        )
        LOGGER.info(
            "Stored upload %s as %s (%s bytes), document id %s",
            original_name,
            destination.name,
            size,
            document.id,
        )

        future = self.pipeline.submit(document.id)
        with self._futures_lock:
            self._futures[document.id] = future
        future.add_done_callback(lambda _f, document_id=document.id: self._forget(document_id))
        return document

    def _write_limited(self, stream: BinaryIO, destination: Path) -> int:
        limit = self.settings.max_upload_bytes
        size = 0
        try:
            with destination.open("wb") as target:
                while True:
                    block = stream.read(_COPY_BUFFER_SIZE)
                    if not block:
                        break
                    size += len(block)
                    if size > limit:
                        raise InvalidUploadError(
                            f"File size exceeds maximum limit of {limit // (1024 * 1024)}MB"
                        )
                    target.write(block)
            if size == 0:
                raise InvalidUploadError("File is empty")
        except BaseException:
            destination.unlink(missing_ok=True)
            raise
        return size

    def _forget(self, document_id: int) -> None:
        with self._futures_lock:
            self._futures.pop(document_id, None)

    def wait_for(self, document_id: int, timeout: Optional[float] = None) -> Optional[IngestionResult]:
        """Block until a queued ingestion finishes; ``None`` when nothing is pending."""

        with self._futures_lock:
            future = self._futures.get(document_id)
        if future is None:
            return None
        return future.result(timeout=timeout)

    # queries ----------------------------------------------------------------------
    def get_document(self, document_id: int) -> Document:
        document = self.repository.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        return self.repository.list_documents(status)

    def get_document_content(self, document_id: int) -> List[ContentChunk]:
        """Chunks of a document in reconstruction order."""

        self.get_document(document_id)
        return self.repository.list_chunks(document_id)

    def get_document_stats(self, *, now: Optional[dt.datetime] = None) -> DocumentStats:
        counts = self.repository.count_by_status()
        since = (now or dt.datetime.utcnow()) - RECENT_UPLOAD_WINDOW
        return DocumentStats(
            total_documents=sum(counts.values()),
            completed_documents=counts[DocumentStatus.COMPLETED],
            processing_documents=counts[DocumentStatus.PROCESSING],
            failed_documents=counts[DocumentStatus.FAILED],
            total_size_bytes=self.repository.total_completed_size(),
            recent_uploads=self.repository.count_uploaded_since(since),
        )

    # deletion ---------------------------------------------------------------------
    def delete_document(self, document_id: int) -> None:
        """Remove the stored file, index entries, chunks and the document row."""

        document = self.get_document(document_id)
        self._remove_file(document)
        try:
            self.index.delete_by_document(document_id)
        except IndexUnavailableError as error:
            LOGGER.error("Error removing document %s from search index: %s", document_id, error)
        self.repository.delete_chunks(document_id)
        self.repository.delete_document(document_id)
        LOGGER.info("Deleted document %s (%s)", document_id, document.original_filename)

    def delete_all_documents(self) -> int:
        documents = self.repository.list_documents()
        for document in documents:
            self._remove_file(document)
        try:
            self.index.clear()
        except IndexUnavailableError as error:
            LOGGER.error("Error clearing search index: %s", error)
        deleted = self.repository.delete_all()
        LOGGER.info("Deleted %s documents", deleted)
        return deleted

    def _remove_file(self, document: Document) -> None:
        if not document.file_path:
            return
        path = Path(document.file_path)
        try:
            path.unlink(missing_ok=True)
        except OSError as error:
            LOGGER.warning("Could not delete stored file %s: %s", path, error)


__all__ = ["DocumentService", "DocumentStats", "sanitize_filename"]
