"""Background ingestion of stored uploads into chunks and the search index."""
from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from smartstudy.config import Settings
from smartstudy.db.models import Document, DocumentStatus
from smartstudy.db.repository import DocumentRepository
from smartstudy.errors import DocumentNotFoundError
from smartstudy.logging_config import get_ingest_audit_logger
from smartstudy.search.index import SearchIndex
from smartstudy.telemetry import emit_exception, emit_ingest_event

from .archive import ArchiveConfig, ArchiveUnpacker
from .extractors import ContentExtractor, OfficeConverter
from .format_detection import DocumentFormat, DocumentFormatDetector
from .models import ExtractedContent

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestionResult:
    """Outcome of a single :meth:`IngestionPipeline.process_document` run."""

    document_id: int
    status: DocumentStatus
    chunk_count: int = 0
    indexed: bool = False
    rebuilt: bool = False
    duration_seconds: float = 0.0
    error: Optional[str] = None


class IngestionPipeline:
    """Turns a stored document into content chunks and index entries.

    Work runs on a thread pool via :meth:`submit`; :meth:`process_document`
    runs synchronously. Every run ends with the document either COMPLETED or
    FAILED.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        index: SearchIndex,
        *,
        extractor: Optional[ContentExtractor] = None,
        unpacker: Optional[ArchiveUnpacker] = None,
        settings: Optional[Settings] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.repository = repository
        self.index = index
        self.extractor = extractor or ContentExtractor(
            converter=OfficeConverter(
                self.settings.office_binary,
                timeout_seconds=self.settings.conversion_timeout_seconds,
            )
        )
        self.unpacker = unpacker or ArchiveUnpacker(
            self.extractor,
            ArchiveConfig(
                max_entries=self.settings.archive_max_entries,
                timeout_seconds=self.settings.archive_timeout_seconds,
                max_entry_bytes=self.settings.archive_max_entry_bytes,
                temp_dir=self.settings.temp_dir,
            ),
        )
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.ingest_workers,
            thread_name_prefix="ingest",
        )
        self._audit = get_ingest_audit_logger()

    def submit(self, document_id: int) -> "Future[IngestionResult]":
        """Schedule ingestion of ``document_id`` and return immediately."""

        LOGGER.info("Queued document %s for ingestion", document_id)
        return self._executor.submit(self.process_document, document_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def resolve_format(self, document: Document) -> DocumentFormat:
        """Format from the stored file type, falling back to the original name."""

        document_format = DocumentFormatDetector.from_extension(document.file_type or "")
        if document_format is DocumentFormat.UNKNOWN:
            document_format = DocumentFormatDetector.detect(document.original_filename or "")
        return document_format

    def process_document(self, document_id: int) -> IngestionResult:
        """Ingest one document, ending in COMPLETED or FAILED.

        A document that is already COMPLETED is left untouched; a FAILED one
        is retried from scratch, replacing any chunks left by the earlier run.
        """

        started = time.perf_counter()
        current = self.repository.get_document(document_id)
        if current is None:
            raise DocumentNotFoundError(document_id)
        if current.status is DocumentStatus.COMPLETED:
            LOGGER.info("Document %s is already ingested, skipping", document_id)
            return IngestionResult(
                document_id=document_id,
                status=DocumentStatus.COMPLETED,
                chunk_count=len(self.repository.list_chunks(document_id)),
            )

        document = self.repository.update_status(document_id, DocumentStatus.PROCESSING)
        if document is None:
            raise DocumentNotFoundError(document_id)

        file_name = document.original_filename
        document_format = self.resolve_format(document)
        emit_ingest_event(
            "ingest.document.start",
            document_id=document_id,
            file_name=file_name,
            file_format=document_format.value,
            size_bytes=document.file_size,
        )

        result = IngestionResult(document_id=document_id, status=DocumentStatus.FAILED)
        try:
            fragments = self._extract(document, document_format)
            if not fragments:
                LOGGER.warning("No content extracted from document %s (%s)", document_id, file_name)
                result.error = "No content could be extracted"
                self.repository.update_status(document_id, DocumentStatus.FAILED)
            else:
                self.repository.delete_chunks(document_id)
                chunks = self.repository.add_chunks(document_id, fragments)
                result.chunk_count = len(chunks)
                result.indexed = self._index_chunks(document, chunks)
                self.repository.update_status(document_id, DocumentStatus.COMPLETED)
                result.status = DocumentStatus.COMPLETED
                if self.settings.always_rebuild_after_ingest or not result.indexed:
                    result.rebuilt = self._rebuild_index(document_id)
        except Exception as error:
            LOGGER.error("Error processing document %s: %s", document_id, error)
            emit_exception(module=__name__, error=error, document_id=document_id)
            result.status = DocumentStatus.FAILED
            result.error = str(error)
            self.repository.update_status(document_id, DocumentStatus.FAILED)

        result.duration_seconds = time.perf_counter() - started
        emit_ingest_event(
            "ingest.document.complete",
            document_id=document_id,
            file_name=file_name,
            file_format=document_format.value,
            size_bytes=document.file_size,
            duration_ms=result.duration_seconds * 1000.0,
            chunks=result.chunk_count,
            status=result.status.value,
        )
        self._audit.info(
            {
                "event": "ingest",
                "document_id": document_id,
                "file_name": file_name,
                "status": result.status.value,
                "chunk_count": result.chunk_count,
                "duration_seconds": round(result.duration_seconds, 3),
            }
        )
        return result

    def _extract(self, document: Document, document_format: DocumentFormat) -> List[ExtractedContent]:
        path = Path(document.file_path or "")
        if not document.file_path or not path.exists():
            raise FileNotFoundError(f"Stored file not found: {path}")

        if document_format.is_archive:
            LOGGER.info("Processing ZIP archive %s", document.original_filename)
            return self.unpacker.unpack(path)
        return self.extractor.extract(path, document.original_filename, document_format)

    def _index_chunks(self, document: Document, chunks) -> bool:
        try:
            self.index.index_document(document, chunks)
        except Exception as error:
            LOGGER.error("Error indexing document %s: %s", document.id, error)
            emit_exception(
                module=f"{__name__}.index",
                error=error,
                document_id=document.id,
                suggestion="the index is rebuilt from stored chunks",
            )
            return False
        LOGGER.info("Indexed %s chunks for document %s", len(chunks), document.id)
        return True

    def _rebuild_index(self, document_id: int) -> bool:
        try:
            count = self.index.rebuild_all()
        except Exception as error:
            LOGGER.error("Index rebuild after document %s failed: %s", document_id, error)
            emit_exception(module=f"{__name__}.rebuild", error=error, document_id=document_id)
            return False
        LOGGER.info("Rebuilt search index with %s entries", count)
        return True


__all__ = ["IngestionPipeline", "IngestionResult"]
