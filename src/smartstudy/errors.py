"""Exceptions shared across the ingestion and search layers."""
from __future__ import annotations


class IndexUnavailableError(RuntimeError):
    """Raised when the search index cannot be opened or written."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class ArchiveError(OSError):
    """Raised when an uploaded archive cannot be opened or enumerated."""


class QuerySyntaxError(ValueError):
    """Raised by the query parser for malformed query text."""


class DocumentNotFoundError(LookupError):
    """Raised when an operation targets a document that does not exist."""

    def __init__(self, document_id: int) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class InvalidUploadError(ValueError):
    """Raised when an uploaded file is rejected before ingestion."""


class ConversionError(RuntimeError):
    """Raised when a legacy Office file cannot be converted to OOXML."""
