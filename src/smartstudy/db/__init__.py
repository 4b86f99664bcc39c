"""Relational persistence for documents and content chunks."""

from .models import Base, ContentChunk, Document, DocumentStatus, count_words
from .repository import DocumentRepository, create_session_factory

__all__ = [
    "Base",
    "ContentChunk",
    "Document",
    "DocumentRepository",
    "DocumentStatus",
    "count_words",
    "create_session_factory",
]
