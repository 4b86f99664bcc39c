"""Relational models for uploaded documents and their extracted content."""
from __future__ import annotations

import datetime as dt
import hashlib
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import declarative_base, relationship, validates

Base = declarative_base()


class DocumentStatus(str, Enum):
    """Lifecycle of a document ingestion attempt."""

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def count_words(text: str | None) -> int:
    """Number of whitespace-delimited tokens in ``text``."""

    return len(text.split()) if text else 0


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True)
    filename = Column(String, nullable=False)
    original_filename = Column(String, nullable=False)
    file_size = Column(Integer)
    upload_date = Column(DateTime, default=dt.datetime.utcnow)
    file_type = Column(String)
    status = Column(SAEnum(DocumentStatus, native_enum=False), default=DocumentStatus.PROCESSING)
    file_path = Column(String)
    content_summary = Column(Text, nullable=True)

    chunks = relationship(
        "ContentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"Document(id={self.id!r}, original_filename={self.original_filename!r}, "
            f"file_type={self.file_type!r}, status={self.status!r})"
        )


class ContentChunk(Base):
    __tablename__ = "document_content"

    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    page_number = Column(Integer, nullable=True)
    slide_number = Column(Integer, nullable=True)
    content = Column(Text, nullable=False)
    topic = Column(String, nullable=True)
    section_title = Column(String, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow)
    content_hash = Column(String, nullable=True)
    word_count = Column(Integer, default=0)

    document = relationship("Document", back_populates="chunks")

    @validates("content")
    def _derive_from_content(self, key: str, value: str) -> str:
        # word count and hash always follow the text
        self.word_count = count_words(value)
        self.content_hash = hashlib.sha1((value or "").encode("utf-8")).hexdigest()
        return value

    @property
    def location(self) -> str:
        if self.page_number is not None:
            return f"Page {self.page_number}"
        if self.slide_number is not None:
            return f"Slide {self.slide_number}"
        return "Unknown"

    def __repr__(self) -> str:
        return (
            f"ContentChunk(id={self.id!r}, document_id={self.document_id!r}, "
            f"page_number={self.page_number!r}, slide_number={self.slide_number!r}, "
            f"topic={self.topic!r}, word_count={self.word_count!r})"
        )
