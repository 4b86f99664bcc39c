"""Utilities for detecting the format of uploaded documents."""
from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional


class DocumentFormat(str, Enum):
    """Closed set of formats understood by the ingestion pipeline."""

    PDF = "pdf"
    DOC = "doc"
    DOCX = "docx"
    PPT = "ppt"
    PPTX = "pptx"
    TXT = "txt"
    RTF = "rtf"
    ZIP = "zip"
    UNKNOWN = "unknown"

    @property
    def is_archive(self) -> bool:
        return self is DocumentFormat.ZIP


SUPPORTED_ENTRY_FORMATS = frozenset(
    {
        DocumentFormat.PDF,
        DocumentFormat.DOC,
        DocumentFormat.DOCX,
        DocumentFormat.PPT,
        DocumentFormat.PPTX,
        DocumentFormat.TXT,
        DocumentFormat.RTF,
    }
)
ACCEPTED_UPLOAD_FORMATS = SUPPORTED_ENTRY_FORMATS | {DocumentFormat.ZIP}


def file_extension(file_name: str) -> str:
    """Return the lower-cased extension including the dot, or an empty string."""

    return PurePosixPath(file_name.replace("\\", "/")).suffix.lower()


class DocumentFormatDetector:
    """Detects the document format based on file name and optional MIME type."""

    _MIME_MAP = {
        "application/pdf": DocumentFormat.PDF,
        "application/msword": DocumentFormat.DOC,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentFormat.DOCX,
        "application/vnd.ms-powerpoint": DocumentFormat.PPT,
        "application/vnd.openxmlformats-officedocument.presentationml.presentation": DocumentFormat.PPTX,
        "text/plain": DocumentFormat.TXT,
        "application/rtf": DocumentFormat.RTF,
        "text/rtf": DocumentFormat.RTF,
        "application/zip": DocumentFormat.ZIP,
        "application/x-zip-compressed": DocumentFormat.ZIP,
    }

    @classmethod
    def detect(cls, file_name: str, mime_type: Optional[str] = None) -> DocumentFormat:
        """Return the detected document format.

        An explicit MIME type wins, then ``mimetypes.guess_type`` and finally
        the file suffix. Anything else resolves to ``DocumentFormat.UNKNOWN``.
        """

        if mime_type and mime_type in cls._MIME_MAP:
            return cls._MIME_MAP[mime_type]

        guessed_type, _ = mimetypes.guess_type(file_name)
        if guessed_type and guessed_type in cls._MIME_MAP:
            return cls._MIME_MAP[guessed_type]

        suffix = file_extension(file_name).lstrip(".")
        try:
            return DocumentFormat(suffix)
        except ValueError:
            return DocumentFormat.UNKNOWN

    @classmethod
    def from_extension(cls, extension: str) -> DocumentFormat:
        """Resolve a declared type such as ``.zip`` stored on a document."""

        try:
            return DocumentFormat((extension or "").lower().lstrip("."))
        except ValueError:
            return DocumentFormat.UNKNOWN


def is_supported_entry(file_name: str) -> bool:
    """True for names whose extension the extractor handles (archives excluded)."""

    if not file_name or not file_name.strip():
        return False
    return DocumentFormatDetector.from_extension(file_extension(file_name)) in SUPPORTED_ENTRY_FORMATS


def is_accepted_upload(file_name: str) -> bool:
    if not file_name or not file_name.strip():
        return False
    return DocumentFormatDetector.from_extension(file_extension(file_name)) in ACCEPTED_UPLOAD_FORMATS
