"""Data models used by the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True)
class ExtractedContent:
    """One addressable fragment of text produced by an extractor."""

    text: str
    page_number: Optional[int] = None
    slide_number: Optional[int] = None
    topic: Optional[str] = None
    section_title: Optional[str] = None
