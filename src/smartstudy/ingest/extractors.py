"""Extractors for supported document types."""
from __future__ import annotations

import logging
import subprocess
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from docx import Document as load_docx
from pdfminer.high_level import extract_text as pdfminer_extract_text
from pptx import Presentation as load_pptx
from pptx.shapes.group import GroupShape
from PyPDF2 import PdfReader
from striprtf.striprtf import rtf_to_text

from smartstudy.config import DEFAULT_CONVERSION_TIMEOUT_SECONDS, DEFAULT_OFFICE_BINARY
from smartstudy.errors import ConversionError

from .format_detection import DocumentFormat, DocumentFormatDetector
from .models import ExtractedContent
from .normalization import normalize_text

LOGGER = logging.getLogger(__name__)

DEFAULT_TOPIC = "General Content"
EMPTY_PAGE_TOPIC = "Empty Page"
ERROR_PAGE_TOPIC = "Error Page"
DOCUMENT_CONTENT_TITLE = "Document Content"
SECTION_CHAR_LIMIT = 5000

_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")


def detect_topic(text: str) -> str:
    """Pick a heading-like line from ``text`` to label the fragment."""

    for line in text.split("\n"):
        line = line.strip()
        if 10 < len(line) < 100 and (line.endswith(":") or line[0].isupper()):
            return line.replace(":", "").strip()
    return DEFAULT_TOPIC


class PDFExtractor:
    """One fragment per page; blank or failing pages become placeholders."""

    def extract(self, path: Path) -> List[ExtractedContent]:
        reader = PdfReader(str(path))
        if reader.is_encrypted:
            reader.decrypt("")

        total_pages = len(reader.pages)
        LOGGER.info("Processing PDF with %s pages: %s", total_pages, path.name)
        fragments: List[ExtractedContent] = []
        for page_number in range(1, total_pages + 1):
            section_title = f"Page {page_number}"
            try:
                text = normalize_text(reader.pages[page_number - 1].extract_text() or "")
            except Exception as error:
                LOGGER.warning("Error processing page %s of %s: %s", page_number, path.name, error)
                fragments.append(
                    ExtractedContent(
                        text=f"[Page {page_number} - Error processing: {error}]",
                        page_number=page_number,
                        topic=ERROR_PAGE_TOPIC,
                        section_title=section_title,
                    )
                )
                continue

            if not text:
                LOGGER.debug("Page %s of %s has no text content", page_number, path.name)
                fragments.append(
                    ExtractedContent(
                        text=f"[Page {page_number} - No text content]",
                        page_number=page_number,
                        topic=EMPTY_PAGE_TOPIC,
                        section_title=section_title,
                    )
                )
                continue

            fragments.append(
                ExtractedContent(
                    text=text,
                    page_number=page_number,
                    topic=detect_topic(text),
                    section_title=section_title,
                )
            )
        return fragments


class DocxExtractor:
    """Groups paragraphs into sections of roughly ``section_char_limit`` characters."""

    def __init__(self, section_char_limit: int = SECTION_CHAR_LIMIT) -> None:
        self.section_char_limit = section_char_limit

    def extract(self, path: Path) -> List[ExtractedContent]:
        document = load_docx(str(path))
        fragments: List[ExtractedContent] = []
        buffer: List[str] = []
        buffered_chars = 0

        for paragraph in document.paragraphs:
            text = paragraph.text
            if not text or not text.strip():
                continue
            buffer.append(text + "\n")
            buffered_chars += len(text) + 1
            if buffered_chars > self.section_char_limit:
                fragments.append(self._section("".join(buffer), len(fragments) + 1))
                buffer = []
                buffered_chars = 0

        if buffer:
            fragments.append(self._section("".join(buffer), len(fragments) + 1))
        return fragments

    @staticmethod
    def _section(raw_text: str, number: int) -> ExtractedContent:
        text = normalize_text(raw_text)
        return ExtractedContent(text=text, topic=detect_topic(text), section_title=f"Section {number}")


class SlideExtractor:
    """One fragment per non-empty slide, numbered from 1 in presentation order."""

    def extract(self, path: Path) -> List[ExtractedContent]:
        presentation = load_pptx(str(path))
        fragments: List[ExtractedContent] = []
        for slide in presentation.slides:
            text = normalize_text(slide_text(slide))
            if not text:
                continue
            slide_number = len(fragments) + 1
            fragments.append(
                ExtractedContent(
                    text=text,
                    slide_number=slide_number,
                    topic=detect_topic(text),
                    section_title=f"Slide {slide_number}",
                )
            )
        LOGGER.info("Extracted %s slides from %s", len(fragments), path.name)
        return fragments


def slide_text(slide) -> str:
    return "\n".join(_shape_lines(slide.shapes))


def _shape_lines(shapes: Iterable) -> Iterator[str]:
    for shape in shapes:
        if isinstance(shape, GroupShape):
            yield from _shape_lines(shape.shapes)
        elif shape.has_text_frame:
            for paragraph in shape.text_frame.paragraphs:
                # soft line breaks come back as vertical tabs
                text = paragraph.text.replace("\v", "\n")
                if text.strip():
                    yield text
        elif shape.has_table:
            for row in shape.table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    yield " | ".join(cells)


class OfficeConverter:
    """Converts legacy binary ``.doc``/``.ppt`` files to OOXML with headless LibreOffice."""

    def __init__(
        self,
        binary: str = DEFAULT_OFFICE_BINARY,
        timeout_seconds: float = DEFAULT_CONVERSION_TIMEOUT_SECONDS,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    @contextmanager
    def convert(self, path: Path, target_format: str) -> Iterator[Path]:
        """Yield a converted copy of ``path``; the copy is removed on exit."""

        with tempfile.TemporaryDirectory(prefix="smartstudy-convert-") as tmpdir:
            profile = Path(tmpdir) / "profile"
            cmd = [
                self.binary,
                f"-env:UserInstallation={profile.as_uri()}",
                "--headless",
                "--convert-to",
                target_format,
                "--outdir",
                tmpdir,
                str(path),
            ]
            LOGGER.debug("Running conversion command: %s", " ".join(cmd))
            try:
                result = subprocess.run(
                    cmd,
                    check=False,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    timeout=self.timeout_seconds,
                )
            except FileNotFoundError as error:
                raise ConversionError(f"{self.binary} is not installed; cannot convert {path.name}") from error
            except subprocess.TimeoutExpired as error:
                raise ConversionError(
                    f"Converting {path.name} timed out after {self.timeout_seconds} seconds"
                ) from error

            converted = Path(tmpdir) / f"{path.stem}.{target_format}"
            if result.returncode != 0 or not converted.exists():
                raise ConversionError(
                    f"{self.binary} exited with code {result.returncode} for {path.name}: "
                    f"{result.stderr.decode(errors='ignore').strip()}"
                )
            LOGGER.debug("Converted %s to %s", path.name, converted.name)
            yield converted


class GenericExtractor:
    """Best-effort whole-document extraction driven by content sniffing."""

    def extract(self, path: Path) -> List[ExtractedContent]:
        try:
            text = normalize_text(self.read_text(path))
        except Exception as error:
            LOGGER.warning("Generic extraction failed for %s: %s", path.name, error)
            return []
        if not text:
            return []
        return [ExtractedContent(text=text, topic=detect_topic(text), section_title=DOCUMENT_CONTENT_TITLE)]

    def read_text(self, path: Path) -> str:
        data = path.read_bytes()
        if data.startswith(b"%PDF"):
            return pdfminer_extract_text(str(path)) or ""
        if data.startswith(b"PK") and zipfile.is_zipfile(path):
            return _read_ooxml_text(path)
        if data.startswith(_OLE_MAGIC):
            raise ValueError(f"{path.name} is a legacy Office file and must be converted first")
        if data.lstrip().startswith(b"{\\rtf"):
            return rtf_to_text(_decode_text(data), errors="ignore")
        if b"\x00" in data and not data.startswith(_UTF16_BOMS):
            raise ValueError(f"{path.name} is a binary file")
        return _decode_text(data)


def _read_ooxml_text(path: Path) -> str:
    with zipfile.ZipFile(path) as archive:
        names = set(archive.namelist())
    if "word/document.xml" in names:
        document = load_docx(str(path))
        return "\n".join(paragraph.text for paragraph in document.paragraphs if paragraph.text.strip())
    if "ppt/presentation.xml" in names:
        presentation = load_pptx(str(path))
        return "\n".join(slide_text(slide) for slide in presentation.slides)
    raise ValueError(f"Unrecognised archive payload in {path.name}")


def _decode_text(data: bytes) -> str:
    if data.startswith(_UTF16_BOMS):
        return data.decode("utf-16")
    if data.startswith(b"\xef\xbb\xbf"):
        return data[3:].decode("utf-8", errors="replace")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


class ContentExtractor:
    """Dispatches a file to the extractor for its format.

    Any failure inside a format-specific extractor falls back to the generic
    extractor, which returns an empty list when it cannot read the file either.
    """

    def __init__(
        self,
        section_char_limit: int = SECTION_CHAR_LIMIT,
        converter: Optional[OfficeConverter] = None,
    ) -> None:
        self.pdf_extractor = PDFExtractor()
        self.docx_extractor = DocxExtractor(section_char_limit=section_char_limit)
        self.slide_extractor = SlideExtractor()
        self.generic_extractor = GenericExtractor()
        self.converter = converter or OfficeConverter()

    def extract(
        self,
        path: Path,
        declared_name: str,
        document_format: Optional[DocumentFormat] = None,
    ) -> List[ExtractedContent]:
        path = Path(path)
        document_format = document_format or DocumentFormatDetector.detect(declared_name)
        try:
            return self._extract_by_format(path, document_format)
        except Exception as error:
            LOGGER.warning(
                "Error extracting %s as %s (%s); trying generic extraction",
                declared_name,
                document_format.value,
                error,
            )
        fragments = self.generic_extractor.extract(path)
        if not fragments:
            LOGGER.warning("Fallback extraction produced no content for %s", declared_name)
        return fragments

    def _extract_by_format(self, path: Path, document_format: DocumentFormat) -> List[ExtractedContent]:
        if document_format is DocumentFormat.PDF:
            return self.pdf_extractor.extract(path)
        if document_format is DocumentFormat.DOCX:
            return self.docx_extractor.extract(path)
        if document_format is DocumentFormat.PPTX:
            return self.slide_extractor.extract(path)
        if document_format is DocumentFormat.DOC:
            with self.converter.convert(path, "docx") as converted:
                return self.docx_extractor.extract(converted)
        if document_format is DocumentFormat.PPT:
            with self.converter.convert(path, "pptx") as converted:
                return self.slide_extractor.extract(converted)
        return self.generic_extractor.extract(path)
