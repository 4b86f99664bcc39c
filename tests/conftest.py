"""Shared fixtures and small file builders for the test-suite."""
from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import pytest

from smartstudy.config import Settings
from smartstudy.db import DocumentRepository, DocumentStatus, create_session_factory
from smartstudy.ingest.models import ExtractedContent
from smartstudy.ingest.pipeline import IngestionPipeline
from smartstudy.search.index import SearchIndex


def build_pdf(pages: Sequence[str]) -> bytes:
    """Return a minimal PDF with one Helvetica text line per page; ``""`` makes a blank page."""

    page_ids = [4 + 2 * index for index in range(len(pages))]
    kids = " ".join(f"{page_id} 0 R" for page_id in page_ids)
    objects: List[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode("ascii"),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, text in zip(page_ids, pages):
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>"
            ).encode("ascii")
        )
        if text:
            escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
            stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode("latin-1")
        else:
            stream = b""
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    output = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(output))
        output += f"{number} 0 obj\n".encode("ascii") + body + b"\nendobj\n"
    xref_offset = len(output)
    output += f"xref\n0 {len(objects) + 1}\n".encode("ascii")
    output += b"0000000000 65535 f \n"
    for offset in offsets:
        output += f"{offset:010d} 00000 n \n".encode("ascii")
    output += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n"
    ).encode("ascii")
    return bytes(output)


def build_docx(path: Path, paragraphs: Iterable[str]) -> Path:
    from docx import Document

    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    document.save(str(path))
    return path


def build_pptx(path: Path, slides: Sequence[Sequence[str]]) -> Path:
    """Write a presentation with one text box per slide; ``[]`` makes an empty slide."""

    from pptx import Presentation
    from pptx.util import Inches

    presentation = Presentation()
    blank_layout = presentation.slide_layouts[6]
    for paragraphs in slides:
        slide = presentation.slides.add_slide(blank_layout)
        if not paragraphs:
            continue
        frame = slide.shapes.add_textbox(Inches(1), Inches(1), Inches(8), Inches(4)).text_frame
        frame.text = paragraphs[0]
        for text in paragraphs[1:]:
            frame.add_paragraph().text = text
    presentation.save(str(path))
    return path


def build_zip(path: Path, entries: Dict[str, Optional[bytes]]) -> Path:
    """Write a ZIP archive; a ``None`` payload creates a directory entry."""

    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, payload in entries.items():
            if payload is None:
                archive.writestr(name if name.endswith("/") else f"{name}/", b"")
            else:
                archive.writestr(name, payload)
    return path


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    data_dir = tmp_path / "data"
    return Settings(
        data_dir=data_dir,
        upload_dir=data_dir / "uploads",
        index_dir=data_dir / "index",
        temp_dir=tmp_path / "work",
        database_url=f"sqlite:///{data_dir / 'smartstudy.db'}",
        ingest_workers=1,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture()
def repository(settings: Settings) -> DocumentRepository:
    return DocumentRepository(create_session_factory(settings.database_url))


@pytest.fixture()
def search_index(settings: Settings, repository: DocumentRepository) -> SearchIndex:
    return SearchIndex(settings.index_dir, repository)


@pytest.fixture()
def pipeline(repository: DocumentRepository, search_index: SearchIndex, settings: Settings):
    ingestion = IngestionPipeline(repository, search_index, settings=settings)
    yield ingestion
    ingestion.shutdown()


@pytest.fixture()
def stored_document(repository: DocumentRepository, tmp_path: Path) -> Callable[..., int]:
    """Create a document row pointing at a file written under ``tmp_path``."""

    def _create(name: str, payload: Optional[bytes], *, file_type: Optional[str] = None) -> int:
        path = tmp_path / "stored" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if payload is not None:
            path.write_bytes(payload)
        document = repository.create_document(
            filename=name,
            original_filename=name,
            file_path=str(path),
            file_size=len(payload or b""),
            file_type=file_type if file_type is not None else Path(name).suffix.lower(),
        )
        return document.id

    return _create


@pytest.fixture()
def completed_document(repository: DocumentRepository) -> Callable[..., int]:
    """Create a COMPLETED document with the given fragments already stored as chunks."""

    def _create(
        name: str,
        fragments: Sequence[ExtractedContent],
        status: DocumentStatus = DocumentStatus.COMPLETED,
    ) -> int:
        document = repository.create_document(
            filename=name,
            original_filename=name,
            file_path=f"/nonexistent/{name}",
            file_size=sum(len(fragment.text) for fragment in fragments),
            file_type=Path(name).suffix.lower(),
            status=status,
        )
        repository.add_chunks(document.id, fragments)
        return document.id

    return _create
