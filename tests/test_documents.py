from __future__ import annotations

import datetime as dt
import io

import pytest

from conftest import build_pdf
from smartstudy.db import DocumentStatus
from smartstudy.documents import DocumentService, sanitize_filename
from smartstudy.errors import DocumentNotFoundError, InvalidUploadError


@pytest.fixture()
def service(repository, search_index, pipeline, settings) -> DocumentService:
    return DocumentService(repository, search_index, pipeline, settings)


def _upload(service: DocumentService, name: str, payload: bytes):
    document = service.register_upload(name, payload)
    service.wait_for(document.id, timeout=30)
    return service.get_document(document.id)


def test_upload_is_stored_and_ingested(service, settings, search_index) -> None:
    document = _upload(service, "Week 1/Lecture Notes.pdf", build_pdf(["Hash maps", "Open addressing"]))

    assert document.status is DocumentStatus.COMPLETED
    assert document.original_filename == "Lecture Notes.pdf"
    assert document.file_type == ".pdf"
    assert document.filename.startswith("Lecture_Notes-") and document.filename.endswith(".pdf")
    assert (settings.upload_dir / document.filename).exists()
    assert len(search_index.search("")) == 2


def test_upload_accepts_file_objects(service) -> None:
    document = service.register_upload("notes.txt", io.BytesIO(b"Streams are fine too"))
    service.wait_for(document.id, timeout=30)

    assert service.get_document(document.id).status is DocumentStatus.COMPLETED


@pytest.mark.parametrize(
    ("name", "payload", "message"),
    [
        ("", b"data", "name"),
        ("virus.exe", b"data", "Unsupported"),
        ("empty.txt", b"", "empty"),
    ],
)
def test_invalid_uploads_are_rejected(service, settings, name, payload, message) -> None:
    with pytest.raises(InvalidUploadError, match=message):
        service.register_upload(name, payload)

    assert service.list_documents() == []
    assert not settings.upload_dir.exists() or list(settings.upload_dir.iterdir()) == []


def test_oversized_upload_is_rejected(service, settings) -> None:
    settings.max_upload_bytes = 16

    with pytest.raises(InvalidUploadError, match="exceeds"):
        service.register_upload("big.txt", b"x" * 17)

    assert list(settings.upload_dir.iterdir()) == []


def test_sanitize_filename() -> None:
    assert sanitize_filename("../../etc/pass wd.txt") == "pass_wd.txt"
    assert sanitize_filename("C:\\Users\\me\\notes.pdf") == "notes.pdf"
    assert sanitize_filename("...") == "upload"
    assert sanitize_filename("") == "upload"


def test_document_content_is_in_position_order(service) -> None:
    document = _upload(service, "three.pdf", build_pdf(["one", "two", "three"]))

    chunks = service.get_document_content(document.id)

    assert [chunk.location for chunk in chunks] == ["Page 1", "Page 2", "Page 3"]
    with pytest.raises(DocumentNotFoundError):
        service.get_document_content(999)


def test_delete_document_removes_everything(service, repository, search_index, settings) -> None:
    keep = _upload(service, "keep.txt", b"Keep this document around")
    drop = _upload(service, "drop.txt", b"Drop this document entirely")

    service.delete_document(drop.id)

    assert repository.get_document(drop.id) is None
    assert repository.list_chunks(drop.id) == []
    assert not (settings.upload_dir / drop.filename).exists()
    assert {entry.document_id for entry in search_index.entries()} == {keep.id}
    with pytest.raises(DocumentNotFoundError):
        service.delete_document(drop.id)


def test_delete_all_documents(service, repository, search_index, settings) -> None:
    _upload(service, "a.txt", b"First document text")
    _upload(service, "b.txt", b"Second document text")

    assert service.delete_all_documents() == 2
    assert repository.list_documents() == []
    assert search_index.entries() == ()
    assert list(settings.upload_dir.iterdir()) == []


def test_document_stats(service, repository, completed_document) -> None:
    _upload(service, "good.txt", b"Stats count completed documents")
    _upload(service, "blank.txt", b"   ")
    completed_document("queued.pdf", [], status=DocumentStatus.PROCESSING)

    stats = service.get_document_stats()

    assert stats.total_documents == 3
    assert stats.completed_documents == 1
    assert stats.failed_documents == 1
    assert stats.processing_documents == 1
    assert stats.total_size_bytes == len(b"Stats count completed documents")
    assert stats.recent_uploads == 3
    later = service.get_document_stats(now=dt.datetime.utcnow() + dt.timedelta(days=8))
    assert later.recent_uploads == 0
