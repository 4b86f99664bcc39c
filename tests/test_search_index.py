from __future__ import annotations

from pathlib import Path

import pytest

from smartstudy.db import DocumentRepository, DocumentStatus
from smartstudy.errors import DocumentNotFoundError, IndexUnavailableError
from smartstudy.ingest.models import ExtractedContent
from smartstudy.search.index import INDEX_FILENAME, SearchIndex


def _page(number: int, text: str, topic: str = "General Content") -> ExtractedContent:
    return ExtractedContent(text=text, page_number=number, topic=topic, section_title=f"Page {number}")


def _slide(number: int, text: str) -> ExtractedContent:
    return ExtractedContent(text=text, slide_number=number, section_title=f"Slide {number}")


def _index_document(index: SearchIndex, repository: DocumentRepository, document_id: int) -> None:
    document = repository.get_document(document_id)
    for chunk in repository.list_chunks(document_id):
        index.add_entry(document, chunk)
    index.commit()


def test_entries_are_invisible_until_commit(search_index, repository, completed_document) -> None:
    document_id = completed_document("notes.pdf", [_page(1, "Indexes speed up lookups")])
    document = repository.get_document(document_id)
    chunk = repository.list_chunks(document_id)[0]

    search_index.add_entry(document, chunk)
    assert search_index.search("") == []
    assert search_index.get_stats()["pending_operations"] == 1

    search_index.commit()
    results = search_index.search("")
    assert [result.content_id for result in results] == [chunk.id]
    assert results[0].filename == "notes.pdf"
    assert results[0].location == "Page 1"
    assert search_index.get_stats()["pending_operations"] == 0


def test_blank_query_returns_everything_in_position_order(search_index, repository, completed_document) -> None:
    first = completed_document(
        "b.pdf",
        [_page(3, "third page"), _page(1, "first page"), _page(2, "second page")],
    )
    second = completed_document("a.txt", [ExtractedContent(text="no markers at all")])
    third = completed_document("c.pptx", [_slide(2, "slide two"), _slide(1, "slide one")])
    search_index.rebuild_all()

    results = search_index.search("   ", max_results=1)

    assert [(result.document_id, result.page_number, result.slide_number) for result in results] == [
        (first, 1, None),
        (first, 2, None),
        (first, 3, None),
        (second, None, None),
        (third, None, 1),
        (third, None, 2),
    ]


def test_query_results_are_truncated_and_ordered(search_index, repository, completed_document) -> None:
    fragments = [_page(number, f"page {number} covers graph theory") for number in range(30, 0, -1)]
    document_id = completed_document("graphs.pdf", fragments)
    _index_document(search_index, repository, document_id)

    results = search_index.search("graph", max_results=10)

    assert len(results) == 10
    assert all("graph" in result.content for result in results)
    page_numbers = [result.page_number for result in results]
    assert page_numbers == sorted(page_numbers)


def test_short_queries_match_substrings(search_index, repository, completed_document) -> None:
    document_id = completed_document(
        "db.pdf",
        [_page(1, "Relational databases and SQL"), _page(2, "Sorting networks")],
    )
    _index_document(search_index, repository, document_id)

    results = search_index.search("datab")

    assert [result.page_number for result in results] == [1]


def test_dbms_expands_to_database(search_index, repository, completed_document) -> None:
    document_id = completed_document(
        "db.pdf",
        [_page(1, "A database management system stores data"), _page(2, "Unrelated content")],
    )
    _index_document(search_index, repository, document_id)

    results = search_index.search("DBMS")

    assert [result.page_number for result in results] == [1]


def test_malformed_queries_do_not_raise(search_index, repository, completed_document) -> None:
    document_id = completed_document("notes.txt", [ExtractedContent(text="parentheses everywhere")])
    _index_document(search_index, repository, document_id)

    assert search_index.search("(") == []
    assert search_index.search("-") == []
    assert search_index.search('"unterminated phrase') == []


def test_delete_by_document_removes_all_entries(search_index, completed_document) -> None:
    keep = completed_document("keep.pdf", [_page(1, "keep me"), _page(2, "keep me too")])
    drop = completed_document("drop.pdf", [_page(1, "drop me"), _page(2, "drop me too")])
    search_index.rebuild_all()

    search_index.delete_by_document(drop)

    assert {entry.document_id for entry in search_index.entries()} == {keep}
    assert search_index.search("drop") == []


def test_rebuild_all_is_idempotent_and_skips_unfinished_documents(search_index, completed_document) -> None:
    completed_document("done.pdf", [_page(1, "completed text"), _page(2, "more completed text")])
    completed_document("failed.pdf", [_page(1, "failed text")], status=DocumentStatus.FAILED)
    completed_document("busy.pdf", [_page(1, "busy text")], status=DocumentStatus.PROCESSING)

    first_count = search_index.rebuild_all()
    first_entries = search_index.entries()
    second_count = search_index.rebuild_all()

    assert first_count == second_count == 2
    assert search_index.entries() == first_entries
    assert {entry.filename for entry in first_entries} == {"done.pdf"}


def test_rebuild_discards_pending_operations(search_index, repository, completed_document) -> None:
    document_id = completed_document("notes.pdf", [_page(1, "alpha")])
    search_index.delete_by_document(999)
    search_index.add_entry(repository.get_document(document_id), repository.list_chunks(document_id)[0])

    assert search_index.rebuild_all() == 1
    assert len(search_index.entries()) == 1
    assert search_index.get_stats()["pending_operations"] == 0


def test_reindex_document(search_index, repository, completed_document) -> None:
    document_id = completed_document("notes.pdf", [_page(1, "original words")])
    search_index.rebuild_all()
    repository.delete_chunks(document_id)
    repository.add_chunks(document_id, [_page(1, "replacement words"), _page(2, "extra page")])

    assert search_index.reindex_document(document_id) == 2
    assert [result.content for result in search_index.search("")] == ["replacement words", "extra page"]

    with pytest.raises(DocumentNotFoundError):
        search_index.reindex_document(12345)


def test_search_with_filters(search_index, completed_document) -> None:
    completed_document(
        "algorithms.pdf",
        [_page(1, "Sorting arrays quickly", topic="Sorting"), _page(2, "Searching trees", topic="Trees")],
    )
    completed_document("other.pdf", [_page(1, "Sorting linked lists", topic="Sorting")])
    search_index.rebuild_all()

    by_file = search_index.search_with_filters("", filename="algorithms.pdf")
    assert {result.filename for result in by_file} == {"algorithms.pdf"}
    assert len(by_file) == 2

    by_topic = search_index.search_with_filters("sorting", topic="Sorting")
    assert {result.content for result in by_topic} == {"Sorting arrays quickly", "Sorting linked lists"}

    both = search_index.search_with_filters("sorting", filename="other.pdf", topic="Sorting")
    assert [result.content for result in both] == ["Sorting linked lists"]

    assert search_index.search_with_filters("", filename="ALGORITHMS.PDF") == []
    assert len(search_index.search_with_filters("", filename="  ", topic="")) == 3
    assert len(search_index.search_with_filters("", max_results=1)) == 1


def test_suggestions(search_index, completed_document) -> None:
    completed_document(
        "norm.pdf",
        [_page(1, "Normalization normalizes tables into normal forms. Norm")],
    )
    search_index.rebuild_all()

    assert search_index.suggestions("norm") == ["normalization", "normalizes", "normal"]
    assert search_index.suggestions("norm", max_suggestions=2) == ["normalization", "normalizes"]
    assert search_index.suggestions("  ") == []
    assert search_index.suggestions("zzz") == []


def test_index_survives_reopen(settings, repository, completed_document) -> None:
    index = SearchIndex(settings.index_dir, repository)
    completed_document("notes.pdf", [_page(1, "persistent content")])
    index.rebuild_all()

    reopened = SearchIndex(settings.index_dir, repository)

    assert [result.content for result in reopened.search("persistent")] == ["persistent content"]
    assert reopened.get_stats()["total_entries"] == 1


def test_corrupt_index_file_is_unavailable(settings, repository) -> None:
    settings.index_dir.mkdir(parents=True, exist_ok=True)
    (settings.index_dir / INDEX_FILENAME).write_text("{not json", encoding="utf-8")

    with pytest.raises(IndexUnavailableError):
        SearchIndex(settings.index_dir, repository)


def test_get_stats(search_index, completed_document) -> None:
    completed_document("one.pdf", [_page(1, "first"), _page(2, "second")])
    completed_document("two.pdf", [_page(1, "third")])
    search_index.rebuild_all()

    stats = search_index.get_stats()

    assert stats["total_entries"] == 3
    assert stats["indexed_documents"] == 2
    assert stats["pending_operations"] == 0
    assert stats["index_size_bytes"] > 0
    assert stats["index_directory"] == str(search_index.index_dir)


def test_empty_index_searches_cleanly(tmp_path: Path) -> None:
    index = SearchIndex(tmp_path / "index")

    assert index.search("") == []
    assert index.search("anything") == []
    assert index.suggestions("any") == []
    assert index.get_stats()["index_size_bytes"] == 0


def test_rebuild_keeps_entries_queued_for_unfinished_documents(search_index, repository, completed_document) -> None:
    completed_document("done.pdf", [_page(1, "finished document")])
    busy = completed_document("busy.pdf", [_page(1, "in flight document")], status=DocumentStatus.PROCESSING)
    search_index.add_entry(repository.get_document(busy), repository.list_chunks(busy)[0])

    assert search_index.rebuild_all() == 1
    assert {entry.filename for entry in search_index.entries()} == {"done.pdf", "busy.pdf"}
    assert search_index.get_stats()["pending_operations"] == 0


def test_index_document_replaces_previous_entries(search_index, repository, completed_document) -> None:
    document_id = completed_document("notes.pdf", [_page(1, "first"), _page(2, "second")])
    document = repository.get_document(document_id)
    chunks = repository.list_chunks(document_id)

    search_index.index_document(document, chunks)
    assert search_index.index_document(document, chunks) == 2

    assert len(search_index.entries()) == 2
