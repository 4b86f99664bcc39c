"""Persistent full-text index over extracted content chunks."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from rank_bm25 import BM25Okapi

from smartstudy.db.models import ContentChunk, Document, DocumentStatus
from smartstudy.db.repository import DocumentRepository
from smartstudy.errors import DocumentNotFoundError, IndexUnavailableError, QuerySyntaxError
from smartstudy.telemetry import emit_index_event, emit_search_event

from .query import MatchAllNode, QueryNode, QueryParser, TermNode, analyze, normalize_query

LOGGER = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
INDEX_FORMAT_VERSION = 1
MIN_CANDIDATES = 1000
DEFAULT_MAX_RESULTS = 20
DEFAULT_MAX_SUGGESTIONS = 10


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """Indexable copy of a content chunk."""

    document_id: int
    content_id: int
    content: str
    filename: str
    topic: str = ""
    section_title: str = ""
    page_number: Optional[int] = None
    slide_number: Optional[int] = None
    word_count: int = 0
    indexed_at: float = field(default=0.0, compare=False)

    @classmethod
    def from_chunk(cls, document: Document, chunk: ContentChunk, *, indexed_at: float) -> "IndexEntry":
        return cls(
            document_id=document.id,
            content_id=chunk.id,
            content=chunk.content or "",
            filename=document.original_filename or "",
            topic=chunk.topic or "",
            section_title=chunk.section_title or "",
            page_number=chunk.page_number,
            slide_number=chunk.slide_number,
            word_count=chunk.word_count or 0,
            indexed_at=indexed_at,
        )

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "IndexEntry":
        return cls(
            document_id=int(payload["document_id"]),
            content_id=int(payload["content_id"]),
            content=payload["content"],
            filename=payload.get("filename", ""),
            topic=payload.get("topic", ""),
            section_title=payload.get("section_title", ""),
            page_number=payload.get("page_number"),
            slide_number=payload.get("slide_number"),
            word_count=int(payload.get("word_count", 0)),
            indexed_at=float(payload.get("indexed_at", 0.0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SearchResult:
    document_id: int
    content_id: int
    content: str
    filename: str
    topic: str
    section_title: str
    page_number: Optional[int]
    slide_number: Optional[int]
    score: float

    @classmethod
    def from_entry(cls, entry: IndexEntry, score: float) -> "SearchResult":
        return cls(
            document_id=entry.document_id,
            content_id=entry.content_id,
            content=entry.content,
            filename=entry.filename,
            topic=entry.topic,
            section_title=entry.section_title,
            page_number=entry.page_number,
            slide_number=entry.slide_number,
            score=float(score),
        )

    @property
    def location(self) -> str:
        if self.page_number is not None:
            return f"Page {self.page_number}"
        if self.slide_number is not None:
            return f"Slide {self.slide_number}"
        return "Unknown"

    def position_key(self) -> Tuple[int, int, int]:
        return (self.document_id, self.page_number or 0, self.slide_number or 0)


class IndexSnapshot:
    """Immutable view of committed entries with postings and lazy BM25 scoring."""

    def __init__(self, entries: Sequence[IndexEntry], generation: int = 0) -> None:
        self.entries: Tuple[IndexEntry, ...] = tuple(entries)
        self.generation = generation
        self.tokens: List[List[str]] = [analyze(entry.content) for entry in self.entries]
        self.postings: Dict[str, set[int]] = {}
        for position, tokens in enumerate(self.tokens):
            for token in set(tokens):
                self.postings.setdefault(token, set()).add(position)
        self._bm25: Optional[BM25Okapi] = None

    @property
    def size(self) -> int:
        return len(self.entries)

    def _scorer(self) -> Optional[BM25Okapi]:
        # BM25Okapi divides by corpus size and vocabulary size
        if self._bm25 is None and self.entries and self.postings:
            self._bm25 = BM25Okapi(self.tokens)
        return self._bm25

    def rank(
        self,
        node: QueryNode,
        candidates: Iterable[int],
        limit: Optional[int],
    ) -> List[Tuple[int, float]]:
        """Order candidate positions by descending relevance, ties by index order."""

        positions = sorted(candidates)
        if not positions:
            return []
        terms = node.scoring_terms(self)
        scorer = self._scorer() if terms else None
        if scorer is None:
            scores = [1.0] * len(positions)
        else:
            scores = scorer.get_batch_scores(terms, positions)
        ranked = sorted(zip(positions, scores), key=lambda item: (-item[1], item[0]))
        if limit is not None:
            ranked = ranked[: max(limit, 0)]
        return [(position, float(score)) for position, score in ranked]


class SearchIndex:
    """Single-writer, multi-reader search index persisted under ``index_dir``.

    Writes are buffered by :meth:`add_entry` and :meth:`delete_by_document`
    and become visible to searches once :meth:`commit` swaps in a new
    snapshot. Readers never block on writers.
    """

    def __init__(
        self,
        index_dir: Path | str,
        repository: Optional[DocumentRepository] = None,
        *,
        clock=time.time,
    ) -> None:
        self.index_dir = Path(index_dir)
        self._repository = repository
        self._clock = clock
        self._write_lock = threading.RLock()
        self._pending: List[Tuple[str, Any]] = []
        self._snapshot = self._open()

    @property
    def index_path(self) -> Path:
        return self.index_dir / INDEX_FILENAME

    def _open(self) -> IndexSnapshot:
        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            if not self.index_path.exists():
                LOGGER.info("Creating new search index at %s", self.index_dir)
                return IndexSnapshot(())
            payload = json.loads(self.index_path.read_text(encoding="utf-8"))
            entries = [IndexEntry.from_dict(item) for item in payload.get("entries", [])]
            snapshot = IndexSnapshot(entries, int(payload.get("generation", 0)))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise IndexUnavailableError(
                f"Failed to open search index at {self.index_dir}",
                cause=exc,
            ) from exc
        LOGGER.info("Loaded search index with %s entries from %s", snapshot.size, self.index_dir)
        return snapshot

    def _persist(self, snapshot: IndexSnapshot) -> None:
        payload = {
            "version": INDEX_FORMAT_VERSION,
            "generation": snapshot.generation,
            "entries": [entry.to_dict() for entry in snapshot.entries],
        }
        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".index-", suffix=".tmp", dir=str(self.index_dir))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, ensure_ascii=False)
                os.replace(tmp_name, self.index_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise IndexUnavailableError(
                f"Failed to write search index at {self.index_dir}",
                cause=exc,
            ) from exc

    # writes -----------------------------------------------------------------------
    def add_entry(self, document: Document, chunk: ContentChunk) -> None:
        """Buffer an entry for ``chunk``; it becomes searchable after :meth:`commit`."""

        if document.id is None or chunk.id is None:
            raise ValueError("Document and chunk must be persisted before indexing")
        entry = IndexEntry.from_chunk(document, chunk, indexed_at=self._clock())
        with self._write_lock:
            self._pending.append(("add", entry))

    def index_document(self, document: Document, chunks: Sequence[ContentChunk]) -> int:
        """Replace the entries of ``document`` with ``chunks`` and commit them as one write."""

        with self._write_lock:
            self._pending.append(("delete", document.id))
            for chunk in chunks:
                self.add_entry(document, chunk)
            self.commit()
        return len(chunks)

    def commit(self) -> None:
        """Apply buffered operations, persist them and publish a new snapshot."""

        with self._write_lock:
            if not self._pending:
                return
            started = time.perf_counter()
            current = self._snapshot
            entries = list(current.entries)
            for operation, value in self._pending:
                if operation == "add":
                    entries.append(value)
                elif operation == "delete":
                    entries = [entry for entry in entries if entry.document_id != value]
                elif operation == "clear":
                    entries = []
            snapshot = IndexSnapshot(entries, current.generation + 1)
            pending = len(self._pending)
            try:
                self._persist(snapshot)
            except IndexUnavailableError as exc:
                emit_index_event(
                    "index.commit",
                    index_dir=str(self.index_dir),
                    entries=current.size,
                    pending=pending,
                    error=exc,
                )
                raise
            self._pending.clear()
            self._snapshot = snapshot
            emit_index_event(
                "index.commit",
                index_dir=str(self.index_dir),
                entries=snapshot.size,
                pending=pending,
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )

    def delete_by_document(self, document_id: int) -> None:
        with self._write_lock:
            self._pending.append(("delete", document_id))
            self.commit()
        LOGGER.info("Deleted document %s from search index", document_id)

    def clear(self) -> None:
        """Remove every entry from the index."""

        with self._write_lock:
            self._pending.append(("clear", None))
            self.commit()
        LOGGER.info("Cleared search index at %s", self.index_dir)

    def rebuild_all(self) -> int:
        """Replace the index contents with every chunk of every COMPLETED document.

        Entries queued for documents outside the rebuilt set (an ingestion
        still in flight) are kept and committed with the rebuild.
        """

        repository = self._require_repository()
        with self._write_lock:
            previous = list(self._pending)
            started = time.perf_counter()
            try:
                operations: List[Tuple[str, Any]] = [("clear", None)]
                rebuilt: set[int] = set()
                for document, chunks in repository.iter_completed_with_chunks():
                    rebuilt.add(document.id)
                    for chunk in chunks:
                        operations.append(
                            ("add", IndexEntry.from_chunk(document, chunk, indexed_at=self._clock()))
                        )
                count = len(operations) - 1
                operations.extend(self._in_flight_adds(previous, rebuilt))
                self._pending = operations
                self.commit()
            except Exception:
                self._pending = previous
                raise
        emit_index_event(
            "index.rebuild",
            index_dir=str(self.index_dir),
            entries=count,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return count

    @staticmethod
    def _in_flight_adds(operations: Sequence[Tuple[str, Any]], rebuilt: set[int]) -> List[Tuple[str, Any]]:
        carried: List[Tuple[str, Any]] = []
        for operation, value in operations:
            if operation == "add" and value.document_id not in rebuilt:
                carried.append((operation, value))
            elif operation == "delete":
                carried = [item for item in carried if item[1].document_id != value]
            elif operation == "clear":
                carried = []
        return carried

    def reindex_document(self, document_id: int) -> int:
        """Replace the entries of one document with its current chunks."""

        repository = self._require_repository()
        document = repository.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        chunks = repository.list_chunks(document_id) if document.status is DocumentStatus.COMPLETED else []
        with self._write_lock:
            self._pending.append(("delete", document_id))
            for chunk in chunks:
                self._pending.append(("add", IndexEntry.from_chunk(document, chunk, indexed_at=self._clock())))
            self.commit()
        emit_index_event(
            "index.reindex_document",
            index_dir=str(self.index_dir),
            entries=len(chunks),
            document_id=document_id,
        )
        return len(chunks)

    def _require_repository(self) -> DocumentRepository:
        if self._repository is None:
            raise RuntimeError("A document repository is required to rebuild the search index")
        return self._repository

    # reads ------------------------------------------------------------------------
    def entries(self) -> Tuple[IndexEntry, ...]:
        return self._snapshot.entries

    def _build_query(self, query: str) -> Tuple[QueryNode, str, bool]:
        normalized = normalize_query(query)
        try:
            return QueryParser().parse(normalized), normalized, False
        except QuerySyntaxError as error:
            LOGGER.info("Query %r could not be parsed (%s), using exact term lookup", normalized, error)
            return TermNode(query.strip().lower()), normalized, True

    def search(self, query: Optional[str], max_results: int = DEFAULT_MAX_RESULTS) -> List[SearchResult]:
        """Return matching entries ordered by document, page and slide.

        A blank query returns every entry. Otherwise the best
        ``max(max_results, 1000)`` candidates are selected by relevance, put in
        position order and truncated to ``max_results``.
        """

        snapshot = self._snapshot
        started = time.perf_counter()
        normalized: Optional[str] = None
        fallback = False
        blank = not query or not query.strip()

        if blank:
            hits = [(position, 1.0) for position in range(snapshot.size)]
        else:
            node, normalized, fallback = self._build_query(query)
            hits = snapshot.rank(node, node.evaluate(snapshot), max(max_results, MIN_CANDIDATES))

        results = [SearchResult.from_entry(snapshot.entries[position], score) for position, score in hits]
        results.sort(key=SearchResult.position_key)
        if not blank:
            results = results[: max(max_results, 0)]

        emit_search_event(
            query=query or "",
            normalized=normalized,
            fallback=fallback,
            results=len(results),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return results

    def search_with_filters(
        self,
        query: Optional[str],
        filename: Optional[str] = None,
        topic: Optional[str] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> List[SearchResult]:
        """Search restricted to exact ``filename`` and/or ``topic`` values, in relevance order."""

        snapshot = self._snapshot
        if not query or not query.strip():
            node: QueryNode = MatchAllNode()
        else:
            node, _, _ = self._build_query(query)

        matched: FrozenSet[int] | set[int] = node.evaluate(snapshot)
        if filename and filename.strip():
            matched = {position for position in matched if snapshot.entries[position].filename == filename}
        if topic and topic.strip():
            matched = {position for position in matched if snapshot.entries[position].topic == topic}

        hits = snapshot.rank(node, matched, max_results)
        return [SearchResult.from_entry(snapshot.entries[position], score) for position, score in hits]

    def suggestions(self, partial: Optional[str], max_suggestions: int = DEFAULT_MAX_SUGGESTIONS) -> List[str]:
        """Complete ``partial`` with longer words found in the best prefix matches."""

        if not partial or not partial.strip() or max_suggestions <= 0:
            return []
        partial = partial.strip()
        snapshot = self._snapshot
        try:
            node = QueryParser().parse(partial + "*")
        except QuerySyntaxError:
            node = TermNode(partial.lower())

        prefix = partial.lower()
        found: Dict[str, None] = {}
        for position, _ in snapshot.rank(node, node.evaluate(snapshot), max_suggestions):
            for word in snapshot.entries[position].content.split():
                lowered = word.lower()
                if lowered.startswith(prefix) and len(word) > len(partial):
                    found.setdefault(lowered, None)
                    if len(found) >= max_suggestions:
                        return list(found)
        return list(found)

    def get_stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        try:
            size_bytes = self.index_path.stat().st_size
        except FileNotFoundError:
            size_bytes = 0
        with self._write_lock:
            pending = len(self._pending)
        return {
            "total_entries": snapshot.size,
            "indexed_documents": len({entry.document_id for entry in snapshot.entries}),
            "pending_operations": pending,
            "index_size_bytes": size_bytes,
            "index_directory": str(self.index_dir),
            "generation": snapshot.generation,
        }


__all__ = ["IndexEntry", "IndexSnapshot", "SearchIndex", "SearchResult"]
