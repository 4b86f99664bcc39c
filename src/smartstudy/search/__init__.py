"""Full-text search over extracted document content."""

from .index import IndexEntry, SearchIndex, SearchResult
from .query import QueryParser, normalize_query, parse_query

__all__ = [
    "IndexEntry",
    "QueryParser",
    "SearchIndex",
    "SearchResult",
    "normalize_query",
    "parse_query",
]
