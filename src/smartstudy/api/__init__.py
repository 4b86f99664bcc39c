"""HTTP routers for documents and search."""

from .documents import router as documents_router
from .search import router as search_router

__all__ = ["documents_router", "search_router"]
