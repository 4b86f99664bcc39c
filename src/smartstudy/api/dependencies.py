"""FastAPI dependencies resolving the application's services."""
from __future__ import annotations

import threading

from fastapi import HTTPException, Request

from smartstudy.config import Settings
from smartstudy.documents import DocumentService
from smartstudy.errors import IndexUnavailableError
from smartstudy.search.index import SearchIndex
from smartstudy.services import Services, build_services

_BUILD_LOCK = threading.Lock()


def get_services(request: Request) -> Services:
    """Return the services bound to the app, building them on first use."""

    state = request.app.state
    services = getattr(state, "services", None)
    if services is not None:
        return services
    with _BUILD_LOCK:
        services = getattr(state, "services", None)
        if services is None:
            settings: Settings = state.settings
            try:
                services = build_services(settings)
            except IndexUnavailableError as exc:
                raise HTTPException(status_code=503, detail=str(exc)) from exc
            state.services = services
    return services


def get_document_service(request: Request) -> DocumentService:
    return get_services(request).documents


def get_search_index(request: Request) -> SearchIndex:
    return get_services(request).index
