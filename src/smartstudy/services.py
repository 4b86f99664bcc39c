"""Construction of the long-lived application services."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from smartstudy.config import Settings
from smartstudy.db.repository import DocumentRepository, create_session_factory
from smartstudy.documents import DocumentService
from smartstudy.ingest.pipeline import IngestionPipeline
from smartstudy.search.index import SearchIndex

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    settings: Settings
    repository: DocumentRepository
    index: SearchIndex
    pipeline: IngestionPipeline
    documents: DocumentService

    def close(self) -> None:
        self.pipeline.shutdown(wait=True)


def build_services(settings: Settings) -> Services:
    """Wire repository, index, pipeline and document service for ``settings``.

    Raises :class:`~smartstudy.errors.IndexUnavailableError` when the index
    directory cannot be opened.
    """

    settings.ensure_directories()
    repository = DocumentRepository(create_session_factory(settings.database_url))
    index = SearchIndex(settings.index_dir, repository)
    pipeline = IngestionPipeline(repository, index, settings=settings)
    documents = DocumentService(repository, index, pipeline, settings)
    LOGGER.info(
        "Services ready (database=%s, index=%s, uploads=%s)",
        settings.database_url,
        settings.index_dir,
        settings.upload_dir,
    )
    return Services(
        settings=settings,
        repository=repository,
        index=index,
        pipeline=pipeline,
        documents=documents,
    )
