import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from smartstudy.api import documents_router, search_router
from smartstudy.config import Settings, get_settings
from smartstudy.logging_config import configure_logging

LOGGER = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application; services are created on first request."""

    settings = settings or get_settings()
    configure_logging(settings.log_dir)

    app = FastAPI(title="SmartStudy API")
    app.state.settings = settings
    app.state.services = None
    app.include_router(documents_router)
    app.include_router(search_router)

    @app.get("/", response_class=PlainTextResponse)
    def read_root() -> str:
        """Healthcheck endpoint for the service."""
        return "ok"

    @app.on_event("shutdown")
    def _shutdown_services() -> None:
        services = app.state.services
        if services is not None:
            LOGGER.info("Shutting down ingestion workers")
            services.close()

    return app


app = create_app()
