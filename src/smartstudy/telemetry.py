"""Centralised observability helpers for structured lifecycle logging."""

from __future__ import annotations

import logging
import traceback
from typing import Any, Optional

LOGGER = logging.getLogger("smartstudy.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    document_id: int | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if document_id is not None:
        event["document_id"] = document_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_ingest_event(
    step: str,
    *,
    document_id: int,
    file_name: str,
    file_format: str | None = None,
    size_bytes: int | None = None,
    duration_ms: float | None = None,
    chunks: int | None = None,
    status: str | None = None,
) -> None:
    details = {
        "file": file_name,
        "format": file_format,
        "size_bytes": size_bytes,
        "chunks": chunks,
        "status": status,
    }
    log_event(LOGGER, step, document_id=document_id, duration_ms=duration_ms, details=details)


def emit_archive_event(
    *,
    archive: str,
    total_entries: int,
    considered_entries: int,
    retained_entries: int,
    processed_entries: int,
    fragments: int,
    duration_ms: float,
    timed_out: bool,
) -> None:
    details = {
        "archive": archive,
        "total_entries": total_entries,
        "considered_entries": considered_entries,
        "retained_entries": retained_entries,
        "processed_entries": processed_entries,
        "fragments": fragments,
        "timed_out": timed_out,
    }
    level = "warning" if timed_out else "info"
    log_event(LOGGER, "archive.unpack", level=level, duration_ms=duration_ms, details=details)


def emit_index_event(
    step: str,
    *,
    index_dir: str,
    entries: int,
    pending: int | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
    document_id: int | None = None,
) -> None:
    details = {"index_dir": index_dir, "entries": entries, "pending": pending}
    level = "error" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_search_event(
    *,
    query: str,
    normalized: str | None,
    fallback: bool,
    results: int,
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:120],
        "normalized": normalized[:160] if normalized else normalized,
        "fallback": fallback,
        "results": results,
    }
    log_event(LOGGER, "search.query", level="debug", duration_ms=duration_ms, details=details)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    document_id: int | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if suggestion:
        details["suggestion"] = suggestion
    log_event(
        LOGGER,
        "exception",
        level="error",
        document_id=document_id,
        details=details,
        exc=error,
    )


__all__ = [
    "emit_archive_event",
    "emit_exception",
    "emit_index_event",
    "emit_ingest_event",
    "emit_search_event",
    "log_event",
]
