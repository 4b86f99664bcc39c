from __future__ import annotations

import json
import logging
import sys

from smartstudy.logging_config import (
    AUDIT_LOGGER_NAME,
    JSONLineFormatter,
    configure_logging,
    get_ingest_audit_logger,
)
from smartstudy.telemetry import log_event


def _record(msg, **extra) -> logging.LogRecord:
    record = logging.LogRecord("smartstudy.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_merges_dict_messages() -> None:
    payload = json.loads(JSONLineFormatter().format(_record({"step": "index.commit", "entries": 3})))

    assert payload["step"] == "index.commit"
    assert payload["entries"] == 3
    assert payload["level"] == "INFO"
    assert payload["logger"] == "smartstudy.test"
    assert payload["timestamp"].endswith("Z")
    assert payload["thread"] == "MainThread"


def test_formatter_keeps_plain_messages_and_extras() -> None:
    payload = json.loads(JSONLineFormatter().format(_record("hello %s", document_id=7)))

    assert payload["message"] == "hello %s"
    assert payload["document_id"] == 7
    assert "args" not in payload and "lineno" not in payload


def test_formatter_renders_exceptions() -> None:
    try:
        raise ValueError("bad page")
    except ValueError:
        record = logging.LogRecord(
            "smartstudy.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
        )

    payload = json.loads(JSONLineFormatter().format(record))

    assert payload["message"] == "failed"
    assert "ValueError: bad page" in payload["exc_info"]


def test_audit_logger_writes_json_lines(tmp_path) -> None:
    audit_path = configure_logging(tmp_path / "logs")
    logger = get_ingest_audit_logger()

    logger.info({"event": "ingest", "document_id": 1, "status": "COMPLETED"})

    assert logger.name == AUDIT_LOGGER_NAME
    assert not logger.propagate
    lines = audit_path.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["status"] == "COMPLETED"


def test_log_event_schema(caplog) -> None:
    logger = logging.getLogger("smartstudy.test.events")

    with caplog.at_level(logging.INFO, logger="smartstudy.test.events"):
        log_event(logger, "ingest.document.complete", document_id=5, duration_ms=1.23456, details={"chunks": 2})

    event = caplog.records[-1].msg
    assert event == {
        "step": "ingest.document.complete",
        "module": "smartstudy.test.events",
        "document_id": 5,
        "duration_ms": 1.235,
        "details": {"chunks": 2},
    }
