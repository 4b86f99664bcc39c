"""Document ingestion: format detection, extraction, archives and orchestration."""
