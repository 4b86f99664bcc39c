"""SmartStudy document ingestion and search service."""

__version__ = "0.1.0"
