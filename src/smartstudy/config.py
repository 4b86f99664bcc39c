"""Runtime configuration resolved from environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

LOGGER = logging.getLogger(__name__)

_ENV_PREFIX = "SMARTSTUDY_"
_FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024
DEFAULT_ARCHIVE_MAX_ENTRIES = 100
DEFAULT_ARCHIVE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_ARCHIVE_MAX_ENTRY_BYTES = 100 * 1024 * 1024
DEFAULT_OFFICE_BINARY = "soffice"
DEFAULT_CONVERSION_TIMEOUT_SECONDS = 120.0


def _env(name: str) -> str | None:
    return os.getenv(f"{_ENV_PREFIX}{name}")


def _int_from_env(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s%s: %s; using default %s", _ENV_PREFIX, name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s%s: %s; using default %s", _ENV_PREFIX, name, value, default)
        return default


def _bool_from_env(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _path_from_env(name: str, default: Path) -> Path:
    value = _env(name)
    return Path(value) if value else default


@dataclass(slots=True)
class Settings:
    """Resolved settings for storage locations and ingestion limits."""

    data_dir: Path = Path("data")
    upload_dir: Path = Path("data/uploads")
    index_dir: Path = Path("data/index")
    temp_dir: Path | None = None
    database_url: str = "sqlite:///data/smartstudy.db"
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    archive_max_entries: int = DEFAULT_ARCHIVE_MAX_ENTRIES
    archive_timeout_seconds: float = DEFAULT_ARCHIVE_TIMEOUT_SECONDS
    archive_max_entry_bytes: int = DEFAULT_ARCHIVE_MAX_ENTRY_BYTES
    ingest_workers: int = 2
    always_rebuild_after_ingest: bool = True
    office_binary: str = DEFAULT_OFFICE_BINARY
    conversion_timeout_seconds: float = DEFAULT_CONVERSION_TIMEOUT_SECONDS
    log_dir: Path = field(default_factory=lambda: Path("logs"))

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = _path_from_env("DATA_DIR", Path("data"))
        temp_dir = _env("TEMP_DIR")
        return cls(
            data_dir=data_dir,
            upload_dir=_path_from_env("UPLOAD_DIR", data_dir / "uploads"),
            index_dir=_path_from_env("INDEX_DIR", data_dir / "index"),
            temp_dir=Path(temp_dir) if temp_dir else None,
            database_url=_env("DATABASE_URL") or f"sqlite:///{data_dir / 'smartstudy.db'}",
            max_upload_bytes=_int_from_env("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
            archive_max_entries=_int_from_env("ARCHIVE_MAX_ENTRIES", DEFAULT_ARCHIVE_MAX_ENTRIES),
            archive_timeout_seconds=_float_from_env(
                "ARCHIVE_TIMEOUT_SECONDS", DEFAULT_ARCHIVE_TIMEOUT_SECONDS
            ),
            archive_max_entry_bytes=_int_from_env(
                "ARCHIVE_MAX_ENTRY_BYTES", DEFAULT_ARCHIVE_MAX_ENTRY_BYTES
            ),
            ingest_workers=max(1, _int_from_env("INGEST_WORKERS", 2)),
            always_rebuild_after_ingest=_bool_from_env("ALWAYS_REBUILD", True),
            office_binary=_env("OFFICE_BINARY") or DEFAULT_OFFICE_BINARY,
            conversion_timeout_seconds=_float_from_env(
                "CONVERSION_TIMEOUT_SECONDS", DEFAULT_CONVERSION_TIMEOUT_SECONDS
            ),
            log_dir=_path_from_env("LOG_DIR", Path("logs")),
        )

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.upload_dir, self.index_dir, self.temp_dir):
            if directory is not None:
                directory.mkdir(parents=True, exist_ok=True)


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""

    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
