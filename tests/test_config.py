from __future__ import annotations

from pathlib import Path

import pytest

from smartstudy.config import Settings, get_settings, reset_settings_cache


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults_derive_from_data_dir(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SMARTSTUDY_DATA_DIR", str(tmp_path / "store"))

    settings = Settings.from_env()

    assert settings.upload_dir == tmp_path / "store" / "uploads"
    assert settings.index_dir == tmp_path / "store" / "index"
    assert settings.database_url == f"sqlite:///{tmp_path / 'store' / 'smartstudy.db'}"
    assert settings.archive_max_entries == 100
    assert settings.archive_timeout_seconds == 1800
    assert settings.always_rebuild_after_ingest is True
    assert settings.temp_dir is None


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SMARTSTUDY_INDEX_DIR", str(tmp_path / "idx"))
    monkeypatch.setenv("SMARTSTUDY_MAX_UPLOAD_BYTES", "2048")
    monkeypatch.setenv("SMARTSTUDY_ARCHIVE_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("SMARTSTUDY_ALWAYS_REBUILD", "off")
    monkeypatch.setenv("SMARTSTUDY_INGEST_WORKERS", "0")
    monkeypatch.setenv("SMARTSTUDY_TEMP_DIR", str(tmp_path / "tmp"))

    settings = Settings.from_env()

    assert settings.index_dir == tmp_path / "idx"
    assert settings.max_upload_bytes == 2048
    assert settings.archive_timeout_seconds == 2.5
    assert settings.always_rebuild_after_ingest is False
    assert settings.ingest_workers == 1
    assert settings.temp_dir == tmp_path / "tmp"


def test_invalid_numbers_fall_back_to_defaults(monkeypatch, caplog) -> None:
    monkeypatch.setenv("SMARTSTUDY_ARCHIVE_MAX_ENTRIES", "lots")

    with caplog.at_level("WARNING"):
        settings = Settings.from_env()

    assert settings.archive_max_entries == 100
    assert "SMARTSTUDY_ARCHIVE_MAX_ENTRIES" in caplog.text


def test_get_settings_is_cached(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SMARTSTUDY_DATA_DIR", str(tmp_path / "first"))
    first = get_settings()
    monkeypatch.setenv("SMARTSTUDY_DATA_DIR", str(tmp_path / "second"))

    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().data_dir == tmp_path / "second"


def test_ensure_directories(settings) -> None:
    settings.ensure_directories()

    for directory in (settings.data_dir, settings.upload_dir, settings.index_dir, settings.temp_dir):
        assert directory.is_dir()
