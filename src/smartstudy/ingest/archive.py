"""ZIP archive processing with entry, size and wall-clock guards."""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

from smartstudy.errors import ArchiveError
from smartstudy.telemetry import emit_archive_event

from .extractors import ContentExtractor
from .format_detection import file_extension, is_supported_entry
from .models import ExtractedContent

LOGGER = logging.getLogger(__name__)

_COPY_BUFFER_SIZE = 32 * 1024


@dataclass(slots=True)
class ArchiveConfig:
    max_entries: int = 100
    timeout_seconds: float = 30 * 60
    max_entry_bytes: int = 100 * 1024 * 1024
    temp_dir: Optional[Path] = None


@dataclass(slots=True)
class ArchiveReport:
    """Summary of the most recent :meth:`ArchiveUnpacker.unpack` call."""

    total_entries: int = 0
    considered_entries: int = 0
    retained_entries: int = 0
    processed_entries: int = 0
    failed_entries: int = 0
    fragments: int = 0
    timed_out: bool = False
    duration_seconds: float = 0.0


class ArchiveUnpacker:
    """Extracts supported entries of a ZIP archive one at a time."""

    def __init__(
        self,
        extractor: Optional[ContentExtractor] = None,
        config: Optional[ArchiveConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.extractor = extractor or ContentExtractor()
        self.config = config or ArchiveConfig()
        self._clock = clock
        self.last_report = ArchiveReport()

    def unpack(self, archive_path: Path | str) -> List[ExtractedContent]:
        """Return the fragments of every supported entry, in archive order.

        Only an archive that cannot be opened raises :class:`ArchiveError`;
        failing entries are logged and skipped, and exceeding the time budget
        returns whatever was collected so far.
        """

        archive_path = Path(archive_path)
        report = ArchiveReport()
        self.last_report = report
        started = self._clock()

        retained = self._scan_entries(archive_path, report)
        LOGGER.info(
            "Found %s entries in %s, processing %s supported files",
            report.total_entries,
            archive_path.name,
            len(retained),
        )

        fragments: List[ExtractedContent] = []
        try:
            with zipfile.ZipFile(archive_path) as archive:
                for position, info in enumerate(retained, start=1):
                    if self._clock() - started > self.config.timeout_seconds:
                        LOGGER.warning(
                            "Processing timeout reached for %s after %s/%s entries",
                            archive_path.name,
                            position - 1,
                            len(retained),
                        )
                        report.timed_out = True
                        break

                    LOGGER.info("[%s/%s] Processing %s", position, len(retained), info.filename)
                    entry_fragments = self._process_entry(archive, info)
                    if entry_fragments is None:
                        report.failed_entries += 1
                        continue
                    fragments.extend(entry_fragments)
                    report.processed_entries += 1
        except (OSError, zipfile.BadZipFile) as error:
            raise ArchiveError(f"Failed to process ZIP file {archive_path.name}: {error}") from error

        report.fragments = len(fragments)
        report.duration_seconds = self._clock() - started
        emit_archive_event(
            archive=archive_path.name,
            total_entries=report.total_entries,
            considered_entries=report.considered_entries,
            retained_entries=report.retained_entries,
            processed_entries=report.processed_entries,
            fragments=report.fragments,
            duration_ms=report.duration_seconds * 1000.0,
            timed_out=report.timed_out,
        )
        if not fragments:
            LOGGER.warning("No content could be extracted from ZIP file %s", archive_path.name)
        return fragments

    def _scan_entries(self, archive_path: Path, report: ArchiveReport) -> List[zipfile.ZipInfo]:
        if not archive_path.exists():
            raise ArchiveError(f"ZIP file not found at path: {archive_path}")
        try:
            with zipfile.ZipFile(archive_path) as archive:
                entries = archive.infolist()
        except (OSError, zipfile.BadZipFile) as error:
            raise ArchiveError(f"Failed to open ZIP file {archive_path.name}: {error}") from error

        considered = entries[: self.config.max_entries]
        report.total_entries = len(entries)
        report.considered_entries = len(considered)
        if len(entries) > len(considered):
            LOGGER.warning(
                "%s has %s entries, only the first %s are considered",
                archive_path.name,
                len(entries),
                len(considered),
            )
        retained = []
        for info in considered:
            if info.is_dir():
                LOGGER.debug("Skipping directory: %s", info.filename)
                continue
            if not is_supported_entry(info.filename):
                LOGGER.debug("Skipping unsupported file type: %s", info.filename)
                continue
            if info.file_size > self.config.max_entry_bytes:
                LOGGER.warning(
                    "Skipping %s: %s bytes exceeds the %s byte entry limit",
                    info.filename,
                    info.file_size,
                    self.config.max_entry_bytes,
                )
                continue
            retained.append(info)
        report.retained_entries = len(retained)
        return retained

    def _process_entry(
        self, archive: zipfile.ZipFile, info: zipfile.ZipInfo
    ) -> Optional[List[ExtractedContent]]:
        try:
            temp_path = self._extract_to_temp(archive, info)
        except Exception as error:
            LOGGER.error("Error extracting file %s: %s", info.filename, error)
            return None

        try:
            entry_name = PurePosixPath(info.filename).name
            entry_fragments = self.extractor.extract(temp_path, entry_name)
            LOGGER.info("Extracted %s content blocks from %s", len(entry_fragments), info.filename)
            return entry_fragments
        except Exception as error:
            LOGGER.error("Error processing file %s: %s", info.filename, error)
            return None
        finally:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as error:
                LOGGER.warning("Could not delete temp file %s: %s", temp_path, error)

    def _extract_to_temp(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> Path:
        temp_dir = self.config.temp_dir
        if temp_dir is not None:
            temp_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(
            prefix="extracted_",
            suffix=file_extension(info.filename),
            dir=str(temp_dir) if temp_dir is not None else None,
        )
        temp_path = Path(name)
        try:
            with os.fdopen(fd, "wb") as target, archive.open(info) as source:
                shutil.copyfileobj(source, target, _COPY_BUFFER_SIZE)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise
        LOGGER.debug("Extracted %s bytes of %s to %s", info.file_size, info.filename, temp_path)
        return temp_path
