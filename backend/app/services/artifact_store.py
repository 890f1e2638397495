"""Ephemeral storage for finished export archives."""

import logging
import os
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from backend.app.config import Settings
from backend.app.constants import ARTIFACT_FILENAME_PATTERN, ARTIFACT_PREFIX, ARTIFACT_SUFFIX
from backend.app.core.exceptions import NotFoundError, TransientInfraError

logger = logging.getLogger(__name__)


def format_bytes(size_bytes: int) -> str:
    """Format bytes as human-readable string."""
    if size_bytes == 0:
        return "0 B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size) < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} PB"


def artifact_filename(job_id: str) -> str:
    """Filename of a job's archive; the same job always maps to the same file."""
    return f"{ARTIFACT_PREFIX}{job_id}{ARTIFACT_SUFFIX}"


def _timestamp(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass(frozen=True)
class ArtifactRecord:
    """Metadata of a stored archive."""

    filename: str
    size_bytes: int
    created_at: datetime
    expires_at: datetime


class ArtifactStore:
    """
    Keeps completed archives on local disk for a fixed time.

    An artifact's creation time is its file modification time. Expired files
    are removed when they are next touched or by :meth:`sweep`, whichever
    comes first.
    """

    def __init__(
        self,
        directory: Path,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "ArtifactStore":
        return cls(settings.export_directory, ttl_seconds=settings.export_ttl_seconds)

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, filename: str) -> Path | None:
        """Path of a valid artifact name, or None for names that can never exist."""
        if not ARTIFACT_FILENAME_PATTERN.match(filename):
            return None
        return self.directory / filename

    def _record(self, filename: str, stat: os.stat_result) -> ArtifactRecord:
        return ArtifactRecord(
            filename=filename,
            size_bytes=stat.st_size,
            created_at=_timestamp(stat.st_mtime),
            expires_at=_timestamp(stat.st_mtime + self.ttl_seconds),
        )

    def _is_expired(self, stat: os.stat_result) -> bool:
        return self._clock() >= stat.st_mtime + self.ttl_seconds

    def _reap(self, path: Path) -> None:
        path.unlink(missing_ok=True)
        logger.info(f"Removed expired export {path.name}")

    def _remove_temp(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove temporary file {path}: {e}")

    def save(self, job_id: str, data: bytes) -> ArtifactRecord:
        """
        Store an archive for a job, replacing any earlier one.

        The bytes are written to a temporary file and moved into place, so
        readers never observe a partial archive.

        Raises:
            TransientInfraError: If the archive could not be written
        """
        filename = artifact_filename(job_id)
        target = self.directory / filename
        temp_path = self.directory / f".{filename}.{uuid.uuid4().hex}.tmp"

        try:
            self.ensure_directory()
            temp_path.write_bytes(data)
            now = self._clock()
            os.utime(temp_path, (now, now))
            os.replace(temp_path, target)
        except OSError as e:
            self._remove_temp(temp_path)
            raise TransientInfraError(
                f"Failed to store export {filename}", details={"error": str(e)}
            ) from e

        record = ArtifactRecord(
            filename=filename,
            size_bytes=len(data),
            created_at=_timestamp(now),
            expires_at=_timestamp(now + self.ttl_seconds),
        )
        logger.info(f"Stored export {filename} ({format_bytes(record.size_bytes)})")
        return record

    def stat(self, filename: str) -> ArtifactRecord:
        """Metadata of a live artifact; expired ones are reaped and reported missing."""
        path = self.path_for(filename)
        if path is None:
            raise NotFoundError("Export file not found", details={"filename": filename})
        try:
            stat = path.stat()
        except FileNotFoundError:
            raise NotFoundError("Export file not found", details={"filename": filename}) from None
        except OSError as e:
            raise TransientInfraError(
                f"Failed to read export {filename}", details={"error": str(e)}
            ) from e

        if self._is_expired(stat):
            self._reap(path)
            raise NotFoundError("Export file has expired", details={"filename": filename})
        return self._record(filename, stat)

    def get(self, filename: str) -> bytes:
        """
        Read a live artifact.

        Raises:
            NotFoundError: Unknown, invalid or expired filename
            TransientInfraError: The file exists but could not be read
        """
        self.stat(filename)
        path = self.directory / filename
        try:
            return path.read_bytes()
        except FileNotFoundError:
            # Swept between stat and read
            raise NotFoundError("Export file not found", details={"filename": filename}) from None
        except OSError as e:
            raise TransientInfraError(
                f"Failed to read export {filename}", details={"error": str(e)}
            ) from e

    def exists(self, filename: str) -> bool:
        try:
            self.stat(filename)
        except NotFoundError:
            return False
        return True

    def delete(self, filename: str) -> bool:
        """Remove an artifact. Returns False when there was nothing to remove."""
        path = self.path_for(filename)
        if path is None or not path.exists():
            return False
        path.unlink(missing_ok=True)
        logger.info(f"Deleted export {filename}")
        return True

    def list_artifacts(self) -> list[ArtifactRecord]:
        """All stored artifacts, expired or not, oldest first."""
        if not self.directory.exists():
            return []
        records = []
        for path in self.directory.glob(f"{ARTIFACT_PREFIX}*{ARTIFACT_SUFFIX}"):
            try:
                records.append(self._record(path.name, path.stat()))
            except FileNotFoundError:
                continue
        return sorted(records, key=lambda r: r.created_at)

    def is_expired(self, record: ArtifactRecord) -> bool:
        return self._clock() >= record.expires_at.timestamp()

    def sweep(self) -> int:
        """Remove every expired artifact and leftover temp file. Returns the count removed."""
        if not self.directory.exists():
            return 0

        removed = 0
        for path in self.directory.glob(f"{ARTIFACT_PREFIX}*{ARTIFACT_SUFFIX}"):
            try:
                if self._is_expired(path.stat()):
                    self._reap(path)
                    removed += 1
            except FileNotFoundError:
                continue

        for path in self.directory.glob(f".{ARTIFACT_PREFIX}*.tmp"):
            try:
                if self._is_expired(path.stat()):
                    path.unlink(missing_ok=True)
            except FileNotFoundError:
                continue

        if removed:
            logger.info(f"Swept {removed} expired export(s) from {self.directory}")
        return removed
