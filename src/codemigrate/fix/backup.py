"""Backup session management for the fix engine.

A :class:`BackupManager` keeps an ordered log of ``(file, backup)`` pairs for
the current fix session.  Each file is backed up at most once per session;
asking again returns the existing backup.  Rollback replays the log in
reverse and keeps going when an individual restore fails.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import stat
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from codemigrate.core.errors import BackupError, ErrorClassifier, format_file_size
from codemigrate.core.models import BackupRecord, CleanupResult, RestoreResult

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"
LARGE_FILE_BYTES = 100 * 1024 * 1024  # 100MB


def _timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


class BackupManager:
    """Creates, tracks and restores per-file backups for one fix session."""

    def __init__(
        self,
        backup_dir: str | Path = ".code-migration-backups",
        timestamped: bool = True,
        max_backup_age: timedelta = timedelta(days=7),
        classifier: ErrorClassifier | None = None,
        base_path: Path | None = None,
    ):
        backup_dir = Path(backup_dir)
        if not backup_dir.is_absolute():
            backup_dir = (base_path or Path.cwd()) / backup_dir
        self.backup_dir = backup_dir
        self.timestamped = timestamped
        self.max_backup_age = max_backup_age
        self.classifier = classifier or ErrorClassifier()

        self._log: list[BackupRecord] = []
        self._index: dict[Path, BackupRecord] = {}
        self._fixed: dict[Path, None] = {}
        self._lock = threading.Lock()

    # -- session state -----------------------------------------------------

    @property
    def records(self) -> list[BackupRecord]:
        with self._lock:
            return list(self._log)

    @property
    def fixed_files(self) -> list[Path]:
        with self._lock:
            return list(self._fixed)

    def get_backup(self, file: str | Path) -> BackupRecord | None:
        with self._lock:
            return self._index.get(Path(file).resolve())

    def mark_fixed(self, file: str | Path) -> None:
        with self._lock:
            self._fixed[Path(file).resolve()] = None

    def discard(self, files: Iterable[str | Path]) -> None:
        """Forget the given files' backups (the backup files stay on disk)."""
        targets = {Path(f).resolve() for f in files}
        with self._lock:
            self._log = [r for r in self._log if r.file not in targets]
            for target in targets:
                self._index.pop(target, None)
                self._fixed.pop(target, None)

    def clear(self) -> None:
        """End the session. Backup files are kept on disk."""
        with self._lock:
            self._log.clear()
            self._index.clear()
            self._fixed.clear()

    # -- create ------------------------------------------------------------

    def create_backup(self, file: str | Path) -> Path:
        """Copy ``file`` into the backup directory, once per session.

        Raises :class:`BackupError` (carrying a ``filesystem`` record) when
        the source is missing, is not a regular file, or the backup directory
        cannot take the copy.
        """
        path = Path(file).resolve()

        with self._lock:
            existing = self._index.get(path)
            if existing is not None:
                return existing.backup

            try:
                st = path.stat()
                if not stat.S_ISREG(st.st_mode):
                    raise IsADirectoryError(errno.EISDIR, "Cannot backup non-file", str(path))
                if not os.access(path, os.R_OK):
                    raise PermissionError(errno.EACCES, "Cannot read file for backup", str(path))

                self.backup_dir.mkdir(parents=True, exist_ok=True)
                self._check_disk_space(path, st.st_size)

                target = self._next_backup_path(path)
                shutil.copy2(path, target)
            except OSError as exc:
                record = self.classifier.handle_filesystem_error("backup", path, exc)
                raise BackupError(
                    f"Failed to create backup for {path}: {exc}", record, exc.errno
                ) from exc

            record = BackupRecord(file=path, backup=target)
            self._log.append(record)
            self._index[path] = record

        logger.debug("Backed up %s -> %s", path, target)
        return target

    def _next_backup_path(self, path: Path) -> Path:
        stem = f"{path.name}.{_timestamp()}" if self.timestamped else path.name
        candidate = self.backup_dir / f"{stem}{BACKUP_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{stem}.{counter}{BACKUP_SUFFIX}"
            counter += 1
        return candidate

    def _check_disk_space(self, path: Path, size: int) -> None:
        if not os.access(self.backup_dir, os.W_OK):
            raise PermissionError(errno.EACCES, "Backup directory is not writable", str(self.backup_dir))

        free = shutil.disk_usage(self.backup_dir).free
        if size > free:
            raise OSError(
                errno.ENOSPC,
                f"Not enough space for backup ({format_file_size(size)} needed, "
                f"{format_file_size(free)} free)",
                str(self.backup_dir),
            )

        if size > LARGE_FILE_BYTES:
            logger.warning("Large file detected (%s): %s", format_file_size(size), path)

    # -- restore -----------------------------------------------------------

    def restore_from_backup(self, files: str | Path | Iterable[str | Path]) -> RestoreResult:
        """Copy each file's backup back over it. One failure never stops the rest."""
        if isinstance(files, (str, Path)):
            files = [files]

        result = RestoreResult()
        for file in files:
            path = Path(file).resolve()
            with self._lock:
                record = self._index.get(path)

            try:
                if record is None:
                    raise FileNotFoundError(errno.ENOENT, f"No backup found for {path}", str(path))
                if not record.backup.exists():
                    raise FileNotFoundError(
                        errno.ENOENT, f"Backup file not found: {record.backup}", str(record.backup)
                    )
                shutil.copy2(record.backup, path)
            except OSError as exc:
                result.errors.append(self.classifier.handle_filesystem_error("restore", path, exc))
                continue

            result.files_restored += 1
            with self._lock:
                self._fixed.pop(path, None)

        return result

    def rollback_changes(self) -> RestoreResult:
        """Restore every file backed up this session, newest first, then end the session."""
        with self._lock:
            files = [r.file for r in reversed(self._log)]

        result = self.restore_from_backup(files)
        if result.errors:
            logger.error(
                "Rollback restored %d of %d files", result.files_restored, len(files)
            )
        else:
            logger.info("Rolled back %d files", result.files_restored)

        self.clear()
        return result

    # -- housekeeping ------------------------------------------------------

    def cleanup_old_backups(self) -> CleanupResult:
        """Delete ``*.backup`` files older than ``max_backup_age``."""
        result = CleanupResult()
        if not self.backup_dir.exists():
            return result

        cutoff = datetime.now().timestamp() - self.max_backup_age.total_seconds()
        for backup in sorted(self.backup_dir.glob(f"*{BACKUP_SUFFIX}")):
            try:
                if backup.stat().st_mtime < cutoff:
                    backup.unlink()
                    result.files_deleted += 1
            except OSError as exc:
                result.errors.append(self.classifier.handle_filesystem_error("cleanup", backup, exc))

        return result
