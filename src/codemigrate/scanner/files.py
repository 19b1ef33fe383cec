"""File discovery and content reading for scan targets."""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path

from codemigrate.core.errors import ErrorClassifier, FileSkippedError

logger = logging.getLogger(__name__)


def file_extension(path: str | Path) -> str:
    """Lower-cased extension without the dot (``"js"``), or ``""``."""
    return Path(path).suffix.lstrip(".").lower()


class FileDiscovery:
    """Finds candidate source files under a directory and reads them as text.

    Discovery only filters by name (extension, hidden directories, ignore
    globs).  Size, permission and binary checks happen in :meth:`read_file`
    so every file skipped for those reasons is classified and counted.
    """

    def __init__(
        self,
        extensions: list[str],
        exclude: list[str] | None = None,
        max_file_size: int = 1024 * 1024,
        classifier: ErrorClassifier | None = None,
    ):
        self.extensions = {ext.lstrip(".").lower() for ext in extensions}
        self.exclude = list(exclude or [])
        self.max_file_size = max_file_size
        self.classifier = classifier or ErrorClassifier()

    def discover(self, target: Path) -> list[Path]:
        """Collect files with a wanted extension, skipping ignored and hidden paths."""
        target = target.resolve()
        if not target.exists():
            raise FileNotFoundError(f"Target path does not exist: {target}")
        if not target.is_dir():
            raise NotADirectoryError(f"Target path is not a directory: {target}")

        files: list[Path] = []
        for path in target.rglob("*"):
            rel = path.relative_to(target)
            if any(part.startswith(".") for part in rel.parts):
                continue
            if file_extension(path) not in self.extensions:
                continue
            if self._is_excluded(rel):
                continue
            if not path.is_file():
                continue
            files.append(path)

        logger.debug("Discovered %d candidate files under %s", len(files), target)
        return sorted(files)

    def _is_excluded(self, rel: Path) -> bool:
        rel_posix = rel.as_posix()
        for pattern in self.exclude:
            if fnmatch.fnmatch(rel_posix, pattern) or fnmatch.fnmatch(rel.name, pattern):
                return True
            if pattern.endswith("/**") and pattern[:-3] in rel.parts[:-1]:
                return True
        return False

    def read_file(self, path: Path) -> str:
        """Read ``path`` as UTF-8, falling back to latin-1 for legacy files.

        Raises :class:`FileSkippedError` with the classified reason when the
        file is missing, too large, unreadable or binary.
        """
        validation = self.classifier.validate_file(path, self.max_file_size)
        if not validation.valid:
            record = validation.errors[0]
            raise FileSkippedError(record.message, record)

        data = path.read_bytes()
        if b"\x00" in data:
            record = self.classifier.handle_encoding_error(path)
            raise FileSkippedError(record.message, record)

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            self.classifier.handle_encoding_error(path, exc)
            return data.decode("latin-1")
