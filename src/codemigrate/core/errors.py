"""Error taxonomy, classification and suppression policy.

Every failure the scanner or fixer hits is turned into an :class:`ErrorRecord`
by an :class:`ErrorClassifier`.  The classifier is an explicit object owned by
the caller and handed to the engines; it keeps per-category counters so that
noisy categories (permission, encoding) can be suppressed after a few reports.

The classifier also owns :meth:`ErrorClassifier.with_timeout`.  Regex matching
in ``re`` is a single call that holds the interpreter until it returns, so the
timeout cannot interrupt a pathological match that is already running.  It
only detects that the budget was exceeded, and lets the caller move on while
the worker thread finishes in the background.  The per-rule match cap in the
rule engine is the real bound on runaway patterns.
"""

from __future__ import annotations

import errno
import gc
import logging
import os
import re
import stat
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, TypeVar

from codemigrate.core.models import (
    ErrorRecord,
    ErrorSummary,
    ErrorType,
    FileValidation,
    MemoryLevel,
    MemoryStatus,
)

try:
    import resource
except ImportError:  # Windows
    resource = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT_MS = 5000
MEMORY_WARNING_MB = 500
MEMORY_CRITICAL_MB = 1000
BINARY_SNIFF_BYTES = 512

# Individual reports allowed before a category goes quiet.
SUPPRESSION_LIMITS = {
    ErrorType.PERMISSION: 3,
    ErrorType.ENCODING: 5,
}

RECOVERABLE_FS_CODES = frozenset({"ENOENT", "EACCES", "ENOTDIR", "EISDIR"})

FS_SUGGESTIONS = {
    "ENOENT": "File or directory does not exist",
    "EACCES": "Permission denied - check file/directory permissions",
    "ENOSPC": "No space left on device - free up disk space",
    "EMFILE": "Too many open files - close some files or increase limits",
    "ENOTDIR": "Path component is not a directory",
    "EISDIR": "Path is a directory, not a file",
    "EBUSY": "File is busy or locked by another process",
    "EROFS": "Read-only file system - cannot write to this location",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CodeMigrateError(Exception):
    """Base class for codemigrate errors."""

    def __init__(self, message: str, record: ErrorRecord | None = None):
        super().__init__(message)
        self.record = record


class RuleLoadError(CodeMigrateError):
    """The rules document itself is unusable."""


class RuleValidationError(CodeMigrateError):
    """A single rule definition is malformed."""


class OperationTimeoutError(CodeMigrateError):
    """An operation ran past its time budget."""


class TooManyMatchesError(OperationTimeoutError):
    """A rule matched more often than the configured cap."""


class FileSkippedError(CodeMigrateError):
    """A scan target was not read; ``record`` says why."""


class ScanAbortedError(CodeMigrateError):
    """The scan stopped on a condition the rest of the run cannot survive."""


class BackupError(CodeMigrateError):
    """A backup could not be created."""

    def __init__(self, message: str, record: ErrorRecord | None = None, errno_code: int | None = None):
        super().__init__(message, record)
        self.errno = errno_code


class FixAbortedError(CodeMigrateError):
    """A fix batch stopped early. Carries the partial result and rollback outcome."""

    def __init__(self, message: str, record: ErrorRecord | None = None, result=None, rollback=None):
        super().__init__(message, record)
        self.result = result
        self.rollback = rollback


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_file_size(size: int | float) -> str:
    """Human-readable size, e.g. ``1.5MB``."""
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f}{units[unit]}"


def error_code(exc: BaseException) -> str | None:
    """Symbolic errno name (``ENOENT``...) for an OSError, if it has one."""
    code = getattr(exc, "errno", None)
    if isinstance(code, int):
        return errno.errorcode.get(code)
    return None


def is_filesystem_error_recoverable(exc: BaseException) -> bool:
    return error_code(exc) in RECOVERABLE_FS_CODES


def filesystem_error_suggestion(exc: BaseException) -> str:
    return FS_SUGGESTIONS.get(error_code(exc) or "", "Check file system and permissions")


def is_binary_file(path: Path) -> bool:
    """Treat a file as binary when its first bytes contain a NUL."""
    try:
        with open(path, "rb") as fh:
            head = fh.read(BINARY_SNIFF_BYTES)
    except OSError:
        return False
    return b"\x00" in head


def _current_rss_bytes() -> int:
    statm = Path("/proc/self/statm")
    if statm.exists():
        try:
            pages = int(statm.read_text().split()[1])
            return pages * os.sysconf("SC_PAGE_SIZE")
        except (OSError, ValueError, IndexError):
            logger.debug("Could not read %s, falling back to getrusage", statm)
    if resource is None:
        return 0
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere
    return peak if sys.platform == "darwin" else peak * 1024


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class ErrorClassifier:
    """Classifies failures into :class:`ErrorType` records and counts them.

    One classifier is shared by the rule engine, scanner and fix engine of a
    run.  Call :meth:`reset` between runs (and in tests) to clear counters.
    """

    def __init__(
        self,
        memory_warning_mb: int = MEMORY_WARNING_MB,
        memory_critical_mb: int = MEMORY_CRITICAL_MB,
        memory_sampler: Callable[[], int] | None = None,
    ) -> None:
        self.memory_warning_mb = memory_warning_mb
        self.memory_critical_mb = memory_critical_mb
        self._sample_memory = memory_sampler or _current_rss_bytes
        self._counts: dict[ErrorType, int] = {t: 0 for t in ErrorType}
        self._lock = threading.Lock()

    # -- counters ----------------------------------------------------------

    @property
    def counts(self) -> dict[str, int]:
        return {t.value: n for t, n in self._counts.items()}

    def count(self, error_type: ErrorType) -> int:
        return self._counts[error_type]

    def reset(self) -> None:
        with self._lock:
            for key in self._counts:
                self._counts[key] = 0

    def summary(self) -> ErrorSummary:
        total = sum(self._counts.values())
        return ErrorSummary(
            total=total,
            by_type=self.counts,
            has_errors=total > 0,
            has_critical_errors=(
                self._counts[ErrorType.UNKNOWN] > 0 or self._counts[ErrorType.REGEX] > 0
            ),
        )

    def _record(self, error_type: ErrorType, level: int = logging.WARNING, **fields) -> ErrorRecord:
        with self._lock:
            self._counts[error_type] += 1
            occurrence = self._counts[error_type]
        limit = SUPPRESSION_LIMITS.get(error_type)

        suppressed = limit is not None and occurrence > limit
        record = ErrorRecord(type=error_type, suppressed=suppressed, **fields)

        if not suppressed:
            logger.log(level, "%s - %s", record.message, record.suggestion)
        elif occurrence == limit + 1:
            logger.warning(
                "Multiple %s errors detected. Further %s errors will be logged silently.",
                error_type.value,
                error_type.value,
            )
        else:
            logger.debug("%s - %s", record.message, record.suggestion)

        return record

    # -- per-category handlers --------------------------------------------

    def handle_permission_error(self, file_path: str | Path, error: BaseException | None = None) -> ErrorRecord:
        return self._record(
            ErrorType.PERMISSION,
            message=f"Permission denied: {Path(file_path).name}",
            suggestion="Check file permissions and ensure read access",
            recoverable=True,
            skip_file=True,
            file_path=str(file_path),
            code=error_code(error) if error else None,
        )

    def handle_file_size_error(self, file_path: str | Path, file_size: int, max_size: int) -> ErrorRecord:
        return self._record(
            ErrorType.FILE_SIZE,
            message=f"File too large: {Path(file_path).name} ({format_file_size(file_size)})",
            suggestion=f"Increase --max-file-size limit (current: {format_file_size(max_size)})",
            recoverable=True,
            skip_file=True,
            file_path=str(file_path),
        )

    def handle_encoding_error(self, file_path: str | Path, error: BaseException | None = None) -> ErrorRecord:
        return self._record(
            ErrorType.ENCODING,
            message=f"Encoding error: {Path(file_path).name}",
            suggestion="File may be binary or use unsupported encoding",
            recoverable=True,
            skip_file=True,
            file_path=str(file_path),
        )

    def handle_regex_timeout_error(
        self, rule_id: str, file_path: str | Path, error: BaseException | None = None
    ) -> ErrorRecord:
        if isinstance(error, TooManyMatchesError):
            message = f"Too many matches for rule \"{rule_id}\" in {Path(file_path).name}: {error}"
        else:
            message = f"Regex timeout in rule \"{rule_id}\" for {Path(file_path).name}"
        return self._record(
            ErrorType.TIMEOUT,
            message=message,
            suggestion="Rule pattern may be too complex or cause catastrophic backtracking",
            recoverable=True,
            skip_rule=True,
            file_path=str(file_path),
            rule_id=rule_id,
        )

    def handle_memory_pressure(self, operation: str, memory_usage: int) -> ErrorRecord:
        record = self._record(
            ErrorType.MEMORY,
            message=f"High memory usage detected during {operation} ({format_file_size(memory_usage)})",
            suggestion="Consider processing smaller batches or increasing available memory",
            recoverable=True,
            pause_processing=True,
            operation=operation,
        )
        gc.collect()
        return record

    def handle_invalid_regex_error(self, rule_id: str, pattern: str, error: BaseException) -> ErrorRecord:
        return self._record(
            ErrorType.REGEX,
            level=logging.ERROR,
            message=f"Invalid regex pattern in rule \"{rule_id}\": {error}",
            suggestion="Check rule configuration and fix the regex pattern",
            recoverable=False,
            skip_rule=True,
            rule_id=rule_id,
        )

    def handle_filesystem_error(self, operation: str, path: str | Path, error: BaseException) -> ErrorRecord:
        recoverable = is_filesystem_error_recoverable(error)
        return self._record(
            ErrorType.FILESYSTEM,
            level=logging.WARNING if recoverable else logging.ERROR,
            message=f"Filesystem error during {operation}: {error}",
            suggestion=filesystem_error_suggestion(error),
            recoverable=recoverable,
            skip_file=recoverable,
            file_path=str(path),
            operation=operation,
            code=error_code(error),
        )

    def handle_unknown_error(
        self,
        operation: str,
        error: BaseException,
        file_path: str | Path | None = None,
        rule_id: str | None = None,
    ) -> ErrorRecord:
        logger.debug("Unexpected error during %s", operation, exc_info=error)
        return self._record(
            ErrorType.UNKNOWN,
            level=logging.ERROR,
            message=f"Unexpected error during {operation}: {error}",
            suggestion="This may be a bug. Consider reporting it with --verbose output",
            recoverable=False,
            file_path=str(file_path) if file_path is not None else None,
            rule_id=rule_id,
            operation=operation,
        )

    def classify_exception(
        self,
        operation: str,
        error: BaseException,
        file_path: str | Path | None = None,
        rule_id: str | None = None,
    ) -> ErrorRecord:
        """Route an arbitrary exception to the matching category handler."""
        if isinstance(error, CodeMigrateError) and error.record is not None:
            return error.record
        if isinstance(error, OperationTimeoutError):
            return self.handle_regex_timeout_error(rule_id or "?", file_path or "", error)
        if isinstance(error, UnicodeDecodeError):
            return self.handle_encoding_error(file_path or "", error)
        if isinstance(error, re.error):
            return self.handle_invalid_regex_error(rule_id or "?", str(error.pattern or ""), error)
        if isinstance(error, PermissionError) and operation == "file read":
            return self.handle_permission_error(file_path or error.filename or "", error)
        if isinstance(error, MemoryError):
            return self.handle_memory_pressure(operation, self._sample_memory())
        if isinstance(error, OSError):
            return self.handle_filesystem_error(operation, file_path or error.filename or "", error)
        return self.handle_unknown_error(operation, error, file_path=file_path, rule_id=rule_id)

    # -- timeout -----------------------------------------------------------

    def with_timeout(
        self,
        operation: Callable[[], T],
        timeout_ms: int | None = DEFAULT_TIMEOUT_MS,
        label: str = "operation",
    ) -> T:
        """Run ``operation`` and raise :class:`OperationTimeoutError` if it overruns.

        The operation runs on a worker thread.  When the budget expires the
        caller gets the timeout immediately, but the worker cannot be killed
        and keeps running until the operation returns on its own.  Operations
        that check a deadline of their own (as the rule scan does between
        matches) stop shortly afterwards.
        """
        if timeout_ms is None:
            return operation()
        if timeout_ms <= 0:
            raise OperationTimeoutError(f"Operation timed out after {timeout_ms}ms: {label}")

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="codemigrate-timeout")
        future = pool.submit(operation)
        try:
            return future.result(timeout=timeout_ms / 1000.0)
        except FutureTimeoutError:
            if future.done():
                # finished while the timeout was being raised
                return future.result()
            future.cancel()
            raise OperationTimeoutError(
                f"Operation timed out after {timeout_ms}ms: {label}"
            ) from None
        finally:
            pool.shutdown(wait=False)

    # -- memory ------------------------------------------------------------

    def check_memory_usage(self, operation: str = "memory check") -> MemoryStatus:
        """Sample resident memory and compare against the thresholds."""
        rss = self._sample_memory()
        rss_mb = rss / 1024 / 1024

        if rss_mb > self.memory_critical_mb:
            self.handle_memory_pressure(operation, rss)
            return MemoryStatus(MemoryLevel.CRITICAL, rss, pause_processing=True)
        if rss_mb > self.memory_warning_mb:
            logger.warning("High memory usage: %dMB", round(rss_mb))
            return MemoryStatus(MemoryLevel.WARNING, rss)
        return MemoryStatus(MemoryLevel.OK, rss)

    # -- file checks -------------------------------------------------------

    def validate_file(self, file_path: Path, max_file_size: int | None = None) -> FileValidation:
        """Check that a path is a readable regular file within the size cap."""
        try:
            st = file_path.stat()
        except FileNotFoundError as exc:
            return FileValidation(False, [self.handle_filesystem_error("file check", file_path, exc)])
        except PermissionError as exc:
            return FileValidation(False, [self.handle_permission_error(file_path, exc)])
        except OSError as exc:
            return FileValidation(False, [self.handle_filesystem_error("file check", file_path, exc)])

        if not stat.S_ISREG(st.st_mode):
            exc = IsADirectoryError(errno.EISDIR, "Path is not a regular file", str(file_path))
            return FileValidation(
                False, [self.handle_filesystem_error("file check", file_path, exc)], mode=st.st_mode
            )

        if max_file_size and st.st_size > max_file_size:
            return FileValidation(
                False,
                [self.handle_file_size_error(file_path, st.st_size, max_file_size)],
                size=st.st_size,
                mode=st.st_mode,
            )

        if not os.access(file_path, os.R_OK):
            exc = PermissionError(errno.EACCES, "Permission denied", str(file_path))
            return FileValidation(
                False, [self.handle_permission_error(file_path, exc)], size=st.st_size, mode=st.st_mode
            )

        warnings = []
        if is_binary_file(file_path):
            warnings.append("binary")
        return FileValidation(True, warnings=warnings, size=st.st_size, mode=st.st_mode)
