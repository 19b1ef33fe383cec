"""Shared data models used across codemigrate modules."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path


class Severity(enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorType(enum.Enum):
    PERMISSION = "permission"
    FILE_SIZE = "fileSize"
    ENCODING = "encoding"
    TIMEOUT = "timeout"
    MEMORY = "memory"
    REGEX = "regex"
    FILESYSTEM = "filesystem"
    UNKNOWN = "unknown"


class MemoryLevel(enum.Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Rule:
    """A validated rule definition. Immutable once loaded."""

    id: str
    name: str
    description: str
    pattern: str
    file_types: frozenset[str]
    severity: Severity
    replacement: str | None = None

    @property
    def fixable(self) -> bool:
        return self.replacement is not None

    def applies_to(self, extension: str) -> bool:
        return extension.lstrip(".").lower() in self.file_types


@dataclass(frozen=True)
class Finding:
    """One located match of a rule against one file's content."""

    rule_id: str
    file_path: Path
    line: int
    column: int
    matched_text: str
    severity: Severity
    fixable: bool
    replacement: str | None
    pattern: str
    rule_name: str = ""
    description: str = ""


@dataclass(frozen=True)
class ErrorRecord:
    """Classified failure. Holds no live resources; safe to log or serialize."""

    type: ErrorType
    message: str
    suggestion: str
    recoverable: bool
    skip_file: bool = False
    skip_rule: bool = False
    pause_processing: bool = False
    file_path: str | None = None
    rule_id: str | None = None
    operation: str | None = None
    code: str | None = None
    suppressed: bool = False

    @property
    def critical(self) -> bool:
        return self.type in (ErrorType.UNKNOWN, ErrorType.REGEX)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass(frozen=True)
class ErrorSummary:
    """Per-category error counts for the final report."""

    total: int
    by_type: dict[str, int]
    has_errors: bool
    has_critical_errors: bool


@dataclass(frozen=True)
class MemoryStatus:
    level: MemoryLevel
    rss_bytes: int
    pause_processing: bool = False

    @property
    def rss_mb(self) -> int:
        return round(self.rss_bytes / 1024 / 1024)


@dataclass(frozen=True)
class FileValidation:
    """Outcome of pre-read checks on a candidate file."""

    valid: bool
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    size: int = 0
    mode: int = 0


@dataclass(frozen=True)
class BackupRecord:
    """Maps one original file to its single backup for a fix session."""

    file: Path
    backup: Path
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class RestoreResult:
    """Result of restoring one or more files from their backups."""

    files_restored: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class CleanupResult:
    files_deleted: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)


@dataclass(frozen=True)
class FixResult:
    """Outcome of one fix session. Built once the session completes."""

    files_processed: int = 0
    files_fixed: int = 0
    patterns_replaced: int = 0
    backups_created: tuple[Path, ...] = ()
    fixed_files: tuple[Path, ...] = ()
    errors: tuple[ErrorRecord, ...] = ()
    dry_run: bool = False

    @property
    def has_unrecoverable_errors(self) -> bool:
        return any(not e.recoverable for e in self.errors)


@dataclass
class ScanReport:
    """Complete scan report with findings and run statistics."""

    target: Path
    findings: list[Finding] = field(default_factory=list)
    files_discovered: int = 0
    files_scanned: int = 0
    files_skipped: int = 0
    total_bytes: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)
    elapsed_ms: int = 0
    scanned_at: datetime = field(default_factory=datetime.now)

    @property
    def error_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.WARNING)

    @property
    def info_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.INFO)

    @property
    def fixable_count(self) -> int:
        return sum(1 for f in self.findings if f.fixable)
