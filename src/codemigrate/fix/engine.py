"""Applies rule replacements to files with backup support."""

from __future__ import annotations

import logging
import os
import re
import stat
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from codemigrate.core.config import CodeMigrateConfig
from codemigrate.core.errors import CodeMigrateError, ErrorClassifier, FixAbortedError
from codemigrate.core.models import ErrorRecord, ErrorType, Finding, FixResult, RestoreResult
from codemigrate.fix.backup import BackupManager
from codemigrate.rules.engine import CompiledRuleSet
from codemigrate.rules.replacement import substitute

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    # Same flags as the rule engine, so the fix rewrites exactly what the scan found.
    return re.compile(pattern, re.MULTILINE)


@dataclass(frozen=True)
class FileFix:
    """Outcome of fixing one file."""

    file: Path
    patterns_replaced: int
    changed: bool
    original_size: int
    modified_size: int


def can_fix(finding: Finding) -> bool:
    return finding.fixable and finding.replacement is not None and bool(finding.pattern)


def group_findings_by_file(findings: Iterable[Finding]) -> dict[Path, list[Finding]]:
    grouped: dict[Path, list[Finding]] = {}
    for finding in findings:
        grouped.setdefault(Path(finding.file_path), []).append(finding)
    return grouped


class FixEngine:
    """Applies fixable findings to files, one global substitution per rule per file.

    In ``dry_run`` mode every count is computed the same way, but no backup
    is made and no file is written.
    """

    def __init__(
        self,
        backups: BackupManager | None = None,
        classifier: ErrorClassifier | None = None,
        dry_run: bool = False,
        rule_set: CompiledRuleSet | None = None,
    ):
        self.classifier = classifier or (backups.classifier if backups else ErrorClassifier())
        self.backups = backups or BackupManager(classifier=self.classifier)
        self.dry_run = dry_run
        self.rule_set = rule_set

    @classmethod
    def from_config(
        cls,
        config: CodeMigrateConfig,
        project_path: Path | None = None,
        classifier: ErrorClassifier | None = None,
        dry_run: bool = False,
        rule_set: CompiledRuleSet | None = None,
    ) -> FixEngine:
        classifier = classifier or ErrorClassifier()
        backups = BackupManager(
            backup_dir=config.fix.backup_dir,
            timestamped=config.fix.timestamped_backups,
            max_backup_age=timedelta(days=config.fix.max_backup_age_days),
            classifier=classifier,
            base_path=project_path,
        )
        return cls(backups=backups, classifier=classifier, dry_run=dry_run, rule_set=rule_set)

    # -- session -------------------------------------------------------------

    def rollback_changes(self) -> RestoreResult:
        return self.backups.rollback_changes()

    def end_session(self) -> None:
        self.backups.clear()

    # -- fixing --------------------------------------------------------------

    def apply_fixes(
        self,
        findings: Iterable[Finding],
        backup_before_fix: bool = True,
        continue_on_error: bool = True,
    ) -> FixResult:
        """Apply every fixable finding, grouped by file.

        Per-file failures are recorded in ``FixResult.errors``.  The batch
        stops with :class:`FixAbortedError` on the first failure when
        ``continue_on_error`` is false, or on any non-recoverable filesystem
        error; files backed up by this call are restored before raising.
        Any other exception also stops the batch after the same restore:
        ordinary errors surface as :class:`FixAbortedError`, while
        interrupts such as ``KeyboardInterrupt`` are re-raised unchanged.
        """
        by_file = group_findings_by_file(f for f in findings if can_fix(f))

        files_processed = 0
        files_fixed = 0
        patterns_replaced = 0
        backups_created: list[Path] = []
        fixed_files: list[Path] = []
        errors: list[ErrorRecord] = []
        backed_up: list[Path] = []

        def result() -> FixResult:
            return FixResult(
                files_processed=files_processed,
                files_fixed=files_fixed,
                patterns_replaced=patterns_replaced,
                backups_created=tuple(backups_created),
                fixed_files=tuple(fixed_files),
                errors=tuple(errors),
                dry_run=self.dry_run,
            )

        current: Path | None = None
        try:
            for file_path, file_findings in by_file.items():
                current = file_path
                files_processed += 1
                try:
                    if backup_before_fix and not self.dry_run:
                        is_new = self.backups.get_backup(file_path) is None
                        backup = self.backups.create_backup(file_path)
                        if is_new:
                            backed_up.append(file_path)
                            backups_created.append(backup)

                    outcome = self.fix_file(file_path, file_findings)
                except (CodeMigrateError, OSError, UnicodeError, re.error) as exc:
                    record = self._classify(file_path, exc)
                    errors.append(record)

                    fatal = record.type == ErrorType.FILESYSTEM and not record.recoverable
                    if continue_on_error and not fatal:
                        continue

                    rollback = self._undo_call(backed_up)
                    raise FixAbortedError(
                        f"Fix operation failed for {file_path}: {exc}",
                        record,
                        result=result(),
                        rollback=rollback,
                    ) from exc

                patterns_replaced += outcome.patterns_replaced
                if outcome.changed:
                    files_fixed += 1
                    fixed_files.append(file_path)
        except FixAbortedError:
            raise
        except Exception as exc:
            record = self.classifier.classify_exception("fix", exc, file_path=current)
            errors.append(record)
            rollback = self._undo_call(backed_up)
            raise FixAbortedError(
                f"Fix operation failed for {current}: {exc}",
                record,
                result=result(),
                rollback=rollback,
            ) from exc
        except BaseException:
            # interrupted by the caller; put this call's files back and re-raise
            self._undo_call(backed_up)
            raise

        return result()

    def _undo_call(self, backed_up: list[Path]) -> RestoreResult | None:
        """Restore and forget the files backed up by one ``apply_fixes`` call."""
        if not backed_up:
            return None
        logger.warning("Fix run stopped; rolling back %d files", len(backed_up))
        rollback = self.backups.restore_from_backup(backed_up)
        self.backups.discard(backed_up)
        for failure in rollback.errors:
            logger.error("Rollback failed: %s", failure.message)
        return rollback

    def fix_file(self, file_path: str | Path, findings: Iterable[Finding]) -> FileFix:
        """Run each distinct rule's global substitution once over the file."""
        path = Path(file_path)
        with open(path, encoding="utf-8", newline="") as fh:
            original = fh.read()

        content = original
        replaced = 0
        for pattern, replacement in self._rule_passes(findings):
            content, count = substitute(_compile(pattern), replacement, content)
            replaced += count

        changed = content != original
        if changed and not self.dry_run:
            mode = stat.S_IMODE(path.stat().st_mode)
            self._write_file(path, content)
            os.chmod(path, mode)
            self.backups.mark_fixed(path)

        return FileFix(
            file=path,
            patterns_replaced=replaced,
            changed=changed,
            original_size=len(original),
            modified_size=len(content),
        )

    def _rule_passes(self, findings: Iterable[Finding]) -> list[tuple[str, str]]:
        """Distinct (pattern, replacement) pairs, in rule load order."""
        passes: dict[tuple[str, str, str], int] = {}
        for index, finding in enumerate(findings):
            if not can_fix(finding):
                continue
            key = (finding.rule_id, finding.pattern, finding.replacement)
            passes.setdefault(key, index)

        order = {c.rule.id: i for i, c in enumerate(self.rule_set)} if self.rule_set else {}
        ranked = sorted(passes, key=lambda k: (order.get(k[0], len(order)), passes[k]))
        return [(pattern, replacement) for _, pattern, replacement in ranked]

    def _write_file(self, path: Path, content: str) -> None:
        with open(path, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)

    def _classify(self, file_path: Path, exc: BaseException) -> ErrorRecord:
        if isinstance(exc, CodeMigrateError) and exc.record is not None:
            return exc.record
        return self.classifier.classify_exception("fix", exc, file_path=file_path)
