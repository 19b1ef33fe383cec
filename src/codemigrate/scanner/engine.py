"""Walks a target directory and runs the rules over each file."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from codemigrate.core.config import CodeMigrateConfig
from codemigrate.core.errors import ErrorClassifier, FileSkippedError, ScanAbortedError
from codemigrate.core.models import ScanReport
from codemigrate.rules.engine import RuleEngine
from codemigrate.scanner.files import FileDiscovery, file_extension

logger = logging.getLogger(__name__)


class Scanner:
    """Runs the loaded rules over every candidate file under a directory."""

    def __init__(
        self,
        rule_engine: RuleEngine,
        config: CodeMigrateConfig | None = None,
        classifier: ErrorClassifier | None = None,
    ):
        self.config = config or CodeMigrateConfig()
        self.classifier = classifier or rule_engine.classifier
        self.rule_engine = rule_engine
        self.discovery = FileDiscovery(
            extensions=self.config.scan.extensions,
            exclude=self.config.exclude,
            max_file_size=self.config.scan.max_file_size,
            classifier=self.classifier,
        )

    def run(self, target: Path) -> ScanReport:
        """Discover, read and scan every file under ``target``."""
        started = time.monotonic()
        files = self.discovery.discover(target)
        report = ScanReport(target=target.resolve(), files_discovered=len(files))
        interval = self.config.scan.memory_check_interval

        for index, path in enumerate(files):
            if interval and index and index % interval == 0 and not self._memory_ok():
                report.files_skipped += len(files) - index
                logger.error(
                    "Memory still critical after reclamation; %d files not scanned",
                    len(files) - index,
                )
                break

            try:
                content = self.discovery.read_file(path)
            except FileSkippedError as exc:
                report.files_skipped += 1
                if exc.record is not None:
                    report.errors.append(exc.record)
                continue
            except OSError as exc:
                record = self.classifier.classify_exception("file read", exc, file_path=path)
                report.errors.append(record)
                if not record.recoverable:
                    raise ScanAbortedError(f"Scan stopped at {path}: {exc}", record) from exc
                report.files_skipped += 1
                continue

            report.findings.extend(self.rule_engine.scan(content, path, file_extension(path)))
            report.files_scanned += 1
            report.total_bytes += len(content)

        report.elapsed_ms = int((time.monotonic() - started) * 1000)
        return report

    def _memory_ok(self) -> bool:
        status = self.classifier.check_memory_usage("scan")
        if not status.pause_processing:
            return True
        # handle_memory_pressure already issued gc.collect(); sample again
        return not self.classifier.check_memory_usage("scan (after reclamation)").pause_processing
