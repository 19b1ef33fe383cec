"""Loads rule definitions and scans content for matches."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from codemigrate.core import config as _config
from codemigrate.core.errors import (
    DEFAULT_TIMEOUT_MS,
    ErrorClassifier,
    OperationTimeoutError,
    RuleLoadError,
    RuleValidationError,
    TooManyMatchesError,
)
from codemigrate.core.models import ErrorRecord, Finding, Rule, Severity

logger = logging.getLogger(__name__)

DEFAULT_MAX_MATCHES = 10_000
REQUIRED_FIELDS = ("id", "name", "description", "pattern", "fileTypes", "severity")


@dataclass(frozen=True)
class CompiledRule:
    rule: Rule
    regex: re.Pattern


@dataclass(frozen=True)
class RejectedRule:
    """A rule dropped at load time, with the reason it was dropped."""

    rule_id: str | None
    reason: str
    record: ErrorRecord | None = None


@dataclass
class CompiledRuleSet:
    """The active rules, in load order, plus whatever failed to load."""

    rules: list[CompiledRule] = field(default_factory=list)
    rejected: list[RejectedRule] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[CompiledRule]:
        return iter(self.rules)

    def get(self, rule_id: str) -> CompiledRule | None:
        return next((c for c in self.rules if c.rule.id == rule_id), None)

    def for_extension(self, extension: str) -> list[CompiledRule]:
        return [c for c in self.rules if c.rule.applies_to(extension)]


def validate_rule(data: object) -> Rule:
    """Check a raw rule mapping and turn it into a :class:`Rule`."""
    if not isinstance(data, Mapping):
        raise RuleValidationError("Rule validation failed: rule must be an object")

    for name in REQUIRED_FIELDS:
        if not data.get(name):
            raise RuleValidationError(f'Rule validation failed: missing required field "{name}"')

    for name in ("id", "name", "pattern"):
        if not isinstance(data[name], str):
            raise RuleValidationError(f'Rule validation failed: "{name}" must be a string')

    if not isinstance(data["fileTypes"], list):
        raise RuleValidationError('Rule validation failed: "fileTypes" must be an array')

    try:
        severity = Severity(data["severity"])
    except ValueError:
        raise RuleValidationError(
            'Rule validation failed: "severity" must be one of: error, warning, info'
        ) from None

    replacement = data.get("replacement")
    if replacement is not None and not isinstance(replacement, str):
        raise RuleValidationError('Rule validation failed: "replacement" must be a string or null')

    return Rule(
        id=data["id"],
        name=data["name"],
        description=str(data["description"]),
        pattern=data["pattern"],
        file_types=frozenset(str(ext).lstrip(".").lower() for ext in data["fileTypes"]),
        severity=severity,
        replacement=replacement,
    )


class RuleEngine:
    """Compiles rules and applies them to file content."""

    def __init__(
        self,
        classifier: ErrorClassifier | None = None,
        regex_timeout_ms: int | None = DEFAULT_TIMEOUT_MS,
        max_matches: int = DEFAULT_MAX_MATCHES,
    ):
        self.classifier = classifier or ErrorClassifier()
        self.regex_timeout_ms = regex_timeout_ms
        self.max_matches = max_matches
        self.rule_set = CompiledRuleSet()

    # -- loading -----------------------------------------------------------

    def load(self, document: object) -> CompiledRuleSet:
        """Validate and compile every rule in a ``{"rules": [...]}`` document.

        Rules that fail validation or do not compile are left out of the
        returned set.  A document without a ``rules`` list is fatal.
        """
        if not isinstance(document, Mapping) or not isinstance(document.get("rules"), list):
            raise RuleLoadError('Invalid rules file: missing or invalid "rules" array')

        rule_set = CompiledRuleSet()
        seen: set[str] = set()

        for index, raw in enumerate(document["rules"]):
            raw_id = raw.get("id") if isinstance(raw, Mapping) else None
            try:
                rule = validate_rule(raw)
            except RuleValidationError as exc:
                logger.warning("Skipping rule #%d (%s): %s", index + 1, raw_id or "no id", exc)
                rule_set.rejected.append(RejectedRule(raw_id if isinstance(raw_id, str) else None, str(exc)))
                continue

            if rule.id in seen:
                reason = f'Duplicate rule id "{rule.id}"'
                logger.warning("Skipping rule #%d: %s", index + 1, reason)
                rule_set.rejected.append(RejectedRule(rule.id, reason))
                continue

            try:
                regex = re.compile(rule.pattern, re.MULTILINE)
            except re.error as exc:
                record = self.classifier.handle_invalid_regex_error(rule.id, rule.pattern, exc)
                rule_set.rejected.append(RejectedRule(rule.id, str(exc), record))
                continue

            seen.add(rule.id)
            rule_set.rules.append(CompiledRule(rule, regex))

        logger.info("Loaded %d rules successfully", len(rule_set.rules))
        self.rule_set = rule_set
        return rule_set

    def load_file(self, path: str | Path) -> CompiledRuleSet:
        """Read a JSON (or ``.toml``) rules file and :meth:`load` it."""
        path = Path(path)
        if not path.exists():
            raise RuleLoadError(f"Rules file not found: {path}. Please create a rules.json file.")

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            record = self.classifier.handle_filesystem_error("rules load", path, exc)
            raise RuleLoadError(f"Could not read rules file {path}: {exc}", record) from exc

        if path.suffix.lower() == ".toml":
            if _config.tomllib is None:
                raise RuleLoadError("TOML rules files need Python 3.11+ or the tomli package")
            try:
                document = _config.tomllib.loads(text)
            except _config.tomllib.TOMLDecodeError as exc:
                raise RuleLoadError(f"Invalid TOML in rules file: {exc}") from exc
        else:
            try:
                document = json.loads(text)
            except json.JSONDecodeError as exc:
                raise RuleLoadError(f"Invalid JSON in rules file: {exc}") from exc

        return self.load(document)

    # -- lookups -----------------------------------------------------------

    @property
    def rules(self) -> list[Rule]:
        return [c.rule for c in self.rule_set]

    @property
    def load_errors(self) -> list[RejectedRule]:
        return list(self.rule_set.rejected)

    def get_rule(self, rule_id: str) -> Rule | None:
        compiled = self.rule_set.get(rule_id)
        return compiled.rule if compiled else None

    def rules_for_extension(self, extension: str) -> list[Rule]:
        return [c.rule for c in self.rule_set.for_extension(extension)]

    # -- scanning ----------------------------------------------------------

    def scan(
        self,
        content: str,
        file_path: str | Path,
        file_extension: str,
        rule_set: CompiledRuleSet | None = None,
    ) -> list[Finding]:
        """Apply every rule for ``file_extension`` to ``content``.

        Findings come out rule by rule in load order, each rule's findings in
        document order.  A rule that times out, hits the match cap or raises
        is skipped for this file only.
        """
        rule_set = rule_set if rule_set is not None else self.rule_set
        file_path = Path(file_path)
        findings: list[Finding] = []

        for compiled in rule_set.for_extension(file_extension):
            deadline = None
            if self.regex_timeout_ms is not None:
                deadline = time.monotonic() + self.regex_timeout_ms / 1000.0

            try:
                findings.extend(
                    self.classifier.with_timeout(
                        lambda c=compiled, d=deadline: self.find_matches(c, content, file_path, d),
                        self.regex_timeout_ms,
                        f"rule {compiled.rule.id} on {file_path.name}",
                    )
                )
            except OperationTimeoutError as exc:
                self.classifier.handle_regex_timeout_error(compiled.rule.id, file_path, exc)
            except (RecursionError, re.error, ValueError) as exc:
                self.classifier.handle_unknown_error(
                    "rule application", exc, file_path=file_path, rule_id=compiled.rule.id
                )

        return findings

    def find_matches(
        self,
        compiled: CompiledRule,
        content: str,
        file_path: Path,
        deadline: float | None = None,
    ) -> list[Finding]:
        """Collect non-overlapping matches of one rule, in document order."""
        rule = compiled.rule
        findings: list[Finding] = []

        pos = 0
        line = 1
        counted_to = 0
        end = len(content)

        while pos <= end:
            match = compiled.regex.search(content, pos)
            if match is None:
                break

            if len(findings) >= self.max_matches:
                raise TooManyMatchesError(
                    f"Too many regex matches ({self.max_matches}+) - possible runaway pattern"
                )
            if deadline is not None and time.monotonic() > deadline:
                raise OperationTimeoutError(
                    f"Operation timed out after {self.regex_timeout_ms}ms: rule {rule.id}"
                )

            start = match.start()
            line += content.count("\n", counted_to, start)
            counted_to = start
            column = start - content.rfind("\n", 0, start)

            findings.append(
                Finding(
                    rule_id=rule.id,
                    file_path=file_path,
                    line=line,
                    column=column,
                    matched_text=match.group(0),
                    severity=rule.severity,
                    fixable=rule.fixable,
                    replacement=rule.replacement,
                    pattern=rule.pattern,
                    rule_name=rule.name,
                    description=rule.description,
                )
            )

            # zero-width matches must still move the cursor
            pos = match.end() if match.end() > start else match.end() + 1

        return findings
