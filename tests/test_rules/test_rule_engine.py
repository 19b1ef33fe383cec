"""Tests for rule loading and content scanning."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from codemigrate.core.errors import ErrorClassifier, RuleLoadError, RuleValidationError
from codemigrate.core.models import ErrorType, Severity
from codemigrate.rules.engine import RuleEngine, validate_rule


def _rule(**overrides) -> dict:
    rule = {
        "id": "no-var",
        "name": "No var",
        "description": "Use const instead of var",
        "pattern": r"\bvar\b",
        "fileTypes": ["js"],
        "severity": "warning",
        "replacement": "const",
    }
    rule.update(overrides)
    return rule


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


@pytest.fixture
def engine(classifier: ErrorClassifier) -> RuleEngine:
    return RuleEngine(classifier)


class TestValidateRule:
    def test_valid_rule(self):
        """A complete rule validates and normalises its file types."""
        rule = validate_rule(_rule(fileTypes=[".JS", "ts"]))

        assert rule.id == "no-var"
        assert rule.severity == Severity.WARNING
        assert rule.file_types == frozenset({"js", "ts"})
        assert rule.fixable is True

    def test_null_replacement_is_not_fixable(self):
        """A null replacement makes the rule report-only."""
        assert validate_rule(_rule(replacement=None)).fixable is False

    def test_missing_replacement_is_not_fixable(self):
        """An absent replacement makes the rule report-only."""
        data = _rule()
        del data["replacement"]
        assert validate_rule(data).fixable is False

    def test_empty_replacement_is_fixable(self):
        """Deleting the match is a legitimate fix."""
        assert validate_rule(_rule(replacement="")).fixable is True

    @pytest.mark.parametrize("field", ["id", "name", "description", "pattern", "fileTypes", "severity"])
    def test_missing_required_field(self, field: str):
        """Each required field is checked by name."""
        data = _rule()
        del data[field]
        with pytest.raises(RuleValidationError, match=f'missing required field "{field}"'):
            validate_rule(data)

    def test_bad_severity(self):
        """Severity must be error, warning or info."""
        with pytest.raises(RuleValidationError, match="must be one of: error, warning, info"):
            validate_rule(_rule(severity="fatal"))

    def test_file_types_must_be_list(self):
        """fileTypes must be a list."""
        with pytest.raises(RuleValidationError, match='"fileTypes" must be an array'):
            validate_rule(_rule(fileTypes="js"))

    def test_non_string_replacement(self):
        """A non-string replacement is rejected."""
        with pytest.raises(RuleValidationError, match="replacement"):
            validate_rule(_rule(replacement=3))

    def test_non_mapping(self):
        """A rule must be an object."""
        with pytest.raises(RuleValidationError):
            validate_rule(["not", "a", "rule"])


class TestLoad:
    def test_loads_rules_in_order(self, engine: RuleEngine):
        """Rules keep their load order and can be looked up by id."""
        rule_set = engine.load({"rules": [_rule(), _rule(id="no-let", pattern=r"\blet\b")]})

        assert len(rule_set) == 2
        assert [r.id for r in engine.rules] == ["no-var", "no-let"]
        assert engine.get_rule("no-let").pattern == r"\blet\b"
        assert engine.get_rule("missing") is None

    @pytest.mark.parametrize("document", [{}, {"rules": "nope"}, [], None])
    def test_missing_rules_array_is_fatal(self, engine: RuleEngine, document):
        """A document without a rules list cannot be loaded."""
        with pytest.raises(RuleLoadError, match='missing or invalid "rules" array'):
            engine.load(document)

    def test_invalid_rules_are_skipped(self, engine: RuleEngine):
        """Malformed rules are rejected while valid ones load."""
        data = {"rules": [_rule(), _rule(id="bad", severity="nope"), {"id": "incomplete"}]}
        rule_set = engine.load(data)

        assert [r.id for r in engine.rules] == ["no-var"]
        assert [r.rule_id for r in rule_set.rejected] == ["bad", "incomplete"]
        assert engine.load_errors == rule_set.rejected

    def test_invalid_regex_is_excluded_and_classified(self, engine: RuleEngine, classifier: ErrorClassifier):
        """A pattern that fails to compile is dropped as a regex error."""
        rule_set = engine.load({"rules": [_rule(id="broken", pattern="(unclosed"), _rule()]})

        assert [r.id for r in engine.rules] == ["no-var"]
        assert rule_set.rejected[0].rule_id == "broken"
        assert rule_set.rejected[0].record.type == ErrorType.REGEX
        assert classifier.count(ErrorType.REGEX) == 1

    def test_duplicate_ids_keep_first(self, engine: RuleEngine):
        """The first rule with an id wins."""
        rule_set = engine.load({"rules": [_rule(), _rule(pattern="other")]})

        assert len(rule_set) == 1
        assert engine.get_rule("no-var").pattern == r"\bvar\b"
        assert "Duplicate" in rule_set.rejected[0].reason

    def test_rules_for_extension(self, engine: RuleEngine):
        """Rules are filtered by extension, ignoring case and dots."""
        engine.load({"rules": [_rule(), _rule(id="py-only", fileTypes=["py"])]})

        assert [r.id for r in engine.rules_for_extension("js")] == ["no-var"]
        assert [r.id for r in engine.rules_for_extension(".PY")] == ["py-only"]
        assert engine.rules_for_extension("rb") == []


class TestLoadFile:
    def test_json_file(self, engine: RuleEngine, tmp_path: Path):
        """Rules load from a JSON file."""
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"rules": [_rule()]}))

        assert len(engine.load_file(path)) == 1

    def test_toml_file(self, engine: RuleEngine, tmp_path: Path):
        """Rules load from a TOML file."""
        path = tmp_path / "rules.toml"
        path.write_text(
            '[[rules]]\nid = "no-var"\nname = "No var"\ndescription = "d"\n'
            'pattern = \'\\bvar\\b\'\nfileTypes = ["js"]\nseverity = "error"\n'
        )

        engine.load_file(path)
        assert engine.get_rule("no-var").pattern == r"\bvar\b"

    def test_missing_file(self, engine: RuleEngine, tmp_path: Path):
        """A missing rules file is a load error."""
        with pytest.raises(RuleLoadError, match="Rules file not found"):
            engine.load_file(tmp_path / "rules.json")

    def test_invalid_json(self, engine: RuleEngine, tmp_path: Path):
        """Malformed JSON is a load error."""
        path = tmp_path / "rules.json"
        path.write_text("{not json")

        with pytest.raises(RuleLoadError, match="Invalid JSON in rules file"):
            engine.load_file(path)


class TestScan:
    def test_position_is_one_based(self, engine: RuleEngine):
        """Line and column are 1-based."""
        engine.load({"rules": [_rule(pattern=r"\bvar\s+\w+")]})
        findings = engine.scan("a\nb\nvar x=1;", "f.js", "js")

        assert len(findings) == 1
        finding = findings[0]
        assert (finding.line, finding.column) == (3, 1)
        assert finding.matched_text == "var x"
        assert finding.file_path == Path("f.js")
        assert finding.fixable is True
        assert finding.replacement == "const"

    def test_column_mid_line(self, engine: RuleEngine):
        """Columns count from the start of the match's line."""
        engine.load({"rules": [_rule()]})
        findings = engine.scan("x;\n  if (a) { var y; }", "f.js", "js")

        assert (findings[0].line, findings[0].column) == (2, 12)

    def test_document_order_per_rule(self, engine: RuleEngine):
        """A rule's findings come out in document order."""
        engine.load({"rules": [_rule()]})
        content = "var a;\nvar b; var c;\n\nvar d;"
        findings = engine.scan(content, "f.js", "js")

        assert [(f.line, f.column) for f in findings] == [(1, 1), (2, 1), (2, 8), (4, 1)]

    def test_findings_grouped_by_rule_in_load_order(self, engine: RuleEngine):
        """Findings are grouped rule by rule in load order."""
        engine.load({"rules": [_rule(id="lets", pattern=r"\blet\b"), _rule()]})
        findings = engine.scan("var a; let b; var c;", "f.js", "js")

        assert [f.rule_id for f in findings] == ["lets", "no-var", "no-var"]

    def test_file_type_filter(self, engine: RuleEngine):
        """Rules only run on their file types."""
        engine.load({"rules": [_rule()]})

        assert engine.scan("var x;", "f.py", "py") == []
        assert len(engine.scan("var x;", "f.JS", "JS")) == 1

    def test_anchors_are_multiline(self, engine: RuleEngine):
        """^ and $ anchor at line boundaries."""
        engine.load({"rules": [_rule(pattern=r"^import ")]})
        findings = engine.scan("import a\nimport b\n", "f.js", "js")

        assert [f.line for f in findings] == [1, 2]

    def test_zero_width_matches_terminate(self, engine: RuleEngine):
        """Zero-width matches advance the cursor and finish."""
        engine.load({"rules": [_rule(pattern=r"\b")]})
        findings = engine.scan("ab cd", "f.js", "js")

        assert [f.column for f in findings] == [1, 3, 4, 6]
        assert all(f.matched_text == "" for f in findings)

    def test_match_cap_skips_rule_and_records_timeout(self, classifier: ErrorClassifier, caplog):
        """Going past the cap drops that rule for the file and leaves the others running."""
        engine = RuleEngine(classifier, max_matches=5)
        engine.load({"rules": [_rule(id="x", pattern="x"), _rule()]})

        with caplog.at_level(logging.WARNING, logger="codemigrate"):
            findings = engine.scan("x" * 6 + " var", "f.js", "js")

        assert [f.rule_id for f in findings] == ["no-var"]
        assert classifier.count(ErrorType.TIMEOUT) == 1
        assert 'Too many matches for rule "x"' in caplog.text

    def test_exactly_at_cap_is_allowed(self, classifier: ErrorClassifier):
        """Hitting the cap exactly is not an error."""
        engine = RuleEngine(classifier, max_matches=5)
        engine.load({"rules": [_rule(id="x", pattern="x")]})

        assert len(engine.scan("x" * 5, "f.js", "js")) == 5
        assert classifier.count(ErrorType.TIMEOUT) == 0

    def test_expired_budget_is_a_timeout(self, classifier: ErrorClassifier):
        """A zero time budget records a timeout and skips the rule."""
        engine = RuleEngine(classifier, regex_timeout_ms=0)
        engine.load({"rules": [_rule()]})

        assert engine.scan("var x;", "f.js", "js") == []
        assert classifier.count(ErrorType.TIMEOUT) == 1

    def test_scan_without_timeout(self, classifier: ErrorClassifier):
        """Scanning works with the timeout disabled."""
        engine = RuleEngine(classifier, regex_timeout_ms=None)
        engine.load({"rules": [_rule()]})

        assert len(engine.scan("var x; var y;", "f.js", "js")) == 2

    def test_does_not_mutate_rules(self, engine: RuleEngine):
        """Scanning leaves the loaded rules untouched."""
        engine.load({"rules": [_rule()]})
        before = list(engine.rules)
        engine.scan("var x;", "f.js", "js")

        assert engine.rules == before

    def test_explicit_rule_set(self, engine: RuleEngine):
        """An explicit rule set overrides the loaded one."""
        other = RuleEngine().load({"rules": [_rule(id="lets", pattern=r"\blet\b")]})
        engine.load({"rules": [_rule()]})

        findings = engine.scan("let a; var b;", "f.js", "js", rule_set=other)
        assert [f.rule_id for f in findings] == ["lets"]
