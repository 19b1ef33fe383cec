"""Integration test: scan -> fix -> rescan -> rollback."""

from __future__ import annotations

from pathlib import Path

import pytest

from codemigrate.core.config import CodeMigrateConfig
from codemigrate.core.errors import ErrorClassifier
from codemigrate.fix.engine import FixEngine
from codemigrate.rules.engine import RuleEngine
from codemigrate.scanner.engine import Scanner

RULES = {
    "rules": [
        {
            "id": "no-var",
            "name": "Prefer const",
            "description": "var declarations are function scoped",
            "pattern": r"\bvar\s+(\w+)",
            "fileTypes": ["js", "ts"],
            "severity": "warning",
            "replacement": "const $1",
        },
        {
            "id": "substr",
            "name": "substr is deprecated",
            "description": "Use slice instead of substr",
            "pattern": r"\.substr\(",
            "fileTypes": ["js", "ts"],
            "severity": "error",
            "replacement": ".slice(",
        },
        {
            "id": "todo",
            "name": "TODO comment",
            "description": "Leftover TODO",
            "pattern": r"//\s*TODO",
            "fileTypes": ["js", "ts"],
            "severity": "info",
        },
    ]
}


@pytest.fixture
def legacy_project(tmp_path: Path) -> Path:
    """A small project with fixable and report-only issues."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "app.js").write_text(
        "var name = 'codemigrate';\n"
        "var short = name.substr(0, 4);\n"
        "// TODO: remove\n"
    )
    (src / "util.ts").write_text("export function f(s) { return s.substr(1); }\n")
    (src / "clean.js").write_text("const ok = true;\n")
    return tmp_path


def test_scan_fix_rescan(legacy_project: Path):
    """Scanning, fixing and rescanning clears fixable findings; rollback undoes it."""
    classifier = ErrorClassifier()
    engine = RuleEngine(classifier)
    engine.load(RULES)
    scanner = Scanner(engine, CodeMigrateConfig(), classifier)

    before = scanner.run(legacy_project / "src")
    assert before.files_scanned == 3
    assert before.fixable_count == 4
    assert before.info_count == 1

    fixer = FixEngine.from_config(CodeMigrateConfig(), legacy_project, classifier, rule_set=engine.rule_set)
    result = fixer.apply_fixes(before.findings)

    assert result.files_fixed == 2
    assert result.patterns_replaced == 4
    assert len(result.backups_created) == 2
    assert (legacy_project / "src" / "app.js").read_text() == (
        "const name = 'codemigrate';\n"
        "const short = name.slice(0, 4);\n"
        "// TODO: remove\n"
    )

    after = scanner.run(legacy_project / "src")
    assert after.fixable_count == 0
    assert [f.rule_id for f in after.findings] == ["todo"]

    restored = fixer.rollback_changes()
    assert restored.files_restored == 2
    assert "var name" in (legacy_project / "src" / "app.js").read_text()
    assert classifier.summary().has_errors is False
