"""Tests for $-style replacement templates."""

from __future__ import annotations

import re

import pytest

from codemigrate.rules.replacement import ReplacementTemplate, compile_template, substitute


def _sub(pattern: str, template: str, content: str) -> str:
    return substitute(re.compile(pattern, re.MULTILINE), template, content)[0]


class TestReplacementTemplate:
    def test_literal_template(self):
        """A template without references is literal."""
        tpl = ReplacementTemplate("const")
        assert tpl.is_literal is True

    def test_dollar_escape_is_literal(self):
        """$$ produces a single dollar sign."""
        assert ReplacementTemplate("$$5").is_literal is True
        assert _sub("price", "$$5", "price") == "$5"

    def test_references_are_not_literal(self):
        """A group reference makes the template dynamic."""
        assert ReplacementTemplate("$1").is_literal is False

    def test_compile_template_is_cached(self):
        """Parsed templates are reused."""
        assert compile_template("$1-x") is compile_template("$1-x")


class TestSubstitute:
    def test_counts_every_match(self):
        """substitute returns the new text and the match count."""
        content, count = substitute(re.compile(r"\bvar\b"), "const", "var a; var b;")
        assert content == "const a; const b;"
        assert count == 2

    def test_no_match(self):
        """No match leaves the content unchanged."""
        assert substitute(re.compile("zzz"), "y", "abc") == ("abc", 0)

    def test_numbered_groups(self):
        """$1 and $2 expand to numbered groups."""
        assert _sub(r"(\w+)\.substr\((\w+)\)", "$1.slice($2)", "s.substr(i)") == "s.slice(i)"

    def test_named_groups(self):
        """$<name> expands to a named group."""
        assert _sub(r"require\('(?P<mod>\w+)'\)", "import('$<mod>')", "require('fs')") == "import('fs')"

    def test_unknown_named_group_is_empty(self):
        """An unknown group name expands to nothing."""
        assert _sub(r"(?P<a>x)", "[$<b>]", "x") == "[]"

    def test_named_reference_without_named_groups_is_literal(self):
        """$<name> stays literal when the pattern has no named groups."""
        assert _sub(r"(x)", "$<a>", "x") == "$<a>"

    def test_whole_match_and_context(self):
        """$&, $` and $' expand to the match and its surroundings."""
        assert _sub("b", "[$&]", "abc") == "a[b]c"
        assert _sub("b", "$`", "abc") == "aac"
        assert _sub("b", "$'", "abc") == "acc"

    def test_undefined_group_kept_literally(self):
        """A reference past the last group stays literal."""
        assert _sub("(a)", "$2", "a") == "$2"

    def test_two_digit_reference_falls_back_to_one_digit(self):
        """$10 with one group means group 1 followed by 0."""
        assert _sub("(a)", "$10", "a") == "a0"

    def test_unmatched_optional_group_is_empty(self):
        """A group that did not participate expands to nothing."""
        assert _sub(r"(a)|(b)", "<$2>", "a") == "<>"

    @pytest.mark.parametrize("template", [r"\1", r"C:\new", "\\"])
    def test_backslashes_are_literal(self, template: str):
        """Backslashes are copied through unchanged."""
        assert _sub("x", template, "x") == template
