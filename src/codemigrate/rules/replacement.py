"""Replacement-template expansion.

Rule replacements use ``$``-style references so a rules file means the same
thing whatever engine reads it:

==============  ============================================
``$1``..``$99``  numbered capture group
``$<name>``      named capture group (``(?P<name>...)``)
``$&``           the whole match
``$```           text before the match
``$'``           text after the match
``$$``           a literal ``$``
==============  ============================================

Groups that did not take part in the match expand to ``""``.  References to
groups the pattern does not define are kept literally.  Backslashes are never
interpreted.
"""

from __future__ import annotations

import re
from functools import lru_cache

_TOKEN_RE = re.compile(r"\$(?:(\$)|(&)|(`)|(')|<([^>]*)>|(\d{1,2}))")

LITERAL = "literal"
DOLLAR = "dollar"
WHOLE = "whole"
BEFORE = "before"
AFTER = "after"
NAMED = "named"
NUMBERED = "numbered"


class ReplacementTemplate:
    """A parsed replacement string, expandable against ``re.Match`` objects."""

    def __init__(self, template: str):
        self.template = template
        self.tokens = self._parse(template)

    @staticmethod
    def _parse(template: str) -> list[tuple[str, str]]:
        tokens: list[tuple[str, str]] = []
        pos = 0
        for m in _TOKEN_RE.finditer(template):
            if m.start() > pos:
                tokens.append((LITERAL, template[pos:m.start()]))
            dollar, amp, backtick, quote, name, digits = m.groups()
            if dollar:
                tokens.append((DOLLAR, "$"))
            elif amp:
                tokens.append((WHOLE, ""))
            elif backtick:
                tokens.append((BEFORE, ""))
            elif quote:
                tokens.append((AFTER, ""))
            elif name is not None:
                tokens.append((NAMED, name))
            else:
                tokens.append((NUMBERED, digits))
            pos = m.end()
        if pos < len(template):
            tokens.append((LITERAL, template[pos:]))
        return tokens

    @property
    def is_literal(self) -> bool:
        return all(kind in (LITERAL, DOLLAR) for kind, _ in self.tokens)

    def expand(self, match: re.Match) -> str:
        parts: list[str] = []
        for kind, value in self.tokens:
            if kind == LITERAL or kind == DOLLAR:
                parts.append(value)
            elif kind == WHOLE:
                parts.append(match.group(0))
            elif kind == BEFORE:
                parts.append(match.string[:match.start()])
            elif kind == AFTER:
                parts.append(match.string[match.end():])
            elif kind == NAMED:
                parts.append(self._named(match, value))
            else:
                parts.append(self._numbered(match, value))
        return "".join(parts)

    @staticmethod
    def _named(match: re.Match, name: str) -> str:
        groupindex = match.re.groupindex
        if not groupindex:
            return f"$<{name}>"
        if name not in groupindex:
            return ""
        return match.group(name) or ""

    @staticmethod
    def _numbered(match: re.Match, digits: str) -> str:
        groups = match.re.groups
        if len(digits) == 2 and 1 <= int(digits) <= groups:
            return match.group(int(digits)) or ""
        first = int(digits[0])
        if 1 <= first <= groups:
            return (match.group(first) or "") + digits[1:]
        return "$" + digits


@lru_cache(maxsize=256)
def compile_template(template: str) -> ReplacementTemplate:
    return ReplacementTemplate(template)


def substitute(pattern: re.Pattern, template: str, content: str) -> tuple[str, int]:
    """Replace every non-overlapping match of ``pattern`` in one pass.

    Returns the new content and the number of matches substituted.
    """
    tpl = compile_template(template)
    if tpl.is_literal:
        literal = "".join(value for _, value in tpl.tokens)
        return pattern.subn(lambda _m: literal, content)
    return pattern.subn(tpl.expand, content)
