"""Remediation for locators that no longer resolve."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from healwright.agents.healers.strategies.base import (
    FixStrategy,
    ProposedFix,
    quote,
    target_line_numbers,
)
from healwright.models.healing import FailureCategory

if TYPE_CHECKING:
    from collections.abc import Callable

    from healwright.agents.healers.strategies.base import CaseSource
    from healwright.models.healing import Classification, FailureEvidence

_LOCATOR_CALL = re.compile(r"""\.locator\(\s*(?P<q>['"`])(?P<sel>.+?)(?P=q)\s*\)""")

_TAG_ROLES = {
    "a": "link",
    "button": "button",
    "h1": "heading",
    "h2": "heading",
    "h3": "heading",
    "h4": "heading",
    "h5": "heading",
    "h6": "heading",
    "li": "listitem",
    "nav": "navigation",
    "select": "combobox",
    "dialog": "dialog",
    "img": "img",
}

_TEXT_ENGINE = re.compile(r"""^text\s*=\s*["']?(?P<text>[^"']+?)["']?$""")
_ATTRIBUTE = re.compile(
    r"""^\[(?P<attr>aria-label|placeholder|data-testid|data-test-id|alt|title)"""
    r"""\s*=\s*["']?(?P<value>[^"'\]]+)["']?\]$"""
)
_HAS_TEXT = re.compile(
    r"""^(?P<tag>[a-z][a-z0-9]*)(?:\.[\w-]+)*"""
    r""":has-text\(\s*["'](?P<text>[^"']+)["']\s*\)$"""
)
_ROLE_ENGINE = re.compile(
    r"""^role\s*=\s*(?P<role>\w+)(?:\[name\s*=\s*["'](?P<name>[^"']+)["']\])?$"""
)

_ATTRIBUTE_LOOKUPS = {
    "aria-label": "getByLabel",
    "placeholder": "getByPlaceholder",
    "data-testid": "getByTestId",
    "data-test-id": "getByTestId",
    "alt": "getByAltText",
    "title": "getByTitle",
}

_TEXT_LITERAL = re.compile(
    r"""(?P<head>getBy(?:Text|Label|Placeholder|AltText|Title)\(\s*|name:\s*)"""
    r"""(?P<q>['"])(?P<text>[^'"\n]*\d[^'"\n]*)(?P=q)"""
)
_ROLE_OPTIONS = re.compile(
    r"""(?P<head>getByRole\(\s*['"]\w+['"]\s*,\s*\{)(?P<opts>[^}]*)(?P<tail>\})"""
)
_STRICT_OPTIONS = re.compile(r",?\s*\b(?:level:\s*\d+|exact:\s*true)\b\s*,?")
_JS_SPECIAL = re.compile(r"[\\^$.*+?()[\]{}|/]")


class SelectorStrategy(FixStrategy):
    """Moves failing lookups towards user-facing locators.

    Structural ``locator()`` calls become role, label, text or test-id
    lookups; literal text containing numbers becomes a pattern; over-specific
    role options (``level``, ``exact``) are dropped.
    """

    category = FailureCategory.SELECTOR_MISMATCH

    def propose(
        self,
        source: CaseSource,
        evidence: FailureEvidence,
        classification: Classification,
    ) -> ProposedFix | None:
        indices = target_line_numbers(source, classification.selector)
        if not indices:
            return None

        lines = source.lines
        changes: list[str] = []
        for index in indices:
            line = lines[index]
            for rewrite in _REWRITES:
                line, note = rewrite(line)
                if note:
                    changes.append(note)
            lines[index] = line

        if not changes:
            return None
        return ProposedFix(source="".join(lines), description="; ".join(dict.fromkeys(changes)))


def _semantic_locator(selector: str) -> str | None:
    """Translate a structural selector into a user-facing lookup call."""
    selector = selector.strip()

    if match := _TEXT_ENGINE.match(selector):
        return f"getByText({quote(match.group('text'))})"

    if match := _ATTRIBUTE.match(selector):
        method = _ATTRIBUTE_LOOKUPS[match.group("attr")]
        return f"{method}({quote(match.group('value'))})"

    if match := _ROLE_ENGINE.match(selector):
        if match.group("name"):
            name = quote(match.group("name"))
            return f"getByRole({quote(match.group('role'))}, {{ name: {name} }})"
        return f"getByRole({quote(match.group('role'))})"

    if match := _HAS_TEXT.match(selector):
        role = _TAG_ROLES.get(match.group("tag"))
        if role is None:
            return f"getByText({quote(match.group('text'))})"
        return f"getByRole({quote(role)}, {{ name: {quote(match.group('text'))} }})"

    return None


def _rewrite_structural(line: str) -> tuple[str, str]:
    notes: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        semantic = _semantic_locator(match.group("sel"))
        if semantic is None:
            return match.group(0)
        notes.append(f"locator({match.group('sel')!r}) -> {semantic}")
        return f".{semantic}"

    line = _LOCATOR_CALL.sub(_replace, line)
    return line, "; ".join(notes)


def _text_pattern(text: str) -> str:
    parts = re.split(r"(\d+)", text)
    body = "".join(
        r"\d+" if part.isdigit() else _JS_SPECIAL.sub(r"\\\g<0>", part) for part in parts
    )
    return f"/{body}/"


def _rewrite_dynamic_text(line: str) -> tuple[str, str]:
    notes: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        pattern = _text_pattern(match.group("text"))
        notes.append(f"matched {match.group('text')!r} with {pattern}")
        return f"{match.group('head')}{pattern}"

    line = _TEXT_LITERAL.sub(_replace, line)
    return line, "; ".join(notes)


def _rewrite_role_options(line: str) -> tuple[str, str]:
    notes: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        opts = match.group("opts")
        if not _STRICT_OPTIONS.search(opts):
            return match.group(0)
        relaxed = _STRICT_OPTIONS.sub(", ", opts).strip().strip(",").strip()
        notes.append("dropped level/exact constraints from getByRole")
        if not relaxed:
            return re.sub(r"\s*,\s*\{$", "", match.group("head"))
        return f"{match.group('head')} {relaxed} {match.group('tail')}"

    line = _ROLE_OPTIONS.sub(_replace, line)
    return line, "; ".join(notes)


_REWRITES: tuple[Callable[[str], tuple[str, str]], ...] = (
    _rewrite_structural,
    _rewrite_dynamic_text,
    _rewrite_role_options,
)
