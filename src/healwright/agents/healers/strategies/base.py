"""Strategy interface and helpers shared by the rule-based fixers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from healwright.models.healing import Classification, FailureCategory, FailureEvidence

# Waits no remediation may introduce.
DISALLOWED_WAIT_PATTERNS = (
    re.compile(r"\bwaitForTimeout\s*\("),
    re.compile(r"""\bwaitForLoadState\(\s*['"`]networkidle['"`]"""),
    re.compile(r"""\bwaitUntil\s*:\s*['"`]networkidle['"`]"""),
    re.compile(r"new\s+Promise\([^)]*=>\s*setTimeout\("),
)

# Markers that exclude a case from the run.
EXCLUSION_PATTERNS = (
    re.compile(r"\b(?:test|it|describe)(?:\.describe)?\.(?:skip|fixme)\s*\("),
    re.compile(r"\b(?:test|it|describe)(?:\.describe)?\.only\s*\("),
)

_ACTION_LINE = re.compile(
    r"^(?P<indent>[ \t]*)await\s+(?P<target>.+?)\."
    r"(?P<action>click|dblclick|tap|fill|type|press|check|uncheck|hover|selectOption)\("
)
_EXPECT_LINE = re.compile(
    r"^(?P<indent>[ \t]*)await\s+expect\((?P<target>.+?)\)\.(?P<negated>not\.)?"
    r"(?P<matcher>toBeVisible|toBeHidden|toBeEnabled|toBeAttached)\("
)
_QUOTED = re.compile(r"""(['"`])(.+?)\1""")


@dataclass(frozen=True)
class CaseSource:
    """The source text a strategy may rewrite."""

    text: str
    """Source of the case (the ``test(...)`` call) or of a page-object file."""

    focus_line: int | None = None
    """1-based line within ``text`` the failure points at, if known."""

    path: str = ""

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines(keepends=True)


@dataclass(frozen=True)
class ProposedFix:
    """A rewritten source plus a one-line description of the change."""

    source: str
    description: str


class FixStrategy(ABC):
    """Rule-based remediation for one failure category.

    ``propose`` is pure: it returns a rewritten source, or ``None`` when the
    strategy has nothing to offer.
    """

    category: ClassVar[FailureCategory]

    @abstractmethod
    def propose(
        self,
        source: CaseSource,
        evidence: FailureEvidence,
        classification: Classification,
    ) -> ProposedFix | None: ...


def count_disallowed_waits(text: str) -> int:
    """Count fixed-delay and network-idle waits in *text*."""
    return sum(len(p.findall(text)) for p in DISALLOWED_WAIT_PATTERNS)


def count_exclusion_markers(text: str) -> int:
    """Count skip, fixme and only markers in *text*."""
    return sum(len(p.findall(text)) for p in EXCLUSION_PATTERNS)


def selector_needles(selector: str) -> list[str]:
    """Strings to look for in source when hunting for *selector*."""
    if not selector:
        return []
    needles = [selector]
    needles.extend(m.group(2) for m in _QUOTED.finditer(selector) if len(m.group(2)) > 1)
    return needles


def target_line_numbers(source: CaseSource, selector: str) -> list[int]:
    """0-based indices of the lines a fix should touch.

    Lines mentioning the offending selector win; otherwise the focus line.
    """
    lines = source.lines
    needles = selector_needles(selector)
    if needles:
        for needle in needles:
            hits = [i for i, line in enumerate(lines) if needle in line]
            if hits:
                return hits
    if source.focus_line is not None and 0 < source.focus_line <= len(lines):
        return [source.focus_line - 1]
    return []


def match_action(line: str) -> re.Match[str] | None:
    return _ACTION_LINE.match(line)


def match_state_expect(line: str) -> re.Match[str] | None:
    return _EXPECT_LINE.match(line)


def quote(text: str) -> str:
    """Render *text* as a single-quoted TypeScript string literal."""
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"
