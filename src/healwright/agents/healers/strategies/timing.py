"""Remediation for timing races."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from healwright.agents.healers.strategies.base import (
    FixStrategy,
    ProposedFix,
    match_action,
    match_state_expect,
    target_line_numbers,
)
from healwright.models.healing import FailureCategory

if TYPE_CHECKING:
    from healwright.agents.healers.strategies.base import CaseSource
    from healwright.models.healing import Classification, FailureEvidence

_END = r"[ \t]*;?[ \t]*(?:\r?\n|$)"

_FIXED_DELAYS = (
    re.compile(r"^[ \t]*await\s+(?:[\w$]+\.)*waitForTimeout\([^)]*\)" + _END, re.MULTILINE),
    re.compile(
        r"^[ \t]*await\s+new\s+Promise\(\s*\(?\s*\w*\s*\)?\s*=>\s*setTimeout\([^;\n]*\)\s*\)"
        + _END,
        re.MULTILINE,
    ),
    re.compile(
        r"""^[ \t]*await\s+(?:[\w$]+\.)*waitForLoadState\(\s*['"`]networkidle['"`]\s*\)""" + _END,
        re.MULTILINE,
    ),
)

_TRUE = r"(?:toBe\(\s*true\s*\)|toBeTruthy\(\))"
_FALSE = r"(?:toBe\(\s*false\s*\)|toBeFalsy\(\))"
_AWAITED = r"expect\(\s*await\s+(?P<t>[^\n;]+?)\.{method}\(\)\s*\)\."

# (pattern, replacement) pairs turning one-shot reads into web-first assertions.
_MANUAL_CHECKS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(_AWAITED.format(method="isVisible") + _TRUE), "await expect(\\g<t>).toBeVisible()"),
    (re.compile(_AWAITED.format(method="isVisible") + _FALSE), "await expect(\\g<t>).toBeHidden()"),
    (re.compile(_AWAITED.format(method="isHidden") + _TRUE), "await expect(\\g<t>).toBeHidden()"),
    (re.compile(_AWAITED.format(method="isHidden") + _FALSE), "await expect(\\g<t>).toBeVisible()"),
    (re.compile(_AWAITED.format(method="isEnabled") + _TRUE), "await expect(\\g<t>).toBeEnabled()"),
    (
        re.compile(_AWAITED.format(method="isDisabled") + _TRUE),
        "await expect(\\g<t>).toBeDisabled()",
    ),
    (re.compile(_AWAITED.format(method="isChecked") + _TRUE), "await expect(\\g<t>).toBeChecked()"),
    (
        re.compile(
            _AWAITED.format(method="(?:textContent|innerText)")
            + r"(?:toBe|toEqual)\((?P<v>[^\n;]+?)\)(?=\s*;|\s*$)",
            re.MULTILINE,
        ),
        "await expect(\\g<t>).toHaveText(\\g<v>)",
    ),
    (
        re.compile(
            _AWAITED.format(method="(?:textContent|innerText)")
            + r"toContain\((?P<v>[^\n;]+?)\)(?=\s*;|\s*$)",
            re.MULTILINE,
        ),
        "await expect(\\g<t>).toContainText(\\g<v>)",
    ),
    (
        re.compile(
            _AWAITED.format(method="count") + r"(?:toBe|toEqual)\((?P<v>[^\n;]+?)\)(?=\s*;|\s*$)",
            re.MULTILINE,
        ),
        "await expect(\\g<t>).toHaveCount(\\g<v>)",
    ),
    (
        re.compile(
            _AWAITED.format(method="inputValue")
            + r"(?:toBe|toEqual)\((?P<v>[^\n;]+?)\)(?=\s*;|\s*$)",
            re.MULTILINE,
        ),
        "await expect(\\g<t>).toHaveValue(\\g<v>)",
    ),
    (
        re.compile(
            r"expect\(\s*(?P<t>[\w$]+)\.url\(\)\s*\)\.(?:toBe|toEqual)\((?P<v>[^\n;]+?)\)"
            r"(?=\s*;|\s*$)",
            re.MULTILINE,
        ),
        "await expect(\\g<t>).toHaveURL(\\g<v>)",
    ),
)

# Drop a stray ``await`` left in front of a rewritten ``await expect(...)``.
_DOUBLE_AWAIT = re.compile(r"\bawait\s+await\s+expect\(")

_URL_EXPECTATION = re.compile(
    r"""(?:toHaveURL|waitForURL)\(\s*"""
    r"""(?:(?P<q>['"`])(?P<path>[^'"`]+)(?P=q)|(?P<regex>/(?:\\/|[^/\n])+/[a-z]*)"""
    r"""|(?P<expr>[A-Za-z_$][\w$.]*)\s*\))"""
)
_PAGE_FIXTURE = re.compile(r"\{\s*[^}]*\bpage\b[^}]*\}\s*\)\s*=>")


class TimingStrategy(FixStrategy):
    """Timing fixes, most to least preferred.

    1. Remove fixed-delay and network-idle waits.
    2. Turn one-shot state reads into retrying web-first assertions.
    3. Wait for the failing element to reach the state the step needs.
    4. Wait for the network response the failing action triggers.
    """

    category = FailureCategory.TIMING_RACE

    def propose(
        self,
        source: CaseSource,
        evidence: FailureEvidence,
        classification: Classification,
    ) -> ProposedFix | None:
        return (
            _remove_fixed_delays(source)
            or _use_retrying_assertions(source)
            or _wait_for_element_state(source, classification.selector)
            or _wait_for_response(source, classification.selector)
        )


def _remove_fixed_delays(source: CaseSource) -> ProposedFix | None:
    text = source.text
    removed = 0
    for pattern in _FIXED_DELAYS:
        text, count = pattern.subn("", text)
        removed += count
    if not removed:
        return None
    return ProposedFix(
        source=text,
        description=f"Removed {removed} fixed-delay wait(s); actions and assertions auto-wait",
    )


def _use_retrying_assertions(source: CaseSource) -> ProposedFix | None:
    text = source.text
    replaced = 0
    for pattern, replacement in _MANUAL_CHECKS:
        text, count = pattern.subn(replacement, text)
        replaced += count
    if not replaced:
        return None
    text = _DOUBLE_AWAIT.sub("await expect(", text)
    return ProposedFix(
        source=text,
        description=f"Replaced {replaced} one-shot state check(s) with retrying assertions",
    )


def _wait_for_element_state(source: CaseSource, selector: str) -> ProposedFix | None:
    lines = source.lines
    for index in target_line_numbers(source, selector):
        line = lines[index]
        match = match_action(line)
        state = "visible"
        if match is None:
            match = match_state_expect(line)
            if match is None:
                continue
            hidden = (match.group("matcher") == "toBeHidden") != bool(match.group("negated"))
            state = "hidden" if hidden else "visible"
            if match.group("matcher") == "toBeAttached":
                state = "detached" if match.group("negated") else "attached"

        target = match.group("target").strip()
        if target in {"page", "this.page"}:
            continue
        wait_line = f"{match.group('indent')}await {target}.waitFor({{ state: '{state}' }});\n"
        if index > 0 and lines[index - 1].strip() == wait_line.strip():
            continue
        lines.insert(index, wait_line)
        return ProposedFix(
            source="".join(lines),
            description=f"Wait for {target} to be {state} before the step continues",
        )
    return None


def _wait_for_response(source: CaseSource, selector: str) -> ProposedFix | None:
    text = source.text
    if "waitForResponse" in text or not _PAGE_FIXTURE.search(text):
        return None

    lines = source.lines
    for index in target_line_numbers(source, selector):
        match = match_action(lines[index])
        if match is None or match.group("action") not in {"click", "dblclick", "tap", "press"}:
            continue
        expectation = _URL_EXPECTATION.search("".join(lines[index + 1 :]))
        if expectation is None:
            continue

        if expectation.group("path"):
            predicate = f"response.url().includes('{expectation.group('path')}')"
        elif expectation.group("expr"):
            predicate = f"response.url().includes({expectation.group('expr')})"
        else:
            predicate = f"{expectation.group('regex')}.test(response.url())"

        indent = match.group("indent")
        call = lines[index].strip()[len("await ") :].rstrip().rstrip(";")
        lines[index] = (
            f"{indent}await Promise.all([\n"
            f"{indent}  page.waitForResponse((response) => {predicate} && response.ok()),\n"
            f"{indent}  {call},\n"
            f"{indent}]);\n"
        )
        return ProposedFix(
            source="".join(lines),
            description=f"Wait for the response matching {predicate} triggered by {call}",
        )
    return None
