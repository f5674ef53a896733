"""Failure classification for Playwright test failures.

Rules are checked in a fixed order and the first match wins:

1. an element lookup failed                -> SELECTOR_MISMATCH
2. a state transition timed out            -> TIMING_RACE
3. state left over from another case       -> STATE_ISOLATION
4. a comparator saw Expected and Received  -> ASSERTION_MISMATCH
5. password gate, redirect or environment  -> ENVIRONMENT_OR_AUTH
6. anything else                           -> UNKNOWN
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from healwright.models.healing import Classification, FailureCategory, FailureEvidence

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


# ── Failure Detection Patterns ────────────────────────────────────────

_SELECTOR_PATTERNS = [
    re.compile(r"element\(s\) not found", re.IGNORECASE),
    re.compile(r"resolved to 0 elements", re.IGNORECASE),
    re.compile(r"strict mode violation", re.IGNORECASE),
    re.compile(r"(?:locator|selector|element).*?not found", re.IGNORECASE),
    re.compile(r"waiting for selector.*?failed", re.IGNORECASE),
    re.compile(r"unable to locate element", re.IGNORECASE),
    re.compile(r"no such element", re.IGNORECASE),
]

# An action timed out while still waiting for its locator to resolve.
_LOCATOR_ACTION_TIMEOUT = re.compile(
    r"\blocator\.\w+: Timeout \d+ms exceeded", re.IGNORECASE
)
_LOCATOR_RESOLVED = re.compile(r"locator resolved to (?:<|\d+ elements?)", re.IGNORECASE)

_TIMEOUT_PATTERNS = [
    re.compile(r"timeout(?: of)? \d+ms exceeded", re.IGNORECASE),
    re.compile(r"timeout.*?exceeded", re.IGNORECASE),
    re.compile(r"timed out", re.IGNORECASE),
    re.compile(r"waitFor.*?timeout", re.IGNORECASE),
]

# Hard timeouts, as opposed to the informational ``Timeout: 5000ms`` line.
_HARD_TIMEOUT = re.compile(r"timeout(?: of)? \d+ms exceeded|exceeded while waiting", re.IGNORECASE)

_STATE_TRANSITION = re.compile(
    r"\b(?:visible|hidden|attached|detached|enabled|disabled|stable|editable|"
    r"dialog|popup|modal|drawer|navigation|waitForURL|waitForResponse|waitForEvent|"
    r"waitFor|load state)\b",
    re.IGNORECASE,
)

_STATE_PATTERNS = [
    re.compile(r"element is not (?:visible|stable|enabled|attached|editable)", re.IGNORECASE),
    re.compile(r"intercepts pointer events", re.IGNORECASE),
    re.compile(r"^\s*Expected: (?:not )?(?:visible|hidden)\s*$", re.IGNORECASE | re.MULTILINE),
]

_ISOLATION_PATTERNS = [
    re.compile(r"cart (?:is )?not empty", re.IGNORECASE),
    re.compile(
        r"already (?:exists|in (?:the )?cart|added|logged in|subscribed|applied)", re.IGNORECASE
    ),
    re.compile(
        r"unexpected(?:ly)? (?:pre-?existing|leftover|existing|stale) "
        r"(?:state|items?|data|session)",
        re.IGNORECASE,
    ),
    re.compile(r"(?:left ?over|residual) (?:state|items?|data) from", re.IGNORECASE),
    re.compile(r"from a previous (?:test|case|run)", re.IGNORECASE),
    re.compile(r"depends on (?:test|case) order", re.IGNORECASE),
]

_EXPECTED_LINE = re.compile(
    r"^\s*Expected(?: string| value| pattern| substring)?:\s*\S", re.MULTILINE
)
_RECEIVED_LINE = re.compile(r"^\s*Received(?: string| value)?:\s*\S", re.MULTILINE)

_AUTH_PATTERNS = [
    re.compile(r"/password\b", re.IGNORECASE),
    re.compile(r"enter store using password", re.IGNORECASE),
    re.compile(r"(?:storefront|store) password", re.IGNORECASE),
    re.compile(r"password (?:page|gate|protected)", re.IGNORECASE),
    re.compile(r"redirected to (?:the )?(?:login|password|sign[- ]in)", re.IGNORECASE),
    re.compile(r"\b(?:401|403)\b|\bunauthori[sz]ed\b|\bforbidden\b", re.IGNORECASE),
    re.compile(r"storage ?state", re.IGNORECASE),
    re.compile(r"net::ERR_\w+|ECONNREFUSED|ENOTFOUND", re.IGNORECASE),
    re.compile(r"Executable doesn't exist", re.IGNORECASE),
]

_SELECTOR_EXTRACTION = [
    re.compile(r"^\s*Locator:\s*(.+?)\s*$", re.MULTILINE),
    re.compile(r"waiting for ((?:locator|getBy\w+)\(.+\))\s*$", re.MULTILINE),
    re.compile(
        r"""(?:locator|getBy\w+|selector)\(\s*(['"`])(.+?)\1""",
        re.IGNORECASE,
    ),
]


# ── Rule predicates ───────────────────────────────────────────────────


def _is_selector_mismatch(message: str) -> bool:
    if any(p.search(message) for p in _SELECTOR_PATTERNS):
        return True
    return bool(_LOCATOR_ACTION_TIMEOUT.search(message)) and not _LOCATOR_RESOLVED.search(message)


def _is_timing_race(message: str) -> bool:
    if any(p.search(message) for p in _STATE_PATTERNS):
        return True
    timed_out = any(p.search(message) for p in _TIMEOUT_PATTERNS)
    return timed_out and bool(_STATE_TRANSITION.search(message))


def _is_state_isolation(message: str) -> bool:
    return any(p.search(message) for p in _ISOLATION_PATTERNS)


def _is_assertion_mismatch(message: str) -> bool:
    if _HARD_TIMEOUT.search(message):
        return False
    return bool(_EXPECTED_LINE.search(message) and _RECEIVED_LINE.search(message))


def _is_environment_or_auth(message: str) -> bool:
    return any(p.search(message) for p in _AUTH_PATTERNS)


@dataclass(frozen=True)
class ClassificationRule:
    """One entry of the ordered rule table."""

    category: FailureCategory
    matches: Callable[[str], bool]
    hint: str


RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        FailureCategory.SELECTOR_MISMATCH,
        _is_selector_mismatch,
        "Locator no longer resolves; switch to a role, label or text lookup.",
    ),
    ClassificationRule(
        FailureCategory.TIMING_RACE,
        _is_timing_race,
        "State transition not observed in time; rely on auto-waiting or a web-first assertion.",
    ),
    ClassificationRule(
        FailureCategory.STATE_ISOLATION,
        _is_state_isolation,
        "Case saw state left by another case; reset that state at the start of the case.",
    ),
    ClassificationRule(
        FailureCategory.ASSERTION_MISMATCH,
        _is_assertion_mismatch,
        "Comparator saw a different value; confirm the expectation against the storefront.",
    ),
    ClassificationRule(
        FailureCategory.ENVIRONMENT_OR_AUTH,
        _is_environment_or_auth,
        "Run did not reach the storefront; rely on the saved session instead of in-case login.",
    ),
)

_UNKNOWN_HINT = "No known failure pattern; inspect the trace."


class FailureClassifier:
    """Maps failure evidence to exactly one ``FailureCategory``.

    Classification is a pure function of the evidence's error message and
    never raises: malformed evidence is classified as ``UNKNOWN``.
    """

    def __init__(self, rules: tuple[ClassificationRule, ...] = RULES) -> None:
        self._rules = rules

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    def classify(self, evidence: FailureEvidence) -> Classification:
        try:
            message = _message_of(evidence)
            for rule in self._rules:
                if rule.matches(message):
                    return Classification(
                        category=rule.category,
                        hint=rule.hint,
                        selector=extract_selector(message),
                    )
        except Exception:
            logger.exception("Classification failed; treating evidence as unknown")
        return Classification(category=FailureCategory.UNKNOWN, hint=_UNKNOWN_HINT)

    def classify_message(self, message: str) -> Classification:
        """Classify a bare error message."""
        return self.classify(FailureEvidence(error_message=message))


def extract_selector(message: str) -> str:
    """Extract the offending locator expression from an error message."""
    for pattern in _SELECTOR_EXTRACTION:
        match = pattern.search(message)
        if match:
            return match.group(match.lastindex or 1)
    return ""


def _message_of(evidence: object) -> str:
    message = getattr(evidence, "error_message", "")
    if not isinstance(message, str):
        return ""
    return message
