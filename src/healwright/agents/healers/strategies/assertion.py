"""Remediation for comparator failures with a concrete received value."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from healwright.agents.healers.strategies.base import FixStrategy, ProposedFix
from healwright.models.healing import FailureCategory

if TYPE_CHECKING:
    from collections.abc import Iterator

    from healwright.agents.healers.strategies.base import CaseSource
    from healwright.models.healing import Classification, FailureEvidence

_EXPECTED = re.compile(r"^\s*Expected(?: string| value)?:\s*(?P<value>.+?)\s*$", re.MULTILINE)
_RECEIVED = re.compile(r"^\s*Received(?: string| value)?:\s*(?P<value>.+?)\s*$", re.MULTILINE)
_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?$")
_STRING = re.compile(r'^"(?P<text>(?:[^"\\]|\\.)*)"$')


class AssertionStrategy(FixStrategy):
    """Updates an expected literal to the received value.

    Only applies when both values are plain strings or numbers and the
    expected literal occurs exactly once in the case; otherwise declines.
    """

    category = FailureCategory.ASSERTION_MISMATCH

    def propose(
        self,
        source: CaseSource,
        evidence: FailureEvidence,
        classification: Classification,
    ) -> ProposedFix | None:
        expected_match = _EXPECTED.search(evidence.error_message)
        received_match = _RECEIVED.search(evidence.error_message)
        if expected_match is None or received_match is None:
            return None

        expected = _literal(expected_match.group("value"))
        received = _literal(received_match.group("value"))
        if expected is None or received is None or type(expected) is not type(received):
            return None
        if expected == received:
            return None

        if isinstance(expected, str):
            occurrences = list(_string_occurrences(source.text, expected))
            if len(occurrences) != 1:
                return None
            start, end, quote_char = occurrences[0]
            replacement = quote_char + _escape(str(received), quote_char) + quote_char
        else:
            number = re.compile(rf"(?<![\w.]){re.escape(expected_match.group('value'))}(?![\w.])")
            occurrences = [(m.start(), m.end(), "") for m in number.finditer(source.text)]
            if len(occurrences) != 1:
                return None
            start, end, _ = occurrences[0]
            replacement = received_match.group("value")

        return ProposedFix(
            source=source.text[:start] + replacement + source.text[end:],
            description=(
                f"Updated expected value {expected_match.group('value')} "
                f"to {received_match.group('value')}"
            ),
        )


def _literal(value: str) -> str | float | None:
    if _NUMBER.match(value):
        return float(value)
    match = _STRING.match(value)
    if match:
        return match.group("text").replace('\\"', '"').replace("\\\\", "\\")
    return None


def _string_occurrences(text: str, value: str) -> Iterator[tuple[int, int, str]]:
    for quote_char in ("'", '"', "`"):
        literal = quote_char + _escape(value, quote_char) + quote_char
        start = text.find(literal)
        while start != -1:
            yield start, start + len(literal), quote_char
            start = text.find(literal, start + 1)


def _escape(value: str, quote_char: str) -> str:
    return value.replace("\\", "\\\\").replace(quote_char, "\\" + quote_char)
