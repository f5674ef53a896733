"""Shared fixtures and fakes for healwright tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from healwright.adapters.base import (
    CaseResult,
    CaseStatus,
    RunnerContext,
    RunResult,
    TestRunner,
)
from healwright.agents.healers.applier import FixApplier
from healwright.models.healing import FailureEvidence, Remediation

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from healwright.models.healing import Classification, TestCase

# Outcome per case id: ``None`` passes, ``CaseStatus.SKIPPED`` skips, and a
# string fails with that message.
Outcomes = dict[str, str | CaseStatus | None]


def make_run_result(outcomes: Outcomes) -> RunResult:
    """Build a fresh ``RunResult`` from a case-id to outcome mapping."""
    result = RunResult()
    for case_id, message in outcomes.items():
        if message is None:
            result.cases[case_id] = CaseResult(test_case_id=case_id, status=CaseStatus.PASSED)
        elif isinstance(message, CaseStatus):
            result.cases[case_id] = CaseResult(test_case_id=case_id, status=message)
        else:
            result.cases[case_id] = CaseResult(
                test_case_id=case_id,
                status=CaseStatus.FAILED,
                evidence=FailureEvidence(error_message=message, environment="chromium"),
            )
    return result


class ScriptedRunner(TestRunner):
    """Returns scripted outcomes per attempt; the last entry repeats."""

    def __init__(self, script: Sequence[Outcomes | Exception]) -> None:
        self._script = list(script)
        self.calls: list[list[str]] = []
        self.contexts: list[RunnerContext] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def run(self, cases: Sequence[TestCase], context: RunnerContext) -> RunResult:
        index = min(len(self.calls), len(self._script) - 1)
        self.calls.append([c.id for c in cases])
        self.contexts.append(context)
        step = self._script[index]
        if isinstance(step, Exception):
            raise step
        return make_run_result(step)


class RecordingApplier(FixApplier):
    """Records every call and reports a successful fix."""

    def __init__(self, *, applied: bool = True) -> None:
        self.calls: list[tuple[str, Classification, FailureEvidence]] = []
        self._applied = applied

    async def apply(
        self,
        case: TestCase,
        classification: Classification,
        evidence: FailureEvidence,
    ) -> Remediation:
        self.calls.append((case.id, classification, evidence))
        return Remediation(
            test_case_id=case.id,
            category=classification.category,
            description="recorded fix",
            applied=self._applied,
        )


@pytest.fixture
def spec_dir(tmp_path: Path) -> Path:
    """A Playwright project layout with an ``e2e/tests`` directory."""
    tests = tmp_path / "e2e" / "tests" / "navigation"
    tests.mkdir(parents=True)
    return tmp_path
