"""Tests for the bounded healing loop."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import Mock

import pytest

from healwright.adapters.base import CaseStatus, RunnerContext, RunnerError, RunResult, TestRunner
from healwright.agents.healers.applier import SourceFixApplier
from healwright.agents.healers.classifier import FailureClassifier
from healwright.agents.healers.controller import HealingController, SessionAbortedError
from healwright.models.healing import (
    FailureCategory,
    HealingAttempt,
    SessionOutcome,
    TerminationCause,
    TestCase,
)
from tests.conftest import RecordingApplier, ScriptedRunner, make_run_result

SELECTOR_ERROR = "Error: expect(locator).toBeVisible() failed\nReceived: <element(s) not found>"
TIMING_ERROR = "Error: page.waitForURL: Timeout 10000ms exceeded."
UNKNOWN_ERROR = "TypeError: Cannot read properties of undefined (reading 'price')"


@pytest.fixture
def cases() -> list[TestCase]:
    return [
        TestCase(id="navigation/header.spec.ts::opens menu", title="opens menu"),
        TestCase(id="navigation/header.spec.ts::shows logo", title="shows logo"),
    ]


def _controller(runner: TestRunner, applier: RecordingApplier, **kwargs: Any) -> HealingController:
    return HealingController(runner, FailureClassifier(), applier, **kwargs)


# ── Terminal outcomes ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_all_pass_on_first_attempt(cases: list[TestCase]) -> None:
    """A clean first run ends the session with no remediation."""
    runner = ScriptedRunner([{cases[0].id: None, cases[1].id: None}])
    applier = RecordingApplier()

    session = await _controller(runner, applier).run_session(cases, max_attempts=5)

    assert session.outcome == SessionOutcome.ALL_PASSED
    assert session.termination_cause == TerminationCause.ALL_PASSED
    assert session.attempts_run == 1
    assert session.remediations == []
    assert session.failing_cases == []
    assert applier.calls == []


@pytest.mark.asyncio
async def test_fix_then_pass(cases: list[TestCase]) -> None:
    """A case failing once is remediated and the next attempt passes."""
    runner = ScriptedRunner(
        [
            {cases[0].id: SELECTOR_ERROR, cases[1].id: None},
            {cases[0].id: None, cases[1].id: None},
        ]
    )
    applier = RecordingApplier()

    session = await _controller(runner, applier).run_session(cases, max_attempts=5)

    assert session.all_passed
    assert session.attempts_run == 2
    assert [r.test_case_id for r in session.attempts[0].remediations] == [cases[0].id]
    assert session.attempts[0].remediations[0].category == FailureCategory.SELECTOR_MISMATCH
    assert session.attempts[1].remediations == ()


@pytest.mark.asyncio
async def test_every_attempt_runs_every_case(cases: list[TestCase]) -> None:
    """Passing cases are never dropped from later attempts."""
    runner = ScriptedRunner([{cases[0].id: None, cases[1].id: TIMING_ERROR}])

    await _controller(runner, RecordingApplier()).run_session(cases, max_attempts=3)

    assert runner.calls == [[c.id for c in cases]] * 3


@pytest.mark.asyncio
async def test_budget_exhausted(cases: list[TestCase]) -> None:
    """A case that never passes exhausts the budget and gets a report entry."""
    runner = ScriptedRunner([{cases[0].id: TIMING_ERROR, cases[1].id: None}])
    applier = RecordingApplier()

    session = await _controller(runner, applier).run_session(cases, max_attempts=3)

    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    assert session.termination_cause == TerminationCause.ATTEMPTS_EXHAUSTED
    assert session.attempts_run == 3
    assert len(runner.calls) == 3
    # Fixes are applied after the last attempt too.
    assert len(applier.calls) == 3

    [entry] = session.failing_cases
    assert entry.test_case_id == cases[0].id
    assert entry.suspected_category == FailureCategory.TIMING_RACE
    assert entry.last_error_message == TIMING_ERROR
    assert entry.remediation_count == 3
    assert entry.no_progress is True
    assert entry.investigation_suggestions
    assert entry.recommended_next_commands


@pytest.mark.asyncio
async def test_single_attempt_budget(cases: list[TestCase]) -> None:
    runner = ScriptedRunner([{cases[0].id: SELECTOR_ERROR, cases[1].id: None}])

    session = await _controller(runner, RecordingApplier()).run_session(cases, max_attempts=1)

    assert session.attempts_run == 1
    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    assert [e.test_case_id for e in session.failing_cases] == [cases[0].id]


@pytest.mark.asyncio
async def test_attempt_count_never_exceeds_budget(cases: list[TestCase]) -> None:
    runner = ScriptedRunner([{cases[0].id: SELECTOR_ERROR, cases[1].id: SELECTOR_ERROR}])

    session = await _controller(runner, RecordingApplier()).run_session(cases, max_attempts=4)

    assert session.attempts_run == 4
    assert [a.attempt_number for a in session.attempts] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_declined_fixes_are_not_counted(cases: list[TestCase]) -> None:
    runner = ScriptedRunner([{cases[0].id: SELECTOR_ERROR, cases[1].id: None}])
    applier = RecordingApplier(applied=False)

    session = await _controller(runner, applier).run_session(cases, max_attempts=2)

    [entry] = session.failing_cases
    assert entry.remediation_count == 0
    assert any("declined" in s for s in entry.investigation_suggestions)


@pytest.mark.asyncio
async def test_unknown_failure_runs_to_budget(cases: list[TestCase]) -> None:
    """An unrecognised failure is declined every attempt without stopping the loop."""
    runner = ScriptedRunner([{cases[0].id: UNKNOWN_ERROR, cases[1].id: None}])

    session = await HealingController(
        runner, FailureClassifier(), SourceFixApplier()
    ).run_session(cases, max_attempts=3)

    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    assert session.termination_cause == TerminationCause.ATTEMPTS_EXHAUSTED
    assert session.attempts_run == 3
    for attempt in session.attempts:
        [remediation] = attempt.remediations
        assert remediation.category == FailureCategory.UNKNOWN
        assert remediation.applied is False
    [entry] = session.failing_cases
    assert entry.suspected_category == FailureCategory.UNKNOWN
    assert entry.remediation_count == 0


@pytest.mark.asyncio
async def test_remediations_follow_changing_failing_set(cases: list[TestCase]) -> None:
    """Each attempt fixes only its own failures and the report lists only the last ones."""
    first, second = cases
    runner = ScriptedRunner(
        [
            {first.id: SELECTOR_ERROR, second.id: None},
            {first.id: None, second.id: TIMING_ERROR},
        ]
    )
    applier = RecordingApplier()

    session = await _controller(runner, applier).run_session(cases, max_attempts=3)

    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    for attempt in session.attempts:
        fixed = {r.test_case_id for r in attempt.remediations}
        assert fixed <= set(attempt.failing_ids)
    assert [call[0] for call in applier.calls] == [first.id, second.id, second.id]
    [entry] = session.failing_cases
    assert entry.test_case_id == second.id
    assert entry.remediation_count == 2
    assert entry.suspected_category == FailureCategory.TIMING_RACE


@pytest.mark.asyncio
async def test_skipped_case_is_not_a_pass(cases: list[TestCase]) -> None:
    """A case that comes back skipped keeps the session from ending as all passed."""
    runner = ScriptedRunner(
        [
            {cases[0].id: SELECTOR_ERROR, cases[1].id: None},
            {cases[0].id: CaseStatus.SKIPPED, cases[1].id: None},
        ]
    )
    applier = RecordingApplier()

    session = await _controller(runner, applier).run_session(cases, max_attempts=2)

    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    assert session.attempts[-1].failing_ids == [cases[0].id]
    assert [call[0] for call in applier.calls] == [cases[0].id, cases[0].id]
    [entry] = session.failing_cases
    assert entry.test_case_id == cases[0].id
    assert "skipped" in entry.last_error_message


@pytest.mark.asyncio
async def test_all_skipped_never_passes(cases: list[TestCase]) -> None:
    runner = ScriptedRunner([{case.id: CaseStatus.SKIPPED for case in cases}])

    session = await _controller(runner, RecordingApplier()).run_session(cases, max_attempts=1)

    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    assert len(session.failing_cases) == 2


# ── Validation ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_budget_below_one_is_rejected(cases: list[TestCase]) -> None:
    controller = _controller(ScriptedRunner([{}]), RecordingApplier())

    with pytest.raises(ValueError, match="at least 1"):
        await controller.run_session(cases, max_attempts=0)


@pytest.mark.asyncio
async def test_duplicate_case_ids_are_rejected() -> None:
    controller = _controller(ScriptedRunner([{}]), RecordingApplier())
    duplicated = [TestCase(id="a"), TestCase(id="a")]

    with pytest.raises(ValueError, match="unique"):
        await controller.run_session(duplicated)


# ── Failure handling ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_runner_error_aborts_session(cases: list[TestCase]) -> None:
    """A runner failure aborts the session and keeps completed attempts."""
    runner = ScriptedRunner(
        [
            {cases[0].id: SELECTOR_ERROR, cases[1].id: None},
            RunnerError("npx: command not found"),
        ]
    )

    with pytest.raises(SessionAbortedError, match="attempt 2") as exc_info:
        await _controller(runner, RecordingApplier()).run_session(cases, max_attempts=3)

    assert exc_info.value.session.attempts_run == 1


@pytest.mark.asyncio
async def test_missing_case_result_counts_as_failed(cases: list[TestCase]) -> None:
    runner = ScriptedRunner([{cases[0].id: None}])

    session = await _controller(runner, RecordingApplier()).run_session(cases, max_attempts=1)

    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    [entry] = session.failing_cases
    assert entry.test_case_id == cases[1].id
    assert "no result" in entry.last_error_message


@pytest.mark.asyncio
async def test_classifier_error_is_isolated_per_case(cases: list[TestCase]) -> None:
    """A classifier crash yields UNKNOWN for that case only."""
    runner = ScriptedRunner([{cases[0].id: SELECTOR_ERROR, cases[1].id: SELECTOR_ERROR}])
    applier = RecordingApplier()
    real = FailureClassifier()
    classifier = Mock()
    classifier.classify = Mock(
        side_effect=[RuntimeError("boom"), real.classify_message(SELECTOR_ERROR)]
    )

    controller = HealingController(runner, classifier, applier)
    session = await controller.run_session(cases, max_attempts=1)

    categories = [r.category for r in session.attempts[0].remediations]
    assert categories == [FailureCategory.UNKNOWN, FailureCategory.SELECTOR_MISMATCH]


@pytest.mark.asyncio
async def test_applier_error_is_isolated_per_case(cases: list[TestCase]) -> None:
    runner = ScriptedRunner([{cases[0].id: SELECTOR_ERROR, cases[1].id: SELECTOR_ERROR}])

    class _FlakyApplier(RecordingApplier):
        async def apply(self, case, classification, evidence):  # type: ignore[no-untyped-def]
            if case.id == cases[0].id:
                raise OSError("read-only file system")
            return await super().apply(case, classification, evidence)

    session = await _controller(runner, _FlakyApplier()).run_session(cases, max_attempts=1)

    first, second = session.attempts[0].remediations
    assert first.applied is False
    assert "read-only file system" in first.description
    assert second.applied is True


@pytest.mark.asyncio
async def test_evidence_carries_suspected_category(cases: list[TestCase]) -> None:
    runner = ScriptedRunner([{cases[0].id: TIMING_ERROR, cases[1].id: None}])
    applier = RecordingApplier()

    await _controller(runner, applier).run_session(cases, max_attempts=1)

    _, classification, evidence = applier.calls[0]
    assert classification.category == FailureCategory.TIMING_RACE
    assert evidence.suspected_category == FailureCategory.TIMING_RACE


# ── Session timeout and callbacks ────────────────────────────────────


def _failing_result(case_id: str) -> RunResult:
    return make_run_result({case_id: SELECTOR_ERROR})


@pytest.mark.asyncio
async def test_session_timeout(cases: list[TestCase]) -> None:
    """The wall-clock budget ends the session as budget exhausted."""
    only = cases[:1]

    class _Runner(TestRunner):
        calls = 0

        @property
        def name(self) -> str:
            return "hanging"

        async def run(self, cases, context):  # type: ignore[no-untyped-def]
            type(self).calls += 1
            if type(self).calls > 1:
                await asyncio.Event().wait()
            return _failing_result(only[0].id)

    session = await _controller(_Runner(), RecordingApplier()).run_session(
        only, max_attempts=5, session_timeout=0.2
    )

    assert session.outcome == SessionOutcome.BUDGET_EXHAUSTED
    assert session.termination_cause == TerminationCause.TIMEOUT
    assert session.attempts_run == 1
    assert [e.test_case_id for e in session.failing_cases] == [only[0].id]


@pytest.mark.asyncio
async def test_on_attempt_callback(cases: list[TestCase]) -> None:
    seen: list[HealingAttempt] = []
    runner = ScriptedRunner(
        [
            {cases[0].id: SELECTOR_ERROR, cases[1].id: None},
            {cases[0].id: None, cases[1].id: None},
        ]
    )

    await _controller(runner, RecordingApplier(), on_attempt=seen.append).run_session(cases)

    assert [a.attempt_number for a in seen] == [1, 2]


@pytest.mark.asyncio
async def test_context_is_passed_to_runner(cases: list[TestCase]) -> None:
    context = RunnerContext(environments=("chromium", "mobile-safari"), retries=2)
    runner = ScriptedRunner([{cases[0].id: None, cases[1].id: None}])

    await _controller(runner, RecordingApplier(), context=context).run_session(cases)

    assert runner.contexts == [context]
