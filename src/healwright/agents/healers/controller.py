"""The bounded healing loop.

Each attempt runs the whole case set.  When every case passes the session
ends; otherwise every failing case is classified and handed to the fix
applier before the next attempt.  The loop never runs more than
``max_attempts`` attempts and never drops a case from later attempts.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import TYPE_CHECKING

from healwright.adapters.base import CaseResult, CaseStatus, RunnerContext, RunnerError
from healwright.agents.healers.report import build_failing_case_reports
from healwright.models.healing import (
    DEFAULT_MAX_ATTEMPTS,
    Classification,
    FailureCategory,
    FailureEvidence,
    HealingAttempt,
    HealingSession,
    Remediation,
    SessionOutcome,
    TerminationCause,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from healwright.adapters.base import RunResult, TestRunner
    from healwright.agents.healers.applier import FixApplier
    from healwright.agents.healers.classifier import FailureClassifier
    from healwright.models.healing import TestCase

logger = logging.getLogger(__name__)

_MISSING_RESULT = "Runner returned no result for this case"
_SKIPPED_RESULT = "Case was skipped; a skipped case has not passed"


class SessionAbortedError(Exception):
    """The runner failed; carries the session as far as it got."""

    def __init__(self, message: str, session: HealingSession) -> None:
        super().__init__(message)
        self.session = session


@dataclasses.dataclass
class _InFlight:
    """Attempt whose fixes are still being applied."""

    attempt_number: int
    run_result: RunResult
    remediations: list[Remediation] = dataclasses.field(default_factory=list)

    def freeze(self) -> HealingAttempt:
        return HealingAttempt(
            attempt_number=self.attempt_number,
            run_result=self.run_result,
            remediations=tuple(self.remediations),
        )


class HealingController:
    """Sequences runner, classifier, and fix applier across attempts.

    The controller never edits sources itself.

    Args:
        runner: Executes the full case set once per attempt.
        classifier: Assigns a failure category to each failing case.
        applier: Applies the remediation for each failing case.
        context: Environments and auth session handed to every run.
        on_attempt: Called with each completed attempt.
    """

    def __init__(
        self,
        runner: TestRunner,
        classifier: FailureClassifier,
        applier: FixApplier,
        context: RunnerContext | None = None,
        *,
        on_attempt: Callable[[HealingAttempt], None] | None = None,
    ) -> None:
        self._runner = runner
        self._classifier = classifier
        self._applier = applier
        self._context = context or RunnerContext()
        self._on_attempt = on_attempt

    async def run_session(
        self,
        cases: Sequence[TestCase],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        *,
        session_timeout: float | None = None,
    ) -> HealingSession:
        """Run attempts until every case passes or the budget runs out.

        Args:
            cases: The case set; every attempt runs all of it.
            max_attempts: Attempt budget, at least 1.
            session_timeout: Optional wall-clock budget in seconds; ``None`` or
                ``0`` means no limit.

        Raises:
            ValueError: If ``max_attempts`` is below 1 or case ids repeat.
            SessionAbortedError: If the runner cannot execute the battery.
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        ids = [case.id for case in cases]
        if len(set(ids)) != len(ids):
            raise ValueError("Test case ids must be unique")

        session = HealingSession(max_attempts=max_attempts)
        in_flight: list[_InFlight] = []
        start = time.perf_counter()

        try:
            loop = self._loop(cases, session, in_flight)
            if session_timeout:
                await asyncio.wait_for(loop, timeout=session_timeout)
            else:
                await loop
        except TimeoutError:
            logger.warning(
                "Session timed out after %.1fs (%d attempts completed)",
                session_timeout,
                session.attempts_run,
            )
            if in_flight:
                session.attempts.append(in_flight.pop().freeze())
            session.outcome = SessionOutcome.BUDGET_EXHAUSTED
            session.termination_cause = TerminationCause.TIMEOUT
        except RunnerError as exc:
            session.duration_ms = (time.perf_counter() - start) * 1000
            msg = f"Runner failed on attempt {session.attempts_run + 1}: {exc}"
            logger.error(msg)
            raise SessionAbortedError(msg, session) from exc

        session.duration_ms = (time.perf_counter() - start) * 1000
        if session.outcome == SessionOutcome.BUDGET_EXHAUSTED:
            session.failing_cases = build_failing_case_reports(
                session, cases, self._classifier, context=self._context
            )

        logger.info(
            "Session finished: %s after %d/%d attempts (%s)",
            session.outcome.value,
            session.attempts_run,
            max_attempts,
            session.termination_cause.value,
        )
        return session

    async def _loop(
        self,
        cases: Sequence[TestCase],
        session: HealingSession,
        in_flight: list[_InFlight],
    ) -> None:
        for attempt_number in range(1, session.max_attempts + 1):
            logger.info(
                "Attempt %d/%d: running %d cases", attempt_number, session.max_attempts, len(cases)
            )
            run_result = await self._runner.run(cases, self._context)
            failing = _failing_cases(cases, run_result)

            current = _InFlight(attempt_number=attempt_number, run_result=run_result)
            if not failing:
                self._finish_attempt(session, current)
                session.outcome = SessionOutcome.ALL_PASSED
                session.termination_cause = TerminationCause.ALL_PASSED
                return

            logger.info("Attempt %d: %d failing cases", attempt_number, len(failing))
            in_flight.append(current)
            for case in failing:
                current.remediations.append(await self._remediate(case, run_result))
            in_flight.pop()
            self._finish_attempt(session, current)

        session.outcome = SessionOutcome.BUDGET_EXHAUSTED
        session.termination_cause = TerminationCause.ATTEMPTS_EXHAUSTED

    def _finish_attempt(self, session: HealingSession, current: _InFlight) -> None:
        attempt = current.freeze()
        session.attempts.append(attempt)
        if self._on_attempt is not None:
            self._on_attempt(attempt)

    async def _remediate(self, case: TestCase, run_result: RunResult) -> Remediation:
        """Classify and fix one case; failures here never reach other cases."""
        case_result = run_result.cases[case.id]
        evidence = case_result.evidence or FailureEvidence(error_message="")

        try:
            classification = self._classifier.classify(evidence)
        except Exception:
            logger.exception("Classifier failed for %s", case.id)
            classification = Classification(category=FailureCategory.UNKNOWN)

        case_result.evidence = dataclasses.replace(
            evidence, suspected_category=classification.category
        )
        logger.debug("%s classified as %s", case.id, classification.category.value)

        try:
            return await self._applier.apply(case, classification, case_result.evidence)
        except Exception as exc:
            logger.exception("Fix applier failed for %s", case.id)
            return Remediation(
                test_case_id=case.id,
                category=classification.category,
                description=f"fix applier failed: {exc}",
                applied=False,
            )


def _failing_cases(cases: Sequence[TestCase], run_result: RunResult) -> list[TestCase]:
    """Cases that did not pass, in input order.

    A case with no result counts as failed; a skipped case is failing too.
    """
    failing: list[TestCase] = []
    for case in cases:
        result = run_result.cases.get(case.id)
        if result is None:
            logger.warning("No result for %s; treating it as failed", case.id)
            result = CaseResult(
                test_case_id=case.id,
                status=CaseStatus.FAILED,
                evidence=FailureEvidence(error_message=_MISSING_RESULT),
            )
            run_result.cases[case.id] = result
        if result.status == CaseStatus.SKIPPED and result.evidence is None:
            result.evidence = FailureEvidence(error_message=_SKIPPED_RESULT)
        if result.status != CaseStatus.PASSED:
            failing.append(case)
    return failing
