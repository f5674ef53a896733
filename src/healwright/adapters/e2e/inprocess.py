"""Runner that executes Python-authored cases in-process.

Each case's step closures are called once per environment.  A step that
raises fails the case in that environment; the remaining steps of that run
are skipped, but every other case and environment still runs.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import traceback
from typing import TYPE_CHECKING

from healwright.adapters.base import (
    CaseStatus,
    EnvironmentResult,
    RunnerError,
    RunResult,
    TestRunner,
    aggregate_case,
)
from healwright.models.healing import FailureEvidence, StepContext

if TYPE_CHECKING:
    from collections.abc import Sequence

    from healwright.adapters.base import RunnerContext
    from healwright.models.healing import TestCase

logger = logging.getLogger(__name__)


class InProcessRunner(TestRunner):
    """Executes ``TestStep.action`` closures directly."""

    @property
    def name(self) -> str:
        return "inprocess"

    async def run(self, cases: Sequence[TestCase], context: RunnerContext) -> RunResult:
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._run_all(cases, context), timeout=context.timeout)
        except TimeoutError as exc:
            raise RunnerError(f"In-process run timed out after {context.timeout:.0f}s") from exc
        result.duration_ms = (time.perf_counter() - start) * 1000
        return result

    async def _run_all(self, cases: Sequence[TestCase], context: RunnerContext) -> RunResult:
        result = RunResult()
        base_url = context.auth.base_url if context.auth else ""
        storage_state = str(context.auth.storage_state) if context.auth else ""

        for case in cases:
            environments = [
                await _run_case(
                    case,
                    StepContext(environment=env, base_url=base_url, storage_state=storage_state),
                )
                for env in context.environments
            ]
            result.cases[case.id] = aggregate_case(case.id, environments)

        logger.debug(
            "In-process run: %d passed, %d failed across %s",
            result.passed,
            result.failed,
            ", ".join(context.environments),
        )
        return result


async def _run_case(case: TestCase, step_context: StepContext) -> EnvironmentResult:
    start = time.perf_counter()
    runnable = [step for step in case.steps if step.action is not None]
    if not runnable:
        return EnvironmentResult(environment=step_context.environment, status=CaseStatus.SKIPPED)

    for step in runnable:
        try:
            outcome = step.action(step_context)  # type: ignore[misc]
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return EnvironmentResult(
                environment=step_context.environment,
                status=CaseStatus.FAILED,
                duration_ms=(time.perf_counter() - start) * 1000,
                evidence=_evidence_from_exception(exc, step.description, step_context.environment),
            )

    return EnvironmentResult(
        environment=step_context.environment,
        status=CaseStatus.PASSED,
        duration_ms=(time.perf_counter() - start) * 1000,
    )


def _evidence_from_exception(exc: Exception, step: str, environment: str) -> FailureEvidence:
    message = str(exc) or type(exc).__name__
    if not isinstance(exc, AssertionError) and str(exc):
        message = f"{type(exc).__name__}: {exc}"
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return FailureEvidence(
        error_message=message,
        stack_trace=f"in step {step!r}\n{stack}",
        environment=environment,
    )
