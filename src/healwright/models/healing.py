"""Domain models for test cases, failure evidence, and healing sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from healwright.adapters.base import RunResult


DEFAULT_MAX_ATTEMPTS = 5


class FailureCategory(Enum):
    """Closed taxonomy of failure causes."""

    SELECTOR_MISMATCH = "selector_mismatch"
    """A locator no longer resolves to the intended element."""

    TIMING_RACE = "timing_race"
    """A state transition did not happen within the wait window."""

    STATE_ISOLATION = "state_isolation"
    """The case observed state left behind by another case."""

    ASSERTION_MISMATCH = "assertion_mismatch"
    """A comparator failed with both expected and received values."""

    ENVIRONMENT_OR_AUTH = "environment_or_auth"
    """The run was stuck behind the store password gate or a redirect."""

    UNKNOWN = "unknown"
    """No rule matched."""


class SessionOutcome(Enum):
    """Terminal status of a healing session."""

    ALL_PASSED = "all_passed"
    BUDGET_EXHAUSTED = "budget_exhausted"


class TerminationCause(Enum):
    """Why a session stopped."""

    ALL_PASSED = "all_passed"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class StepContext:
    """Read-only values handed to a step action."""

    environment: str
    """Browser project the step runs under."""

    base_url: str = ""
    """Storefront base URL."""

    storage_state: str = ""
    """Path of the authenticated storage-state snapshot."""


@dataclass(frozen=True)
class TestStep:
    """One described action or assertion inside a case."""

    __test__ = False

    description: str
    """Human-readable description (as in ``test.step('...')``)."""

    action: Callable[[StepContext], Awaitable[None] | None] | None = None
    """Closure executing the step; ``None`` for externally executed cases."""


@dataclass(frozen=True)
class TestCase:
    """An independently runnable test scenario."""

    __test__ = False

    id: str
    """Unique identifier (``<spec file>::<title>`` for discovered cases)."""

    steps: tuple[TestStep, ...] = ()
    """Ordered steps."""

    suite: str = ""
    """Owning ``describe`` block or module."""

    source_path: str = ""
    """File holding the case's source, if any."""

    title: str = ""
    """Test title as the runner reports it."""

    @property
    def display_title(self) -> str:
        """Title used for runner filtering (falls back to the id)."""
        return self.title or self.id


@dataclass(frozen=True)
class FailureEvidence:
    """Diagnostics captured for one failing case."""

    error_message: str
    """Error text reported by the runner."""

    stack_trace: str = ""
    """Stack trace, if reported."""

    artifacts: tuple[str, ...] = ()
    """Paths of screenshots, traces, and videos."""

    environment: str = ""
    """Browser project the failure was observed in."""

    suspected_category: FailureCategory | None = None
    """Category assigned by the classifier, once classified."""

    @property
    def trace_artifacts(self) -> list[str]:
        """Artifacts that are Playwright trace archives."""
        return [a for a in self.artifacts if a.endswith(".zip")]


@dataclass(frozen=True)
class Classification:
    """Classifier output for one piece of evidence."""

    category: FailureCategory
    """Assigned category."""

    hint: str = ""
    """Remediation hint for the fix applier."""

    selector: str = ""
    """Offending selector, when one could be extracted."""


@dataclass(frozen=True)
class Remediation:
    """A remediation requested for one failing case."""

    test_case_id: str
    category: FailureCategory
    description: str
    applied: bool = True
    """``False`` when the applier declined or the proposal was rejected."""


@dataclass(frozen=True)
class HealingAttempt:
    """One full run of all cases plus the remediations it triggered."""

    attempt_number: int
    run_result: RunResult
    remediations: tuple[Remediation, ...] = ()

    @property
    def failing_ids(self) -> list[str]:
        """Identifiers of cases that failed in this attempt."""
        return self.run_result.failing_ids

    @property
    def passed(self) -> int:
        return self.run_result.passed

    @property
    def failed(self) -> int:
        return len(self.run_result.failing_ids)


@dataclass
class FailingCaseReport:
    """Report entry for a case still failing when the budget ran out."""

    test_case_id: str
    """Identifier of the failing case."""

    last_error_message: str
    """Error text from the final attempt."""

    suspected_category: FailureCategory
    """Root-cause category proposed by the classifier."""

    investigation_suggestions: list[str] = field(default_factory=list)
    """Ordered hints for a human investigator."""

    recommended_next_commands: list[str] = field(default_factory=list)
    """Ordered shell commands to reproduce and debug the failure."""

    remediation_count: int = 0
    """How many remediations were applied to this case during the session."""

    no_progress: bool = False
    """``True`` when the evidence was identical in every attempt."""

    environment: str = ""
    """Browser project of the last failure."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_case_id": self.test_case_id,
            "last_error_message": self.last_error_message,
            "suspected_category": self.suspected_category.value,
            "investigation_suggestions": list(self.investigation_suggestions),
            "recommended_next_commands": list(self.recommended_next_commands),
            "remediation_count": self.remediation_count,
            "no_progress": self.no_progress,
            "environment": self.environment,
        }


@dataclass
class HealingSession:
    """The bounded sequence of attempts and its terminal outcome."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    """Attempt budget."""

    attempts: list[HealingAttempt] = field(default_factory=list)
    """Attempts in execution order."""

    outcome: SessionOutcome = SessionOutcome.BUDGET_EXHAUSTED
    """Terminal status."""

    termination_cause: TerminationCause = TerminationCause.ATTEMPTS_EXHAUSTED
    """Reason the loop stopped."""

    failing_cases: list[FailingCaseReport] = field(default_factory=list)
    """Per-case entries, populated only for ``BUDGET_EXHAUSTED``."""

    duration_ms: float = 0.0
    """Wall-clock duration of the session."""

    @property
    def attempts_run(self) -> int:
        return len(self.attempts)

    @property
    def all_passed(self) -> bool:
        return self.outcome == SessionOutcome.ALL_PASSED

    @property
    def remediations(self) -> list[Remediation]:
        """All remediations across attempts, in order."""
        return [r for attempt in self.attempts for r in attempt.remediations]

    @property
    def last_attempt(self) -> HealingAttempt | None:
        return self.attempts[-1] if self.attempts else None
