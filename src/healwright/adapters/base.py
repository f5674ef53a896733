"""Abstract base class and result types for test runners."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from healwright.adapters.e2e.auth import AuthSession
    from healwright.models.healing import FailureEvidence, TestCase


class CaseStatus(Enum):
    """Outcome of a single test case."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class EnvironmentResult:
    """Outcome of one case in one browser project."""

    environment: str
    status: CaseStatus
    duration_ms: float = 0.0
    evidence: FailureEvidence | None = None
    retries: int = 0
    """Runner-level retries spent before this outcome."""


@dataclass
class CaseResult:
    """Aggregated result of a single case across all environments."""

    test_case_id: str
    status: CaseStatus
    evidence: FailureEvidence | None = None
    environments: list[EnvironmentResult] = field(default_factory=list)

    @property
    def failed_environments(self) -> list[str]:
        return [e.environment for e in self.environments if e.status == CaseStatus.FAILED]


@dataclass
class RunResult:
    """Aggregated result of one runner invocation, keyed by case id."""

    cases: dict[str, CaseResult] = field(default_factory=dict)
    duration_ms: float = 0.0
    raw_output: str = ""
    runner_retries: int = 0
    """Retries performed by the runner itself, outside the healing budget."""

    @property
    def passed(self) -> int:
        return sum(1 for c in self.cases.values() if c.status == CaseStatus.PASSED)

    @property
    def failed(self) -> int:
        return sum(1 for c in self.cases.values() if c.status == CaseStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for c in self.cases.values() if c.status == CaseStatus.SKIPPED)

    @property
    def total(self) -> int:
        """Total number of test cases."""
        return len(self.cases)

    @property
    def failing_ids(self) -> list[str]:
        """Cases that did not pass.  A skipped case has not passed."""
        return [cid for cid, c in self.cases.items() if c.status != CaseStatus.PASSED]

    @property
    def success(self) -> bool:
        return not self.failing_ids


@dataclass(frozen=True)
class RunnerContext:
    """Read-only execution context threaded into every runner call."""

    environments: tuple[str, ...] = ("chromium",)
    """Browser projects to run every case under."""

    auth: AuthSession | None = None
    """Authenticated-session handle established before the first attempt."""

    timeout: float = 300.0
    """Maximum seconds for one runner invocation."""

    retries: int = 0
    """Runner-level retries for infrastructure flakiness (disclosed, not healing)."""


class RunnerError(Exception):
    """Raised when the runner itself cannot execute the battery."""


class TestRunner(ABC):
    """Abstract base class for test runners.

    A runner executes every case to completion in every environment of the
    context and reports a case as failed when it fails in any of them.
    """

    __test__ = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Runner identifier (e.g. ``'playwright'``)."""

    @abstractmethod
    async def run(self, cases: Sequence[TestCase], context: RunnerContext) -> RunResult:
        """Execute *cases* and return per-case verdicts.

        Args:
            cases: The full case set.  Every case is executed.
            context: Environments, auth session, and limits.

        Returns:
            A fresh ``RunResult``.

        Raises:
            RunnerError: If the battery could not be executed at all.
        """


def aggregate_case(test_case_id: str, environments: list[EnvironmentResult]) -> CaseResult:
    """Fold per-environment outcomes into one verdict.

    A failure in any environment fails the case; its evidence is the first
    failing environment's.  A case skipped everywhere is skipped.
    """
    failures = [e for e in environments if e.status == CaseStatus.FAILED]
    if failures:
        return CaseResult(
            test_case_id=test_case_id,
            status=CaseStatus.FAILED,
            evidence=failures[0].evidence,
            environments=environments,
        )
    if environments and all(e.status == CaseStatus.SKIPPED for e in environments):
        status = CaseStatus.SKIPPED
    else:
        status = CaseStatus.PASSED
    return CaseResult(test_case_id=test_case_id, status=status, environments=environments)
